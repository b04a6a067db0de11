"""Namespaces, prefixes and the CSVW built-in datatype table."""

from __future__ import annotations

from typing import Dict

from rdflib import Namespace
from rdflib.namespace import RDF, RDFS, XSD


# ---- Core namespaces ----
CSVW = Namespace("http://www.w3.org/ns/csvw#")
SKOS = Namespace("http://www.w3.org/2004/02/skos/core#")
PROV = Namespace("http://www.w3.org/ns/prov#")

CSVW_CONTEXT = "http://www.w3.org/ns/csvw"


# RDFa 1.1 initial context
COMMON_PREFIXES: Dict[str, str] = {
    "as": "https://www.w3.org/ns/activitystreams#",
    "cc": "http://creativecommons.org/ns#",
    "csvw": str(CSVW),
    "ctag": "http://commontag.org/ns#",
    "dc": "http://purl.org/dc/terms/",
    "dc11": "http://purl.org/dc/elements/1.1/",
    "dcat": "http://www.w3.org/ns/dcat#",
    "dcterms": "http://purl.org/dc/terms/",
    "dqv": "http://www.w3.org/ns/dqv#",
    "duv": "http://www.w3.org/ns/duv#",
    "earl": "http://www.w3.org/ns/earl#",
    "foaf": "http://xmlns.com/foaf/0.1/",
    "gr": "http://purl.org/goodrelations/v1#",
    "grddl": "http://www.w3.org/2003/g/data-view#",
    "ical": "http://www.w3.org/2002/12/cal/icaltzd#",
    "jsonld": "http://www.w3.org/ns/json-ld#",
    "ldp": "http://www.w3.org/ns/ldp#",
    "ma": "http://www.w3.org/ns/ma-ont#",
    "oa": "http://www.w3.org/ns/oa#",
    "odrl": "http://www.w3.org/ns/odrl/2/",
    "og": "http://ogp.me/ns#",
    "org": "http://www.w3.org/ns/org#",
    "owl": "http://www.w3.org/2002/07/owl#",
    "prov": str(PROV),
    "qb": "http://purl.org/linked-data/cube#",
    "rdf": str(RDF),
    "rdfa": "http://www.w3.org/ns/rdfa#",
    "rdfs": str(RDFS),
    "rev": "http://purl.org/stuff/rev#",
    "rif": "http://www.w3.org/2007/rif#",
    "rr": "http://www.w3.org/ns/r2rml#",
    "schema": "http://schema.org/",
    "sd": "http://www.w3.org/ns/sparql-service-description#",
    "sioc": "http://rdfs.org/sioc/ns#",
    "skos": str(SKOS),
    "skosxl": "http://www.w3.org/2008/05/skos-xl#",
    "sosa": "http://www.w3.org/ns/sosa/",
    "ssn": "http://www.w3.org/ns/ssn/",
    "time": "http://www.w3.org/2006/time#",
    "v": "http://rdf.data-vocabulary.org/#",
    "vcard": "http://www.w3.org/2006/vcard/ns#",
    "void": "http://rdfs.org/ns/void#",
    "wdr": "http://www.w3.org/2007/05/powder#",
    "wdrs": "http://www.w3.org/2007/05/powder-s#",
    "xhv": "http://www.w3.org/1999/xhtml/vocab#",
    "xml": "http://www.w3.org/XML/1998/namespace",
    "xsd": str(XSD),
}


_xsd = str(XSD)

DATATYPE_IRIS: Dict[str, str] = {
    "any": _xsd + "anyAtomicType",
    "anyAtomicType": _xsd + "anyAtomicType",
    "anyURI": _xsd + "anyURI",
    "base64Binary": _xsd + "base64Binary",
    "binary": _xsd + "base64Binary",
    "boolean": _xsd + "boolean",
    "byte": _xsd + "byte",
    "date": _xsd + "date",
    "datetime": _xsd + "dateTime",
    "dateTime": _xsd + "dateTime",
    "dateTimeStamp": _xsd + "dateTimeStamp",
    "dayTimeDuration": _xsd + "dayTimeDuration",
    "decimal": _xsd + "decimal",
    "double": _xsd + "double",
    "duration": _xsd + "duration",
    "float": _xsd + "float",
    "gDay": _xsd + "gDay",
    "gMonth": _xsd + "gMonth",
    "gMonthDay": _xsd + "gMonthDay",
    "gYear": _xsd + "gYear",
    "gYearMonth": _xsd + "gYearMonth",
    "hexBinary": _xsd + "hexBinary",
    "html": str(RDF) + "HTML",
    "int": _xsd + "int",
    "integer": _xsd + "integer",
    "json": str(CSVW) + "JSON",
    "language": _xsd + "language",
    "long": _xsd + "long",
    "Name": _xsd + "Name",
    "negativeInteger": _xsd + "negativeInteger",
    "NMTOKEN": _xsd + "NMTOKEN",
    "nonNegativeInteger": _xsd + "nonNegativeInteger",
    "nonPositiveInteger": _xsd + "nonPositiveInteger",
    "normalizedString": _xsd + "normalizedString",
    "number": _xsd + "double",
    "positiveInteger": _xsd + "positiveInteger",
    "QName": _xsd + "QName",
    "short": _xsd + "short",
    "string": _xsd + "string",
    "time": _xsd + "time",
    "token": _xsd + "token",
    "unsignedByte": _xsd + "unsignedByte",
    "unsignedInt": _xsd + "unsignedInt",
    "unsignedLong": _xsd + "unsignedLong",
    "unsignedShort": _xsd + "unsignedShort",
    "xml": str(RDF) + "XMLLiteral",
    "yearMonthDuration": _xsd + "yearMonthDuration",
}

# IRI -> canonical CSVW name (aliases such as `number` and `datetime` lose)
BUILTIN_NAMES: Dict[str, str] = {}
for _name, _iri in DATATYPE_IRIS.items():
    if _name not in ("any", "binary", "datetime", "number"):
        BUILTIN_NAMES[_iri] = _name


NUMERIC_TYPES = frozenset(
    _xsd + t
    for t in (
        "integer", "decimal", "long", "int", "short", "byte",
        "nonNegativeInteger", "positiveInteger", "unsignedLong", "unsignedInt",
        "unsignedShort", "unsignedByte", "double", "float",
        "nonPositiveInteger", "negativeInteger",
    )
)
DATE_TYPES = frozenset(
    _xsd + t
    for t in (
        "date", "dateTime", "dateTimeStamp", "time",
        "gDay", "gMonth", "gMonthDay", "gYear", "gYearMonth",
    )
)
DURATION_TYPES = frozenset(_xsd + t for t in ("duration", "dayTimeDuration", "yearMonthDuration"))
STRING_TYPES = frozenset(
    _xsd + t
    for t in ("string", "normalizedString", "token", "language", "NMTOKEN", "Name", "hexBinary", "base64Binary")
)
BOOLEAN_TYPE = _xsd + "boolean"


def expand_iri(iri: str) -> str:
    """Expand `prefix:local` using the common prefixes; other values pass through."""
    i = iri.find(":")
    if i == -1:
        return iri
    prefix = iri[:i]
    if prefix in COMMON_PREFIXES:
        return COMMON_PREFIXES[prefix] + iri[i + 1:]
    return iri


def local_name(iri: str) -> str:
    """The part of an IRI after its last '#' or '/'."""
    return iri[max(iri.rfind("#"), iri.rfind("/")) + 1:]
