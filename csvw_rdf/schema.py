"""
Editable table group schema produced by schema inference.

The classes mirror the CSVW descriptor layout and can be turned back into a
descriptor with to_descriptor().  Every mutation checks the schema invariants
and raises SchemaError when an edit would break them.  Locked tables reject
all mutations.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from .errors import SchemaError
from .vocab import CSVW_CONTEXT


_COLUMN_PROPERTIES = {
    "titles": "titles",
    "datatype": "datatype",
    "about_url": "aboutUrl",
    "property_url": "propertyUrl",
    "value_url": "valueUrl",
    "required": "required",
    "virtual": "virtual",
}

WIDEST_DATATYPE = "anyAtomicType"


class ColumnSchema:
    def __init__(
        self,
        name: str,
        titles: Optional[Any] = None,
        datatype: Any = WIDEST_DATATYPE,
        about_url: Optional[str] = None,
        property_url: Optional[str] = None,
        value_url: Optional[str] = None,
        required: bool = False,
        virtual: bool = False,
    ):
        self.name = name
        self.titles = titles
        self.datatype = datatype
        self.about_url = about_url
        self.property_url = property_url
        self.value_url = value_url
        self.required = required
        self.virtual = virtual

    def rename(self, name: str) -> None:
        self.name = name

    def update(self, **props: Any) -> None:
        for key, value in props.items():
            if key not in _COLUMN_PROPERTIES:
                raise SchemaError(f"Unknown column property: {key}")
            setattr(self, key, value)

    def clone(self) -> "ColumnSchema":
        clone = ColumnSchema(self.name)
        for key in _COLUMN_PROPERTIES:
            setattr(clone, key, copy.deepcopy(getattr(self, key)))
        return clone

    def to_descriptor(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name}
        for key, out in _COLUMN_PROPERTIES.items():
            value = getattr(self, key)
            if value is None or value is False:
                continue
            result[out] = copy.deepcopy(value)
        return result

    def __repr__(self) -> str:
        return f"ColumnSchema({self.name!r})"


class TableSchema:
    def __init__(self, url: str, *columns: str):
        self.url = url
        self.columns: List[ColumnSchema] = []
        self.primary_key: List[str] = []
        self.foreign_keys: List[Dict[str, Any]] = []
        self.locked = False
        for name in columns:
            self.add_column(name)

    def _check_unlocked(self) -> None:
        if self.locked:
            raise SchemaError(f"Table {self.url} is locked")

    def get_column(self, name: str) -> Optional[ColumnSchema]:
        return next((c for c in self.columns if c.name == name), None)

    def _require_column(self, name: str) -> ColumnSchema:
        column = self.get_column(name)
        if column is None:
            raise SchemaError(f"Column {name!r} not found in table {self.url}")
        return column

    def add_column(self, name: str, **props: Any) -> ColumnSchema:
        self._check_unlocked()
        if self.get_column(name) is not None:
            raise SchemaError(f"Cannot add column with an existing name: {name}")
        column = ColumnSchema(name)
        column.update(**props)
        self.columns.append(column)
        return column

    def merge_column(self, name: str, **props: Any) -> ColumnSchema:
        """
        Add the column, or fold `props` into the existing one.

        Unset properties are filled in; a conflicting datatype widens the column
        to anyAtomicType.  Other conflicting values keep the existing value.
        """
        column = self.get_column(name)
        if column is None:
            return self.add_column(name, **props)
        self._check_unlocked()
        for key, value in props.items():
            if key not in _COLUMN_PROPERTIES:
                raise SchemaError(f"Unknown column property: {key}")
            current = getattr(column, key)
            if key == "datatype":
                if current != value:
                    column.datatype = WIDEST_DATATYPE
            elif current is None:
                setattr(column, key, value)
        return column

    def remove_column(self, name: str) -> None:
        self._check_unlocked()
        if name in self.primary_key:
            raise SchemaError("Cannot remove a column that is part of the primary key")
        column = self._require_column(name)
        self.columns.remove(column)
        self.foreign_keys = [fk for fk in self.foreign_keys if name not in fk["columnReference"]]

    def rename_column(self, old_name: str, new_name: str) -> None:
        self._check_unlocked()
        if self.get_column(new_name) is not None:
            raise SchemaError(f"Cannot rename to an existing column: {new_name}")
        self._require_column(old_name).rename(new_name)
        self.primary_key = [new_name if k == old_name else k for k in self.primary_key]
        for fk in self.foreign_keys:
            fk["columnReference"] = [new_name if c == old_name else c for c in fk["columnReference"]]
            if fk["reference"]["resource"] == self.url:
                ref = fk["reference"]
                ref["columnReference"] = [new_name if c == old_name else c for c in ref["columnReference"]]

    def add_primary_key(self, name: str) -> None:
        self._check_unlocked()
        self._require_column(name)
        if name in self.primary_key:
            raise SchemaError(f"Column {name!r} is already part of the primary key")
        self.primary_key.append(name)

    def remove_primary_key(self, name: str) -> None:
        self._check_unlocked()
        if name not in self.primary_key:
            raise SchemaError(f"Column {name!r} is not part of the primary key")
        self.primary_key.remove(name)

    def add_foreign_key(self, columns: List[str], resource: str, ref_columns: List[str]) -> Dict[str, Any]:
        self._check_unlocked()
        columns, ref_columns = list(columns), list(ref_columns)
        if not columns or len(columns) != len(ref_columns):
            raise SchemaError("Foreign key must reference as many columns as it uses")
        for name in columns:
            self._require_column(name)
        if self._find_foreign_key(columns, resource) is not None:
            raise SchemaError(f"Foreign key {columns} -> {resource} already exists")
        fk = {"columnReference": columns, "reference": {"resource": resource, "columnReference": ref_columns}}
        self.foreign_keys.append(fk)
        return fk

    def _find_foreign_key(self, columns: List[str], resource: Optional[str]) -> Optional[Dict[str, Any]]:
        for fk in self.foreign_keys:
            if fk["columnReference"] == list(columns) and resource in (None, fk["reference"]["resource"]):
                return fk
        return None

    def remove_foreign_key(self, columns: List[str], resource: Optional[str] = None) -> None:
        self._check_unlocked()
        fk = self._find_foreign_key(columns, resource)
        if fk is None:
            raise SchemaError(f"Foreign key on {list(columns)} not found in table {self.url}")
        self.foreign_keys.remove(fk)

    def clone(self) -> "TableSchema":
        clone = TableSchema(self.url)
        clone.columns = [c.clone() for c in self.columns]
        clone.primary_key = list(self.primary_key)
        clone.foreign_keys = copy.deepcopy(self.foreign_keys)
        clone.locked = self.locked
        return clone

    def to_descriptor(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"columns": [c.to_descriptor() for c in self.columns]}
        if self.primary_key:
            schema["primaryKey"] = list(self.primary_key)
        if self.foreign_keys:
            schema["foreignKeys"] = copy.deepcopy(self.foreign_keys)
        return {"url": self.url, "tableSchema": schema}

    def __repr__(self) -> str:
        return f"TableSchema({self.url!r}, columns={[c.name for c in self.columns]})"


class TableGroupSchema:
    """Ordered collection of TableSchemas with unique urls."""

    def __init__(self):
        self.tables: List[TableSchema] = []

    def add_table(self, url: str, *columns: str) -> TableSchema:
        if self.get_table(url) is not None:
            raise SchemaError(f"Cannot add table with an existing url: {url}")
        table = TableSchema(url, *columns)
        self.tables.append(table)
        return table

    def get_table(self, url: str) -> Optional[TableSchema]:
        return next((t for t in self.tables if t.url == url), None)

    def _require_table(self, url: str) -> TableSchema:
        table = self.get_table(url)
        if table is None:
            raise SchemaError(f"Table not found: {url}")
        return table

    def _references(self, url: str):
        for table in self.tables:
            for fk in table.foreign_keys:
                if fk["reference"]["resource"] == url:
                    yield table, fk

    def rename_table(self, old_url: str, new_url: str) -> None:
        if self.get_table(new_url) is not None:
            raise SchemaError(f"Cannot rename table to an existing url: {new_url}")
        table = self._require_table(old_url)
        table._check_unlocked()
        referencing = list(self._references(old_url))
        for other, _ in referencing:
            other._check_unlocked()
        table.url = new_url
        for _, fk in referencing:
            fk["reference"]["resource"] = new_url

    def remove_table(self, url: str) -> None:
        table = self._require_table(url)
        if len(self.tables) == 1:
            raise SchemaError("Cannot remove the only table in the group")
        self.tables.remove(table)
        for other in self.tables:
            other.foreign_keys = [fk for fk in other.foreign_keys if fk["reference"]["resource"] != url]

    def rename_table_column(self, table_url: str, name: str, new_name: str) -> None:
        table = self._require_table(table_url)
        table.rename_column(name, new_name)
        for other, fk in self._references(table_url):
            if other is table:
                continue
            ref = fk["reference"]
            ref["columnReference"] = [new_name if c == name else c for c in ref["columnReference"]]

    def remove_table_column(self, table_url: str, name: str) -> None:
        table = self._require_table(table_url)
        table.remove_column(name)
        for other in self.tables:
            if other is table:
                continue
            other.foreign_keys = [
                fk
                for fk in other.foreign_keys
                if not (fk["reference"]["resource"] == table_url and name in fk["reference"]["columnReference"])
            ]

    def move_table_column(self, from_url: str, column: str, to_url: str) -> None:
        """
        Move `column` into another table together with copies of the source
        primary key columns, which join the target's primary key.
        """
        source = self._require_table(from_url)
        target = self._require_table(to_url)
        target._check_unlocked()
        col = source._require_column(column)
        moved: List[ColumnSchema] = []
        for key in source.primary_key:
            key_column = source._require_column(key)
            if key_column is col:
                raise SchemaError(f"Cannot move primary key column: {key}")
            moved.append(key_column.clone())
        moved.append(col)

        source.remove_column(column)
        for item in moved:
            if any(c.property_url == item.property_url for c in target.columns if item.property_url):
                continue
            name = item.name
            while target.get_column(name) is not None:
                name = f"{name}{len(target.columns)}"
            item.name = name
            target.columns.append(item)
            if item is not col and name not in target.primary_key:
                target.primary_key.append(name)

    def lock(self) -> None:
        for table in self.tables:
            table.locked = True

    def clone(self) -> "TableGroupSchema":
        clone = TableGroupSchema()
        clone.tables = [t.clone() for t in self.tables]
        return clone

    def to_descriptor(self) -> Dict[str, Any]:
        return {"@context": CSVW_CONTEXT, "tables": [t.to_descriptor() for t in self.tables]}

    def __len__(self) -> int:
        return len(self.tables)
