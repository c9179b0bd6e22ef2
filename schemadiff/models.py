"""
models
======

Immutable snapshot of one schema's structure.

The loader (:mod:`schemadiff.collectors`) produces a :class:`SchemaSnapshot`;
the diff engine (:mod:`schemadiff.diffing`) compares two of them. Nothing in
this module touches a database.

Equality
--------
:class:`ColumnDescriptor` and :class:`IndexDescriptor` compare by value over
every field except ``name``: the name is the lookup key inside the owning
table, the remaining fields are what a diff is about.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple

BASE_TABLE = "BASE TABLE"
VIEW = "VIEW"


@dataclass(frozen=True)
class ColumnDescriptor:
    """One column of a table.

    ``char_max_length``, ``numeric_precision`` and ``numeric_scale`` use ``0``
    when the catalog reports nothing for the column type.
    """

    name: str = field(compare=False)
    data_type: str
    nullable: bool = True
    default: Optional[str] = None
    char_max_length: int = 0
    numeric_precision: int = 0
    numeric_scale: int = 0

    def render(self) -> str:
        """Compact form such as ``character varying(50) NOT NULL``."""
        text = self.data_type
        if self.char_max_length > 0:
            text += f"({self.char_max_length})"
        elif self.numeric_precision > 0 and self.numeric_scale > 0:
            text += f"({self.numeric_precision},{self.numeric_scale})"
        if not self.nullable:
            text += " NOT NULL"
        if self.default is not None:
            text += f" DEFAULT {self.default}"
        return text


@dataclass(frozen=True)
class IndexDescriptor:
    """A secondary index. ``columns`` keeps key order."""

    name: str = field(compare=False)
    unique: bool = False
    columns: Tuple[str, ...] = ()
    method: str = "btree"

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))

    def render(self) -> str:
        prefix = "UNIQUE " if self.unique else ""
        return f"{prefix}{self.method} ({', '.join(self.columns)})"


@dataclass(frozen=True)
class TableDescriptor:
    """A table (or view) with its columns, indexes and primary key.

    ``columns`` and ``indexes`` are read-only mappings that keep catalog
    order. Use :meth:`build` to construct one from plain sequences.
    """

    name: str
    table_type: str = BASE_TABLE
    columns: Mapping[str, ColumnDescriptor] = field(default_factory=dict)
    indexes: Mapping[str, IndexDescriptor] = field(default_factory=dict)
    primary_key: frozenset = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", MappingProxyType(dict(self.columns)))
        object.__setattr__(self, "indexes", MappingProxyType(dict(self.indexes)))
        object.__setattr__(self, "primary_key", frozenset(self.primary_key))

    @classmethod
    def build(
        cls,
        name: str,
        columns: Iterable[ColumnDescriptor] = (),
        indexes: Iterable[IndexDescriptor] = (),
        primary_key: Iterable[str] = (),
        table_type: str = BASE_TABLE,
    ) -> "TableDescriptor":
        """Build a table from sequences; later duplicates replace earlier ones."""
        return cls(
            name=name,
            table_type=table_type,
            columns={c.name: c for c in columns},
            indexes={i.name: i for i in indexes},
            primary_key=frozenset(primary_key),
        )


@dataclass(frozen=True)
class SchemaSnapshot:
    """All tables of one endpoint + schema, captured at a single point in time.

    Attributes:
        tables: Read-only mapping of table name to :class:`TableDescriptor`,
            in catalog order.
        schema: Schema the snapshot was read from.
        source: Name of the endpoint the snapshot was read from.
        captured_at: Capture timestamp (UTC).
    """

    tables: Mapping[str, TableDescriptor] = field(default_factory=dict)
    schema: str = "public"
    source: str = ""
    captured_at: dt.datetime = field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc), compare=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "tables", MappingProxyType(dict(self.tables)))

    @classmethod
    def build(
        cls,
        tables: Iterable[TableDescriptor] = (),
        schema: str = "public",
        source: str = "",
    ) -> "SchemaSnapshot":
        return cls(tables={t.name: t for t in tables}, schema=schema, source=source)

    @property
    def column_count(self) -> int:
        return sum(len(t.columns) for t in self.tables.values())

    @property
    def index_count(self) -> int:
        return sum(len(t.indexes) for t in self.tables.values())
