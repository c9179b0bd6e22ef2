"""
collectors
==========

Schema snapshot collection from PostgreSQL catalogs.

This module is responsible for turning one endpoint + schema into a
:class:`~schemadiff.models.SchemaSnapshot`. It runs four catalog queries over a
single connection:

- tables and views (``information_schema.tables``)
- columns in ordinal order (``information_schema.columns``)
- primary key columns (``information_schema.table_constraints``)
- non-primary indexes (``pg_index`` + ``pg_get_indexdef``)

The orchestration layer (:mod:`schemadiff.orchestrator`) drives which
endpoints get loaded and when.

Design choices
--------------
- The schema name is a query parameter everywhere; nothing assumes ``public``.
- Primary key indexes are excluded from the index set; the primary key is
  compared as a column set instead.
- Table filtering happens after loading, on the finished snapshot, so base and
  targets are filtered by the same rules.

Public helpers
--------------
- :func:`filter_tables` / :func:`filter_snapshot` (include/exclude patterns)
- :func:`parse_index_columns` / :func:`parse_index_method`
- :class:`PostgresSchemaLoader`

"""

from __future__ import annotations

import dataclasses
import fnmatch
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import psycopg2

from .connection import ConnectOptions, open_connection
from .endpoints import DatabaseEndpoint
from .errors import IntrospectionError
from .models import ColumnDescriptor, IndexDescriptor, SchemaSnapshot, TableDescriptor

logger = logging.getLogger(__name__)


# ---- catalog queries ----
Q_SCHEMA_EXISTS = """
SELECT 1
FROM information_schema.schemata
WHERE schema_name = %(schema)s;
"""

Q_LIST_TABLES = """
SELECT table_name, table_type
FROM information_schema.tables
WHERE table_schema = %(schema)s
  AND table_type IN ('BASE TABLE', 'VIEW')
ORDER BY table_name;
"""

Q_COLUMNS = """
SELECT
  table_name,
  column_name,
  data_type,
  is_nullable,
  column_default,
  character_maximum_length,
  numeric_precision,
  numeric_scale
FROM information_schema.columns
WHERE table_schema = %(schema)s
ORDER BY table_name, ordinal_position;
"""

Q_PRIMARY_KEYS = """
SELECT tc.table_name, kcu.column_name
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
  ON kcu.constraint_name = tc.constraint_name
 AND kcu.constraint_schema = tc.constraint_schema
 AND kcu.table_name = tc.table_name
WHERE tc.constraint_type = 'PRIMARY KEY'
  AND tc.table_schema = %(schema)s
ORDER BY tc.table_name, kcu.ordinal_position;
"""

Q_INDEXES = """
SELECT
  t.relname AS table_name,
  c.relname AS index_name,
  ix.indisunique,
  am.amname,
  pg_get_indexdef(ix.indexrelid) AS indexdef
FROM pg_index ix
JOIN pg_class c ON c.oid = ix.indexrelid
JOIN pg_class t ON t.oid = ix.indrelid
JOIN pg_namespace n ON n.oid = t.relnamespace
JOIN pg_am am ON am.oid = c.relam
WHERE n.nspname = %(schema)s
  AND NOT ix.indisprimary
ORDER BY t.relname, c.relname;
"""


# ---- index definition parsing ----
_USING_RX = re.compile(r"\bUSING\s+(\w+)", re.IGNORECASE)


def parse_index_method(indexdef: str) -> str:
    """Return the access method named in an index definition (default ``btree``)."""
    m = _USING_RX.search(indexdef or "")
    return m.group(1).lower() if m else "btree"


def _key_list(indexdef: str) -> Optional[str]:
    m = _USING_RX.search(indexdef)
    start = indexdef.find("(", m.end() if m else 0)
    if start < 0:
        return None
    depth = 0
    in_quotes = False
    for pos in range(start, len(indexdef)):
        ch = indexdef[pos]
        if ch == '"':
            in_quotes = not in_quotes
        elif in_quotes:
            continue
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return indexdef[start + 1 : pos]
    return None


def _split_top_level(text: str) -> List[str]:
    parts: List[str] = []
    depth = 0
    in_quotes = False
    current: List[str] = []
    for ch in text:
        if ch == '"':
            in_quotes = not in_quotes
        elif not in_quotes and ch == "(":
            depth += 1
        elif not in_quotes and ch == ")":
            depth -= 1
        elif not in_quotes and depth == 0 and ch == ",":
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return [p for p in parts if p]


def parse_index_columns(indexdef: str) -> List[str]:
    """Extract the ordered key list from a ``pg_get_indexdef`` string.

    Parameters
    ----------
    indexdef:
        e.g. ``CREATE UNIQUE INDEX ix ON public.t USING btree (a, lower(b)) WHERE (c > 0)``

    Returns
    -------
    list of str
        Key expressions in index order (``["a", "lower(b)"]``). ``INCLUDE``
        and ``WHERE`` clauses are not part of the key list. Empty when the
        definition has no parenthesised key list.
    """
    keys = _key_list(indexdef or "")
    if keys is None:
        return []
    return _split_top_level(keys)


# ---- table filter helpers ----
_SYSTEM_TABLE_RX = re.compile(r"^(pg_|information_schema)")


@dataclass(frozen=True)
class TableFilter:
    """Include/exclude patterns for table selection.

    Patterns are SQL LIKE (``%`` and ``_``) unless prefixed with ``re:``.
    """

    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()
    case_sensitive: bool = False
    exclude_system_tables: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "include", tuple(self.include))
        object.__setattr__(self, "exclude", tuple(self.exclude))

    def keeps(self, name: str) -> bool:
        if self.exclude_system_tables and is_system_table(name):
            return False
        if self.include and not any(matches_pattern(name, p, self.case_sensitive) for p in self.include):
            return False
        return not any(matches_pattern(name, p, self.case_sensitive) for p in self.exclude)


def is_system_table(name: str) -> bool:
    """True for catalog-like names (``pg_*``, ``information_schema*``)."""
    return _SYSTEM_TABLE_RX.match(name) is not None


def sql_like_to_fnmatch(pattern: str) -> str:
    """Convert SQL LIKE patterns (% and _) to fnmatch syntax (* and ?)."""
    return pattern.replace("%", "*").replace("_", "?")


def matches_pattern(name: str, pattern: str, case_sensitive: bool = False) -> bool:
    """Return True if name matches pattern (LIKE by default, regex via ``re:``)."""
    if pattern.startswith("re:"):
        flags = 0 if case_sensitive else re.IGNORECASE
        return re.search(pattern[3:], name, flags) is not None
    fm = sql_like_to_fnmatch(pattern)
    if case_sensitive:
        return fnmatch.fnmatchcase(name, fm)
    return fnmatch.fnmatchcase(name.lower(), fm.lower())


def filter_tables(
    tables: Sequence[str],
    include: Sequence[str],
    exclude: Sequence[str],
    case_sensitive: bool = False,
) -> List[str]:
    """Filter tables using include/exclude patterns.

    Include patterns keep a table if it matches *any* include pattern.
    Exclude patterns drop a table if it matches *any* exclude pattern.
    Input order is kept; duplicates are dropped.
    """
    tf = TableFilter(tuple(include), tuple(exclude), case_sensitive, exclude_system_tables=False)
    return list(dict.fromkeys(t for t in tables if tf.keeps(t)))


def filter_snapshot(snapshot: SchemaSnapshot, table_filter: Optional[TableFilter]) -> SchemaSnapshot:
    """Return a new snapshot holding only the tables *table_filter* keeps."""
    if table_filter is None:
        return snapshot
    kept = {name: t for name, t in snapshot.tables.items() if table_filter.keeps(name)}
    if len(kept) == len(snapshot.tables):
        return snapshot
    return dataclasses.replace(snapshot, tables=kept)


# ---- snapshot assembly ----
def _as_int(value: Any) -> int:
    return int(value) if value is not None else 0


def _fetch(conn: Any, query: str, endpoint: DatabaseEndpoint, what: str) -> List[tuple]:
    try:
        with conn.cursor() as cur:
            cur.execute(query, {"schema": endpoint.schema})
            return list(cur.fetchall())
    except psycopg2.Error as exc:
        detail = (getattr(exc, "pgerror", None) or str(exc)).strip()
        raise IntrospectionError(
            f"{what} query failed on {endpoint.display_name} (schema {endpoint.schema}): {detail}"
        ) from exc


def read_snapshot(conn: Any, endpoint: DatabaseEndpoint) -> SchemaSnapshot:
    """Read tables, columns, primary keys and indexes over an open connection.

    Raises
    ------
    IntrospectionError
        If the schema does not exist or a catalog query fails.
    """
    if not _fetch(conn, Q_SCHEMA_EXISTS, endpoint, "schema lookup"):
        raise IntrospectionError(f"schema {endpoint.schema!r} not found on {endpoint.display_name}")

    tables: Dict[str, Dict[str, Any]] = {}
    for table_name, table_type in _fetch(conn, Q_LIST_TABLES, endpoint, "table"):
        tables[table_name] = {"type": table_type, "columns": [], "indexes": [], "pk": []}

    for row in _fetch(conn, Q_COLUMNS, endpoint, "column"):
        table_name, column_name, data_type, is_nullable, default, char_len, num_prec, num_scale = row
        entry = tables.get(table_name)
        if entry is None:
            continue
        entry["columns"].append(
            ColumnDescriptor(
                name=column_name,
                data_type=data_type,
                nullable=is_nullable == "YES",
                default=default,
                char_max_length=_as_int(char_len),
                numeric_precision=_as_int(num_prec),
                numeric_scale=_as_int(num_scale),
            )
        )

    for table_name, column_name in _fetch(conn, Q_PRIMARY_KEYS, endpoint, "primary key"):
        if table_name in tables:
            tables[table_name]["pk"].append(column_name)

    for table_name, index_name, is_unique, method, indexdef in _fetch(conn, Q_INDEXES, endpoint, "index"):
        if table_name not in tables:
            continue
        tables[table_name]["indexes"].append(
            IndexDescriptor(
                name=index_name,
                unique=bool(is_unique),
                columns=tuple(parse_index_columns(indexdef)),
                method=(method or parse_index_method(indexdef)).lower(),
            )
        )

    return SchemaSnapshot.build(
        [
            TableDescriptor.build(
                name,
                columns=entry["columns"],
                indexes=entry["indexes"],
                primary_key=entry["pk"],
                table_type=entry["type"],
            )
            for name, entry in tables.items()
        ],
        schema=endpoint.schema,
        source=endpoint.name,
    )


class PostgresSchemaLoader:
    """Load :class:`SchemaSnapshot` objects from PostgreSQL endpoints.

    Each :meth:`load` call opens and closes its own connection, so one loader
    can be shared by any number of worker threads.
    """

    def __init__(
        self,
        options: Optional[ConnectOptions] = None,
        table_filter: Optional[TableFilter] = None,
        connect: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.options = options or ConnectOptions()
        self.table_filter = table_filter
        self._connect = connect

    def load(self, endpoint: DatabaseEndpoint) -> SchemaSnapshot:
        """Return a fresh snapshot of ``endpoint.schema`` on *endpoint*.

        Raises
        ------
        ConnectivityError
            If the endpoint cannot be reached.
        IntrospectionError
            If the schema is missing or a catalog query fails.
        """
        logger.debug("loading schema %s from %s", endpoint.schema, endpoint.display_name)
        with open_connection(endpoint, self.options, self._connect) as conn:
            snapshot = read_snapshot(conn, endpoint)
        snapshot = filter_snapshot(snapshot, self.table_filter)
        logger.info(
            "loaded %s.%s: %d table(s), %d column(s), %d index(es)",
            endpoint.display_name,
            endpoint.schema,
            len(snapshot.tables),
            snapshot.column_count,
            snapshot.index_count,
        )
        return snapshot
