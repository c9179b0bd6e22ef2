"""
diffing
=======

Structural comparison of two schema snapshots.

The entry point is :func:`diff_schemas`. It is a pure function: no I/O, no
logging, no shared state, and the same two snapshots always yield the same
ordered list of :class:`~schemadiff.differences.Difference` records.

Ordering
--------
- Tables: every base table in snapshot order, then target-only tables in
  target snapshot order.
- Within a table present on both sides: columns, then primary key, then
  indexes.
- Within columns and indexes: base order (missing or changed), then
  target-only items in target order.

Column comparison
-----------------
Character length, numeric precision and numeric scale are only compared when
both sides report a positive value. Types without a length (``integer``,
``text``, ...) report ``0`` and would otherwise produce noise.

Every unequal column pair is still reported. When the only difference is a
size reported on one side alone (``numeric`` vs ``numeric(10,2)``), the
description names that attribute with ``none`` for the unsized side.
"""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional

from .differences import PRIMARY_KEY_ITEM, Difference, DifferenceKind
from .endpoints import DatabaseEndpoint
from .models import ColumnDescriptor, IndexDescriptor, SchemaSnapshot, TableDescriptor

NONE_TEXT = "none"

DiffFunction = Callable[[SchemaSnapshot, SchemaSnapshot, DatabaseEndpoint, DatabaseEndpoint], List[Difference]]

# (kind, table, item, description, base_value, target_value) -> Difference
_Emit = Callable[..., Difference]


def _text(value: Optional[str]) -> str:
    return NONE_TEXT if value is None else value


def _nullability(nullable: bool) -> str:
    return "nullable" if nullable else "not null"


def _both_positive(a: int, b: int) -> bool:
    return a > 0 and b > 0


def join_keys(keys: Iterable[str]) -> str:
    """Alphabetically sorted, comma-joined key names; ``none`` when empty."""
    ordered = sorted(keys)
    return ", ".join(ordered) if ordered else NONE_TEXT


def describe_column_change(base: ColumnDescriptor, target: ColumnDescriptor) -> List[str]:
    """Return one clause per differing column attribute, in fixed order.

    Parameters
    ----------
    base, target:
        The same column as seen on the base and on the target.

    Returns
    -------
    list of str
        Clauses for data type, nullability, default, character length,
        numeric precision and numeric scale; only those that differ. A size
        present on one side only is named when nothing else differs.
    """
    clauses: List[str] = []
    if base.data_type != target.data_type:
        clauses.append(f"data type differs - base: {base.data_type}, target: {target.data_type}")
    if base.nullable != target.nullable:
        clauses.append(
            f"nullability differs - base: {_nullability(base.nullable)}, target: {_nullability(target.nullable)}"
        )
    if base.default != target.default:
        clauses.append(f"default value differs - base: {_text(base.default)}, target: {_text(target.default)}")
    if base.char_max_length != target.char_max_length and _both_positive(
        base.char_max_length, target.char_max_length
    ):
        clauses.append(
            f"character max length differs - base: {base.char_max_length}, target: {target.char_max_length}"
        )
    if base.numeric_precision != target.numeric_precision and _both_positive(
        base.numeric_precision, target.numeric_precision
    ):
        clauses.append(
            f"numeric precision differs - base: {base.numeric_precision}, target: {target.numeric_precision}"
        )
    if base.numeric_scale != target.numeric_scale and _both_positive(base.numeric_scale, target.numeric_scale):
        clauses.append(f"numeric scale differs - base: {base.numeric_scale}, target: {target.numeric_scale}")
    if not clauses and base != target:
        clauses = _one_sided_size_clauses(base, target)
    return clauses


def _size(value: int) -> str:
    return str(value) if value > 0 else NONE_TEXT


def _one_sided_size_clauses(base: ColumnDescriptor, target: ColumnDescriptor) -> List[str]:
    sizes = (
        ("character max length", base.char_max_length, target.char_max_length),
        ("numeric precision", base.numeric_precision, target.numeric_precision),
        ("numeric scale", base.numeric_scale, target.numeric_scale),
    )
    return [
        f"{label} differs - base: {_size(before)}, target: {_size(after)}"
        for label, before, after in sizes
        if before != after
    ]


def describe_index_change(base: IndexDescriptor, target: IndexDescriptor) -> List[str]:
    """Return clauses for uniqueness, column list and method, in that order."""
    clauses: List[str] = []
    if base.unique != target.unique:
        clauses.append(
            "uniqueness differs - base: {}, target: {}".format(
                "unique" if base.unique else "non-unique",
                "unique" if target.unique else "non-unique",
            )
        )
    if base.columns != target.columns:
        clauses.append(
            f"column list differs - base: [{', '.join(base.columns)}], target: [{', '.join(target.columns)}]"
        )
    if base.method != target.method:
        clauses.append(f"index method differs - base: {base.method}, target: {target.method}")
    return clauses


def _index_summary(index: IndexDescriptor) -> str:
    return "columns: {}; method: {}; unique: {}".format(
        ", ".join(index.columns) or NONE_TEXT, index.method, "yes" if index.unique else "no"
    )


def _emitter(base_endpoint: DatabaseEndpoint, target_endpoint: DatabaseEndpoint) -> _Emit:
    def emit(
        kind: DifferenceKind,
        table: str,
        item: str,
        description: str,
        base_value: Optional[str] = None,
        target_value: Optional[str] = None,
    ) -> Difference:
        return Difference(
            kind=kind,
            base_name=base_endpoint.name,
            base_display_name=base_endpoint.display_name,
            target_name=target_endpoint.name,
            target_display_name=target_endpoint.display_name,
            schema=base_endpoint.schema,
            target_schema=target_endpoint.schema,
            table=table,
            item=item,
            description=description,
            base_value=base_value,
            target_value=target_value,
        )

    return emit


def _diff_columns(base: TableDescriptor, target: TableDescriptor, where: str, emit: _Emit) -> List[Difference]:
    out: List[Difference] = []
    for name, base_col in base.columns.items():
        target_col = target.columns.get(name)
        if target_col is None:
            out.append(
                emit(
                    DifferenceKind.MISSING_COLUMN,
                    base.name,
                    name,
                    f"Table '{base.name}' in {where} is missing column '{name}'",
                    base_value=base_col.render(),
                )
            )
            continue
        if base_col == target_col:
            continue
        out.append(
            emit(
                DifferenceKind.COLUMN_DIFF,
                base.name,
                name,
                "; ".join(describe_column_change(base_col, target_col)),
                base_value=base_col.render(),
                target_value=target_col.render(),
            )
        )
    for name, target_col in target.columns.items():
        if name not in base.columns:
            out.append(
                emit(
                    DifferenceKind.EXTRA_COLUMN,
                    base.name,
                    name,
                    f"Table '{base.name}' in {where} has extra column '{name}'",
                    target_value=target_col.render(),
                )
            )
    return out


def _diff_primary_key(base: TableDescriptor, target: TableDescriptor, emit: _Emit) -> List[Difference]:
    if base.primary_key == target.primary_key:
        return []
    before = join_keys(base.primary_key)
    after = join_keys(target.primary_key)
    return [
        emit(
            DifferenceKind.PRIMARY_KEY_DIFF,
            base.name,
            PRIMARY_KEY_ITEM,
            f"primary key differs - base: [{before}], target: [{after}]",
            base_value=before,
            target_value=after,
        )
    ]


def _diff_indexes(base: TableDescriptor, target: TableDescriptor, where: str, emit: _Emit) -> List[Difference]:
    out: List[Difference] = []
    for name, base_idx in base.indexes.items():
        target_idx = target.indexes.get(name)
        if target_idx is None:
            out.append(
                emit(
                    DifferenceKind.MISSING_INDEX,
                    base.name,
                    name,
                    f"Table '{base.name}' in {where} is missing index '{name}' ({_index_summary(base_idx)})",
                    base_value=base_idx.render(),
                )
            )
        elif base_idx != target_idx:
            out.append(
                emit(
                    DifferenceKind.INDEX_DIFF,
                    base.name,
                    name,
                    "; ".join(describe_index_change(base_idx, target_idx)),
                    base_value=base_idx.render(),
                    target_value=target_idx.render(),
                )
            )
    for name, target_idx in target.indexes.items():
        if name not in base.indexes:
            out.append(
                emit(
                    DifferenceKind.EXTRA_INDEX,
                    base.name,
                    name,
                    f"Table '{base.name}' in {where} has extra index '{name}' ({_index_summary(target_idx)})",
                    target_value=target_idx.render(),
                )
            )
    return out


def diff_tables(
    base: TableDescriptor,
    target: TableDescriptor,
    base_endpoint: DatabaseEndpoint,
    target_endpoint: DatabaseEndpoint,
) -> List[Difference]:
    """Compare one table present on both sides: columns, primary key, indexes."""
    emit = _emitter(base_endpoint, target_endpoint)
    where = f"target database '{target_endpoint.display_name}'"
    return (
        _diff_columns(base, target, where, emit)
        + _diff_primary_key(base, target, emit)
        + _diff_indexes(base, target, where, emit)
    )


def diff_schemas(
    base: SchemaSnapshot,
    target: SchemaSnapshot,
    base_endpoint: DatabaseEndpoint,
    target_endpoint: DatabaseEndpoint,
) -> List[Difference]:
    """Compare a target snapshot against the base snapshot.

    Parameters
    ----------
    base, target:
        Snapshots to compare; neither is modified.
    base_endpoint, target_endpoint:
        Endpoints the snapshots were read from; only used to label the
        resulting records.

    Returns
    -------
    list of Difference
        Ordered as described in the module documentation. Empty when the two
        snapshots are structurally identical.
    """
    emit = _emitter(base_endpoint, target_endpoint)
    target_label = target_endpoint.display_name
    out: List[Difference] = []

    for name, base_table in base.tables.items():
        target_table = target.tables.get(name)
        if target_table is None:
            out.append(
                emit(
                    DifferenceKind.MISSING_TABLE,
                    name,
                    name,
                    f"Target database '{target_label}' is missing table '{name}'",
                    base_value=base_table.table_type,
                )
            )
            continue
        out.extend(diff_tables(base_table, target_table, base_endpoint, target_endpoint))

    for name, target_table in target.tables.items():
        if name not in base.tables:
            out.append(
                emit(
                    DifferenceKind.EXTRA_TABLE,
                    name,
                    name,
                    f"Target database '{target_label}' has extra table '{name}'",
                    target_value=target_table.table_type,
                )
            )
    return out
