"""
differences
===========

The canonical difference record and its classification.

:class:`DifferenceKind` values are a stable wire vocabulary: report sinks and
downstream tooling match on the string values, so they never change.

Severity is derived from the kind alone (:func:`severity_of`) and is not stored
on :class:`Difference`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

PRIMARY_KEY_ITEM = "PRIMARY_KEY"


class DifferenceKind(str, Enum):
    MISSING_TABLE = "MISSING_TABLE"
    EXTRA_TABLE = "EXTRA_TABLE"
    MISSING_COLUMN = "MISSING_COLUMN"
    EXTRA_COLUMN = "EXTRA_COLUMN"
    COLUMN_DIFF = "COLUMN_DIFF"
    MISSING_INDEX = "MISSING_INDEX"
    EXTRA_INDEX = "EXTRA_INDEX"
    INDEX_DIFF = "INDEX_DIFF"
    PRIMARY_KEY_DIFF = "PRIMARY_KEY_DIFF"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    DifferenceKind.MISSING_TABLE: "Missing table",
    DifferenceKind.EXTRA_TABLE: "Extra table",
    DifferenceKind.MISSING_COLUMN: "Missing column",
    DifferenceKind.EXTRA_COLUMN: "Extra column",
    DifferenceKind.COLUMN_DIFF: "Column definition differs",
    DifferenceKind.MISSING_INDEX: "Missing index",
    DifferenceKind.EXTRA_INDEX: "Extra index",
    DifferenceKind.INDEX_DIFF: "Index definition differs",
    DifferenceKind.PRIMARY_KEY_DIFF: "Primary key differs",
}


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        """0 for the most severe level."""
        return list(Severity).index(self)


_SEVERITY = {
    DifferenceKind.MISSING_TABLE: Severity.CRITICAL,
    DifferenceKind.PRIMARY_KEY_DIFF: Severity.CRITICAL,
    DifferenceKind.MISSING_COLUMN: Severity.WARNING,
    DifferenceKind.COLUMN_DIFF: Severity.WARNING,
    DifferenceKind.MISSING_INDEX: Severity.WARNING,
    DifferenceKind.EXTRA_TABLE: Severity.INFO,
    DifferenceKind.EXTRA_COLUMN: Severity.INFO,
    DifferenceKind.EXTRA_INDEX: Severity.INFO,
    DifferenceKind.INDEX_DIFF: Severity.INFO,
}


def severity_of(kind: DifferenceKind) -> Severity:
    """Return the severity of a difference kind.

    Parameters
    ----------
    kind:
        Difference kind (enum member or its string value).

    Returns
    -------
    Severity
        ``critical`` for missing tables and primary key changes, ``warning``
        for missing/changed columns and missing indexes, ``info`` otherwise.
    """
    return _SEVERITY[DifferenceKind(kind)]


@dataclass(frozen=True)
class Difference:
    """One structural discrepancy between a base and a target schema.

    Attributes:
        kind: What kind of discrepancy this is.
        base_name, target_name: Endpoint names.
        base_display_name, target_display_name: ``name(host:port)`` forms.
        schema: Schema of the base endpoint.
        target_schema: Schema of the target endpoint.
        table: Table the discrepancy belongs to.
        item: Column, index or table name, or ``"PRIMARY_KEY"``.
        description: Human-readable explanation.
        base_value, target_value: Optional before/after renderings.
    """

    kind: DifferenceKind
    base_name: str
    base_display_name: str
    target_name: str
    target_display_name: str
    schema: str
    target_schema: str
    table: str
    item: str
    description: str
    base_value: Optional[str] = None
    target_value: Optional[str] = None

    @property
    def severity(self) -> Severity:
        return severity_of(self.kind)

    @property
    def qualified_item(self) -> str:
        """``table.item``, prefixed with the schema unless it is ``public``."""
        if self.schema and self.schema != "public":
            return f"{self.schema}.{self.table}.{self.item}"
        return f"{self.table}.{self.item}"

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready mapping of every field plus the derived severity."""
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "base": {"name": self.base_name, "display_name": self.base_display_name, "schema": self.schema},
            "target": {
                "name": self.target_name,
                "display_name": self.target_display_name,
                "schema": self.target_schema,
            },
            "table": self.table,
            "item": self.item,
            "description": self.description,
            "base_value": self.base_value,
            "target_value": self.target_value,
        }

    def __str__(self) -> str:
        text = f"[{self.kind.label}] {self.qualified_item} - base: {self.base_display_name}, target: {self.target_display_name}"
        if self.description:
            text += f" - {self.description}"
        if self.base_value is not None and self.target_value is not None:
            text += f" ({self.base_value} -> {self.target_value})"
        return text
