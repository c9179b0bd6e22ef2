"""Unit tests for differences module."""

import pytest

from schemadiff.differences import Difference, DifferenceKind, Severity, severity_of


def _difference(kind: DifferenceKind = DifferenceKind.MISSING_COLUMN, schema: str = "public") -> Difference:
    return Difference(
        kind=kind,
        base_name="prod",
        base_display_name="prod(db-prod:5432)",
        target_name="stage",
        target_display_name="stage(db-stage:5432)",
        schema=schema,
        target_schema=schema,
        table="orders",
        item="total",
        description="Table 'orders' is missing column 'total'",
        base_value="numeric(10,2)",
    )


@pytest.mark.parametrize(
    "kind, expected",
    [
        (DifferenceKind.MISSING_TABLE, Severity.CRITICAL),
        (DifferenceKind.PRIMARY_KEY_DIFF, Severity.CRITICAL),
        (DifferenceKind.MISSING_COLUMN, Severity.WARNING),
        (DifferenceKind.COLUMN_DIFF, Severity.WARNING),
        (DifferenceKind.MISSING_INDEX, Severity.WARNING),
        (DifferenceKind.EXTRA_TABLE, Severity.INFO),
        (DifferenceKind.EXTRA_COLUMN, Severity.INFO),
        (DifferenceKind.EXTRA_INDEX, Severity.INFO),
        (DifferenceKind.INDEX_DIFF, Severity.INFO),
    ],
)
def test_severity_of(kind: DifferenceKind, expected: Severity) -> None:
    assert severity_of(kind) is expected


def test_severity_of_accepts_string_value() -> None:
    assert severity_of("MISSING_TABLE") is Severity.CRITICAL  # type: ignore[arg-type]


def test_kind_values_are_stable() -> None:
    assert [k.value for k in DifferenceKind] == [
        "MISSING_TABLE",
        "EXTRA_TABLE",
        "MISSING_COLUMN",
        "EXTRA_COLUMN",
        "COLUMN_DIFF",
        "MISSING_INDEX",
        "EXTRA_INDEX",
        "INDEX_DIFF",
        "PRIMARY_KEY_DIFF",
    ]


def test_severity_rank_orders_most_severe_first() -> None:
    assert Severity.CRITICAL.rank < Severity.WARNING.rank < Severity.INFO.rank


def test_qualified_item_omits_public_schema() -> None:
    assert _difference().qualified_item == "orders.total"
    assert _difference(schema="sales").qualified_item == "sales.orders.total"


def test_to_dict() -> None:
    data = _difference().to_dict()
    assert data["kind"] == "MISSING_COLUMN"
    assert data["severity"] == "warning"
    assert data["base"] == {"name": "prod", "display_name": "prod(db-prod:5432)", "schema": "public"}
    assert data["target"]["display_name"] == "stage(db-stage:5432)"
    assert data["base_value"] == "numeric(10,2)"
    assert data["target_value"] is None


def test_str_mentions_label_and_endpoints() -> None:
    text = str(_difference())
    assert text.startswith("[Missing column] orders.total")
    assert "prod(db-prod:5432)" in text
    assert "stage(db-stage:5432)" in text
