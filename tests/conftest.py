"""Shared fixtures for schemadiff tests."""

from typing import Callable, Dict, Iterable, List

import pytest

from schemadiff.endpoints import DatabaseEndpoint
from schemadiff.models import ColumnDescriptor, IndexDescriptor, SchemaSnapshot, TableDescriptor


@pytest.fixture
def base_endpoint() -> DatabaseEndpoint:
    return DatabaseEndpoint(name="prod", url="postgresql://db-prod:5432/app", username="reader", password="s3cret")


@pytest.fixture
def target_endpoint() -> DatabaseEndpoint:
    return DatabaseEndpoint(name="stage", url="jdbc:postgresql://db-stage/app", username="reader")


def make_table(
    name: str,
    columns: Iterable[ColumnDescriptor] = (),
    indexes: Iterable[IndexDescriptor] = (),
    primary_key: Iterable[str] = (),
) -> TableDescriptor:
    return TableDescriptor.build(name, columns=columns, indexes=indexes, primary_key=primary_key)


def orders_table() -> TableDescriptor:
    return make_table(
        "orders",
        columns=[
            ColumnDescriptor("id", "integer", nullable=False, numeric_precision=32),
            ColumnDescriptor("customer", "character varying", nullable=False, char_max_length=50),
            ColumnDescriptor("total", "numeric", numeric_precision=10, numeric_scale=2),
            ColumnDescriptor("created_at", "timestamp without time zone", default="now()"),
        ],
        indexes=[
            IndexDescriptor("ix_orders_customer", columns=("customer",)),
            IndexDescriptor("ux_orders_ref", unique=True, columns=("customer", "created_at")),
        ],
        primary_key=["id"],
    )


def customers_table() -> TableDescriptor:
    return make_table(
        "customers",
        columns=[
            ColumnDescriptor("id", "integer", nullable=False, numeric_precision=32),
            ColumnDescriptor("email", "text", nullable=False),
        ],
        primary_key=["id"],
    )


@pytest.fixture
def base_snapshot() -> SchemaSnapshot:
    return SchemaSnapshot.build([customers_table(), orders_table()], schema="public", source="prod")


@pytest.fixture
def snapshot_factory() -> Callable[..., SchemaSnapshot]:
    def build(*tables: TableDescriptor, schema: str = "public", source: str = "") -> SchemaSnapshot:
        return SchemaSnapshot.build(list(tables), schema=schema, source=source)

    return build


class FakeCursor:
    """Cursor stand-in that answers catalog queries from canned rows."""

    def __init__(self, responses: Dict[str, List[tuple]], log: List[tuple]) -> None:
        self._responses = responses
        self._log = log
        self._rows: List[tuple] = []

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def execute(self, query: str, params=None) -> None:
        self._log.append((query, params))
        for marker, rows in self._responses.items():
            if marker in query:
                self._rows = list(rows)
                return
        self._rows = []

    def fetchall(self) -> List[tuple]:
        return self._rows

    def fetchone(self):
        return self._rows[0] if self._rows else None


class FakeConnection:
    def __init__(self, responses: Dict[str, List[tuple]]) -> None:
        self.responses = responses
        self.executed: List[tuple] = []
        self.closed = False
        self.session: Dict[str, bool] = {}

    def cursor(self) -> FakeCursor:
        return FakeCursor(self.responses, self.executed)

    def set_session(self, **kwargs) -> None:
        self.session.update(kwargs)

    def close(self) -> None:
        self.closed = True
