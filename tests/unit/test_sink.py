from __future__ import annotations

from decimal import Decimal

import psycopg2
import pytest

from sheet_migrator.db.sink import (
    DryRunSink,
    LoadError,
    PostgresSink,
    format_phone,
    next_identifier,
    record_to_row,
)
from sheet_migrator.models.candidate_record import CandidateRecord


class DummyCursor:
    def __init__(self, existing: list[tuple] | None = None) -> None:
        self.statements: list[str] = []
        self.inserted: list[tuple[str, list]] = []
        self.existing = existing or []

    def execute(self, sql, params=None):
        self.statements.append(sql)

    def fetchall(self):
        return self.existing


@pytest.fixture()
def fail_on(monkeypatch):
    """Make execute_values fail for any batch containing one of the given values."""
    import sheet_migrator.db.batch_insert as bi

    poison: set = set()

    def fake_execute_values(cursor, sql, rows, page_size=1000):
        for row in rows:
            if poison.intersection(row):
                raise psycopg2.IntegrityError(f"check constraint violated by {row[0]}")
        table = sql.split()[2]
        cursor.statements.append(f"UPSERT {table} x{len(rows)}")
        cursor.inserted.extend((table, list(r)) for r in rows)

    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    return poison


def _customer(row: int, customer_id: str | None, email: str, state: str | None = "NY", phone: str | None = None):
    return CandidateRecord(
        entity="customers",
        row_index=row,
        values={
            "customer_id": customer_id,
            "full_name": f"Name {row}",
            "email": email,
            "phone_number": phone,
            "city": "Albany",
            "state_code": state,
            "registered_at": "2024-01-01",
            "status": "Active",
        },
    )


def _order(row: int, order_id: str):
    return CandidateRecord(
        entity="orders",
        row_index=row,
        values={
            "order_id": order_id,
            "customer_id": "C001",
            "product_name": "Widget",
            "quantity": 2,
            "unit_price": Decimal("1.50"),
            "total_amount": Decimal("3.00"),
            "order_date": "2024-01-02",
            "order_status": "Pending",
        },
    )


TABLES = {"customers": "customers", "orders": "orders"}


def test_format_phone():
    assert format_phone("5550106") == "555-0106"
    assert format_phone("2125550199") == "2125550199"
    assert format_phone(None) is None


def test_record_to_row_customer():
    row = record_to_row("customers", _customer(2, "C001", "a@x.io", phone="5550106").values)
    assert row["phone_number"] == "555-0106"
    assert row["email_verified"] is False
    assert list(row) == [
        "customer_id", "full_name", "email", "phone_number", "city", "state_code",
        "registered_at", "status", "email_verified",
    ]


def test_next_identifier_appends_after_max():
    gen = next_identifier("C", ["C001", "C010", "X99", "C7"])
    assert gen() == "C011"
    assert gen() == "C012"
    assert next_identifier("ORD", [])() == "ORD001"
    assert next_identifier("C", ["C1234"])() == "C1235"


def test_load_customers_commits_and_ensures_states(fail_on):
    cur = DummyCursor()
    sink = PostgresSink(cur, TABLES, batch_size=2)
    result = sink.load("customers", [
        _customer(2, "C001", "a@x.io"),
        _customer(3, "C002", "b@x.io", state="CA"),
        _customer(4, "C003", "c@x.io", state=None),
    ])
    assert result.loaded == 3
    assert result.failures == []
    assert len(result.batch_seconds) == 2
    assert cur.statements[0] == "BEGIN"
    assert cur.statements[-1] == "COMMIT"
    states = [r for t, r in cur.inserted if t == "states"]
    assert states == [["CA", "California"], ["NY", "New York"]]
    assert "ROLLBACK" not in cur.statements


def test_load_generates_missing_identifiers(fail_on):
    cur = DummyCursor(existing=[("C005",), ("C002",)])
    sink = PostgresSink(cur, TABLES)
    sink.load("customers", [_customer(2, None, "a@x.io"), _customer(3, "C009", "b@x.io")])
    ids = [r[0] for t, r in cur.inserted if t == "customers"]
    assert ids == ["C010", "C009"]


def test_load_row_failure_with_continue_on_error(fail_on):
    fail_on.add("ORD002")
    cur = DummyCursor()
    sink = PostgresSink(cur, TABLES, batch_size=10, continue_on_error=True)
    result = sink.load("orders", [_order(2, "ORD001"), _order(3, "ORD002"), _order(4, "ORD003")])
    assert result.loaded == 2
    assert [f.row_index for f in result.failures] == [3]
    assert "ORD002" in result.failures[0].message
    assert "ROLLBACK TO SAVEPOINT sm_batch" in cur.statements
    assert "ROLLBACK TO SAVEPOINT sm_row" in cur.statements
    assert cur.statements[-1] == "COMMIT"


def test_load_row_failure_stops_without_continue_on_error(fail_on):
    fail_on.add("ORD002")
    cur = DummyCursor()
    sink = PostgresSink(cur, TABLES, batch_size=10)
    with pytest.raises(LoadError) as e:
        sink.load("orders", [_order(2, "ORD001"), _order(3, "ORD002")])
    assert "row 3" in str(e.value)
    assert cur.statements[-1] == "ROLLBACK"
    assert "COMMIT" not in cur.statements


def test_load_empty_is_noop():
    cur = DummyCursor()
    assert PostgresSink(cur, TABLES).load("orders", []).loaded == 0
    assert cur.statements == []


def test_unconfigured_table():
    with pytest.raises(LoadError):
        PostgresSink(DummyCursor(), {"customers": "customers"}).existing_identifiers("orders")


def test_existing_identifiers():
    cur = DummyCursor(existing=[("C001",), (None,), ("C002",)])
    assert PostgresSink(cur, TABLES).existing_identifiers("customers") == {"C001", "C002"}
    assert cur.statements == ['SELECT "customer_id" FROM customers']


def test_metrics_callback_receives_entity(fail_on):
    seen = []
    sink = PostgresSink(DummyCursor(), TABLES, metrics_callback=lambda entity, m: seen.append((entity, m.batch_size)))
    sink.load("orders", [_order(2, "ORD001")])
    assert seen == [("orders", 1)]


def test_dry_run_sink():
    sink = DryRunSink()
    assert sink.existing_identifiers("customers") == set()
    result = sink.load("orders", [_order(2, "ORD001"), _order(3, "ORD002")])
    assert result.loaded == 2
    assert result.failures == []
