# Shared pytest fixtures
from __future__ import annotations

import tempfile
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

from sheet_migrator.logging.init import reset_logging

CUSTOMER_HEADERS = [
    "customer_id", "full_name", "email", "phone_number", "city", "state_code", "registered_at", "status",
]
ORDER_HEADERS = [
    "order_id", "customer_id", "product_name", "quantity", "unit_price", "order_date", "order_status",
]

# 基準日 (未来日付判定を固定)
TODAY = date(2024, 6, 1)


@pytest.fixture()
def today() -> date:
    return TODAY


@pytest.fixture(autouse=True)
def _fresh_logging():
    # capsys の差し替え後の stdout にハンドラを張り直す
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """source_file: ./data/customer_orders.xlsx
entities:
  customers:
    sheet: Customers
    table: customers
  orders:
    sheet: Orders
    table: orders
etl:
  deduplicate: true
  continue_on_error: false
  batch_size: 2
  logs_dir: ./logs
  reports_dir: ./reports
timezone: UTC
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


def make_workbook(path: Path, sheets: dict[str, list[list[object]]]) -> Path:
    """Write a real workbook; the first row of every sheet is the header."""
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for sheet_name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=sheet_name, header=False, index=False)
    return path


@pytest.fixture()
def customer_rows() -> list[list[object]]:
    return [
        CUSTOMER_HEADERS,
        ["C001", "  john SMITH ", "John@Example.com", "(555) 0106", "new york", "NY", "2023-01-15", "active"],
        ["C002", "Jane Doe", "jane@example", "5550107", "Boston", "Massachusetts", "03/15/2023", "Inactive"],
        ["C001", "John Smith", "john.other@example.com", "5550108", "Albany", "NY", "2023-02-01", "Active"],
        [None, "Johnny Smith", "john@example.com", "+1-555-0118", "Buffalo", "NY", "2023-03-01", "Pending"],
        ["C003", "Ann Lee", "ann@example.com", "555-CALL", "Austin", "TX", "2024/01/20", ""],
    ]


@pytest.fixture()
def order_rows() -> list[list[object]]:
    return [
        ORDER_HEADERS,
        ["ORD001", "C001", "Widget", 2, "$10.50", "2024-01-05", "shipped"],
        ["ORD002", "C003", "Gadget", 1, "5", "01/06/2024", "Delivered"],
        ["ORD003", "C999", "Widget", 1, "10", "2024-01-07", "Pending"],
        ["ORD004", "C001", "Widget", 0, "10", "2024-01-08", "Pending"],
    ]


@pytest.fixture()
def sample_workbook(temp_workdir: Path, customer_rows, order_rows) -> Path:
    return make_workbook(
        temp_workdir / "data" / "customer_orders.xlsx",
        {"Customers": customer_rows, "Orders": order_rows},
    )


@pytest.fixture()
def workbook_factory():
    return make_workbook
