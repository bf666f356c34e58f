from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from sheet_migrator.models.field_outcome import OutcomeKind
from sheet_migrator.rules import normalizers as n

TODAY = date(2024, 6, 1)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("2023-01-15", "2023-01-15"),
        ("03/15/2023", "2023-03-15"),
        ("15-01-2024", "2024-01-15"),  # first segment > 12 -> day first
        ("01-15-2024", "2024-01-15"),
        ("2024/01/20", "2024-01-20"),
    ],
)
def test_date_formats(raw, expected):
    out = n.normalize_date(raw, 2, field="registered_at", today=TODAY)
    assert out.kind is OutcomeKind.ACCEPTED
    assert out.value == expected


def test_date_dash_ambiguity_defaults_to_month_first():
    out = n.normalize_date("03-05-2024", 2, field="order_date", today=TODAY)
    assert out.value == "2024-03-05"


def test_date_unparseable_defaults_to_today_with_warning():
    out = n.normalize_date("invalid-date", 7, field="registered_at", today=TODAY)
    assert out.kind is OutcomeKind.WARNED
    assert out.value == "2024-06-01"
    assert "invalid-date" in out.reason
    assert out.reason.startswith("registered_at:")


def test_date_not_a_calendar_date():
    assert n.parse_date("02/30/2024") is None
    out = n.normalize_date("2024-13-01", 2, field="order_date", today=TODAY)
    assert out.kind is OutcomeKind.WARNED


def test_date_missing_defaults_to_today():
    out = n.normalize_date(None, 3, field="order_date", today=TODAY)
    assert out.kind is OutcomeKind.WARNED
    assert out.value == TODAY.isoformat()
    assert "value missing" in out.reason


def test_date_future_kept_with_warning():
    out = n.normalize_date("2030-01-01", 3, field="order_date", today=TODAY)
    assert out.kind is OutcomeKind.WARNED
    assert out.value == "2030-01-01"
    assert "future" in out.reason


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("(555) 0106", "5550106"),
        ("5550107", "5550107"),
        ("+1-555-0118", "5550118"),
        ("(212) 555-0199", "2125550199"),
        ("1 212 555 0199", "2125550199"),
    ],
)
def test_phone_table(raw, expected):
    out = n.normalize_phone(raw, 2)
    assert out.kind is OutcomeKind.ACCEPTED
    assert out.value == expected


def test_phone_with_letters_becomes_none_with_warning():
    out = n.normalize_phone("555-CALL", 4)
    assert out.kind is OutcomeKind.WARNED
    assert out.value is None
    assert not out.is_fatal
    assert "555-CALL" in out.reason


def test_phone_missing_is_accepted_as_none():
    out = n.normalize_phone("   ", 2)
    assert out.kind is OutcomeKind.ACCEPTED
    assert out.value is None


@pytest.mark.parametrize(
    "raw,expected_kind,expected_value",
    [
        ("John@Example.COM", OutcomeKind.ACCEPTED, "john@example.com"),
        ("  a.b@c.io ", OutcomeKind.ACCEPTED, "a.b@c.io"),
        ("jane@example", OutcomeKind.REJECTED, None),
        ("no-at-sign.com", OutcomeKind.REJECTED, None),
        ("two words@x.com", OutcomeKind.REJECTED, None),
        (None, OutcomeKind.REJECTED, None),
    ],
)
def test_email_table(raw, expected_kind, expected_value):
    out = n.normalize_email(raw, 5)
    assert out.kind is expected_kind
    assert out.value == expected_value


def test_email_rejection_reason_names_field_and_raw():
    out = n.normalize_email("jane@example", 5)
    assert out.reason == "email: invalid email format (raw value 'jane@example')"


def test_identifier_cleanup_and_prefix():
    assert n.normalize_identifier(" c-001 ", 2, field="customer_id", prefix="C").value == "C001"
    assert n.normalize_identifier("42", 2, field="customer_id", prefix="C").value == "C42"
    assert n.normalize_identifier("ord7", 2, field="order_id", prefix="ORD").value == "ORD7"


def test_identifier_invalid_format_is_fatal():
    out = n.normalize_identifier("CX-A1", 2, field="customer_id", prefix="C")
    assert out.is_fatal


def test_identifier_missing_is_deferred():
    out = n.normalize_identifier("", 2, field="customer_id", prefix="C")
    assert out.kind is OutcomeKind.WARNED
    assert out.value is None
    assert "generated" in out.reason


def test_reference_checks_known_ids():
    ok = n.normalize_reference("c001", 3, field="customer_id", prefix="C", known_ids={"C001"})
    assert ok.value == "C001"
    bad = n.normalize_reference("C999", 3, field="customer_id", prefix="C", known_ids={"C001"})
    assert bad.is_fatal
    assert "C999" in bad.reason
    # known_ids=None では存在チェックしない
    unchecked = n.normalize_reference("C999", 3, field="customer_id", prefix="C", known_ids=None)
    assert unchecked.kind is OutcomeKind.ACCEPTED


def test_reference_missing_is_fatal():
    assert n.normalize_reference(None, 3, field="customer_id", prefix="C").is_fatal


def test_name_collapses_whitespace():
    out = n.normalize_name("  john   SMITH ", 2, field="full_name")
    assert out.value == "john SMITH"


def test_name_all_digits_warns():
    out = n.normalize_name("12345", 2, field="full_name")
    assert out.kind is OutcomeKind.WARNED
    assert out.value == "12345"


def test_state_codes_and_names():
    assert n.normalize_state("ny", 2).value == "NY"
    assert n.normalize_state("  new   york ", 2).value == "NY"
    assert n.normalize_state("Massachusetts", 2).value == "MA"
    unknown = n.normalize_state("ZZ", 2)
    assert unknown.kind is OutcomeKind.WARNED and unknown.value is None
    assert n.normalize_state("Atlantis", 2).value is None


def test_status_mapping_and_defaults():
    assert n.normalize_customer_status("ACTIVE", 2).value == "Active"
    assert n.normalize_customer_status("no", 2).value == "Inactive"
    missing = n.normalize_customer_status("", 2)
    assert missing.kind is OutcomeKind.WARNED and missing.value == "Active"
    assert n.normalize_order_status("canceled", 2).value == "Cancelled"
    unknown = n.normalize_order_status("lost", 2)
    assert unknown.kind is OutcomeKind.WARNED and unknown.value == "Pending"


@pytest.mark.parametrize(
    "raw,expected",
    [("3", 3), ("3.0", 3), ("1,200", 1200)],
)
def test_quantity_whole_numbers(raw, expected):
    out = n.normalize_quantity(raw, 2)
    assert out.kind is OutcomeKind.ACCEPTED
    assert out.value == expected


@pytest.mark.parametrize("raw", ["0", "-2", "2.5", "two", None])
def test_quantity_rejections(raw):
    assert n.normalize_quantity(raw, 2).is_fatal


def test_price_currency_and_rounding():
    assert n.normalize_price("$1,234.565", 2).value == Decimal("1234.57")
    assert n.normalize_price("€ 10", 2).value == Decimal("10.00")
    assert n.normalize_price("0", 2).value == Decimal("0.00")
    assert n.normalize_price("-1", 2).is_fatal
    assert n.normalize_price("abc", 2).is_fatal


@pytest.mark.parametrize(
    "raw",
    ["1e30", "123456789012345678901234567890", "99999999999999999999999.99", "100000000", "99999999.995"],
)
def test_price_out_of_range_is_rejected(raw):
    out = n.normalize_price(raw, 2)
    assert out.is_fatal
    assert out.reason == f"unit_price: out of range (raw value {raw!r})"


def test_price_upper_bound_accepted():
    assert n.normalize_price("99999999.99", 2).value == n.MAX_AMOUNT


@pytest.mark.parametrize("raw", ["1e100000000", "2147483648", "9" * 40])
def test_quantity_out_of_range_is_rejected(raw):
    out = n.normalize_quantity(raw, 2)
    assert out.is_fatal
    assert "out of range" in out.reason


def test_quantity_upper_bound_accepted():
    assert n.normalize_quantity("2147483647", 2).value == n.MAX_QUANTITY


@pytest.mark.parametrize(
    "func,raw,kwargs",
    [
        (n.normalize_email, " John@Example.com ", {}),
        (n.normalize_phone, "+1 (555) 010-6789", {}),
        (n.normalize_state, "new york", {}),
        (n.normalize_name, "  a   b ", {"field": "full_name"}),
        (n.normalize_date, "03/15/2023", {"field": "registered_at", "today": TODAY}),
        (n.normalize_identifier, "c-12", {"field": "customer_id", "prefix": "C"}),
        (n.normalize_customer_status, "yes", {}),
        (n.normalize_price, "$3.456", {}),
        (n.normalize_quantity, "4.0", {}),
    ],
)
def test_normalizers_are_idempotent(func, raw, kwargs):
    first = func(raw, 2, **kwargs)
    assert first.value is not None
    second = func(str(first.value), 2, **kwargs)
    assert second.value == first.value
