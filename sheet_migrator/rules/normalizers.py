from __future__ import annotations

import re
from collections.abc import Collection
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from ..models.field_outcome import FieldOutcome
from .states import STATE_NAMES, lookup_state_code

"""Field normalizers.

Each normalizer is a pure function ``(raw, row_index, ...) -> FieldOutcome``.
They never raise for bad input: every failure becomes either a WARNED outcome
(value substituted / flagged) or a REJECTED outcome (fatal for the record).
Applying a normalizer to its own accepted output returns the same value.

Extra keyword arguments (field name, identifier prefix, today's date, the
known parent identifiers) are bound once per run in field_rules.
"""

__all__ = [
    "normalize_identifier",
    "normalize_reference",
    "normalize_name",
    "normalize_email",
    "normalize_phone",
    "normalize_city",
    "normalize_state",
    "normalize_date",
    "parse_date",
    "normalize_customer_status",
    "normalize_order_status",
    "normalize_quantity",
    "normalize_price",
    "is_blank",
    "CUSTOMER_STATUSES",
    "ORDER_STATUSES",
    "MAX_QUANTITY",
    "MAX_AMOUNT",
]

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")
_NON_DIGIT_RE = re.compile(r"\D")
_WS_RE = re.compile(r"\s+")
_CURRENCY_RE = re.compile(r"[$€£¥,\s]")

_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_US_SLASH_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_DASH_RE = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")
_YMD_SLASH_RE = re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$")

CUSTOMER_STATUSES = ("Active", "Inactive", "Pending")
ORDER_STATUSES = ("Pending", "Processing", "Shipped", "Delivered", "Cancelled")

_CUSTOMER_STATUS_MAP = {
    "active": "Active",
    "inactive": "Inactive",
    "pending": "Pending",
    "yes": "Active",
    "no": "Inactive",
    "1": "Active",
    "0": "Inactive",
}

_ORDER_STATUS_MAP = {
    "pending": "Pending",
    "processing": "Processing",
    "shipped": "Shipped",
    "delivered": "Delivered",
    "cancelled": "Cancelled",
    "canceled": "Cancelled",
}

_CENT = Decimal("0.01")

# 格納先カラムの範囲 (orders.quantity INTEGER, unit_price / total_amount DECIMAL(10,2))
MAX_QUANTITY = 2**31 - 1
MAX_AMOUNT = Decimal("99999999.99")


def is_blank(raw: str | None) -> bool:
    return raw is None or str(raw).strip() == ""


def _collapse(raw: str) -> str:
    return _WS_RE.sub(" ", raw.strip())


def _clean_identifier(raw: str, prefix: str) -> str:
    cleaned = _NON_ALNUM_RE.sub("", raw).upper()
    if not cleaned.startswith(prefix):
        cleaned = prefix + cleaned
    return cleaned


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

def normalize_identifier(raw: str | None, row_index: int, *, field: str, prefix: str) -> FieldOutcome:
    """Primary identifier: strip, uppercase, enforce ``^PREFIX\\d+$``.

    An empty identifier is deferred (generated by the sink), not fatal.
    """
    if is_blank(raw):
        return FieldOutcome.warned(field, row_index, None, "missing, will be generated on load", raw)
    cleaned = _clean_identifier(str(raw), prefix)
    if not re.fullmatch(rf"{prefix}\d+", cleaned):
        return FieldOutcome.rejected(
            field, row_index, f"invalid format, must be {prefix} followed by digits", raw
        )
    return FieldOutcome.accepted(field, row_index, cleaned, raw)


def normalize_reference(
    raw: str | None,
    row_index: int,
    *,
    field: str,
    prefix: str,
    known_ids: Collection[str] | None = None,
) -> FieldOutcome:
    """Foreign key: same cleanup as a primary identifier, but required and
    checked against the parent identifiers supplied by the caller.

    known_ids=None disables the existence check (single-record checks
    without parent context).
    """
    if is_blank(raw):
        return FieldOutcome.rejected(field, row_index, "required reference is missing", raw)
    cleaned = _clean_identifier(str(raw), prefix)
    if not re.fullmatch(rf"{prefix}\d+", cleaned):
        return FieldOutcome.rejected(
            field, row_index, f"invalid format, must be {prefix} followed by digits", raw
        )
    if known_ids is not None and cleaned not in known_ids:
        return FieldOutcome.rejected(field, row_index, f"references unknown {cleaned}", raw)
    return FieldOutcome.accepted(field, row_index, cleaned, raw)


# ---------------------------------------------------------------------------
# Text fields
# ---------------------------------------------------------------------------

def normalize_name(raw: str | None, row_index: int, *, field: str) -> FieldOutcome:
    if is_blank(raw):
        return FieldOutcome.rejected(field, row_index, "required value is missing", raw)
    cleaned = _collapse(str(raw))
    if cleaned.isdigit():
        return FieldOutcome.warned(field, row_index, cleaned, "suspicious value (all digits)", raw)
    return FieldOutcome.accepted(field, row_index, cleaned, raw)


def normalize_email(raw: str | None, row_index: int, *, field: str = "email") -> FieldOutcome:
    if is_blank(raw):
        return FieldOutcome.rejected(field, row_index, "required value is missing", raw)
    cleaned = str(raw).strip().lower()
    if not EMAIL_RE.match(cleaned):
        return FieldOutcome.rejected(field, row_index, "invalid email format", raw)
    return FieldOutcome.accepted(field, row_index, cleaned, raw)


def normalize_phone(raw: str | None, row_index: int, *, field: str = "phone_number") -> FieldOutcome:
    """Digits only; a leading country code 1 is dropped when the rest is a
    valid 10-digit or 7-digit local number. Other lengths become None."""
    if is_blank(raw):
        return FieldOutcome.accepted(field, row_index, None, raw)
    digits = _NON_DIGIT_RE.sub("", str(raw))
    if len(digits) in (8, 11) and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) in (7, 10):
        return FieldOutcome.accepted(field, row_index, digits, raw)
    return FieldOutcome.warned(field, row_index, None, f"invalid phone number ({len(digits)} digits)", raw)


def normalize_city(raw: str | None, row_index: int, *, field: str = "city") -> FieldOutcome:
    if is_blank(raw):
        return FieldOutcome.accepted(field, row_index, None, raw)
    return FieldOutcome.accepted(field, row_index, _collapse(str(raw)), raw)


def normalize_state(raw: str | None, row_index: int, *, field: str = "state_code") -> FieldOutcome:
    if is_blank(raw):
        return FieldOutcome.accepted(field, row_index, None, raw)
    cleaned = _collapse(str(raw))
    if len(cleaned) == 2 and cleaned.isalpha():
        code = cleaned.upper()
        if code in STATE_NAMES:
            return FieldOutcome.accepted(field, row_index, code, raw)
        return FieldOutcome.warned(field, row_index, None, "unknown state code", raw)
    code = lookup_state_code(cleaned)
    if code is None:
        return FieldOutcome.warned(field, row_index, None, "unknown state", raw)
    return FieldOutcome.accepted(field, row_index, code, raw)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def parse_date(text: str) -> date | None:
    """Parse the supported spreadsheet date spellings.

    - ``YYYY-MM-DD``
    - ``MM/DD/YYYY``
    - ``DD-MM-YYYY`` / ``MM-DD-YYYY``: day first only when the first segment
      is greater than 12. ``03-05-2024`` is therefore read as March 5
      (known ambiguity, month first is the default).
    - ``YYYY/MM/DD``

    Returns None when the text matches no format or is not a real calendar
    date.
    """
    text = text.strip()
    try:
        m = _ISO_RE.match(text)
        if m:
            return date(int(m[1]), int(m[2]), int(m[3]))
        m = _US_SLASH_RE.match(text)
        if m:
            return date(int(m[3]), int(m[1]), int(m[2]))
        m = _DASH_RE.match(text)
        if m:
            first, second, year = int(m[1]), int(m[2]), int(m[3])
            if first > 12:
                return date(year, second, first)
            return date(year, first, second)
        m = _YMD_SLASH_RE.match(text)
        if m:
            return date(int(m[1]), int(m[2]), int(m[3]))
    except ValueError:
        return None
    return None


def normalize_date(raw: str | None, row_index: int, *, field: str, today: date | None = None) -> FieldOutcome:
    """Normalize to ``YYYY-MM-DD``; never fatal.

    Missing / unparseable → today + warning. Future dates are kept but
    flagged with a warning.
    """
    today = today or date.today()
    if is_blank(raw):
        return FieldOutcome.warned(field, row_index, today.isoformat(), "missing, defaulted to today", raw)
    parsed = parse_date(str(raw))
    if parsed is None:
        return FieldOutcome.warned(
            field, row_index, today.isoformat(), "unparseable date, defaulted to today", raw
        )
    if parsed > today:
        return FieldOutcome.warned(field, row_index, parsed.isoformat(), "date is in the future", raw)
    return FieldOutcome.accepted(field, row_index, parsed.isoformat(), raw)


# ---------------------------------------------------------------------------
# Status enums
# ---------------------------------------------------------------------------

def _normalize_status(
    raw: str | None, row_index: int, field: str, mapping: dict[str, str], default: str
) -> FieldOutcome:
    if is_blank(raw):
        return FieldOutcome.warned(field, row_index, default, f"missing, defaulted to {default}", raw)
    mapped = mapping.get(str(raw).strip().lower())
    if mapped is None:
        return FieldOutcome.warned(field, row_index, default, f"unknown status, defaulted to {default}", raw)
    return FieldOutcome.accepted(field, row_index, mapped, raw)


def normalize_customer_status(raw: str | None, row_index: int, *, field: str = "status") -> FieldOutcome:
    return _normalize_status(raw, row_index, field, _CUSTOMER_STATUS_MAP, "Active")


def normalize_order_status(raw: str | None, row_index: int, *, field: str = "order_status") -> FieldOutcome:
    return _normalize_status(raw, row_index, field, _ORDER_STATUS_MAP, "Pending")


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

def _to_decimal(text: str) -> Decimal | None:
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def normalize_quantity(raw: str | None, row_index: int, *, field: str = "quantity") -> FieldOutcome:
    if is_blank(raw):
        return FieldOutcome.rejected(field, row_index, "required value is missing", raw)
    value = _to_decimal(str(raw).strip().replace(",", ""))
    if value is None or value != value.to_integral_value():
        return FieldOutcome.rejected(field, row_index, "not a whole number", raw)
    if value <= 0:
        return FieldOutcome.rejected(field, row_index, "must be greater than zero", raw)
    # int() の前に範囲判定 ("1e100000000" を展開しない)
    if value > MAX_QUANTITY:
        return FieldOutcome.rejected(field, row_index, "out of range", raw)
    return FieldOutcome.accepted(field, row_index, int(value), raw)


def normalize_price(raw: str | None, row_index: int, *, field: str = "unit_price") -> FieldOutcome:
    if is_blank(raw):
        return FieldOutcome.rejected(field, row_index, "required value is missing", raw)
    value = _to_decimal(_CURRENCY_RE.sub("", str(raw)))
    if value is None:
        return FieldOutcome.rejected(field, row_index, "not a number", raw)
    if value < 0:
        return FieldOutcome.rejected(field, row_index, "must not be negative", raw)
    if value > MAX_AMOUNT:
        return FieldOutcome.rejected(field, row_index, "out of range", raw)
    try:
        rounded = value.quantize(_CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return FieldOutcome.rejected(field, row_index, "out of range", raw)
    # 99999999.995 は丸めで範囲外になる
    if rounded > MAX_AMOUNT:
        return FieldOutcome.rejected(field, row_index, "out of range", raw)
    return FieldOutcome.accepted(field, row_index, rounded, raw)
