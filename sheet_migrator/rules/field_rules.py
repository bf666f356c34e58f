from __future__ import annotations

import logging
import re
from collections.abc import Callable, Collection
from dataclasses import dataclass
from datetime import date
from functools import partial

from ..models.field_outcome import FieldOutcome, OutcomeKind, Severity
from . import normalizers as n

"""Canonical field rule tables for the two entity shapes.

The column order of each table is the column order expected in the source
sheet. Both the batch pipeline and the single-record check consume these
tables; there is no second copy of the rules anywhere else.
"""

__all__ = [
    "FieldRule",
    "CUSTOMERS",
    "ORDERS",
    "ENTITY_TYPES",
    "PRIMARY_KEYS",
    "FALLBACK_KEYS",
    "ID_PREFIXES",
    "build_rules",
    "normalize_header",
]

logger = logging.getLogger(__name__)

CUSTOMERS = "customers"
ORDERS = "orders"

# 親 → 子 の処理順
ENTITY_TYPES: tuple[str, ...] = (CUSTOMERS, ORDERS)

PRIMARY_KEYS = {
    CUSTOMERS: "customer_id",
    ORDERS: "order_id",
}

# Dedup fallback key when the primary identifier is missing
FALLBACK_KEYS: dict[str, str] = {
    CUSTOMERS: "email",
}

ID_PREFIXES = {
    CUSTOMERS: "C",
    ORDERS: "ORD",
}

Normalizer = Callable[[str | None, int], FieldOutcome]


@dataclass(frozen=True)
class FieldRule:
    """Transformation rule for one target field.

    field: target column name
    required: whether the target column is NOT NULL
    severity: what a failure of this rule means for the record
    normalize: (raw, row_index) -> FieldOutcome
    headers: accepted source header spellings (normalized form)

    apply() holds the normalizer to the declaration: a WARN_AND_DEFAULT rule
    never rejects a record, and a required rule never yields an empty value.
    """
    field: str
    required: bool
    severity: Severity
    normalize: Normalizer
    headers: tuple[str, ...] = ()

    def accepts_header(self, header: str) -> bool:
        return normalize_header(header) in (self.field, *self.headers)

    def apply(self, raw: str | None, row_index: int) -> FieldOutcome:
        outcome = self.normalize(raw, row_index)
        if outcome.kind is OutcomeKind.REJECTED and self.severity is Severity.WARN_AND_DEFAULT:
            logger.error(f"{self.field}: warn-and-default rule rejected row {row_index}; downgraded to warning")
            return FieldOutcome(
                field=self.field,
                row_index=row_index,
                kind=OutcomeKind.WARNED,
                value=None,
                reason=outcome.reason,
                raw=outcome.raw,
            )
        if self.required and outcome.kind is not OutcomeKind.REJECTED and outcome.value is None:
            return FieldOutcome.rejected(self.field, row_index, "required value is missing", raw)
        return outcome


_HEADER_SEP_RE = re.compile(r"[\s\-]+")


def normalize_header(header: object) -> str:
    """'Customer ID ' -> 'customer_id'."""
    if header is None:
        return ""
    return _HEADER_SEP_RE.sub("_", str(header).strip().lower())


def _customer_rules(today: date) -> list[FieldRule]:
    return [
        FieldRule(
            "customer_id", False, Severity.FATAL,
            partial(n.normalize_identifier, field="customer_id", prefix=ID_PREFIXES[CUSTOMERS]),
            headers=("id", "customer"),
        ),
        FieldRule(
            "full_name", True, Severity.FATAL,
            partial(n.normalize_name, field="full_name"),
            headers=("name", "customer_name"),
        ),
        FieldRule("email", True, Severity.FATAL, partial(n.normalize_email, field="email"),
                  headers=("email_address", "e_mail")),
        FieldRule("phone_number", False, Severity.WARN_AND_DEFAULT, partial(n.normalize_phone, field="phone_number"),
                  headers=("phone",)),
        FieldRule("city", False, Severity.WARN_AND_DEFAULT, partial(n.normalize_city, field="city")),
        FieldRule("state_code", False, Severity.WARN_AND_DEFAULT, partial(n.normalize_state, field="state_code"),
                  headers=("state",)),
        FieldRule(
            "registered_at", True, Severity.WARN_AND_DEFAULT,
            partial(n.normalize_date, field="registered_at", today=today),
            headers=("registration_date", "registered"),
        ),
        FieldRule("status", True, Severity.WARN_AND_DEFAULT, partial(n.normalize_customer_status, field="status"),
                  headers=("customer_status",)),
    ]


def _order_rules(today: date, known_customer_ids: Collection[str] | None) -> list[FieldRule]:
    return [
        FieldRule(
            "order_id", False, Severity.FATAL,
            partial(n.normalize_identifier, field="order_id", prefix=ID_PREFIXES[ORDERS]),
            headers=("id", "order"),
        ),
        FieldRule(
            "customer_id", True, Severity.FATAL,
            partial(
                n.normalize_reference,
                field="customer_id",
                prefix=ID_PREFIXES[CUSTOMERS],
                known_ids=known_customer_ids,
            ),
            headers=("customer",),
        ),
        FieldRule("product_name", True, Severity.FATAL, partial(n.normalize_name, field="product_name"),
                  headers=("product",)),
        FieldRule("quantity", True, Severity.FATAL, partial(n.normalize_quantity, field="quantity"),
                  headers=("qty",)),
        FieldRule("unit_price", True, Severity.FATAL, partial(n.normalize_price, field="unit_price"),
                  headers=("price",)),
        FieldRule(
            "order_date", True, Severity.WARN_AND_DEFAULT,
            partial(n.normalize_date, field="order_date", today=today),
            headers=("date",),
        ),
        FieldRule(
            "order_status", True, Severity.WARN_AND_DEFAULT,
            partial(n.normalize_order_status, field="order_status"),
            headers=("status",),
        ),
    ]


def build_rules(
    entity: str,
    *,
    today: date | None = None,
    known_customer_ids: Collection[str] | None = None,
) -> list[FieldRule]:
    """Return the ordered rule list for an entity type.

    today: date used for date defaults / future checks (once per run)
    known_customer_ids: identifiers orders may reference; None disables
        the existence check
    """
    today = today or date.today()
    if entity == CUSTOMERS:
        return _customer_rules(today)
    if entity == ORDERS:
        return _order_rules(today, known_customer_ids)
    raise ValueError(f"unknown entity type: {entity}")
