from __future__ import annotations

import logging
from collections.abc import Collection, Mapping, Sequence
from datetime import date
from decimal import Decimal, InvalidOperation

from ..models.candidate_record import CandidateRecord
from ..models.field_outcome import FieldIssue, OutcomeKind
from ..rules.field_rules import ORDERS, FieldRule, build_rules, normalize_header
from ..rules.normalizers import MAX_AMOUNT

"""Record transformer: raw row -> CandidateRecord.

Applies every field rule of an entity to the positional cells of one raw row.
Exactly one CandidateRecord is produced per raw row, including rows with no
values at all; field failures are collected on the record, never raised.

Also hosts the two entry points that share the rule tables:
- transform_rows(): batch use by the orchestrator
- check_record(): interactive single-record validation
"""

__all__ = [
    "HeaderMismatchError",
    "validate_headers",
    "transform_row",
    "transform_rows",
    "check_record",
]

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


class HeaderMismatchError(Exception):
    """Raised when a sheet header does not match the entity's rule order."""


def validate_headers(entity: str, headers: Sequence[object], rules: Sequence[FieldRule]) -> None:
    """Check once per sheet that column order matches the rule order.

    Extra trailing columns are ignored (logged). Missing or reordered
    columns are a configuration error.
    """
    problems: list[str] = []
    for position, rule in enumerate(rules):
        if position >= len(headers):
            problems.append(f"column {position + 1}: expected '{rule.field}', missing")
        elif not rule.accepts_header(str(headers[position])):
            problems.append(
                f"column {position + 1}: expected '{rule.field}', got '{headers[position]}'"
            )
    if problems:
        raise HeaderMismatchError(f"{entity}: header mismatch: " + "; ".join(problems))
    extra = [str(h) for h in headers[len(rules):] if normalize_header(h)]
    if extra:
        logger.warning(f"{entity}: ignoring extra columns {extra}")


def _derive(entity: str, values: dict[str, object], row_index: int) -> FieldIssue | None:
    """Fill derived fields; returns a fatal issue when a derived value is out of range."""
    # orders: total_amount = quantity * unit_price (両方有効な場合のみ)
    if entity != ORDERS:
        return None
    values["total_amount"] = None
    quantity = values.get("quantity")
    price = values.get("unit_price")
    if not (isinstance(quantity, int) and isinstance(price, Decimal)):
        return None
    try:
        total = (price * quantity).quantize(_CENT)
    except InvalidOperation:
        total = None
    if total is None or total > MAX_AMOUNT:
        return FieldIssue(
            row_index,
            "total_amount",
            f"total_amount: out of range (quantity {quantity} x unit_price {price})",
            fatal=True,
        )
    values["total_amount"] = total
    return None


def transform_row(
    entity: str,
    cells: Sequence[str | None],
    row_index: int,
    rules: Sequence[FieldRule],
) -> CandidateRecord:
    """Apply every rule to its positional cell and assemble a CandidateRecord."""
    values: dict[str, object] = {}
    raw_values: dict[str, str | None] = {}
    warnings: list[FieldIssue] = []
    errors: list[FieldIssue] = []

    for position, rule in enumerate(rules):
        raw = cells[position] if position < len(cells) else None
        outcome = rule.apply(raw, row_index)
        raw_values[rule.field] = raw
        values[rule.field] = outcome.value
        issue = outcome.to_issue()
        if issue is None:
            continue
        if outcome.kind is OutcomeKind.REJECTED:
            errors.append(issue)
        else:
            warnings.append(issue)
            logger.debug(f"{entity} row {row_index}: {issue.reason}")

    derived_error = _derive(entity, values, row_index)
    if derived_error is not None:
        errors.append(derived_error)
    return CandidateRecord(
        entity=entity,
        row_index=row_index,
        values=values,
        warnings=tuple(warnings),
        errors=tuple(errors),
        raw_values=raw_values,
    )


def transform_rows(
    entity: str,
    rows: Sequence[Sequence[str | None]],
    rules: Sequence[FieldRule],
    first_row_index: int = 2,
) -> list[CandidateRecord]:
    """Transform a whole sheet in source order.

    first_row_index: spreadsheet row number of rows[0] (header is row 1)
    """
    candidates = [
        transform_row(entity, cells, first_row_index + offset, rules)
        for offset, cells in enumerate(rows)
    ]
    warned = sum(1 for c in candidates if c.warnings)
    failed = sum(1 for c in candidates if c.errors)
    logger.info(
        f"{entity}: transformed {len(candidates)} rows "
        f"({failed} with errors, {warned} with warnings)"
    )
    return candidates


def check_record(
    entity: str,
    values: Mapping[str, str | None],
    *,
    known_customer_ids: Collection[str] | None = None,
    today: date | None = None,
    row_index: int = 1,
) -> CandidateRecord:
    """Validate a single record keyed by field name (or header alias).

    Fields not supplied are treated as empty cells. Unknown keys raise
    ValueError since they can never be mapped to a rule.
    """
    rules = build_rules(entity, today=today, known_customer_ids=known_customer_ids)
    cells: list[str | None] = [None] * len(rules)
    for key, raw in values.items():
        for position, rule in enumerate(rules):
            if rule.accepts_header(key):
                cells[position] = raw
                break
        else:
            raise ValueError(f"{entity}: unknown field '{key}'")
    return transform_row(entity, cells, row_index, rules)
