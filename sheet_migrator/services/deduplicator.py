from __future__ import annotations

import logging
from collections.abc import Sequence

from ..models.candidate_record import CandidateRecord, DuplicateEntry
from ..rules.field_rules import FALLBACK_KEYS, PRIMARY_KEYS

"""Deduplicator: first-seen-wins by identity key.

Key precedence per record:
1. normalized primary identifier (customer_id / order_id), if present
2. fallback business key (customers: normalized email), if present
3. none: the record is never considered a duplicate of anything

Records keyed by identifier only collide on identifier. A record without an
identifier is keyed by its fallback value and collides with any earlier
record carrying the same fallback value, with or without an identifier.

Candidates must be passed in source row order; that order decides which
occurrence survives.
"""

__all__ = [
    "identity_key",
    "deduplicate",
]

logger = logging.getLogger(__name__)


def _primary_key(record: CandidateRecord) -> str | None:
    pk = PRIMARY_KEYS.get(record.entity)
    value = record.get(pk) if pk else None
    return f"{pk}:{value}" if value else None


def _fallback_key(record: CandidateRecord) -> str | None:
    fallback = FALLBACK_KEYS.get(record.entity)
    value = record.get(fallback) if fallback else None
    return f"{fallback}:{value}" if value else None


def identity_key(record: CandidateRecord) -> str | None:
    """Derive the dedup key, namespaced so ids and emails never collide."""
    return _primary_key(record) or _fallback_key(record)


def deduplicate(
    candidates: Sequence[CandidateRecord],
) -> tuple[list[CandidateRecord], list[DuplicateEntry]]:
    """Split candidates into (unique, duplicate log) preserving source order."""
    seen: dict[str, int] = {}  # key -> surviving row_index
    unique: list[CandidateRecord] = []
    duplicates: list[DuplicateEntry] = []

    for record in candidates:
        key = identity_key(record)
        if key is None:
            unique.append(record)
            continue
        if key in seen:
            duplicates.append(
                DuplicateEntry(
                    entity=record.entity,
                    row_index=record.row_index,
                    key=key,
                    duplicate_of=seen[key],
                )
            )
            continue
        seen[key] = record.row_index
        # 識別子ありレコードの email も後続の識別子なしレコード用に登録
        fallback = _fallback_key(record)
        if fallback is not None:
            seen.setdefault(fallback, record.row_index)
        unique.append(record)

    if duplicates:
        logger.warning(f"found {len(duplicates)} duplicate record(s)")
    return unique, duplicates
