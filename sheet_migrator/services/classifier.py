from __future__ import annotations

import logging
from collections.abc import Sequence

from ..models.candidate_record import CandidateRecord, Classification

"""Validator / classifier.

A record is invalid iff the transformer recorded at least one fatal error
for it. No validation logic lives here; this only partitions.
"""

__all__ = [
    "classify",
]

logger = logging.getLogger(__name__)


def classify(candidates: Sequence[CandidateRecord]) -> Classification:
    valid: list[CandidateRecord] = []
    invalid: list[CandidateRecord] = []
    for record in candidates:
        if record.errors:
            invalid.append(record)
        else:
            valid.append(record)
    if invalid:
        sample = [(r.row_index, r.reasons) for r in invalid[:3]]
        logger.warning(f"{len(invalid)} record(s) failed validation, sample={sample}")
    return Classification(valid=valid, invalid=invalid)
