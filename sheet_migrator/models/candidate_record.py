from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .field_outcome import FieldIssue

"""CandidateRecord model for the transform -> dedup -> classify pipeline.

A CandidateRecord is one raw row after every field rule has been applied.
It is created exactly once per raw row by the record transformer and is not
mutated afterwards; deduplication and classification only regroup records.
"""

__all__ = [
    "Verdict",
    "CandidateRecord",
    "DuplicateEntry",
    "Classification",
]


class Verdict(Enum):
    VALID = "valid"
    INVALID = "invalid"


@dataclass(frozen=True)
class CandidateRecord:
    """Normalized-but-not-yet-persisted representation of one source row.

    values: target field -> normalized value (None for missing / rejected)
    warnings / errors: issues in field rule order
    raw_values: original cell text per field, kept for the audit trail
    """
    entity: str
    row_index: int
    values: dict[str, Any]
    warnings: tuple[FieldIssue, ...] = ()
    errors: tuple[FieldIssue, ...] = ()
    raw_values: dict[str, str | None] = field(default_factory=dict)

    @property
    def verdict(self) -> Verdict:
        return Verdict.INVALID if self.errors else Verdict.VALID

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def reasons(self) -> list[str]:
        return [e.reason for e in self.errors]

    @property
    def issues(self) -> list[FieldIssue]:
        # 出力順: fatal → warning
        return [*self.errors, *self.warnings]

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)


@dataclass(frozen=True)
class DuplicateEntry:
    """Log entry for a candidate discarded as a duplicate."""
    entity: str
    row_index: int  # discarded row
    key: str  # colliding identity key
    duplicate_of: int  # row_index of the surviving first occurrence

    def as_dict(self) -> dict[str, Any]:
        return {
            "row_index": self.row_index,
            "key": self.key,
            "duplicate_of": self.duplicate_of,
        }


@dataclass(frozen=True)
class Classification:
    valid: list[CandidateRecord]
    invalid: list[CandidateRecord]
