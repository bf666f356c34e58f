from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

"""FieldOutcome model: result of applying one field rule to one raw cell.

An outcome is one of three shapes:

- ACCEPTED: value passed (possibly after normalization)
- WARNED: value accepted with a substitute / flag, plus a reason
- REJECTED: fatal for the record, plus a reason

Outcomes are never dropped; each one is attributable to (row_index, field).
"""

__all__ = [
    "OutcomeKind",
    "Severity",
    "FieldOutcome",
    "FieldIssue",
    "describe_raw",
]


class OutcomeKind(Enum):
    ACCEPTED = "accepted"
    WARNED = "warned"
    REJECTED = "rejected"


class Severity(Enum):
    """Failure severity of a field rule.

    - FATAL: a failure rejects the whole record
    - WARN_AND_DEFAULT: a failure substitutes a default / null and warns
    """
    FATAL = "fatal"
    WARN_AND_DEFAULT = "warn_and_default"


def describe_raw(raw: str | None) -> str:
    """Human readable rendering of a raw cell for reason strings."""
    if raw is None or str(raw).strip() == "":
        return "value missing"
    return f"raw value {raw!r}"


@dataclass(frozen=True)
class FieldOutcome:
    field: str
    row_index: int
    kind: OutcomeKind
    value: Any = None
    reason: str | None = None
    raw: str | None = None

    @classmethod
    def accepted(cls, field: str, row_index: int, value: Any, raw: str | None = None) -> FieldOutcome:
        return cls(field=field, row_index=row_index, kind=OutcomeKind.ACCEPTED, value=value, raw=raw)

    @classmethod
    def warned(
        cls, field: str, row_index: int, value: Any, message: str, raw: str | None = None
    ) -> FieldOutcome:
        reason = f"{field}: {message} ({describe_raw(raw)})"
        return cls(
            field=field, row_index=row_index, kind=OutcomeKind.WARNED, value=value, reason=reason, raw=raw
        )

    @classmethod
    def rejected(cls, field: str, row_index: int, message: str, raw: str | None = None) -> FieldOutcome:
        reason = f"{field}: {message} ({describe_raw(raw)})"
        return cls(field=field, row_index=row_index, kind=OutcomeKind.REJECTED, value=None, reason=reason, raw=raw)

    @property
    def is_fatal(self) -> bool:
        return self.kind is OutcomeKind.REJECTED

    def to_issue(self) -> FieldIssue | None:
        if self.kind is OutcomeKind.ACCEPTED or self.reason is None:
            return None
        return FieldIssue(
            row_index=self.row_index,
            field=self.field,
            reason=self.reason,
            fatal=self.is_fatal,
        )


@dataclass(frozen=True)
class FieldIssue:
    """One audit trail tuple: {row_index, field, reason}."""
    row_index: int
    field: str
    reason: str
    fatal: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {"row_index": self.row_index, "field": self.field, "reason": self.reason}
