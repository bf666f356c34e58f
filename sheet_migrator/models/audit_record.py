from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""AuditRecord model for the JSON Lines audit trail.

Every decision that takes a row out of the happy path (fatal field error,
field warning, duplicate, load failure) and every run-level failure is
written as one AuditRecord. row=-1 marks entity- or run-level entries where
no single row applies.
"""

__all__ = [
    "AuditRecord",
    "FIELD_ERROR",
    "FIELD_WARNING",
    "DUPLICATE",
    "LOAD_FAILED",
    "RUN_FAILED",
]

FIELD_ERROR = "FIELD_ERROR"
FIELD_WARNING = "FIELD_WARNING"
DUPLICATE = "DUPLICATE"
LOAD_FAILED = "LOAD_FAILED"
RUN_FAILED = "RUN_FAILED"


@dataclass(frozen=True)
class AuditRecord:
    """Structured audit entry.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        entity: entity type (customers / orders), or "<RUN>" for run-level entries
        row: 1-based source row number, -1 when unknown
        field: target field name, "" when not field specific
        kind: classification in UPPER_SNAKE_CASE
        message: human readable reason
    """
    timestamp: str
    entity: str
    row: int
    field: str
    kind: str
    message: str

    @staticmethod
    def create(entity: str, row: int, field: str, kind: str, message: str) -> AuditRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return AuditRecord(
            timestamp=ts,
            entity=entity,
            row=row,
            field=field,
            kind=kind,
            message=message,
        )

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)
