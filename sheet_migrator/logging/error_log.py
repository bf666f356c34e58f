from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from ..models.audit_record import (
    DUPLICATE,
    FIELD_ERROR,
    FIELD_WARNING,
    LOAD_FAILED,
    AuditRecord,
)
from ..models.candidate_record import CandidateRecord, DuplicateEntry
from ..models.pipeline_result import LoadFailure

"""Audit log buffering.

- JSON Lines with a fixed key set (no extra keys)
- one file per run: ``<logs_dir>/audit-YYYYMMDD-HHMMSS.log`` (UTC)
- records are buffered in memory and written on flush()
"""

__all__ = [
    "AuditRecord",
    "AuditLogBuffer",
]

TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class AuditLogBuffer:
    """In-memory buffer for audit records. Flush writes JSON Lines.

    スレッド安全性不要 (シリアル実行)
    """
    def __init__(self, logs_dir: Path | str = "./logs") -> None:
        self.logs_dir = Path(logs_dir)
        self._records: list[AuditRecord] = []
        self._file_path: Path | None = None

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self.logs_dir / f"audit-{stamp}.log"
        return self._file_path

    def append(self, record: AuditRecord) -> None:
        self._records.append(record)

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    @property
    def records(self) -> list[AuditRecord]:
        return list(self._records)

    def record_candidates(self, records: Iterable[CandidateRecord]) -> None:
        for record in records:
            for issue in record.errors:
                self.append(AuditRecord.create(record.entity, issue.row_index, issue.field, FIELD_ERROR, issue.reason))
            for issue in record.warnings:
                self.append(
                    AuditRecord.create(record.entity, issue.row_index, issue.field, FIELD_WARNING, issue.reason)
                )

    def record_duplicates(self, duplicates: Iterable[DuplicateEntry]) -> None:
        for dup in duplicates:
            self.append(
                AuditRecord.create(
                    dup.entity, dup.row_index, "", DUPLICATE,
                    f"duplicate of row {dup.duplicate_of} (key {dup.key})",
                )
            )

    def record_load_failures(self, entity: str, failures: Iterable[LoadFailure]) -> None:
        for failure in failures:
            self.append(AuditRecord.create(entity, failure.row_index, "", LOAD_FAILED, failure.message))

    def flush(self) -> Path:
        if not self._records:
            return self.file_path
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
