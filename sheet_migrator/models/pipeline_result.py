from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .candidate_record import CandidateRecord, DuplicateEntry
from .field_outcome import FieldIssue
from .run_statistics import RunStatistics

"""Pipeline state and result models.

State transitions:
    idle → extracting → transforming → loading → done
    any state → failed (collaborator error)
    any state → cancelled (cancel signal observed between stages)
"""

__all__ = [
    "PipelineState",
    "LoadFailure",
    "LoadResult",
    "EntityResult",
    "PipelineResult",
]


class PipelineState(Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    TRANSFORMING = "transforming"
    LOADING = "loading"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.DONE, PipelineState.FAILED, PipelineState.CANCELLED)


@dataclass(frozen=True)
class LoadFailure:
    """Per-record failure reported by a sink."""
    row_index: int
    message: str


@dataclass(frozen=True)
class LoadResult:
    loaded: int
    failures: list[LoadFailure] = field(default_factory=list)
    batch_seconds: list[float] = field(default_factory=list)  # elapsed per upsert batch


@dataclass
class EntityResult:
    """Everything the pipeline decided for one entity type."""
    entity: str
    table: str
    valid: list[CandidateRecord] = field(default_factory=list)
    invalid: list[CandidateRecord] = field(default_factory=list)
    duplicates: list[DuplicateEntry] = field(default_factory=list)
    load_failures: list[LoadFailure] = field(default_factory=list)

    @property
    def issues(self) -> list[FieldIssue]:
        """{row_index, field, reason} tuples for every invalid or warned record."""
        out: list[FieldIssue] = []
        for record in sorted([*self.valid, *self.invalid], key=lambda r: r.row_index):
            out.extend(record.issues)
        return out


@dataclass
class PipelineResult:
    state: PipelineState
    statistics: RunStatistics
    entities: dict[str, EntityResult] = field(default_factory=dict)
    error: str | None = None  # FAILED 時の理由

    @property
    def succeeded(self) -> bool:
        return self.state is PipelineState.DONE

    @property
    def has_rejections(self) -> bool:
        return self.statistics.invalid > 0 or self.statistics.load_failed > 0
