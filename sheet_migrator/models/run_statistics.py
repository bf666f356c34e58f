from __future__ import annotations

import statistics
from dataclasses import asdict, dataclass, field
from datetime import datetime

"""Run statistics models for the sheet -> PostgreSQL migration.

RunStatistics is created at pipeline start, updated by the orchestrator at
stage boundaries only, and returned with the pipeline result. There is no
module-level counter state.
"""

__all__ = [
    "EntityStatistics",
    "RunStatistics",
    "BatchStatsAccumulator",
]


@dataclass
class EntityStatistics:
    """Per-entity counters (customers / orders)."""
    entity: str
    extracted: int = 0  # 取得行数
    transformed: int = 0  # CandidateRecord 数 (== extracted)
    duplicates: int = 0  # 重複で除外
    valid: int = 0
    invalid: int = 0
    warnings: int = 0  # warning issue 件数
    errors: int = 0  # fatal issue 件数
    loaded: int = 0
    load_failed: int = 0
    # Load batch timing
    total_batches: int = 0
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0

    @property
    def skipped(self) -> int:
        """Rows that were extracted but not persisted."""
        return self.duplicates + self.invalid + self.load_failed

    def as_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["skipped"] = self.skipped
        return data


_COUNTERS = (
    "extracted",
    "transformed",
    "duplicates",
    "valid",
    "invalid",
    "warnings",
    "errors",
    "loaded",
    "load_failed",
)


@dataclass
class RunStatistics:
    """Counters for a whole run, broken down by entity."""
    start_time: datetime
    end_time: datetime | None = None
    entities: dict[str, EntityStatistics] = field(default_factory=dict)

    def for_entity(self, entity: str) -> EntityStatistics:
        if entity not in self.entities:
            self.entities[entity] = EntityStatistics(entity=entity)
        return self.entities[entity]

    def total(self, counter: str) -> int:
        if counter not in _COUNTERS:
            raise KeyError(counter)
        return sum(getattr(s, counter) for s in self.entities.values())

    @property
    def extracted(self) -> int:
        return self.total("extracted")

    @property
    def transformed(self) -> int:
        return self.total("transformed")

    @property
    def duplicates(self) -> int:
        return self.total("duplicates")

    @property
    def valid(self) -> int:
        return self.total("valid")

    @property
    def invalid(self) -> int:
        return self.total("invalid")

    @property
    def warnings(self) -> int:
        return self.total("warnings")

    @property
    def errors(self) -> int:
        return self.total("errors")

    @property
    def loaded(self) -> int:
        return self.total("loaded")

    @property
    def load_failed(self) -> int:
        return self.total("load_failed")

    @property
    def skipped(self) -> int:
        return sum(s.skipped for s in self.entities.values())

    @property
    def elapsed_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def totals(self) -> dict[str, int]:
        data = {name: self.total(name) for name in _COUNTERS}
        data["skipped"] = self.skipped
        return data


class BatchStatsAccumulator:
    """Helper class to accumulate load batch timings for EntityStatistics."""

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate batch statistics.

        Returns:
            tuple: (total_batches, avg_batch_seconds, p95_batch_seconds)
        """
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            # 95th percentile (19th of 20 quantiles, 0-indexed)
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]

        return (total_batches, avg_batch_seconds, p95_batch_seconds)
