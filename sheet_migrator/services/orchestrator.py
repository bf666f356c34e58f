from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from datetime import UTC, date, datetime
from typing import Protocol
from zoneinfo import ZoneInfo

from ..excel.reader import SheetRows
from ..logging.error_log import AuditLogBuffer
from ..models.audit_record import RUN_FAILED, AuditRecord
from ..models.candidate_record import CandidateRecord
from ..models.config_models import ImportConfig
from ..models.pipeline_result import EntityResult, LoadResult, PipelineResult, PipelineState
from ..models.run_statistics import BatchStatsAccumulator, RunStatistics
from ..rules.field_rules import build_rules
from .classifier import classify
from .deduplicator import deduplicate
from .dependencies import build_known_ids, parent_of, processing_order
from .progress import ProgressTracker
from .transformer import transform_rows, validate_headers

"""Pipeline orchestrator: extract -> transform -> dedup -> classify -> load.

State machine:
    idle → extracting → transforming → loading → done
    any collaborator exception → failed (no retry)
    cancel signal observed between stages / entities → cancelled

Entities are processed parent first (customers before orders). Only the
valid partition reaches the sink; invalid records stay in the result and the
audit log. RunStatistics is created here, updated at stage boundaries and
returned with the result, including on failed / cancelled runs.
"""

__all__ = [
    "ProcessingError",
    "RunCancelled",
    "RowSource",
    "RecordSink",
    "today_in",
    "process_all",
]

logger = logging.getLogger(__name__)


class ProcessingError(Exception):
    """Base exception for processing errors."""


class RunCancelled(ProcessingError):
    """Raised internally when the cancel signal is observed."""


class RowSource(Protocol):
    def fetch_rows(self, entity: str) -> SheetRows: ...


class RecordSink(Protocol):
    def existing_identifiers(self, entity: str) -> set[str]: ...

    def load(self, entity: str, records: Sequence[CandidateRecord]) -> LoadResult: ...


def today_in(timezone: str) -> date:
    """Current date in the configured timezone (computed once per run)."""
    return datetime.now(ZoneInfo(timezone)).date()


def _check_cancel(cancel_event: threading.Event | None, where: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise RunCancelled(f"cancelled before {where}")


def _extract(
    entities: list[str],
    source: RowSource,
    stats: RunStatistics,
    progress: ProgressTracker,
    today: date,
    cancel_event: threading.Event | None,
) -> dict[str, SheetRows]:
    sheets: dict[str, SheetRows] = {}
    for entity in entities:
        _check_cancel(cancel_event, f"extracting {entity}")
        progress.start(entity, "extract")
        sheet = source.fetch_rows(entity)
        # ヘッダ検証はシート毎に1回
        validate_headers(entity, sheet.headers, build_rules(entity, today=today))
        sheets[entity] = sheet
        stats.for_entity(entity).extracted = len(sheet.rows)
        logger.info(f"{entity}: extracted {len(sheet.rows)} rows")
        progress.finish(rows=len(sheet.rows))
    return sheets


def _transform(
    entities: list[str],
    sheets: dict[str, SheetRows],
    result: PipelineResult,
    sink: RecordSink,
    audit: AuditLogBuffer,
    progress: ProgressTracker,
    today: date,
    dedupe: bool,
    cancel_event: threading.Event | None,
) -> None:
    stats = result.statistics
    for entity in entities:
        _check_cancel(cancel_event, f"transforming {entity}")
        progress.start(entity, "transform")

        known_ids = None
        dep = parent_of(entity)
        if dep is not None:
            parent = result.entities.get(dep.parent)
            parent_valid = parent.valid if parent is not None else []
            known_ids = build_known_ids(dep, parent_valid, sink.existing_identifiers(dep.parent))
            logger.debug(f"{entity}: {len(known_ids)} known {dep.parent_key} values")

        rules = build_rules(entity, today=today, known_customer_ids=known_ids)
        sheet = sheets[entity]
        candidates = transform_rows(entity, sheet.rows, rules, first_row_index=sheet.first_row_index)

        entity_result = result.entities[entity]
        if dedupe:
            unique, entity_result.duplicates = deduplicate(candidates)
        else:
            unique = candidates
        classification = classify(unique)
        entity_result.valid = classification.valid
        entity_result.invalid = classification.invalid

        audit.record_candidates(unique)
        audit.record_duplicates(entity_result.duplicates)

        es = stats.for_entity(entity)
        es.transformed = len(candidates)
        es.duplicates = len(entity_result.duplicates)
        es.valid = len(classification.valid)
        es.invalid = len(classification.invalid)
        es.warnings = sum(len(r.warnings) for r in unique)
        es.errors = sum(len(r.errors) for r in unique)
        progress.finish(valid=es.valid, invalid=es.invalid, dup=es.duplicates)


def _load(
    entities: list[str],
    result: PipelineResult,
    sink: RecordSink,
    audit: AuditLogBuffer,
    progress: ProgressTracker,
    cancel_event: threading.Event | None,
) -> None:
    for entity in entities:
        _check_cancel(cancel_event, f"loading {entity}")
        progress.start(entity, "load")
        entity_result = result.entities[entity]
        load_result = sink.load(entity, entity_result.valid)
        entity_result.load_failures = list(load_result.failures)
        audit.record_load_failures(entity, load_result.failures)

        es = result.statistics.for_entity(entity)
        es.loaded = load_result.loaded
        es.load_failed = len(load_result.failures)
        acc = BatchStatsAccumulator()
        for seconds in load_result.batch_seconds:
            acc.add_batch_time(seconds)
        es.total_batches, es.avg_batch_seconds, es.p95_batch_seconds = acc.get_stats()
        progress.finish(loaded=es.loaded, failed=es.load_failed)


def process_all(
    config: ImportConfig,
    source: RowSource,
    sink: RecordSink,
    *,
    cancel_event: threading.Event | None = None,
    today: date | None = None,
    audit_log: AuditLogBuffer | None = None,
) -> PipelineResult:
    """Run the whole migration for every configured entity.

    Args:
        config: validated import configuration
        source: row source (ExcelSource in production)
        sink: record sink (PostgresSink / DryRunSink)
        cancel_event: polled between stages and entities, never mid-row
        today: reference date for date rules (default: now in config.timezone)
        audit_log: audit buffer (default: one under config.etl.logs_dir)

    Returns:
        PipelineResult in state DONE, FAILED or CANCELLED. Collaborator
        exceptions never escape; they end the run in FAILED.
    """
    stats = RunStatistics(start_time=datetime.now(UTC))
    audit = audit_log if audit_log is not None else AuditLogBuffer(config.etl.logs_dir)
    result = PipelineResult(state=PipelineState.IDLE, statistics=stats)

    try:
        entities = processing_order(config.entities)
        run_day = today or today_in(config.timezone)
        for entity in entities:
            result.entities[entity] = EntityResult(entity=entity, table=config.entities[entity].table)
            stats.for_entity(entity)
        logger.info(f"processing order: {entities} (today={run_day.isoformat()})")

        with ProgressTracker(entities) as progress:
            result.state = PipelineState.EXTRACTING
            sheets = _extract(entities, source, stats, progress, run_day, cancel_event)

            _check_cancel(cancel_event, "transforming")
            result.state = PipelineState.TRANSFORMING
            _transform(
                entities, sheets, result, sink, audit, progress, run_day,
                config.etl.deduplicate, cancel_event,
            )

            _check_cancel(cancel_event, "loading")
            result.state = PipelineState.LOADING
            _load(entities, result, sink, audit, progress, cancel_event)

        result.state = PipelineState.DONE
    except RunCancelled as e:
        logger.warning(f"run cancelled while {result.state.value}: {e}")
        result.state = PipelineState.CANCELLED
        result.error = str(e)
    except Exception as e:
        # 収集済み統計は保持したまま FAILED へ
        logger.error(f"run failed while {result.state.value}: {e}")
        audit.append(AuditRecord.create("<RUN>", -1, "", RUN_FAILED, f"{result.state.value}: {e}"))
        result.state = PipelineState.FAILED
        result.error = str(e)
    finally:
        stats.end_time = datetime.now(UTC)

    try:
        path = audit.flush()
        logger.debug(f"audit log written to {path}")
    except OSError as e:
        logger.error(f"failed to write audit log: {e}")
    return result
