from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import psycopg2

from ..models.candidate_record import CandidateRecord
from ..models.pipeline_result import LoadFailure, LoadResult
from ..rules.field_rules import CUSTOMERS, ID_PREFIXES, ORDERS, PRIMARY_KEYS
from ..rules.states import STATE_NAMES
from .batch_insert import BatchInsertError, BatchMetrics, batch_upsert

"""Record sinks.

PostgresSink persists the valid records of one entity per transaction:

1. missing primary identifiers are generated (always-append: highest
   existing numeric suffix + 1, zero padded to 3 digits)
2. customers: referenced state codes are inserted into `states` first
3. records are upserted in batches; a failing batch is retried row by row
   under savepoints so each failure is attributed to its source row

DryRunSink accepts everything without touching a database (mock mode).
"""

__all__ = [
    "LoadError",
    "ENTITY_COLUMNS",
    "record_to_row",
    "format_phone",
    "next_identifier",
    "PostgresSink",
    "DryRunSink",
]

logger = logging.getLogger(__name__)


class LoadError(Exception):
    """Raised when persisting fails and the run must stop."""


ENTITY_COLUMNS: dict[str, list[str]] = {
    CUSTOMERS: [
        "customer_id",
        "full_name",
        "email",
        "phone_number",
        "city",
        "state_code",
        "registered_at",
        "status",
        "email_verified",
    ],
    ORDERS: [
        "order_id",
        "customer_id",
        "product_name",
        "quantity",
        "unit_price",
        "total_amount",
        "order_date",
        "order_status",
    ],
}


def format_phone(digits: str | None) -> str | None:
    """Storage format: 7 digits -> XXX-XXXX, 10 digits unchanged."""
    if digits is not None and len(digits) == 7:
        return f"{digits[:3]}-{digits[3:]}"
    return digits


def record_to_row(entity: str, values: Mapping[str, Any]) -> dict[str, Any]:
    """CandidateRecord field map -> column map for the target table."""
    row = {col: values.get(col) for col in ENTITY_COLUMNS[entity]}
    if entity == CUSTOMERS:
        row["phone_number"] = format_phone(row["phone_number"])
        row["email_verified"] = bool(values.get("email_verified", False))
    return row


def next_identifier(prefix: str, existing: Sequence[str]) -> Callable[[], str]:
    """Return a generator function producing PREFIX + (max suffix + n)."""
    pattern = re.compile(rf"^{prefix}(\d+)$")
    numbers = [int(m.group(1)) for m in (pattern.match(i) for i in existing if i) if m]
    counter = {"last": max(numbers, default=0)}

    def _next() -> str:
        counter["last"] += 1
        return f"{prefix}{counter['last']:03d}"

    return _next


class PostgresSink:
    def __init__(
        self,
        cursor: Any,
        tables: Mapping[str, str],
        *,
        batch_size: int = 100,
        continue_on_error: bool = False,
        metrics_callback: Callable[[str, BatchMetrics], None] | None = None,
    ) -> None:
        self.cursor = cursor
        self.tables = dict(tables)
        self.batch_size = batch_size
        self.continue_on_error = continue_on_error
        self.metrics_callback = metrics_callback

    def _table(self, entity: str) -> str:
        try:
            return self.tables[entity]
        except KeyError as e:
            raise LoadError(f"no table configured for entity '{entity}'") from e

    def existing_identifiers(self, entity: str) -> set[str]:
        table = self._table(entity)
        pk = PRIMARY_KEYS[entity]
        try:
            self.cursor.execute(f'SELECT "{pk}" FROM {table}')
            return {str(r[0]) for r in self.cursor.fetchall() if r[0] is not None}
        except psycopg2.Error as e:
            raise LoadError(f"{table}: failed reading existing identifiers: {e}") from e

    def _assign_identifiers(self, entity: str, rows: list[dict[str, Any]], row_indexes: list[int]) -> None:
        pk = PRIMARY_KEYS[entity]
        if all(r[pk] for r in rows):
            return
        prefix = ID_PREFIXES[entity]
        existing = list(self.existing_identifiers(entity)) + [r[pk] for r in rows if r[pk]]
        gen = next_identifier(prefix, existing)
        for row, row_index in zip(rows, row_indexes, strict=True):
            if not row[pk]:
                row[pk] = gen()
                logger.info(f"generated {pk}={row[pk]} for {entity} row {row_index}")

    def _ensure_states(self, rows: list[dict[str, Any]]) -> None:
        codes = sorted({r["state_code"] for r in rows if r.get("state_code")})
        if not codes:
            return
        batch_upsert(
            self.cursor,
            "states",
            ["state_code", "state_name"],
            [(code, STATE_NAMES.get(code, code)) for code in codes],
            conflict_column=None,
            touch_column=None,
        )
        logger.debug(f"ensured {len(codes)} states exist")

    def _on_metrics(self, entity: str, timings: list[float]) -> Callable[[BatchMetrics], None]:
        def _record(metrics: BatchMetrics) -> None:
            timings.append(metrics.elapsed_seconds)
            if self.metrics_callback is not None:
                self.metrics_callback(entity, metrics)

        return _record

    def _upsert_rows_individually(
        self, entity: str, table: str, columns: list[str], batch: list[tuple[int, dict[str, Any]]]
    ) -> tuple[int, list[LoadFailure]]:
        loaded = 0
        failures: list[LoadFailure] = []
        for row_index, row in batch:
            self.cursor.execute("SAVEPOINT sm_row")
            try:
                batch_upsert(
                    self.cursor, table, columns, [[row[c] for c in columns]],
                    conflict_column=PRIMARY_KEYS[entity],
                )
            except BatchInsertError as e:
                self.cursor.execute("ROLLBACK TO SAVEPOINT sm_row")
                logger.error(f"failed to load {entity} row {row_index}: {e}")
                failures.append(LoadFailure(row_index=row_index, message=str(e)))
                if not self.continue_on_error:
                    raise LoadError(f"{entity} row {row_index}: {e}") from e
                continue
            self.cursor.execute("RELEASE SAVEPOINT sm_row")
            loaded += 1
        return loaded, failures

    def load(self, entity: str, records: Sequence[CandidateRecord]) -> LoadResult:
        if not records:
            logger.info(f"no {entity} to load")
            return LoadResult(loaded=0)
        table = self._table(entity)
        columns = ENTITY_COLUMNS[entity]
        rows = [record_to_row(entity, r.values) for r in records]
        row_indexes = [r.row_index for r in records]

        loaded = 0
        failures: list[LoadFailure] = []
        timings: list[float] = []
        self.cursor.execute("BEGIN")
        try:
            self._assign_identifiers(entity, rows, row_indexes)
            if entity == CUSTOMERS:
                self._ensure_states(rows)
            paired = list(zip(row_indexes, rows, strict=True))
            for start in range(0, len(paired), self.batch_size):
                batch = paired[start:start + self.batch_size]
                self.cursor.execute("SAVEPOINT sm_batch")
                try:
                    result = batch_upsert(
                        self.cursor,
                        table,
                        columns,
                        [[row[c] for c in columns] for _, row in batch],
                        conflict_column=PRIMARY_KEYS[entity],
                        page_size=self.batch_size,
                        metrics_callback=self._on_metrics(entity, timings),
                    )
                    self.cursor.execute("RELEASE SAVEPOINT sm_batch")
                    loaded += result.inserted_rows
                except BatchInsertError as e:
                    # バッチ失敗 → 行単位で再実行して失敗行を特定
                    self.cursor.execute("ROLLBACK TO SAVEPOINT sm_batch")
                    logger.debug(f"{entity} batch at offset {start} failed ({e}); retrying row by row")
                    ok, failed = self._upsert_rows_individually(entity, table, columns, batch)
                    loaded += ok
                    failures.extend(failed)
            self.cursor.execute("COMMIT")
        except LoadError:
            self.cursor.execute("ROLLBACK")
            logger.error(f"{entity}: transaction rolled back")
            raise
        except (BatchInsertError, psycopg2.Error) as e:
            self.cursor.execute("ROLLBACK")
            raise LoadError(f"{entity}: {e}") from e

        logger.info(f"loaded {loaded} {entity} into {table}")
        if failures:
            logger.warning(f"failed to load {len(failures)} {entity}")
        return LoadResult(loaded=loaded, failures=failures, batch_seconds=timings)


class DryRunSink:
    """Mock mode sink: nothing is persisted, every record counts as loaded."""

    def existing_identifiers(self, entity: str) -> set[str]:
        return set()

    def load(self, entity: str, records: Sequence[CandidateRecord]) -> LoadResult:
        logger.info(f"dry-run: would load {len(records)} {entity}")
        return LoadResult(loaded=len(records))
