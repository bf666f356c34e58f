from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import psycopg2
from psycopg2.extras import execute_values

"""DB batch upsert.

INSERT ... ON CONFLICT (key) DO UPDATE with psycopg2.extras.execute_values.
The conflict column is the entity's primary identifier, so re-running a
migration updates rows instead of duplicating them.
"""

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "InsertResult",
    "build_upsert_sql",
    "batch_upsert",
]


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Metrics data for a single batch upsert."""
    batch_size: int
    elapsed_seconds: float
    start_time: float  # time.time()
    end_time: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int


def build_upsert_sql(
    table: str,
    columns: Sequence[str],
    conflict_column: str | None,
    touch_column: str | None = "updated_at",
) -> str:
    """Build the statement passed to execute_values (single ``VALUES %s``)."""
    cols_sql = ",".join(f'"{c}"' for c in columns)
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"
    if conflict_column is None:
        return sql + " ON CONFLICT DO NOTHING"
    updates = [f'"{c}" = EXCLUDED."{c}"' for c in columns if c != conflict_column]
    if touch_column:
        updates.append(f'"{touch_column}" = NOW()')
    if not updates:
        return sql + f' ON CONFLICT ("{conflict_column}") DO NOTHING'
    return sql + f' ON CONFLICT ("{conflict_column}") DO UPDATE SET ' + ", ".join(updates)


def batch_upsert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    conflict_column: str | None,
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
    touch_column: str | None = "updated_at",
) -> InsertResult:
    """Perform a batched upsert.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: 対象テーブル名 (設定由来、サニタイズ済み想定)
    columns: 挿入列
    rows: 行シーケンス
    conflict_column: ON CONFLICT target (None -> DO NOTHING)
    page_size: execute_values の page_size
    metrics_callback: receives BatchMetrics for the call; not invoked when
        `rows` is empty
    touch_column: column set to NOW() on update (None to disable)
    """
    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0)

    sql = build_upsert_sql(table, columns, conflict_column, touch_column)

    start_time = time.time()
    try:
        execute_values(cursor, sql, rows_list, page_size=page_size)
    except psycopg2.Error as e:
        raise BatchInsertError(str(e).strip()) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows_list),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    return InsertResult(inserted_rows=len(rows_list))
