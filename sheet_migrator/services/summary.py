from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..models.pipeline_result import PipelineResult

"""Summary line rendering and JSON report writing.

SUMMARY line format (single line, fixed key order):
SUMMARY state={state} extracted={n} transformed={n} duplicates={n} valid={n}
invalid={n} loaded={n} load_failed={n} warnings={n} errors={n} elapsed_sec={sec}
"""

__all__ = [
    "format_seconds",
    "render_summary_line",
    "build_report",
    "write_report",
]

TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


def format_seconds(seconds: float) -> str:
    """Render elapsed seconds without scientific notation or trailing zeros."""
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{seconds:.3f}".rstrip("0").rstrip(".")


def render_summary_line(result: PipelineResult) -> str:
    """Render the SUMMARY line for a finished (or failed / cancelled) run.

    Examples:
        >>> from datetime import datetime, timezone
        >>> from sheet_migrator.models import PipelineState, RunStatistics
        >>> start = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        >>> end = datetime(2024, 1, 1, 10, 0, 2, tzinfo=timezone.utc)
        >>> stats = RunStatistics(start_time=start, end_time=end)
        >>> render_summary_line(PipelineResult(state=PipelineState.DONE, statistics=stats))
        'SUMMARY state=done extracted=0 transformed=0 duplicates=0 valid=0 invalid=0 loaded=0 load_failed=0 warnings=0 errors=0 elapsed_sec=2'
    """
    s = result.statistics
    return (
        f"SUMMARY state={result.state.value} "
        f"extracted={s.extracted} "
        f"transformed={s.transformed} "
        f"duplicates={s.duplicates} "
        f"valid={s.valid} "
        f"invalid={s.invalid} "
        f"loaded={s.loaded} "
        f"load_failed={s.load_failed} "
        f"warnings={s.warnings} "
        f"errors={s.errors} "
        f"elapsed_sec={format_seconds(s.elapsed_seconds)}"
    )


def build_report(result: PipelineResult) -> dict[str, Any]:
    s = result.statistics
    entities: dict[str, Any] = {}
    for name, entity_result in result.entities.items():
        entities[name] = {
            "table": entity_result.table,
            "statistics": s.for_entity(name).as_dict(),
            "issues": [i.as_dict() for i in entity_result.issues],
            "duplicates": [d.as_dict() for d in entity_result.duplicates],
            "load_failures": [
                {"row_index": f.row_index, "message": f.message} for f in entity_result.load_failures
            ],
        }
    return {
        "state": result.state.value,
        "error": result.error,
        "started_at": s.start_time.isoformat(),
        "finished_at": s.end_time.isoformat() if s.end_time else None,
        "elapsed_seconds": s.elapsed_seconds,
        "summary": s.totals(),
        "entities": entities,
    }


def write_report(result: PipelineResult, reports_dir: Path | str) -> Path:
    """Write ``report-YYYYMMDD-HHMMSS.json`` under reports_dir and return its path."""
    out_dir = Path(reports_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
    path = out_dir / f"report-{stamp}.json"
    path.write_text(
        json.dumps(build_report(result), ensure_ascii=False, indent=2, default=str),
        encoding="utf-8",
    )
    return path
