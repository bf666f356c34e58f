from __future__ import annotations

import argparse
import os
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from ..db.sink import DryRunSink, PostgresSink
from ..excel.reader import ExcelSource, SourceError
from ..logging.init import log_summary, set_debug, setup_logging
from ..models.config_models import ImportConfig
from ..models.pipeline_result import PipelineResult, PipelineState
from ..rules.field_rules import ENTITY_TYPES
from ..services.orchestrator import RecordSink, process_all, today_in
from ..services.summary import render_summary_line, write_report
from ..services.transformer import check_record

"""CLI entrypoint.

Flow:
- Load .env (override) and config/import.yml
- Build the Excel row source and a Postgres sink (mock sink when the DB is
  disabled, unreachable, or --dry-run is given)
- Run the pipeline, print the SUMMARY line, write the JSON report
- Map the result onto the exit code contract
"""

__all__ = [
    "EXIT_SUCCESS_ALL",
    "EXIT_PARTIAL_FAILURE",
    "EXIT_FATAL",
    "exit_code_for",
    "main",
]

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


@contextmanager
def _db_connection(cfg: ImportConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """Provide a psycopg2 cursor.

    接続情報の解決優先順位:
        1. `.env` で読み込まれた環境変数 (main() 冒頭で上書き済み)
        2. DATABASE_URL / PGDSN (DSN 全体) または PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. config/import.yml の database セクション (不足分のフォールバック)
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if not dsn:
        host = os.getenv("PGHOST", db_cfg.host or "localhost")
        port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
        user = os.getenv("PGUSER", db_cfg.user or "postgres")
        password = os.getenv("PGPASSWORD", db_cfg.password or "")
        database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"

    conn = psycopg2.connect(dsn)
    # sink が BEGIN / COMMIT を明示発行する
    conn.autocommit = True
    cur = conn.cursor()
    try:
        yield cur
    finally:
        cur.close()
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True により .env の値で既存環境変数を上書きし、PostgreSQL 接続情報を最優先化。
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_value(text: str) -> tuple[str, str | None]:
    if "=" not in text:
        raise argparse.ArgumentTypeError(f"expected FIELD=VALUE, got '{text}'")
    key, value = text.split("=", 1)
    return key.strip(), (value if value != "" else None)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Excel -> PostgreSQL customer / order migration")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to import.yml")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--dry-run", action="store_true", help="Run the pipeline without writing to the database")
    p.add_argument("--no-dedupe", action="store_true", help="Disable duplicate removal")
    p.add_argument(
        "--continue-on-error", action="store_true", help="Keep loading after a record fails to persist"
    )
    p.add_argument("--inspect-data", action="store_true", help="Print sheet headers & first rows then exit")
    p.add_argument(
        "--check-record", metavar="ENTITY", choices=ENTITY_TYPES, help="Validate a single record and exit"
    )
    p.add_argument(
        "--value",
        action="append",
        default=[],
        type=_parse_value,
        metavar="FIELD=VALUE",
        help="Field value for --check-record (repeatable)",
    )
    return p.parse_args(argv)


def _apply_overrides(cfg: ImportConfig, args: argparse.Namespace) -> ImportConfig:
    etl = cfg.etl
    if args.no_dedupe:
        etl = replace(etl, deduplicate=False)
    if args.continue_on_error:
        etl = replace(etl, continue_on_error=True)
    return replace(cfg, etl=etl)


def _source_for(cfg: ImportConfig) -> ExcelSource:
    return ExcelSource(
        Path(cfg.source_file),
        {name: e.sheet for name, e in cfg.entities.items()},
        keep_na_strings=list(cfg.etl.keep_na_strings) or None,
    )


def _tables_for(cfg: ImportConfig) -> dict[str, str]:
    # 未設定エンティティ (親のみ参照) は既定テーブル名
    tables = {entity: entity for entity in ENTITY_TYPES}
    tables.update({name: e.table for name, e in cfg.entities.items()})
    return tables


def _inspect_data(cfg: ImportConfig) -> int:
    source = _source_for(cfg)
    print(f"FILE: {cfg.source_file}")
    for entity, entity_cfg in cfg.entities.items():
        try:
            sheet = source.fetch_rows(entity)
        except SourceError as e:
            print(f"  SHEET: {entity_cfg.sheet} error={e}")
            continue
        print(f"  SHEET: {entity_cfg.sheet} entity={entity} rows={len(sheet.rows)} cols={sheet.headers}")
        for offset, row in enumerate(sheet.rows[:3]):
            print(f"    row {sheet.first_row_index + offset}: {row}")
    return EXIT_SUCCESS_ALL


def _check_single_record(entity: str, values: list[tuple[str, str | None]], cfg: ImportConfig | None) -> int:
    today = today_in(cfg.timezone) if cfg is not None else None
    try:
        record = check_record(entity, dict(values), today=today)
    except ValueError as e:
        print(f"check-record: {e}")
        return EXIT_FATAL
    print(f"{entity}: {record.verdict.value}")
    for name, value in record.values.items():
        print(f"  {name} = {value!r}")
    for issue in record.errors:
        print(f"  ERROR {issue.reason}")
    for issue in record.warnings:
        print(f"  WARN  {issue.reason}")
    return EXIT_SUCCESS_ALL if record.is_valid else EXIT_PARTIAL_FAILURE


def exit_code_for(result: PipelineResult) -> int:
    if result.state is not PipelineState.DONE:
        return EXIT_FATAL
    if result.has_rejections:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


@contextmanager
def _cancel_on_sigint(cancel_event: threading.Event) -> Iterator[None]:
    """Ctrl-C sets the cancel signal; the pipeline stops at the next boundary."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: Any) -> None:
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _run(cfg: ImportConfig, sink: RecordSink, cancel_event: threading.Event) -> PipelineResult:
    with _cancel_on_sigint(cancel_event):
        return process_all(cfg, _source_for(cfg), sink, cancel_event=cancel_event)


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # NOTE: 空リスト [] が与えられた場合に sys.argv[1:] が混入しないよう None のときのみ読む
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    if args.debug:
        set_debug(True)
        logger.debug("debug mode enabled")

    # .env を最優先で読み込む (DB 接続パラメータ優先順位保証)
    _load_env_file(Path(".env"), override=True)

    if args.check_record:
        cfg = None
        if args.config.exists():
            try:
                cfg = load_config(args.config)
            except ConfigError as e:
                logger.error(f"config: {e}")
                return EXIT_FATAL
        return _check_single_record(args.check_record, args.value, cfg)

    try:
        cfg = _apply_overrides(load_config(args.config), args)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.inspect_data:
        return _inspect_data(cfg)

    logger.info(f"Migrating {list(cfg.entities)} from: {cfg.source_file}")

    cancel_event = threading.Event()
    # DB 接続制御: テスト等で完全に無効化したい場合 DISABLE_DB_CONNECT=1
    disable_db = os.getenv("DISABLE_DB_CONNECT") == "1"
    db_mode = "mock"
    if args.dry_run or disable_db:
        logger.debug("dry-run / DISABLE_DB_CONNECT=1 -> mock mode")
        result = _run(cfg, DryRunSink(), cancel_event)
    else:
        try:
            with _db_connection(cfg) as cur:
                db_mode = "live"
                sink = PostgresSink(
                    cur,
                    _tables_for(cfg),
                    batch_size=cfg.etl.batch_size,
                    continue_on_error=cfg.etl.continue_on_error,
                )
                result = _run(cfg, sink, cancel_event)
        except psycopg2.OperationalError as db_e:
            logger.info(f"DB connection failed -> fallback to mock mode: {db_e}")
            result = _run(cfg, DryRunSink(), cancel_event)

    logger.info(f"mode={db_mode} loaded={result.statistics.loaded}")
    if result.error:
        logger.error(f"run {result.state.value}: {result.error}")

    try:
        report_path = write_report(result, cfg.etl.reports_dir)
        logger.info(f"report written to {report_path}")
    except OSError as e:
        logger.error(f"failed to write report: {e}")

    summary_line = render_summary_line(result)
    # log_summary が "SUMMARY " ラベルを付与するため除去
    log_summary(summary_line[len("SUMMARY "):])
    return exit_code_for(result)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
