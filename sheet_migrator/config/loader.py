from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import DatabaseConfig, EntityConfig, EtlOptions, ImportConfig

"""Config loader.

Responsibilities:
- Load YAML config (default: config/import.yml)
- Validate against the bundled JSON schema (config_schema.json)
- Apply defaults (timezone=UTC, etl options)
- Build the typed ImportConfig
"""

__all__ = [
    "ConfigError",
    "SCHEMA_PATH",
    "DEFAULT_CONFIG_PATH",
    "load_config",
]

SCHEMA_PATH = Path(__file__).parent / "config_schema.json"
DEFAULT_CONFIG_PATH = Path("config/import.yml")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: If the schema file is missing / not valid JSON, or the
            config data fails schema validation (missing required keys,
            wrong types, unknown keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _check_timezone(tz: str) -> None:
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"unknown timezone: {tz}") from e


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    tz = data.get("timezone", "UTC")
    _check_timezone(tz)

    etl_raw = data.get("etl") or {}
    defaults = EtlOptions()
    etl = EtlOptions(
        deduplicate=etl_raw.get("deduplicate", defaults.deduplicate),
        continue_on_error=etl_raw.get("continue_on_error", defaults.continue_on_error),
        batch_size=etl_raw.get("batch_size", defaults.batch_size),
        logs_dir=etl_raw.get("logs_dir", defaults.logs_dir),
        reports_dir=etl_raw.get("reports_dir", defaults.reports_dir),
        keep_na_strings=tuple(etl_raw.get("keep_na_strings", ())),
    )

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )

    # YAML 記述順を保持 (処理順は dependencies で親優先に並べ替える)
    entities = {
        name: EntityConfig(entity=name, sheet=raw["sheet"], table=raw["table"])
        for name, raw in data["entities"].items()
    }
    return ImportConfig(
        source_file=data["source_file"],
        entities=entities,
        etl=etl,
        timezone=tz,
        database=db,
    )
