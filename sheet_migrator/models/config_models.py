from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the sheet -> PostgreSQL migration.

Loaded and validated by sheet_migrator.config.loader; everything downstream
depends on these types only, never on the raw YAML mapping.
"""

__all__ = [
    "DatabaseConfig",
    "EntityConfig",
    "EtlOptions",
    "ImportConfig",
]


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class EntityConfig:
    """Where one entity type lives in the workbook and in the database."""
    entity: str  # customers / orders
    sheet: str  # workbook sheet name
    table: str  # target table name


@dataclass(frozen=True)
class EtlOptions:
    deduplicate: bool = True
    continue_on_error: bool = False
    batch_size: int = 100
    logs_dir: str = "./logs"
    reports_dir: str = "./reports"
    keep_na_strings: tuple[str, ...] = ()  # pandas の NaN 変換から除外する文字列


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for a migration run."""
    source_file: str
    entities: dict[str, EntityConfig]  # entity -> config (YAML 記述順)
    etl: EtlOptions = field(default_factory=EtlOptions)
    timezone: str = "UTC"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
