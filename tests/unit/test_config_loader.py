from __future__ import annotations

from pathlib import Path

import pytest

from sheet_migrator.config.loader import ConfigError, load_config


def test_load_config_success(write_config: Path):
    cfg = load_config(write_config)
    assert cfg.source_file == "./data/customer_orders.xlsx"
    assert cfg.timezone == "UTC"
    assert list(cfg.entities) == ["customers", "orders"]
    assert cfg.entities["orders"].sheet == "Orders"
    assert cfg.entities["orders"].table == "orders"
    assert cfg.etl.batch_size == 2
    assert cfg.etl.deduplicate is True
    assert cfg.database.user == "appuser"
    assert cfg.database.port == 5432


def test_load_config_defaults(temp_workdir: Path):
    path = temp_workdir / "config" / "import.yml"
    path.write_text(
        "source_file: book.xlsx\nentities:\n  customers: {sheet: C, table: customers}\n",
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.timezone == "UTC"
    assert cfg.etl.batch_size == 100
    assert cfg.etl.continue_on_error is False
    assert cfg.etl.keep_na_strings == ()
    assert cfg.database.host is None


def test_load_config_missing_file(temp_workdir: Path):
    with pytest.raises(ConfigError):
        load_config(temp_workdir / "config" / "not_exists.yml")


def test_load_config_invalid_yaml(temp_workdir: Path):
    path = temp_workdir / "config" / "import.yml"
    path.write_text("source_file: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError) as e:
        load_config(path)
    assert "invalid yaml" in str(e.value)


def test_load_config_missing_required(write_config: Path):
    text = write_config.read_text(encoding="utf-8").replace("source_file: ./data/customer_orders.xlsx\n", "")
    write_config.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError) as e:
        load_config(write_config)
    assert "config validation failed" in str(e.value) and "required property" in str(e.value)


def test_load_config_entity_missing_table(write_config: Path):
    text = write_config.read_text(encoding="utf-8").replace("    sheet: Orders\n    table: orders\n", "    sheet: Orders\n")
    write_config.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError) as e:
        load_config(write_config)
    assert "config validation failed" in str(e.value)


def test_load_config_unknown_entity(write_config: Path):
    text = write_config.read_text(encoding="utf-8").replace(
        "  orders:\n", "  invoices:\n    sheet: Invoices\n    table: invoices\n  orders:\n"
    )
    write_config.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(write_config)


def test_load_config_extra_field(write_config: Path):
    text = write_config.read_text(encoding="utf-8") + "\nextra_field: not_allowed\n"
    write_config.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError) as e:
        load_config(write_config)
    assert "config validation failed" in str(e.value)


def test_load_config_bad_table_name(write_config: Path):
    text = write_config.read_text(encoding="utf-8").replace("table: orders", "table: orders; DROP TABLE x")
    write_config.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(write_config)


def test_load_config_unknown_timezone(write_config: Path):
    text = write_config.read_text(encoding="utf-8").replace("timezone: UTC", "timezone: Mars/Olympus")
    write_config.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError) as e:
        load_config(write_config)
    assert "unknown timezone" in str(e.value)


def test_load_config_keep_na_strings(write_config: Path):
    text = write_config.read_text(encoding="utf-8").replace(
        "  reports_dir: ./reports\n", "  reports_dir: ./reports\n  keep_na_strings: [NA]\n"
    )
    write_config.write_text(text, encoding="utf-8")
    assert load_config(write_config).etl.keep_na_strings == ("NA",)
