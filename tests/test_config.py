from pathlib import Path

import pytest

from tenderstudio.config import AppConfig, load_config
from tenderstudio.markup import CALCULATION_DEFAULTS

ROOT = Path(__file__).resolve().parent.parent


def test_repository_config_loads():
    config = load_config(ROOT / "config" / "config.yaml")

    assert config.storage.database == (ROOT / "data" / "tenders.sqlite").resolve()
    assert config.output.directory == (ROOT / "output").resolve()
    assert config.columns.item_type is None
    assert config.markup.build() == CALCULATION_DEFAULTS


def test_load_config_parses_overrides_and_resolves_paths(tmp_path):
    config_path = tmp_path / "settings.yaml"
    config_path.write_text(
        """
storage:
  database: db/tenders.sqlite
columns:
  item_type: "Тип"
  quantity: auto
markup:
  strict: true
  parameters:
    worksCostGrowth: 12
    profit_subcontract: 9.5
output:
  directory: reports
  workbook: null
""",
        encoding="utf-8",
    )

    config = load_config(config_path)

    assert config.storage.database == (tmp_path / "db" / "tenders.sqlite").resolve()
    assert config.output.directory == (tmp_path / "reports").resolve()
    assert config.output.workbook is None
    assert config.columns.item_type == "Тип"
    assert config.columns.quantity is None
    params = config.markup.build()
    assert params.works_cost_growth == 12
    assert params.profit_subcontract == 9.5
    assert params.contingency_costs == CALCULATION_DEFAULTS.contingency_costs


def test_load_config_rejects_unknown_parameters(tmp_path):
    config_path = tmp_path / "settings.yaml"
    config_path.write_text("markup:\n  parameters:\n    discount: 5\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(config_path)


def test_load_config_rejects_out_of_range_values_in_strict_mode(tmp_path):
    config_path = tmp_path / "settings.yaml"
    config_path.write_text(
        "markup:\n  strict: true\n  parameters:\n    profitOwnForces: 150\n", encoding="utf-8"
    )

    with pytest.raises(ValueError):
        load_config(config_path)


def test_load_config_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")

    bad = tmp_path / "bad.yaml"
    bad.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(bad)


def test_app_config_defaults():
    config = AppConfig()

    assert config.output.items_report == "items.csv"
    assert config.markup.build() == CALCULATION_DEFAULTS
