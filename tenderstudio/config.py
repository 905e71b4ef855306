"""Configuration loading utilities for Tender Studio."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .markup import (
    CALCULATION_DEFAULTS,
    MarkupParameters,
    canonical_overrides,
    parameters_from_mapping,
    validate_parameters,
)
from .store import DEFAULT_DATABASE_PATH


@dataclass
class ColumnMapping:
    """Source column names for BOQ item imports; ``None`` means auto-detect."""

    position_id: Optional[str] = None
    item_type: Optional[str] = None
    description: Optional[str] = None
    unit: Optional[str] = None
    quantity: Optional[str] = None
    unit_rate: Optional[str] = None
    currency_rate: Optional[str] = None
    delivery_price_type: Optional[str] = None
    delivery_amount: Optional[str] = None
    is_auxiliary: Optional[str] = None

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {field_info.name: getattr(self, field_info.name) for field_info in fields(self)}


@dataclass
class StorageConfig:
    database: Path = DEFAULT_DATABASE_PATH

    def resolved(self, base_path: Path) -> "StorageConfig":
        return StorageConfig(database=_resolve_path(self.database, base_path))


@dataclass
class MarkupConfig:
    """Parameter overrides used for file-based calculations."""

    parameters: Dict[str, float] = field(default_factory=dict)
    strict: bool = False

    def build(self, defaults: MarkupParameters = CALCULATION_DEFAULTS) -> MarkupParameters:
        params = parameters_from_mapping(self.parameters, defaults)
        return validate_parameters(params, strict=self.strict)


@dataclass
class OutputConfig:
    """Paths describing where reports should be written."""

    directory: Path = Path("output")
    items_report: str = "items.csv"
    positions_report: str = "positions.csv"
    financials_report: str = "financials.json"
    workbook: Optional[str] = "commercial.xlsx"

    def resolved(self, base_path: Path) -> "OutputConfig":
        return OutputConfig(
            directory=_resolve_path(self.directory, base_path),
            items_report=self.items_report,
            positions_report=self.positions_report,
            financials_report=self.financials_report,
            workbook=self.workbook,
        )


@dataclass
class AppConfig:
    """Container for all configuration required by the CLI."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    columns: ColumnMapping = field(default_factory=ColumnMapping)
    markup: MarkupConfig = field(default_factory=MarkupConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    def resolved(self, base_path: Path) -> "AppConfig":
        return AppConfig(
            storage=self.storage.resolved(base_path),
            columns=self.columns,
            markup=self.markup,
            output=self.output.resolved(base_path),
        )


def load_config(path: Path) -> AppConfig:
    """Load :class:`AppConfig` from a YAML file."""

    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file '{config_path}' does not exist")

    with config_path.open("r", encoding="utf-8") as stream:
        raw_config: Mapping[str, Any] = yaml.safe_load(stream) or {}

    if not isinstance(raw_config, Mapping):
        raise ValueError("Configuration root must be a mapping")

    storage_section = _section(raw_config, "storage")
    storage = StorageConfig()
    if "database" in storage_section:
        storage = StorageConfig(database=Path(storage_section["database"]))

    columns = _parse_column_mapping(_section(raw_config, "columns"))

    markup_section = _section(raw_config, "markup")
    parameters = markup_section.get("parameters") or {}
    if not isinstance(parameters, Mapping):
        raise ValueError("markup.parameters must be a mapping of parameter names to percentages")
    overrides = {
        name: float(value) for name, value in canonical_overrides(parameters).items() if value is not None
    }
    markup = MarkupConfig(parameters=overrides, strict=bool(markup_section.get("strict", False)))
    markup.build()

    output = OutputConfig(**_parse_output_section(_section(raw_config, "output")))

    config = AppConfig(storage=storage, columns=columns, markup=markup, output=output)
    return config.resolved(config_path.parent)


def _section(raw_config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = raw_config.get(name) or {}
    if not isinstance(section, Mapping):
        raise ValueError(f"Configuration section '{name}' must be a mapping")
    return section


def _parse_column_mapping(section: Mapping[str, Any]) -> ColumnMapping:
    parsed: Dict[str, Optional[str]] = {}
    for field_info in fields(ColumnMapping):
        parsed[field_info.name] = _normalise_column_value(section.get(field_info.name))
    return ColumnMapping(**parsed)


def _normalise_column_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        if stripped.lower() in {"auto", "autodetect", "automatic"}:
            return None
        return stripped
    return str(value)


def _parse_output_section(section: Mapping[str, Any]) -> Dict[str, Any]:
    parsed: Dict[str, Any] = {}
    if "directory" in section:
        parsed["directory"] = Path(section["directory"])
    for key in ("items_report", "positions_report", "financials_report", "workbook"):
        if key in section:
            parsed[key] = section[key]
    return parsed


def _resolve_path(path: Path, base_path: Path) -> Path:
    expanded = Path(path).expanduser()
    if expanded.is_absolute():
        return expanded
    return (base_path / expanded).resolve()
