"""Markup percentage parameters and their default tables."""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class MarkupParameters:
    """The fourteen percentages driving the markup cascade.

    Values are percents (``5`` means 5 %).  ``works_16_markup`` is applied as a
    multiplier percentage: 160 turns 100 of works into 160.
    """

    works_16_markup: float
    mechanization_service: float
    mbp_gsm: float
    warranty_period: float
    works_cost_growth: float
    materials_cost_growth: float
    subcontract_works_cost_growth: float
    subcontract_materials_cost_growth: float
    contingency_costs: float
    overhead_own_forces: float
    overhead_subcontract: float
    general_costs_without_subcontract: float
    profit_own_forces: float
    profit_subcontract: float

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)

    def with_overrides(self, overrides: Optional[Mapping[str, Any]]) -> "MarkupParameters":
        """Return a copy with non-null entries from ``overrides`` applied."""

        if not overrides:
            return self
        updates = {
            name: float(value)
            for name, value in _canonical_items(overrides)
            if value is not None
        }
        return replace(self, **updates)


PARAMETER_NAMES = tuple(field_info.name for field_info in fields(MarkupParameters))

# Fallback used when a field is missing while calculating.
CALCULATION_DEFAULTS = MarkupParameters(
    works_16_markup=160.0,
    mechanization_service=0.0,
    mbp_gsm=0.0,
    warranty_period=0.0,
    works_cost_growth=5.0,
    materials_cost_growth=3.0,
    subcontract_works_cost_growth=7.0,
    subcontract_materials_cost_growth=4.0,
    contingency_costs=2.0,
    overhead_own_forces=8.0,
    overhead_subcontract=6.0,
    general_costs_without_subcontract=5.0,
    profit_own_forces=12.0,
    profit_subcontract=8.0,
)

# Seeded into the first configuration of a new tender.
# NOTE: works_16_markup is 60 here but 160 in CALCULATION_DEFAULTS. Both are
# kept as-is; do not reconcile one into the other.
PERSISTED_DEFAULTS = MarkupParameters(
    works_16_markup=60.0,
    mechanization_service=0.0,
    mbp_gsm=0.0,
    warranty_period=0.0,
    works_cost_growth=10.0,
    materials_cost_growth=10.0,
    subcontract_works_cost_growth=10.0,
    subcontract_materials_cost_growth=10.0,
    contingency_costs=3.0,
    overhead_own_forces=10.0,
    overhead_subcontract=10.0,
    general_costs_without_subcontract=20.0,
    profit_own_forces=10.0,
    profit_subcontract=16.0,
)

UI_LIMITS: Dict[str, float] = {name: 100.0 for name in PARAMETER_NAMES}
UI_LIMITS["works_16_markup"] = 1000.0

_CAMEL_ALIASES = {
    "works16Markup": "works_16_markup",
    "works16markup": "works_16_markup",
}


def canonical_name(name: str) -> str:
    """Map camelCase or snake_case parameter names to the dataclass field name."""

    text = str(name).strip()
    if text in _CAMEL_ALIASES:
        return _CAMEL_ALIASES[text]
    snake = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", text).lower()
    snake = snake.replace("works16_markup", "works_16_markup")
    if snake not in PARAMETER_NAMES:
        raise KeyError(f"Unknown markup parameter '{name}'")
    return snake


def _canonical_items(values: Mapping[str, Any]):
    for key, value in values.items():
        try:
            name = canonical_name(key)
        except KeyError:
            continue
        yield name, value


def canonical_overrides(overrides: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Key ``overrides`` by field name; unknown names raise :class:`ValueError`."""

    resolved: Dict[str, Any] = {}
    for key, value in (overrides or {}).items():
        try:
            resolved[canonical_name(key)] = value
        except KeyError as exc:
            raise ValueError(exc.args[0]) from exc
    return resolved


def parameters_from_mapping(
    values: Optional[Mapping[str, Any]],
    defaults: MarkupParameters = CALCULATION_DEFAULTS,
) -> MarkupParameters:
    """Build :class:`MarkupParameters`, substituting ``defaults`` for missing or null entries.

    Unknown keys (``id``, ``tender_id``, ``notes`` ...) are ignored so that
    stored rows can be passed straight through.
    """

    return defaults.with_overrides(values)


def validate_parameters(params: MarkupParameters, *, strict: bool = False) -> MarkupParameters:
    """Reject negative or non-finite percentages.

    With ``strict`` the UI caps (100 %, or 1000 % for ``works_16_markup``) are
    enforced as well.
    """

    for name, value in params.as_dict().items():
        if value is None or not math.isfinite(value):
            raise ValueError(f"Markup parameter '{name}' must be a finite number")
        if value < 0:
            raise ValueError(f"Markup parameter '{name}' must not be negative (got {value})")
        if strict and value > UI_LIMITS[name]:
            raise ValueError(
                f"Markup parameter '{name}' exceeds the allowed maximum of {UI_LIMITS[name]:g}"
            )
    return params


def parse_parameter_overrides(entries) -> Dict[str, float]:
    """Parse ``NAME=VALUE`` strings as given on the command line."""

    overrides: Dict[str, float] = {}
    for entry in entries or []:
        if "=" not in entry:
            raise ValueError("Parameter overrides must be in the format NAME=VALUE")
        name, raw = entry.split("=", 1)
        try:
            overrides[canonical_name(name)] = float(raw.strip().replace(",", "."))
        except ValueError as exc:
            raise ValueError(f"Invalid value for parameter '{name}': {raw!r}") from exc
    return overrides


__all__ = [
    "CALCULATION_DEFAULTS",
    "MarkupParameters",
    "PARAMETER_NAMES",
    "PERSISTED_DEFAULTS",
    "UI_LIMITS",
    "canonical_overrides",
    "canonical_name",
    "parameters_from_mapping",
    "parse_parameter_overrides",
    "validate_parameters",
]
