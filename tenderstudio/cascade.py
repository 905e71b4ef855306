"""Markup cascade calculator.

Turns base costs (ПЗ) into commercial prices.  Two entry points share the
same percentage parameters:

* :func:`compute_tender_financials` for a whole tender (or any scope given as
  four base-cost totals), returning every intermediate stage;
* :func:`compute_line_item_commercial_cost` for a single BOQ line, returning
  the commercial cost, its coefficient and how the amount is split between
  the material and works buckets.

Stages are strictly ordered and each one names its percentage form
explicitly (:class:`ApplicationForm`).  The whole-tender summary and the
per-item cascades use different forms for similar-looking steps; keep them
as they are.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Union

from .markup import CALCULATION_DEFAULTS, MarkupParameters, parameters_from_mapping

logger = logging.getLogger(__name__)

ParametersLike = Union[MarkupParameters, Mapping[str, Any], None]


class ApplicationForm(str, Enum):
    """How a percentage is applied to its base."""

    SCALE = "scale"  # base * pct / 100, an increment
    GROW = "grow"  # base * (1 + pct / 100), a new total


class ItemType(str, Enum):
    WORK = "work"
    MATERIAL = "material"
    SUB_WORK = "sub_work"
    SUB_MATERIAL = "sub_material"

    @property
    def is_material(self) -> bool:
        return self in (ItemType.MATERIAL, ItemType.SUB_MATERIAL)

    @property
    def is_subcontract(self) -> bool:
        return self in (ItemType.SUB_WORK, ItemType.SUB_MATERIAL)


def apply_percentage(base: float, pct: float, form: ApplicationForm) -> float:
    if form is ApplicationForm.SCALE:
        return base * (pct / 100)
    return base * (1 + pct / 100)


def _scale(base: float, pct: float) -> float:
    return apply_percentage(base, pct, ApplicationForm.SCALE)


def _grow(base: float, pct: float) -> float:
    return apply_percentage(base, pct, ApplicationForm.GROW)


def resolve_parameters(params: ParametersLike) -> MarkupParameters:
    if isinstance(params, MarkupParameters):
        return params
    return parameters_from_mapping(params, CALCULATION_DEFAULTS)


@dataclass(frozen=True)
class BaseCosts:
    """Base-cost totals of a costing scope."""

    materials: float = 0.0
    works: float = 0.0
    submaterials: float = 0.0
    subworks: float = 0.0

    @property
    def total(self) -> float:
        return self.materials + self.works + self.submaterials + self.subworks

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class FinancialBreakdown:
    """Every intermediate amount of the whole-tender summary."""

    base_costs: BaseCosts
    parameters: MarkupParameters
    works_after_16: float
    works_with_growth: float
    materials_with_growth: float
    submaterials_with_growth: float
    subworks_with_growth: float
    subtotal_after_growth: float
    contingency_base: float
    contingency_cost: float
    own_forces_base: float
    subcontract_base: float
    overhead_subcontract_base: float
    overhead_own_forces: float
    overhead_subcontract: float
    general_costs: float
    profit_own_forces: float
    profit_subcontract: float
    total_profit: float
    total_cost_with_profit: float
    # Informational only; not consumed by any stage.
    mechanization_service_cost: float = 0.0
    mbp_gsm_cost: float = 0.0
    warranty_period_cost: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["base_costs"] = self.base_costs.as_dict()
        payload["parameters"] = self.parameters.as_dict()
        return payload


def compute_tender_financials(base_costs: BaseCosts, params: ParametersLike = None) -> FinancialBreakdown:
    """Run the whole-tender cascade over ``base_costs``.

    Missing parameters fall back to :data:`CALCULATION_DEFAULTS`.  The
    function never raises for finite input; validating the input is left to
    the caller.
    """

    p = resolve_parameters(params)
    materials = base_costs.materials
    works = base_costs.works
    submaterials = base_costs.submaterials
    subworks = base_costs.subworks

    works_after_16 = _scale(works, p.works_16_markup)
    works_with_growth = _grow(works_after_16, p.works_cost_growth)
    materials_with_growth = materials + _scale(materials, p.materials_cost_growth)
    submaterials_with_growth = submaterials + _scale(submaterials, p.subcontract_materials_cost_growth)
    subworks_with_growth = subworks + _scale(subworks, p.subcontract_works_cost_growth)

    subtotal_after_growth = (
        materials_with_growth + works_with_growth + submaterials_with_growth + subworks_with_growth
    )

    # Subcontract totals stay out of the contingency base.
    contingency_base = works_with_growth + materials_with_growth
    contingency_cost = _scale(contingency_base, p.contingency_costs)

    own_forces_base = materials_with_growth + works_with_growth
    subcontract_base = submaterials_with_growth + subworks_with_growth

    # Raw base costs, not the grown ones.
    overhead_subcontract_base = submaterials + subworks
    overhead_subcontract = _scale(overhead_subcontract_base, p.overhead_subcontract)
    overhead_own_forces = _scale(own_forces_base, p.overhead_own_forces)
    general_costs = _scale(own_forces_base, p.general_costs_without_subcontract)

    profit_own_forces = _scale(own_forces_base, p.profit_own_forces)
    profit_subcontract = _scale(subcontract_base, p.profit_subcontract)
    total_profit = profit_own_forces + profit_subcontract

    total_cost_with_profit = (
        subtotal_after_growth
        + contingency_cost
        + overhead_own_forces
        + overhead_subcontract
        + general_costs
        + total_profit
    )

    logger.debug(
        "Tender cascade: base=%s subtotal=%.2f total=%.2f",
        base_costs,
        subtotal_after_growth,
        total_cost_with_profit,
    )

    return FinancialBreakdown(
        base_costs=base_costs,
        parameters=p,
        works_after_16=works_after_16,
        works_with_growth=works_with_growth,
        materials_with_growth=materials_with_growth,
        submaterials_with_growth=submaterials_with_growth,
        subworks_with_growth=subworks_with_growth,
        subtotal_after_growth=subtotal_after_growth,
        contingency_base=contingency_base,
        contingency_cost=contingency_cost,
        own_forces_base=own_forces_base,
        subcontract_base=subcontract_base,
        overhead_subcontract_base=overhead_subcontract_base,
        overhead_own_forces=overhead_own_forces,
        overhead_subcontract=overhead_subcontract,
        general_costs=general_costs,
        profit_own_forces=profit_own_forces,
        profit_subcontract=profit_subcontract,
        total_profit=total_profit,
        total_cost_with_profit=total_cost_with_profit,
        mechanization_service_cost=_scale(works, p.mechanization_service),
        mbp_gsm_cost=_scale(works, p.mbp_gsm),
        warranty_period_cost=_scale(works, p.warranty_period),
    )


calculate_markup_financials = compute_tender_financials


# ---------------------------------------------------------------------------
# Per-line-item cascades
# ---------------------------------------------------------------------------


def work_commercial_cost(base_cost: float, params: ParametersLike = None) -> float:
    """Commercial cost of an own-forces work line."""

    p = resolve_parameters(params)
    mechanization = _scale(base_cost, p.mechanization_service)
    mbp_gsm = _scale(base_cost, p.mbp_gsm)
    warranty = _scale(base_cost, p.warranty_period)

    works_16 = _grow(base_cost + mechanization, p.works_16_markup)
    works_base = works_16 + mbp_gsm
    works_growth = _grow(works_base, p.works_cost_growth)
    contingency = _grow(works_base, p.contingency_costs)
    overhead = _grow(contingency + works_growth - works_base, p.overhead_own_forces)
    general = _grow(overhead, p.general_costs_without_subcontract)
    profit = _grow(general, p.profit_own_forces)
    return profit + warranty


def material_commercial_cost(base_cost: float, params: ParametersLike = None) -> float:
    """Full commercial cost of an own-forces material line, before redistribution."""

    p = resolve_parameters(params)
    growth = _grow(base_cost, p.materials_cost_growth)
    contingency = _grow(base_cost, p.contingency_costs)
    overhead = _grow(contingency + growth - base_cost, p.overhead_own_forces)
    general = _grow(overhead, p.general_costs_without_subcontract)
    return _grow(general, p.profit_own_forces)


def subcontract_work_commercial_cost(base_cost: float, params: ParametersLike = None) -> float:
    p = resolve_parameters(params)
    growth = _grow(base_cost, p.subcontract_works_cost_growth)
    overhead = _grow(growth, p.overhead_subcontract)
    return _grow(overhead, p.profit_subcontract)


def subcontract_material_commercial_cost(base_cost: float, params: ParametersLike = None) -> float:
    p = resolve_parameters(params)
    # Grows by the sub-works rate; subcontract_materials_cost_growth only feeds the tender summary.
    growth = _grow(base_cost, p.subcontract_works_cost_growth)
    overhead = _grow(growth, p.overhead_subcontract)
    return _grow(overhead, p.profit_subcontract)


@dataclass(frozen=True)
class LineItemRole:
    item_type: ItemType
    is_auxiliary: bool = False

    @classmethod
    def of(cls, item_type: Union[str, ItemType], is_auxiliary: bool = False) -> "LineItemRole":
        return cls(ItemType(item_type), bool(is_auxiliary))

    @property
    def target_bucket(self) -> str:
        """Bucket receiving the redirected amount of a material line."""

        return "sub_works" if self.item_type.is_subcontract else "works"


@dataclass(frozen=True)
class LineItemCost:
    """Commercial result for one BOQ line.

    ``material_share`` stays in the line's material column; ``works_share`` is
    what ends up in the works (or sub-works) column of the position.  For
    work lines the whole cost is the works share.
    """

    base_cost: float
    full_commercial_cost: float
    coefficient: float
    material_share: float = 0.0
    works_share: float = 0.0

    @property
    def markup(self) -> float:
        return self.full_commercial_cost - self.base_cost


_MATERIAL_CASCADES = {
    ItemType.MATERIAL: material_commercial_cost,
    ItemType.SUB_MATERIAL: subcontract_material_commercial_cost,
}

_WORK_CASCADES = {
    ItemType.WORK: work_commercial_cost,
    ItemType.SUB_WORK: subcontract_work_commercial_cost,
}


def commercial_coefficient(base_cost: float, full_commercial_cost: float) -> float:
    """``full / base``, or 1 when there is no base to divide by."""

    if base_cost == 0:
        return 1.0
    return full_commercial_cost / base_cost


def compute_line_item_commercial_cost(
    base_cost: float,
    role: LineItemRole,
    params: ParametersLike = None,
) -> LineItemCost:
    """Route one line through the cascade matching its role."""

    p = resolve_parameters(params)
    item_type = ItemType(role.item_type)

    if item_type in _WORK_CASCADES:
        full = _WORK_CASCADES[item_type](base_cost, p)
        return LineItemCost(
            base_cost=base_cost,
            full_commercial_cost=full,
            coefficient=commercial_coefficient(base_cost, full),
            material_share=0.0,
            works_share=full,
        )

    full = _MATERIAL_CASCADES[item_type](base_cost, p)
    if role.is_auxiliary:
        material_share = 0.0
        works_share = full
    else:
        material_share = base_cost
        works_share = full - base_cost

    return LineItemCost(
        base_cost=base_cost,
        full_commercial_cost=full,
        coefficient=commercial_coefficient(base_cost, full),
        material_share=material_share,
        works_share=works_share,
    )


__all__ = [
    "ApplicationForm",
    "BaseCosts",
    "FinancialBreakdown",
    "ItemType",
    "LineItemCost",
    "LineItemRole",
    "apply_percentage",
    "calculate_markup_financials",
    "commercial_coefficient",
    "compute_line_item_commercial_cost",
    "compute_tender_financials",
    "material_commercial_cost",
    "resolve_parameters",
    "subcontract_material_commercial_cost",
    "subcontract_work_commercial_cost",
    "work_commercial_cost",
]
