"""BOQ line items and the position-level views built from them."""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .cascade import (
    BaseCosts,
    ItemType,
    LineItemCost,
    LineItemRole,
    ParametersLike,
    compute_line_item_commercial_cost,
    resolve_parameters,
)
from .markup import MarkupParameters

if TYPE_CHECKING:  # pragma: no cover
    from .store import TenderStore

logger = logging.getLogger(__name__)

DELIVERY_TYPES = ("included", "amount", "not_included")
# Surcharge applied when delivery is not included in the unit rate.
NOT_INCLUDED_DELIVERY_RATE = 0.03

ITEM_COLUMNS: Sequence[str] = (
    "item_id",
    "position_id",
    "item_type",
    "description",
    "unit",
    "quantity",
    "unit_rate",
    "currency_rate",
    "delivery_price_type",
    "delivery_amount",
    "is_auxiliary",
    "sort_order",
)

POSITION_COLUMNS: Sequence[str] = (
    "position_id",
    "materials_base",
    "works_base",
    "submaterials_base",
    "subworks_base",
    "base_total",
    "materials_total",
    "works_total",
    "submaterials_total",
    "subworks_total",
    "commercial_total",
)


def utc_now_iso() -> str:
    return datetime.utcnow().replace(microsecond=0).isoformat() + "Z"


def _safe_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(numeric):
        return default
    return numeric


@dataclass
class BOQItem:
    """A single priced work or material line of a tender position."""

    position_id: str
    item_type: ItemType
    description: str = ""
    unit: str = ""
    quantity: float = 0.0
    unit_rate: float = 0.0
    currency_rate: float = 1.0
    delivery_price_type: str = "included"
    delivery_amount: float = 0.0
    is_auxiliary: bool = False
    sort_order: int = 0
    item_id: Optional[int] = None
    commercial_cost: Optional[float] = None
    commercial_coefficient: Optional[float] = None

    def __post_init__(self) -> None:
        self.item_type = ItemType(self.item_type)
        if self.delivery_price_type not in DELIVERY_TYPES:
            raise ValueError(f"Unknown delivery price type '{self.delivery_price_type}'")

    @property
    def role(self) -> LineItemRole:
        return LineItemRole(self.item_type, self.is_auxiliary and self.item_type.is_material)

    @property
    def base_cost(self) -> float:
        return item_base_cost(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BOQItem":
        item_id = data.get("item_id")
        return cls(
            position_id=str(data.get("position_id", "")),
            item_type=ItemType(str(data.get("item_type", "work"))),
            description=str(data.get("description") or ""),
            unit=str(data.get("unit") or ""),
            quantity=_safe_float(data.get("quantity")),
            unit_rate=_safe_float(data.get("unit_rate")),
            currency_rate=_safe_float(data.get("currency_rate"), 1.0) or 1.0,
            delivery_price_type=str(data.get("delivery_price_type") or "included"),
            delivery_amount=_safe_float(data.get("delivery_amount")),
            is_auxiliary=bool(data.get("is_auxiliary", False)),
            sort_order=int(_safe_float(data.get("sort_order"))),
            item_id=int(item_id) if item_id is not None else None,
            commercial_cost=data.get("commercial_cost"),
            commercial_coefficient=data.get("commercial_coefficient"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "position_id": self.position_id,
            "item_type": self.item_type.value,
            "description": self.description,
            "unit": self.unit,
            "quantity": self.quantity,
            "unit_rate": self.unit_rate,
            "currency_rate": self.currency_rate,
            "delivery_price_type": self.delivery_price_type,
            "delivery_amount": self.delivery_amount,
            "is_auxiliary": self.is_auxiliary,
            "sort_order": self.sort_order,
            "commercial_cost": self.commercial_cost,
            "commercial_coefficient": self.commercial_coefficient,
        }


def item_base_cost(item: BOQItem) -> float:
    """Base cost (ПЗ) of a line: quantity x rate in base currency, plus delivery for materials."""

    amount = item.quantity * item.unit_rate * (item.currency_rate or 1.0)
    if item.item_type.is_material:
        if item.delivery_price_type == "amount":
            amount += item.delivery_amount * item.quantity
        elif item.delivery_price_type == "not_included":
            amount += amount * NOT_INCLUDED_DELIVERY_RATE
    return amount


def summarise_base_costs(items: Iterable[BOQItem]) -> BaseCosts:
    totals = {item_type: 0.0 for item_type in ItemType}
    for item in items:
        totals[item.item_type] += item_base_cost(item)
    return BaseCosts(
        materials=totals[ItemType.MATERIAL],
        works=totals[ItemType.WORK],
        submaterials=totals[ItemType.SUB_MATERIAL],
        subworks=totals[ItemType.SUB_WORK],
    )


def items_frame(items: Iterable[BOQItem]) -> pd.DataFrame:
    records = []
    for item in items:
        record = item.to_dict()
        record["base_cost"] = item_base_cost(item)
        records.append(record)
    if not records:
        return pd.DataFrame(columns=[*ITEM_COLUMNS, "commercial_cost", "commercial_coefficient", "base_cost"])
    return pd.DataFrame(records)


def cost_item(item: BOQItem, params: ParametersLike = None) -> LineItemCost:
    return compute_line_item_commercial_cost(item_base_cost(item), item.role, params)


def compute_item_costs(
    items: Sequence[BOQItem],
    params: ParametersLike = None,
    *,
    max_workers: Optional[int] = None,
) -> pd.DataFrame:
    """Return one row per item with its commercial cost and redistribution shares."""

    resolved = resolve_parameters(params)
    items = list(items)
    if max_workers and max_workers > 1 and len(items) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            costs = list(executor.map(lambda item: cost_item(item, resolved), items))
    else:
        costs = [cost_item(item, resolved) for item in items]

    frame = items_frame(items).drop(columns=["commercial_coefficient"], errors="ignore")
    if frame.empty:
        for column in ("commercial_cost", "coefficient", "material_share", "works_share", "bucket"):
            frame[column] = pd.Series(dtype=object if column == "bucket" else float)
        return frame

    frame["commercial_cost"] = [cost.full_commercial_cost for cost in costs]
    frame["coefficient"] = [cost.coefficient for cost in costs]
    frame["material_share"] = [cost.material_share for cost in costs]
    frame["works_share"] = [cost.works_share for cost in costs]
    frame["bucket"] = [item.role.target_bucket for item in items]
    return frame


def position_totals(items: Sequence[BOQItem], params: ParametersLike = None) -> pd.DataFrame:
    """Per-position base and redistributed commercial totals.

    The commercial materials columns only hold what the material lines keep;
    markups (main materials) and whole amounts (auxiliary materials) are
    moved into the works or sub-works column, so the material totals can be
    lower than the base-cost sums while the works totals are higher.
    """

    costs = compute_item_costs(items, params)
    if costs.empty:
        return pd.DataFrame(columns=list(POSITION_COLUMNS))

    rows: List[Dict[str, Any]] = []
    for position_id, group in costs.groupby("position_id", sort=False):
        by_type = group.groupby("item_type")
        base = by_type["base_cost"].sum()
        row: Dict[str, Any] = {
            "position_id": position_id,
            "materials_base": float(base.get(ItemType.MATERIAL.value, 0.0)),
            "works_base": float(base.get(ItemType.WORK.value, 0.0)),
            "submaterials_base": float(base.get(ItemType.SUB_MATERIAL.value, 0.0)),
            "subworks_base": float(base.get(ItemType.SUB_WORK.value, 0.0)),
        }
        row["base_total"] = (
            row["materials_base"] + row["works_base"] + row["submaterials_base"] + row["subworks_base"]
        )

        own = group[~group["item_type"].isin([ItemType.SUB_WORK.value, ItemType.SUB_MATERIAL.value])]
        sub = group[group["item_type"].isin([ItemType.SUB_WORK.value, ItemType.SUB_MATERIAL.value])]
        row["materials_total"] = float(own["material_share"].sum())
        row["works_total"] = float(own["works_share"].sum())
        row["submaterials_total"] = float(sub["material_share"].sum())
        row["subworks_total"] = float(sub["works_share"].sum())
        row["commercial_total"] = float(group["commercial_cost"].sum())
        rows.append(row)

    return pd.DataFrame(rows, columns=list(POSITION_COLUMNS))


@dataclass
class BackfillResult:
    tender_id: int
    configuration_id: int
    parameters: MarkupParameters
    updated_items: int
    zero_base_items: int
    commercial_total: float
    computed_at: str = field(default_factory=utc_now_iso)


def backfill_coefficients(
    store: "TenderStore",
    tender_id: int,
    *,
    max_workers: Optional[int] = 4,
) -> BackfillResult:
    """Recompute and persist ``(commercial_cost, coefficient)`` for every item of a tender.

    Uses the tender's active configuration, creating one from the persisted
    defaults when the tender has none yet.  The tender's cached commercial
    total is refreshed at the end.
    """

    configuration = store.get_active_configuration(tender_id)
    items = store.list_items(tender_id)
    logger.info(
        "Back-filling %d items of tender %s with configuration %s",
        len(items),
        tender_id,
        configuration.config_id,
    )

    costs = compute_item_costs(items, configuration.parameters, max_workers=max_workers)
    updates = []
    zero_base = 0
    for item, (_, row) in zip(items, costs.iterrows()):
        if row["base_cost"] == 0:
            zero_base += 1
        updates.append((item.item_id, float(row["commercial_cost"]), float(row["coefficient"])))

    store.save_item_costs(updates)
    commercial_total = float(costs["commercial_cost"].sum()) if not costs.empty else 0.0
    computed_at = store.update_commercial_total(tender_id, commercial_total)

    if zero_base:
        logger.warning("%d items of tender %s have zero base cost; coefficient set to 1", zero_base, tender_id)

    return BackfillResult(
        tender_id=tender_id,
        configuration_id=configuration.config_id,
        parameters=configuration.parameters,
        updated_items=len(updates),
        zero_base_items=zero_base,
        commercial_total=commercial_total,
        computed_at=computed_at,
    )


__all__ = [
    "BOQItem",
    "BackfillResult",
    "DELIVERY_TYPES",
    "backfill_coefficients",
    "compute_item_costs",
    "cost_item",
    "item_base_cost",
    "items_frame",
    "position_totals",
    "summarise_base_costs",
]
