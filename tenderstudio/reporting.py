"""Utilities for building and exporting commercial costing outputs."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Sequence

import pandas as pd

from .boq import BOQItem, compute_item_costs, position_totals, summarise_base_costs, utc_now_iso
from .cascade import FinancialBreakdown, ParametersLike, compute_tender_financials, resolve_parameters
from .config import OutputConfig

logger = logging.getLogger(__name__)


@dataclass
class CommercialResult:
    """Everything produced by one costing run over a set of BOQ items."""

    breakdown: FinancialBreakdown
    items: pd.DataFrame
    positions: pd.DataFrame
    metadata: Dict[str, Any] = field(default_factory=dict)


def build_result(items: Sequence[BOQItem], params: ParametersLike = None) -> CommercialResult:
    """Run both the whole-tender and the per-item cascades over ``items``."""

    resolved = resolve_parameters(params)
    items = list(items)
    breakdown = compute_tender_financials(summarise_base_costs(items), resolved)
    item_costs = compute_item_costs(items, resolved)
    positions = position_totals(items, resolved)

    metadata: Dict[str, Any] = {
        "generated_at": utc_now_iso(),
        "item_count": len(items),
        "position_count": int(positions.shape[0]),
        "items_commercial_total": float(item_costs["commercial_cost"].sum()) if not item_costs.empty else 0.0,
    }
    return CommercialResult(breakdown=breakdown, items=item_costs, positions=positions, metadata=metadata)


def export_results(result: CommercialResult, output: OutputConfig) -> Dict[str, Path]:
    """Persist costing artefacts to the configured output directory."""

    output_dir = output.directory
    output_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Writing reports to %s", output_dir)

    paths: Dict[str, Path] = {}

    items_path = output_dir / output.items_report
    result.items.to_csv(items_path, index=False)
    paths["items"] = items_path

    positions_path = output_dir / output.positions_report
    result.positions.to_csv(positions_path, index=False)
    paths["positions"] = positions_path

    payload = result.metadata.copy()
    payload["financials"] = result.breakdown.as_dict()
    financials_path = output_dir / output.financials_report
    with financials_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)
    paths["financials"] = financials_path

    if output.workbook:
        workbook_path = output_dir / output.workbook
        with pd.ExcelWriter(workbook_path, engine="openpyxl") as writer:
            _financials_frame(result.breakdown).to_excel(writer, index=False, sheet_name="Financials")
            result.positions.to_excel(writer, index=False, sheet_name="Positions")
            result.items.to_excel(writer, index=False, sheet_name="Items")
        paths["workbook"] = workbook_path

    return paths


def _financials_frame(breakdown: FinancialBreakdown) -> pd.DataFrame:
    payload = breakdown.as_dict()
    rows = [("base_" + key, value) for key, value in payload.pop("base_costs").items()]
    rows.extend(("param_" + key, value) for key, value in payload.pop("parameters").items())
    rows.extend(payload.items())
    return pd.DataFrame(rows, columns=["stage", "value"])


__all__ = ["CommercialResult", "build_result", "export_results"]
