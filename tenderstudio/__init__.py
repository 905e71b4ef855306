"""Tender Studio core package.

This package turns the base costs of a construction tender into commercial
prices.  It holds the markup cascade, the BOQ line item model, the SQLite
store for tenders, markup configurations and templates, and the loaders and
exporters used by the command line interface distributed with this
repository.
"""

from .boq import BOQItem, backfill_coefficients, compute_item_costs, position_totals, summarise_base_costs
from .cascade import (
    ApplicationForm,
    BaseCosts,
    FinancialBreakdown,
    ItemType,
    LineItemCost,
    LineItemRole,
    calculate_markup_financials,
    compute_line_item_commercial_cost,
    compute_tender_financials,
)
from .config import AppConfig, ColumnMapping, MarkupConfig, OutputConfig, StorageConfig, load_config
from .io import load_boq_items
from .markup import CALCULATION_DEFAULTS, PERSISTED_DEFAULTS, MarkupParameters
from .reporting import CommercialResult, build_result, export_results
from .store import MarkupConfiguration, MarkupTemplate, NotFoundError, Tender, TenderStore

__all__ = [
    "AppConfig",
    "ApplicationForm",
    "BOQItem",
    "BaseCosts",
    "CALCULATION_DEFAULTS",
    "ColumnMapping",
    "CommercialResult",
    "FinancialBreakdown",
    "ItemType",
    "LineItemCost",
    "LineItemRole",
    "MarkupConfig",
    "MarkupConfiguration",
    "MarkupParameters",
    "MarkupTemplate",
    "NotFoundError",
    "OutputConfig",
    "PERSISTED_DEFAULTS",
    "StorageConfig",
    "Tender",
    "TenderStore",
    "backfill_coefficients",
    "build_result",
    "calculate_markup_financials",
    "compute_item_costs",
    "compute_line_item_commercial_cost",
    "compute_tender_financials",
    "export_results",
    "load_boq_items",
    "load_config",
    "position_totals",
    "summarise_base_costs",
]
