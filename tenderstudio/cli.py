"""Command line interface for the Tender Studio costing pipeline."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional

import numpy as np

from .boq import BOQItem, backfill_coefficients, summarise_base_costs
from .cascade import BaseCosts, FinancialBreakdown, compute_tender_financials
from .config import AppConfig, load_config
from .io import load_boq_items
from .markup import PERSISTED_DEFAULTS, MarkupParameters, parse_parameter_overrides, validate_parameters
from .reporting import build_result, export_results
from .store import TenderStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.yaml")

SUMMARY_STAGES = (
    ("Materials (base)", "materials"),
    ("Works (base)", "works"),
    ("Sub-materials (base)", "submaterials"),
    ("Sub-works (base)", "subworks"),
    ("Works after 1.6", "works_after_16"),
    ("Works with growth", "works_with_growth"),
    ("Materials with growth", "materials_with_growth"),
    ("Sub-materials with growth", "submaterials_with_growth"),
    ("Sub-works with growth", "subworks_with_growth"),
    ("Subtotal after growth", "subtotal_after_growth"),
    ("Contingency", "contingency_cost"),
    ("Overhead own forces", "overhead_own_forces"),
    ("Overhead subcontract", "overhead_subcontract"),
    ("General costs", "general_costs"),
    ("Profit own forces", "profit_own_forces"),
    ("Profit subcontract", "profit_subcontract"),
    ("Total profit", "total_profit"),
    ("Total with profit", "total_cost_with_profit"),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Turn tender base costs into commercial prices")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to YAML configuration")
    parser.add_argument("--database", type=Path, help="Override path to the SQLite tender database")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    financials = subparsers.add_parser("financials", help="Run the whole-tender markup cascade")
    source = financials.add_mutually_exclusive_group()
    source.add_argument("--items", type=Path, help="BOQ file to summarise into base costs")
    source.add_argument("--tender", type=int, help="Stored tender id; uses its active configuration")
    for name in ("materials", "works", "submaterials", "subworks"):
        financials.add_argument(f"--{name}", type=float, default=0.0, help=f"Base cost of {name}")
    _add_param_argument(financials)
    financials.add_argument("--json", action="store_true", help="Print the breakdown as JSON")

    importer = subparsers.add_parser("import", help="Load BOQ items into the tender database")
    importer.add_argument("--items", type=Path, required=True, help="BOQ file (CSV or XLSX)")
    importer.add_argument("--tender", required=True, help="Tender title; created when missing")
    importer.add_argument("--tender-number", help="Optional tender number for new tenders")

    backfill = subparsers.add_parser("backfill", help="Recompute and persist commercial coefficients")
    backfill.add_argument("--tender", type=int, required=True, help="Tender id")
    backfill.add_argument("--workers", type=int, default=4, help="Worker threads for item costing")

    report = subparsers.add_parser("report", help="Write item, position and summary reports")
    report_source = report.add_mutually_exclusive_group(required=True)
    report_source.add_argument("--items", type=Path, help="BOQ file (CSV or XLSX)")
    report_source.add_argument("--tender", type=int, help="Stored tender id; uses its active configuration")
    report.add_argument("--output-dir", type=Path, help="Directory for generated reports")
    report.add_argument("--no-workbook", action="store_true", help="Skip the XLSX workbook")
    _add_param_argument(report)

    template = subparsers.add_parser("template", help="Manage markup templates")
    template_commands = template.add_subparsers(dest="template_command", required=True)
    template_commands.add_parser("list", help="List stored templates")
    create = template_commands.add_parser("create", help="Create a template")
    create.add_argument("name", help="Template name")
    create.add_argument("--description", default="", help="Free-text description")
    create.add_argument("--from-config", type=int, help="Copy parameters from a stored configuration")
    create.add_argument("--default", action="store_true", help="Mark as the default template")
    _add_param_argument(create)
    apply = template_commands.add_parser("apply", help="Apply a template to a tender and activate it")
    apply.add_argument("name", help="Template name")
    apply.add_argument("--tender", type=int, required=True, help="Tender id")

    return parser


def _add_param_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--param",
        action="append",
        help="Override a markup percentage in the format NAME=VALUE (camelCase or snake_case)",
    )


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    try:
        config = _load_app_config(args.config)
        if args.database:
            config.storage.database = _resolve_override_path(args.database)
    except Exception as exc:
        logger.error("Failed to load configuration: %s", exc)
        return 1

    handlers = {
        "financials": _run_financials,
        "import": _run_import,
        "backfill": _run_backfill,
        "report": _run_report,
        "template": _run_template,
    }
    return handlers[args.command](args, config)


def _load_app_config(path: Path) -> AppConfig:
    if Path(path) == DEFAULT_CONFIG_PATH and not DEFAULT_CONFIG_PATH.exists():
        logger.debug("No configuration at %s; using defaults", DEFAULT_CONFIG_PATH)
        return AppConfig()
    return load_config(path)


def _parameters(
    config: AppConfig,
    entries: Optional[List[str]],
    base: Optional[MarkupParameters] = None,
) -> MarkupParameters:
    params = base if base is not None else config.markup.build()
    overrides = parse_parameter_overrides(entries)
    return validate_parameters(params.with_overrides(overrides), strict=config.markup.strict)


def _open_store(config: AppConfig) -> TenderStore:
    return TenderStore(config.storage.database)


def _tender_parameters(store: TenderStore, tender_id: int) -> MarkupParameters:
    """Active parameters of a tender without seeding a configuration row."""

    store.get_tender(tender_id)
    configuration = store.get_active_configuration(tender_id, create_default=False)
    if configuration is None:
        logger.info("Tender %s has no active markup configuration; using defaults", tender_id)
        return PERSISTED_DEFAULTS
    return configuration.parameters


def _run_financials(args: argparse.Namespace, config: AppConfig) -> int:
    try:
        if args.tender is not None:
            store = _open_store(config)
            params = _parameters(config, args.param, _tender_parameters(store, args.tender))
            base_costs = summarise_base_costs(store.list_items(args.tender))
        else:
            params = _parameters(config, args.param)
            if args.items:
                base_costs = summarise_base_costs(load_boq_items(args.items, config.columns))
            else:
                base_costs = BaseCosts(
                    materials=args.materials,
                    works=args.works,
                    submaterials=args.submaterials,
                    subworks=args.subworks,
                )
    except Exception as exc:
        logger.error("Failed to prepare calculation: %s", exc)
        return 1

    breakdown = compute_tender_financials(base_costs, params)
    if args.json:
        print(json.dumps(breakdown.as_dict(), ensure_ascii=False, indent=2))
    else:
        _print_summary(breakdown)
    return 0


def _run_import(args: argparse.Namespace, config: AppConfig) -> int:
    try:
        items = load_boq_items(args.items, config.columns)
    except Exception as exc:
        logger.exception("Failed to load BOQ items: %s", exc)
        return 1

    try:
        store = _open_store(config)
        tender = store.find_tender(args.tender) or store.create_tender(args.tender, args.tender_number)
        stored = store.add_items(tender.tender_id, items)
    except Exception as exc:
        logger.exception("Failed to store BOQ items: %s", exc)
        return 1

    print(f"Imported {len(stored)} items into tender {tender.tender_id} ({tender.title})")
    return 0


def _run_backfill(args: argparse.Namespace, config: AppConfig) -> int:
    try:
        store = _open_store(config)
        store.get_tender(args.tender)
        result = backfill_coefficients(store, args.tender, max_workers=args.workers)
    except Exception as exc:
        logger.exception("Back-fill failed: %s", exc)
        return 1

    print(
        f"Updated {result.updated_items} items of tender {result.tender_id} "
        f"with configuration {result.configuration_id}; "
        f"commercial total {_format_float(result.commercial_total)}"
    )
    if result.zero_base_items:
        print(f"Items with zero base cost: {result.zero_base_items}")
    return 0


def _run_report(args: argparse.Namespace, config: AppConfig) -> int:
    try:
        items: List[BOQItem]
        if args.tender is not None:
            store = _open_store(config)
            params = _parameters(config, args.param, _tender_parameters(store, args.tender))
            items = store.list_items(args.tender)
        else:
            params = _parameters(config, args.param)
            items = load_boq_items(args.items, config.columns)
    except Exception as exc:
        logger.exception("Failed to load BOQ items: %s", exc)
        return 1

    if args.output_dir:
        config.output.directory = _resolve_override_path(args.output_dir)
    if args.no_workbook:
        config.output.workbook = None

    try:
        result = build_result(items, params)
        paths = export_results(result, config.output)
    except Exception as exc:
        logger.exception("Failed to export reports: %s", exc)
        return 1

    _print_summary(result.breakdown)
    for name, path in paths.items():
        print(f"{name}: {path}")
    return 0


def _run_template(args: argparse.Namespace, config: AppConfig) -> int:
    try:
        store = _open_store(config)
        if args.template_command == "list":
            templates = store.list_templates()
            if not templates:
                print("No markup templates stored.")
            for template in templates:
                marker = "*" if template.is_default else " "
                print(f"{marker} {template.template_id}: {template.name} {template.description}".rstrip())
        elif args.template_command == "create":
            if args.from_config is not None:
                base = store.get_configuration(args.from_config).parameters
                params = _parameters(config, args.param, base)
            else:
                params = _parameters(config, args.param, config.markup.build(PERSISTED_DEFAULTS))
            template = store.create_template(
                args.name, params, description=args.description, is_default=args.default
            )
            print(f"Created template {template.template_id} ({template.name})")
        else:
            template = store.find_template(args.name)
            if template is None:
                raise LookupError(f"Markup template '{args.name}' does not exist")
            configuration = store.apply_template_to_tender(template.template_id, args.tender)
            print(
                f"Applied template '{template.name}' to tender {args.tender} "
                f"as configuration {configuration.config_id}"
            )
    except Exception as exc:
        logger.error("Template command failed: %s", exc)
        return 1
    return 0


def _resolve_override_path(path: Path) -> Path:
    path = Path(path).expanduser()
    if path.is_absolute():
        return path
    return (Path.cwd() / path).resolve()


def _print_summary(breakdown: FinancialBreakdown) -> None:
    payload = breakdown.as_dict()
    payload.update(payload.pop("base_costs"))
    width = max(len(label) for label, _ in SUMMARY_STAGES)
    print("Tender financial summary:")
    for label, key in SUMMARY_STAGES:
        print(f"  {label.ljust(width)}  {_format_float(payload[key]):>18}")


def _format_float(value: float) -> str:
    try:
        if value is None or (isinstance(value, float) and np.isnan(value)):
            return "-"
        return f"{float(value):,.2f}"
    except (TypeError, ValueError):  # pragma: no cover - formatting fallback
        return str(value)


if __name__ == "__main__":  # pragma: no cover - manual execution entry point
    raise SystemExit(main())
