"""IO helpers for reading BOQ line items from tabular files."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

import numpy as np
import pandas as pd

from .boq import BOQItem
from .cascade import ItemType
from .config import ColumnMapping

logger = logging.getLogger(__name__)

CANONICAL_COLUMNS: Sequence[str] = (
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
)
NUMERIC_COLUMNS = {"quantity", "unit_rate", "currency_rate", "delivery_amount"}

HEADER_HINTS: Dict[str, Sequence[str]] = {
    "position_id": [
        "position",
        "position id",
        "позиция",
        "номер позиции",
        "№ позиции",
        "regex:^№$",
    ],
    "item_type": ["item type", "тип элемента", "тип строки", "вид", "тип", "type"],
    "description": ["description", "наименование", "описание", "name"],
    "unit": ["unit", "ед. изм.", "ед.изм.", "единица измерения", "ед"],
    "quantity": ["quantity", "qty", "количество", "кол-во"],
    "unit_rate": ["unit rate", "цена за единицу", "цена за ед.", "расценка", "цена", "unit price"],
    "currency_rate": ["currency rate", "курс валюты", "курс"],
    "delivery_price_type": ["delivery type", "delivery price type", "тип доставки", "доставка"],
    "delivery_amount": ["delivery amount", "сумма доставки", "стоимость доставки"],
    "is_auxiliary": ["auxiliary", "is auxiliary", "вспомогательный", "тип материала"],
}

REQUIRED_AUTODETECT_KEYS: Sequence[str] = ("item_type", "quantity", "unit_rate")
AUTO_VALUES = {"", "auto", "autodetect", "automatic"}

ITEM_TYPE_ALIASES: Dict[str, ItemType] = {
    "work": ItemType.WORK,
    "работа": ItemType.WORK,
    "раб": ItemType.WORK,
    "material": ItemType.MATERIAL,
    "материал": ItemType.MATERIAL,
    "мат": ItemType.MATERIAL,
    "sub_work": ItemType.SUB_WORK,
    "subwork": ItemType.SUB_WORK,
    "суб_работа": ItemType.SUB_WORK,
    "субработа": ItemType.SUB_WORK,
    "суб_раб": ItemType.SUB_WORK,
    "sub_material": ItemType.SUB_MATERIAL,
    "submaterial": ItemType.SUB_MATERIAL,
    "суб_материал": ItemType.SUB_MATERIAL,
    "субматериал": ItemType.SUB_MATERIAL,
    "суб_мат": ItemType.SUB_MATERIAL,
}

DELIVERY_ALIASES: Dict[str, str] = {
    "": "included",
    "included": "included",
    "в_цене": "included",
    "включена": "included",
    "amount": "amount",
    "сумма": "amount",
    "not_included": "not_included",
    "не_в_цене": "not_included",
    "не_включена": "not_included",
}

TRUE_VALUES = {"1", "true", "yes", "y", "да", "auxiliary", "aux", "вспомогательный", "вспом"}
FALSE_VALUES = {"", "0", "false", "no", "n", "нет", "main", "основной", "nan", "none"}


def load_boq_frame(path: Path, columns: Optional[ColumnMapping] = None) -> pd.DataFrame:
    """Load a BOQ sheet and normalise it to :data:`CANONICAL_COLUMNS`."""

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Dataset '{path}' does not exist")

    logger.info("Loading BOQ items from %s", path)
    ext = path.suffix.lower()
    if ext in {".csv", ".txt"}:
        raw = pd.read_csv(path, dtype=str)
    elif ext in {".xlsx", ".xls"}:
        raw = pd.read_excel(path, dtype=str)
    else:
        raise ValueError(f"Unsupported file extension '{ext}' for dataset '{path}'")

    return _normalise_frame(raw, columns or ColumnMapping())


def load_boq_items(path: Path, columns: Optional[ColumnMapping] = None) -> List[BOQItem]:
    """Load BOQ line items from a CSV or Excel file."""

    frame = load_boq_frame(path, columns)
    frame["sort_order"] = frame.groupby("position_id", sort=False).cumcount()
    items = [
        BOQItem(
            position_id=row["position_id"],
            item_type=row["item_type"],
            description=row["description"],
            unit=row["unit"],
            quantity=float(row["quantity"]),
            unit_rate=float(row["unit_rate"]),
            currency_rate=float(row["currency_rate"]),
            delivery_price_type=row["delivery_price_type"],
            delivery_amount=float(row["delivery_amount"]),
            is_auxiliary=bool(row["is_auxiliary"]),
            sort_order=int(row["sort_order"]),
        )
        for _, row in frame.iterrows()
    ]
    logger.info("Loaded %d BOQ items from %s", len(items), path)
    return items


def _normalise_frame(frame: pd.DataFrame, columns: ColumnMapping) -> pd.DataFrame:
    frame = frame.dropna(how="all")
    resolved_columns = _resolve_column_mapping(frame, columns)
    rename_map = {
        source: target
        for target, source in resolved_columns.items()
        if source is not None
    }
    normalised = frame.rename(columns=rename_map)

    for column in CANONICAL_COLUMNS:
        if column not in normalised:
            normalised[column] = np.nan if column in NUMERIC_COLUMNS else ""

    normalised = normalised.loc[:, list(CANONICAL_COLUMNS)].copy()
    for column in NUMERIC_COLUMNS:
        normalised[column] = coerce_numeric(normalised[column])

    normalised["quantity"] = normalised["quantity"].fillna(0.0)
    normalised["unit_rate"] = normalised["unit_rate"].fillna(0.0)
    normalised["delivery_amount"] = normalised["delivery_amount"].fillna(0.0)
    normalised["currency_rate"] = normalised["currency_rate"].fillna(1.0).replace(0.0, 1.0)

    position = normalised["position_id"].fillna("").astype(str).str.strip()
    normalised["position_id"] = position.where(position != "", "1")
    normalised["description"] = normalised["description"].fillna("").astype(str).str.strip()
    normalised["unit"] = normalised["unit"].fillna("").astype(str).str.strip()
    normalised["item_type"] = normalised["item_type"].map(normalise_item_type)
    normalised["delivery_price_type"] = normalised["delivery_price_type"].map(normalise_delivery_type)
    normalised["is_auxiliary"] = normalised["is_auxiliary"].map(normalise_flag)
    return normalised.reset_index(drop=True)


def normalise_item_type(value: Any) -> str:
    key = _alias_key(value)
    if key not in ITEM_TYPE_ALIASES:
        raise ValueError(f"Unknown BOQ item type '{value}'")
    return ITEM_TYPE_ALIASES[key].value


def normalise_delivery_type(value: Any) -> str:
    key = _alias_key(value)
    if key not in DELIVERY_ALIASES:
        raise ValueError(f"Unknown delivery price type '{value}'")
    return DELIVERY_ALIASES[key]


def normalise_flag(value: Any) -> bool:
    key = _alias_key(value)
    if key in TRUE_VALUES:
        return True
    if key in FALSE_VALUES:
        return False
    raise ValueError(f"Cannot interpret '{value}' as a yes/no flag")


def _alias_key(value: Any) -> str:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return ""
    text = str(value).strip().casefold()
    return re.sub(r"[\s\-]+", "_", text)


def _resolve_column_mapping(frame: pd.DataFrame, columns: ColumnMapping) -> Dict[str, Optional[str]]:
    """Resolve canonical column names using config overrides and auto-detection."""

    config_map = columns.as_dict()
    resolved: Dict[str, Optional[str]] = {}
    normalised_lookup = {
        _normalise_header(col): col for col in frame.columns if isinstance(col, str)
    }

    auto_targets: List[str] = []
    for key, source in config_map.items():
        if source is None or str(source).strip().lower() in AUTO_VALUES:
            resolved[key] = None
            auto_targets.append(key)
            continue

        if source in frame.columns:
            resolved[key] = source
            continue

        fallback = normalised_lookup.get(_normalise_header(source))
        if fallback is not None:
            resolved[key] = fallback
            continue

        raise KeyError(f"Column '{source}' for '{key}' was not found in dataset")

    if auto_targets:
        taken = {value for value in resolved.values() if value is not None}
        detected = _autodetect_column_mapping(frame, auto_targets, taken)
        for key, value in detected.items():
            if value is not None:
                resolved[key] = value

    missing_required = [key for key in REQUIRED_AUTODETECT_KEYS if not resolved.get(key)]
    if missing_required:
        raise KeyError("Unable to resolve required columns: " + ", ".join(sorted(missing_required)))

    return resolved


def _autodetect_column_mapping(
    frame: pd.DataFrame, targets: Iterable[str], taken: Set[str]
) -> Dict[str, Optional[str]]:
    """Best-effort inference of canonical columns using header hints."""

    detected: Dict[str, Optional[str]] = {target: None for target in targets}
    header_pairs = [(col, _normalise_header(col)) for col in frame.columns]

    # Exact header matches are claimed first so that loose matches cannot steal them.
    for target in targets:
        exact = {_normalise_header(hint) for hint in HEADER_HINTS.get(target, []) if not hint.startswith("regex:")}
        exact.add(_normalise_header(target))
        for original, normalised in header_pairs:
            if original not in taken and normalised in exact:
                detected[target] = original
                taken.add(original)
                break

    for target in targets:
        if detected[target] is not None:
            continue
        available = [(col, norm) for col, norm in header_pairs if col not in taken]
        match = _match_header(available, _build_hint_patterns(target))
        if match is not None:
            detected[target] = match
            taken.add(match)
            logger.debug("Autodetected column '%s' for '%s'", match, target)
        else:
            logger.debug("Failed to autodetect column for '%s'", target)

    return detected


def _build_hint_patterns(target: str) -> Dict[str, List[str]]:
    patterns: Dict[str, List[str]] = {"regex": [], "contains": []}
    for hint in HEADER_HINTS.get(target, []):
        if hint.startswith("regex:"):
            patterns["regex"].append(hint[len("regex:") :])
            continue
        normalised = _normalise_header(hint)
        if normalised:
            patterns["contains"].append(rf"(?:^|\b){re.escape(normalised)}(?:\b|$)")
    return patterns


def _match_header(headers: Sequence[tuple], patterns: Dict[str, List[str]]) -> Optional[str]:
    for kind in ("regex", "contains"):
        for pattern in patterns.get(kind, []):
            try:
                compiled = re.compile(pattern, flags=re.IGNORECASE)
            except re.error:
                continue
            for original, normalised in headers:
                if compiled.search(normalised):
                    return original
    return None


def _normalise_header(value: Any) -> str:
    text = "" if value is None else str(value)
    text = text.strip().lower()
    return re.sub(r"\s+", " ", text)


def coerce_numeric(values: pd.Series) -> pd.Series:
    """Coerce textual representations of numbers into floats."""

    if not isinstance(values, pd.Series):
        values = pd.Series(values)
    if values.empty:
        return pd.to_numeric(values, errors="coerce")

    cleaned = values.astype(str)
    cleaned = cleaned.str.replace(r"\s+", "", regex=True)
    cleaned = cleaned.str.replace(" ", "", regex=False)
    cleaned = cleaned.str.replace(r"(?i)(руб\.?|р\.|₽|rub|eur|€|usd|\$)", "", regex=True)
    cleaned = cleaned.str.replace(r"[^0-9,\.\-]", "", regex=True)

    # The right-most separator is the decimal point; the other one groups thousands.
    comma_decimal = cleaned.str.rfind(",") > cleaned.str.rfind(".")
    cleaned = cleaned.where(
        comma_decimal,
        cleaned.str.replace(",", "", regex=False),
    )
    cleaned = cleaned.where(
        ~comma_decimal,
        cleaned.str.replace(".", "", regex=False).str.replace(",", ".", regex=False),
    )
    cleaned = cleaned.str.replace(r"[.,]$", "", regex=True)

    return pd.to_numeric(cleaned, errors="coerce")


__all__ = [
    "CANONICAL_COLUMNS",
    "coerce_numeric",
    "load_boq_frame",
    "load_boq_items",
    "normalise_delivery_type",
    "normalise_flag",
    "normalise_item_type",
]
