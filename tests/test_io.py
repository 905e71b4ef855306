from pathlib import Path

import pandas as pd
import pytest

from tenderstudio.cascade import ItemType
from tenderstudio.config import ColumnMapping
from tenderstudio.io import (
    CANONICAL_COLUMNS,
    coerce_numeric,
    load_boq_frame,
    load_boq_items,
    normalise_flag,
    normalise_item_type,
)


def test_load_boq_items_autodetects_russian_headers(sample_boq_path):
    items = load_boq_items(sample_boq_path)

    assert len(items) == 6
    first = items[0]
    assert first.position_id == "1"
    assert first.item_type is ItemType.WORK
    assert first.description == "Монтаж опалубки"
    assert first.unit == "м2"
    assert first.base_cost == pytest.approx(50000)

    wire = items[2]
    assert wire.is_auxiliary is True
    assert wire.delivery_price_type == "not_included"
    assert wire.base_cost == pytest.approx(2060)
    assert wire.sort_order == 2

    membrane = items[4]
    assert membrane.item_type is ItemType.SUB_MATERIAL
    assert membrane.delivery_price_type == "amount"
    assert membrane.base_cost == pytest.approx(25850)
    assert membrane.sort_order == 1

    anchors = items[5]
    assert anchors.currency_rate == pytest.approx(95)
    assert anchors.base_cost == pytest.approx(19000)


def test_load_boq_frame_with_explicit_mapping(tmp_path):
    data = pd.DataFrame(
        {
            "Pos": ["A1", "A1"],
            "Kind": ["work", "material"],
            "Qty": ["1 234,50", "2"],
            "Price": ["10 ₽", "1.250,00 руб."],
            "Aux": ["", "yes"],
        }
    )
    csv_path = tmp_path / "explicit.csv"
    data.to_csv(csv_path, index=False, encoding="utf-8")

    mapping = ColumnMapping(
        position_id="Pos",
        item_type="Kind",
        quantity="qty",
        unit_rate="Price",
        is_auxiliary="Aux",
        description="auto",
    )
    frame = load_boq_frame(Path(csv_path), mapping)

    assert list(frame.columns) == list(CANONICAL_COLUMNS)
    assert frame.loc[0, "quantity"] == pytest.approx(1234.5)
    assert frame.loc[1, "unit_rate"] == pytest.approx(1250.0)
    assert frame.loc[0, "currency_rate"] == pytest.approx(1.0)
    assert bool(frame.loc[1, "is_auxiliary"]) is True
    assert frame.loc[0, "delivery_price_type"] == "included"


def test_missing_required_columns_raise_key_error(tmp_path):
    csv_path = tmp_path / "broken.csv"
    pd.DataFrame({"Description": ["x"], "Quantity": [1]}).to_csv(csv_path, index=False)

    with pytest.raises(KeyError):
        load_boq_items(csv_path)


def test_unknown_item_type_is_rejected(tmp_path):
    csv_path = tmp_path / "bad_type.csv"
    pd.DataFrame({"Type": ["equipment"], "Quantity": [1], "Unit rate": [1]}).to_csv(csv_path, index=False)

    with pytest.raises(ValueError):
        load_boq_items(csv_path)


def test_missing_file_and_unsupported_extension(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_boq_items(tmp_path / "missing.csv")

    other = tmp_path / "items.json"
    other.write_text("{}", encoding="utf-8")
    with pytest.raises(ValueError):
        load_boq_items(other)


def test_xlsx_input_is_supported(tmp_path):
    path = tmp_path / "items.xlsx"
    pd.DataFrame(
        {"Item type": ["sub_work"], "Quantity": [3], "Unit rate": [100], "Position": ["9"]}
    ).to_excel(path, index=False)

    items = load_boq_items(path)

    assert items[0].item_type is ItemType.SUB_WORK
    assert items[0].position_id == "9"
    assert items[0].base_cost == pytest.approx(300)


def test_normalisers():
    assert normalise_item_type("Суб-работа") == "sub_work"
    assert normalise_item_type(" Material ") == "material"
    assert normalise_flag("Да") is True
    assert normalise_flag(None) is False
    with pytest.raises(ValueError):
        normalise_flag("maybe")


def test_coerce_numeric_handles_currency_and_separators():
    values = pd.Series(["1 234,50 ₽", "2.500,75", "руб. 10", None, "abc", "1,234.50", "USD 1,234,567.00", "12,5"])

    result = coerce_numeric(values)

    assert result.iloc[0] == pytest.approx(1234.5)
    assert result.iloc[1] == pytest.approx(2500.75)
    assert result.iloc[2] == pytest.approx(10)
    assert pd.isna(result.iloc[3])
    assert pd.isna(result.iloc[4])
    assert result.iloc[5] == pytest.approx(1234.5)
    assert result.iloc[6] == pytest.approx(1234567)
    assert result.iloc[7] == pytest.approx(12.5)
