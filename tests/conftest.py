from __future__ import annotations

from pathlib import Path
import sys

import pytest

# Ensure project root is on sys.path for absolute imports
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from tenderstudio.boq import BOQItem
from tenderstudio.store import TenderStore

SAMPLE_BOQ = ROOT / "sample_data" / "boq.csv"


@pytest.fixture()
def sample_boq_path() -> Path:
    return SAMPLE_BOQ


@pytest.fixture()
def store(tmp_path) -> TenderStore:
    return TenderStore(tmp_path / "tenders.sqlite")


@pytest.fixture()
def position_items() -> list:
    return [
        BOQItem(position_id="1", item_type="work", quantity=10, unit_rate=100),
        BOQItem(position_id="1", item_type="material", quantity=5, unit_rate=200),
        BOQItem(position_id="1", item_type="material", quantity=1, unit_rate=300, is_auxiliary=True),
        BOQItem(position_id="2", item_type="sub_work", quantity=2, unit_rate=500),
        BOQItem(position_id="2", item_type="sub_material", quantity=4, unit_rate=100),
        BOQItem(position_id="2", item_type="sub_material", quantity=1, unit_rate=50, is_auxiliary=True),
    ]
