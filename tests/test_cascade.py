import pytest

from tenderstudio.cascade import (
    ApplicationForm,
    BaseCosts,
    ItemType,
    LineItemRole,
    apply_percentage,
    calculate_markup_financials,
    compute_line_item_commercial_cost,
    compute_tender_financials,
    material_commercial_cost,
    subcontract_material_commercial_cost,
    subcontract_work_commercial_cost,
    work_commercial_cost,
)
from tenderstudio.markup import CALCULATION_DEFAULTS, PERSISTED_DEFAULTS

ALL_ROLES = [
    LineItemRole(ItemType.WORK),
    LineItemRole(ItemType.SUB_WORK),
    LineItemRole(ItemType.MATERIAL),
    LineItemRole(ItemType.MATERIAL, is_auxiliary=True),
    LineItemRole(ItemType.SUB_MATERIAL),
    LineItemRole(ItemType.SUB_MATERIAL, is_auxiliary=True),
]


def test_reference_scenario_matches_every_stage():
    result = compute_tender_financials(BaseCosts(works=100000, materials=50000), CALCULATION_DEFAULTS)

    assert result.works_after_16 == pytest.approx(160000, abs=1e-6)
    assert result.works_with_growth == pytest.approx(168000, abs=1e-6)
    assert result.materials_with_growth == pytest.approx(51500, abs=1e-6)
    assert result.contingency_base == pytest.approx(219500, abs=1e-6)
    assert result.contingency_cost == pytest.approx(4390, abs=1e-6)
    assert result.own_forces_base == pytest.approx(219500, abs=1e-6)
    assert result.overhead_own_forces == pytest.approx(17560, abs=1e-6)
    assert result.general_costs == pytest.approx(10975, abs=1e-6)
    assert result.profit_own_forces == pytest.approx(26340, abs=1e-6)
    assert result.overhead_subcontract == 0
    assert result.profit_subcontract == 0
    assert result.total_cost_with_profit == pytest.approx(278765, abs=1e-6)


def test_missing_parameters_fall_back_to_calculation_defaults():
    explicit = compute_tender_financials(BaseCosts(works=100000, materials=50000), CALCULATION_DEFAULTS)
    implicit = calculate_markup_financials(BaseCosts(works=100000, materials=50000), {"worksCostGrowth": None})

    assert implicit.total_cost_with_profit == pytest.approx(explicit.total_cost_with_profit)
    assert implicit.parameters == CALCULATION_DEFAULTS


def test_zero_base_costs_give_zero_everywhere():
    result = compute_tender_financials(BaseCosts(), PERSISTED_DEFAULTS)
    payload = result.as_dict()
    payload.pop("parameters")
    payload.pop("base_costs")

    assert all(value == 0 for value in payload.values())


def test_subcontract_overhead_uses_raw_base_costs():
    result = compute_tender_financials(BaseCosts(submaterials=1000, subworks=2000), CALCULATION_DEFAULTS)

    assert result.overhead_subcontract_base == pytest.approx(3000)
    assert result.overhead_subcontract == pytest.approx(180)
    assert result.subcontract_base == pytest.approx(1040 + 2140)
    assert result.profit_subcontract == pytest.approx(3180 * 0.08)
    assert result.contingency_cost == 0


def test_informational_amounts_do_not_change_the_total():
    without = compute_tender_financials(BaseCosts(works=1000), CALCULATION_DEFAULTS)
    params = CALCULATION_DEFAULTS.with_overrides({"mechanization_service": 10, "mbpGsm": 5, "warranty_period": 2})
    with_info = compute_tender_financials(BaseCosts(works=1000), params)

    assert with_info.mechanization_service_cost == pytest.approx(100)
    assert with_info.mbp_gsm_cost == pytest.approx(50)
    assert with_info.warranty_period_cost == pytest.approx(20)
    assert with_info.total_cost_with_profit == pytest.approx(without.total_cost_with_profit)


@pytest.mark.parametrize("field_name", ["materials", "works", "submaterials", "subworks"])
def test_total_is_monotonic_in_each_base_cost(field_name):
    start = BaseCosts(materials=1000, works=2000, submaterials=300, subworks=400)
    bigger = BaseCosts(**{**start.as_dict(), field_name: getattr(start, field_name) + 500})

    for params in (CALCULATION_DEFAULTS, PERSISTED_DEFAULTS):
        low = compute_tender_financials(start, params).total_cost_with_profit
        high = compute_tender_financials(bigger, params).total_cost_with_profit
        assert high >= low


def test_recomputation_is_idempotent():
    base = BaseCosts(materials=1234.5, works=9876.5, submaterials=11, subworks=22)

    first = compute_tender_financials(base, PERSISTED_DEFAULTS)
    second = compute_tender_financials(base, PERSISTED_DEFAULTS)

    assert first == second


def test_default_tables_disagree_on_works_16_markup():
    # The persisted table seeds 60, the calculation fallback is 160; both are intentional.
    assert PERSISTED_DEFAULTS.works_16_markup == 60
    assert CALCULATION_DEFAULTS.works_16_markup == 160

    persisted = compute_tender_financials(BaseCosts(works=100000), PERSISTED_DEFAULTS)
    calculated = compute_tender_financials(BaseCosts(works=100000), CALCULATION_DEFAULTS)
    assert persisted.works_after_16 == pytest.approx(60000)
    assert calculated.works_after_16 == pytest.approx(160000)


def test_scale_and_grow_forms():
    assert apply_percentage(200, 10, ApplicationForm.SCALE) == pytest.approx(20)
    assert apply_percentage(200, 10, ApplicationForm.GROW) == pytest.approx(220)


def test_work_line_cascade_with_calculation_defaults():
    assert work_commercial_cost(100, CALCULATION_DEFAULTS) == pytest.approx(353.336256)


def test_work_line_uses_mechanization_and_warranty():
    params = CALCULATION_DEFAULTS.with_overrides(
        {"works_16_markup": 0, "mechanization_service": 10, "warranty_period": 5}
    ).with_overrides(
        {
            "works_cost_growth": 0,
            "contingency_costs": 0,
            "overhead_own_forces": 0,
            "general_costs_without_subcontract": 0,
            "profit_own_forces": 0,
        }
    )

    assert work_commercial_cost(100, params) == pytest.approx(115)


def test_work_line_never_drops_below_base():
    params = PERSISTED_DEFAULTS.with_overrides({"works_16_markup": 0})

    assert work_commercial_cost(1000, params) >= 1000


def test_material_line_cascades():
    assert material_commercial_cost(100, CALCULATION_DEFAULTS) == pytest.approx(133.3584)
    assert material_commercial_cost(100, PERSISTED_DEFAULTS) == pytest.approx(164.076)
    assert subcontract_work_commercial_cost(100, CALCULATION_DEFAULTS) == pytest.approx(122.4936)
    assert subcontract_material_commercial_cost(100, CALCULATION_DEFAULTS) == pytest.approx(122.4936)


def test_subcontract_material_line_grows_by_sub_works_rate():
    # Sub-material lines share the sub-works growth rate; the sub-materials rate is ignored here.
    params = CALCULATION_DEFAULTS.with_overrides(
        {
            "subcontract_materials_cost_growth": 50,
            "subcontract_works_cost_growth": 7,
            "overhead_subcontract": 6,
            "profit_subcontract": 8,
        }
    )

    assert subcontract_material_commercial_cost(100, params) == pytest.approx(100 * 1.07 * 1.06 * 1.08)
    assert subcontract_material_commercial_cost(100, params) == pytest.approx(
        subcontract_work_commercial_cost(100, params)
    )

    main = compute_line_item_commercial_cost(100, LineItemRole(ItemType.SUB_MATERIAL), CALCULATION_DEFAULTS)
    auxiliary = compute_line_item_commercial_cost(
        100, LineItemRole(ItemType.SUB_MATERIAL, is_auxiliary=True), CALCULATION_DEFAULTS
    )
    assert main.full_commercial_cost == pytest.approx(122.4936)
    assert auxiliary.full_commercial_cost == pytest.approx(122.4936)


@pytest.mark.parametrize("role", ALL_ROLES)
def test_zero_base_gives_unit_coefficient(role):
    result = compute_line_item_commercial_cost(0, role, PERSISTED_DEFAULTS)

    assert result.coefficient == 1
    assert result.full_commercial_cost == 0


@pytest.mark.parametrize("role", ALL_ROLES)
def test_base_times_coefficient_restores_full_cost(role):
    result = compute_line_item_commercial_cost(4321.5, role, PERSISTED_DEFAULTS)

    assert 4321.5 * result.coefficient == pytest.approx(result.full_commercial_cost)
    assert result.material_share + result.works_share == pytest.approx(result.full_commercial_cost)


@pytest.mark.parametrize("item_type", [ItemType.MATERIAL, ItemType.SUB_MATERIAL])
def test_main_material_keeps_base_and_moves_markup(item_type):
    result = compute_line_item_commercial_cost(1000, LineItemRole(item_type), CALCULATION_DEFAULTS)

    assert result.material_share == pytest.approx(1000)
    assert result.works_share == pytest.approx(result.full_commercial_cost - 1000)
    assert result.works_share == pytest.approx(result.markup)


@pytest.mark.parametrize("item_type", [ItemType.MATERIAL, ItemType.SUB_MATERIAL])
def test_auxiliary_material_moves_everything(item_type):
    result = compute_line_item_commercial_cost(1000, LineItemRole(item_type, True), CALCULATION_DEFAULTS)

    assert result.material_share == 0
    assert result.works_share == pytest.approx(result.full_commercial_cost)


def test_main_and_auxiliary_share_the_same_full_cost():
    main = compute_line_item_commercial_cost(500, LineItemRole.of("material"), PERSISTED_DEFAULTS)
    auxiliary = compute_line_item_commercial_cost(500, LineItemRole.of("material", True), PERSISTED_DEFAULTS)

    assert main.full_commercial_cost == pytest.approx(auxiliary.full_commercial_cost)
    assert main.coefficient == pytest.approx(auxiliary.coefficient)


def test_target_bucket_follows_subcontract_flag():
    assert LineItemRole.of("material").target_bucket == "works"
    assert LineItemRole.of("sub_material", True).target_bucket == "sub_works"
