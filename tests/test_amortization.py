# tests/test_amortization.py
import logging
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal

import pytest

from lease_accounting.config import PolicyConfig
from lease_accounting.core.amortization import (
    AmortizationEngine,
    DepreciationPolicy,
    PeriodicRate,
    present_value_of,
    schedule_fingerprint,
    useful_life_months,
    verify_schedule,
)
from lease_accounting.core.errors import ClosureMismatch, InvalidTerm, NegativeROUAsset
from lease_accounting.core.models import (
    DayCountConvention,
    DepreciationMethod,
    LeasePaymentSchedule,
    LeaseType,
    PaymentFrequency,
    PaymentTiming,
    PurchaseOption,
)
from lease_accounting.schedule.payment_schedule import PaymentScheduleBuilder
from lease_accounting.utils.finance import round_minor


def _payments(base_payment, count, timing=PaymentTiming.ARREARS, frequency=PaymentFrequency.MONTHLY,
              lease_id="L-AMORT"):
    schedule = LeasePaymentSchedule(
        schedule_id="S1",
        effective_date=date(2025, 1, 1),
        base_payment=base_payment,
        payment_frequency=frequency,
        payment_timing=timing,
    )
    return PaymentScheduleBuilder().build(schedule, count, lease_id)


FINANCE_SL = DepreciationPolicy(LeaseType.FINANCE)
MONTHLY_6 = PeriodicRate(Decimal("0.06"))


def test_finance_lease_first_month_and_closure():
    """$120,000 liability, $2,200/month for 60 months at 6%"""
    payments = _payments(220_000, 60)
    result = AmortizationEngine().amortize(12_000_000, 12_000_000, payments, MONTHLY_6, FINANCE_SL)

    first = result.rows[0]
    assert first.interest_expense == 60_000
    assert first.principal_reduction == 160_000
    assert first.closing_liability == 11_840_000

    assert len(result) == 60
    assert result.rows[-1].closing_liability == 0
    assert result.closure_plug == result.rows[-1].closure_plug
    # opening liability above the PV of payments leaves a positive balance to absorb
    assert result.closure_plug > 0
    assert all(row.closure_plug == 0 for row in result.rows[:-1])


def test_rows_roll_forward_and_balance():
    payments = _payments(220_000, 60)
    liability = present_value_of(payments, MONTHLY_6)
    result = AmortizationEngine().amortize(liability, liability, payments, MONTHLY_6, FINANCE_SL)

    for row in result.rows:
        assert row.opening_liability - row.principal_reduction == row.closing_liability
        assert row.opening_rou_asset - row.depreciation_expense == row.closing_rou_asset
        assert row.total_expense == row.interest_expense + row.depreciation_expense
        assert row.principal_reduction == row.payment - row.interest_expense + row.closure_plug

    for previous, current in zip(result.rows, result.rows[1:]):
        assert current.opening_liability == previous.closing_liability
        assert current.opening_rou_asset == previous.closing_rou_asset

    assert abs(result.closure_plug) <= len(payments)
    verify_schedule(result.rows)


@pytest.mark.parametrize("base_payment, count, annual_rate, timing", [
    (100_000, 60, "0.06", PaymentTiming.ARREARS),
    (220_000, 60, "0.06", PaymentTiming.ARREARS),
    (123_457, 120, "0.0725", PaymentTiming.ARREARS),
    (123_457, 120, "0.0725", PaymentTiming.ADVANCE),
])
def test_rounding_does_not_accumulate(base_payment, count, annual_rate, timing, caplog):
    payments = _payments(base_payment, count, timing=timing)
    rate = PeriodicRate(Decimal(annual_rate))
    liability = present_value_of(payments, rate)

    with caplog.at_level(logging.WARNING, logger="lease_accounting.core.amortization"):
        result = AmortizationEngine().amortize(liability, liability, payments, rate, FINANCE_SL)

    assert abs(result.closure_plug) <= PolicyConfig().rounding_tolerance
    assert not [r for r in caplog.records if "closure plug" in r.getMessage()]


def test_principal_and_interest_sum_to_payments():

    payments = _payments(220_000, 60)
    liability = present_value_of(payments, MONTHLY_6)
    result = AmortizationEngine().amortize(liability, liability, payments, MONTHLY_6, FINANCE_SL)

    assert sum(r.principal_reduction for r in result.rows) == liability
    assert sum(r.depreciation_expense for r in result.rows) == liability
    total_paid = sum(p.capitalized_amount for p in payments)
    assert sum(r.interest_expense for r in result.rows) == total_paid - liability + result.closure_plug


def test_same_inputs_give_identical_rows_and_fingerprint():
    payments = _payments(150_000, 24)
    liability = present_value_of(payments, MONTHLY_6)
    engine = AmortizationEngine()

    first = engine.amortize(liability, liability, payments, MONTHLY_6, FINANCE_SL)
    second = engine.amortize(liability, liability, payments, MONTHLY_6, FINANCE_SL)
    assert first.rows == second.rows

    fingerprint = schedule_fingerprint(liability, liability, payments, MONTHLY_6, FINANCE_SL)
    assert fingerprint == schedule_fingerprint(liability, liability, payments, MONTHLY_6, FINANCE_SL)
    assert fingerprint != schedule_fingerprint(liability + 1, liability, payments, MONTHLY_6, FINANCE_SL)
    assert fingerprint != schedule_fingerprint(liability, liability, payments, PeriodicRate(Decimal("0.07")),
                                               FINANCE_SL)


def test_operating_lease_straight_line_cost():
    """$1,000/month for 36 months at 5%: single lease cost of $1,000 per month"""
    payments = _payments(100_000, 36)
    rate = PeriodicRate(Decimal("0.05"))
    liability = present_value_of(payments, rate)
    result = AmortizationEngine().amortize(liability, liability, payments, rate,
                                           DepreciationPolicy(LeaseType.OPERATING))
    rows = result.rows

    assert sum(p.total_payment for p in payments) == 3_600_000
    assert rows[0].depreciation_expense == 100_000 - rows[0].interest_expense
    for row in rows[:-1]:
        assert row.total_expense == 100_000
    assert rows[-1].total_expense == 100_000 + result.closure_plug
    assert rows[-1].closing_rou_asset == 0

    # interest falls, so depreciation rises over the term
    depreciation = [r.depreciation_expense for r in rows[:-1]]
    assert depreciation == sorted(depreciation)
    assert rows[-2].depreciation_expense > rows[0].depreciation_expense


def test_operating_lease_lands_on_residual_value():
    payments = _payments(100_000, 12)
    liability = present_value_of(payments, MONTHLY_6)
    policy = DepreciationPolicy(LeaseType.OPERATING, residual_value=50_000)
    result = AmortizationEngine().amortize(liability, liability, payments, MONTHLY_6, policy)

    assert result.rows[-1].closing_rou_asset == 50_000
    assert sum(r.depreciation_expense for r in result.rows) == liability - 50_000


def test_operating_depreciation_stops_at_an_empty_asset():
    """Back-loaded rent on an asset with no carrying amount: early charges are capped at zero"""
    payments = _payments(1_000, 12)
    payments[-1] = replace(payments[-1], fixed_payment=1_000_000)
    liability = present_value_of(payments, MONTHLY_6)
    result = AmortizationEngine().amortize(liability, 0, payments, MONTHLY_6,
                                           DepreciationPolicy(LeaseType.OPERATING))
    rows = result.rows

    assert rows[0].depreciation_expense == 0
    assert all(row.closing_rou_asset >= 0 for row in rows)
    assert rows[-1].closing_rou_asset == 0
    assert sum(r.depreciation_expense for r in rows) == 0


def test_payments_in_advance_accrue_after_the_payment():

    payments = _payments(100_000, 12, timing=PaymentTiming.ADVANCE)
    rate = PeriodicRate(Decimal("0.12"))
    liability = present_value_of(payments, rate)
    result = AmortizationEngine().amortize(liability, liability, payments, rate, FINANCE_SL)

    first = result.rows[0]
    assert first.interest_expense == round_minor(Decimal(liability - 100_000) * Decimal("0.01"))
    assert result.rows[-1].closing_liability == 0
    # the last payment in advance settles a balance that accrues nothing beyond rounding
    assert abs(result.rows[-1].interest_expense) <= 1


def test_in_advance_pv_exceeds_in_arrears():
    arrears = present_value_of(_payments(100_000, 12), MONTHLY_6)
    advance = present_value_of(_payments(100_000, 12, timing=PaymentTiming.ADVANCE), MONTHLY_6)
    assert advance > arrears


def test_quarterly_rate_uses_months_in_period():
    payments = _payments(300_000, 4, frequency=PaymentFrequency.QUARTERLY)
    rate = PeriodicRate(Decimal("0.08"), frequency_months=3)
    assert rate.for_payment(payments[0]) == Decimal("0.02")

    result = AmortizationEngine().amortize(1_000_000, 1_000_000, payments, rate, FINANCE_SL)
    assert result.rows[0].interest_expense == 20_000


def test_actual_365_day_count():
    payments = _payments(100_000, 2)
    rate = PeriodicRate(Decimal("0.0365"), day_count=DayCountConvention.ACTUAL_365)
    # January has 31 days
    assert rate.for_payment(payments[0]) == Decimal("0.0031")


def test_declining_balance_front_loads_depreciation():
    payments = _payments(110_000, 12)
    liability = present_value_of(payments, MONTHLY_6)
    policy = DepreciationPolicy(LeaseType.FINANCE, DepreciationMethod.DECLINING_BALANCE)
    result = AmortizationEngine().amortize(liability, 1_200_000, payments, MONTHLY_6, policy)

    depreciation = [r.depreciation_expense for r in result.rows]
    assert depreciation[0] == 200_000
    assert all(depreciation[0] >= d for d in depreciation)
    assert sum(depreciation) == 1_200_000
    assert result.rows[-1].closing_rou_asset == 0


def test_sum_of_years_digits():
    payments = _payments(200, 3)
    liability = present_value_of(payments, MONTHLY_6)
    policy = DepreciationPolicy(LeaseType.FINANCE, DepreciationMethod.SUM_OF_YEARS_DIGITS)
    result = AmortizationEngine().amortize(liability, 600, payments, MONTHLY_6, policy)

    assert [r.depreciation_expense for r in result.rows] == [300, 200, 100]


def test_useful_life_longer_than_term_adds_depreciation_rows():
    payments = _payments(100_000, 12)
    liability = present_value_of(payments, MONTHLY_6)
    policy = DepreciationPolicy(LeaseType.FINANCE, depreciation_periods=24)
    result = AmortizationEngine().amortize(liability, liability, payments, MONTHLY_6, policy)
    rows = result.rows

    assert len(rows) == 24
    assert [r.period_number for r in rows] == list(range(1, 25))
    assert rows[12].period_start == rows[11].period_end + timedelta(days=1)
    for row in rows[12:]:
        assert row.payment == 0
        assert row.opening_liability == 0
        assert row.interest_expense == 0
    assert rows[-1].closing_rou_asset == 0
    assert sum(r.depreciation_expense for r in rows) == liability


def test_useful_life_follows_ownership(make_lease):
    lease = make_lease(term_months=60, economic_life_months=120)
    assert useful_life_months(lease) == 60

    assert useful_life_months(replace(lease, ownership_transfer=True)) == 120
    certain = PurchaseOption(exercisable=True, price=500_000, reasonably_certain=True)
    assert useful_life_months(replace(lease, purchase_option=certain)) == 120
    assert useful_life_months(replace(lease, economic_life_months=48)) == 48


def test_negative_amortization_is_reported():
    # 1% a month on $10,000 is $100 of interest against $50 payments
    payments = _payments(5_000, 6)
    rate = PeriodicRate(Decimal("0.12"))
    result = AmortizationEngine().amortize(1_000_000, 1_000_000, payments, rate, FINANCE_SL)

    assert len(result.warnings) == 1
    warning = result.warnings[0]
    assert (warning.start_period, warning.end_period, warning.periods) == (1, 6, 6)
    assert result.rows[-1].closing_liability == 0


def test_short_negative_amortization_run_within_grace():
    payments = _payments(5_000, 3)
    rate = PeriodicRate(Decimal("0.12"))
    result = AmortizationEngine(PolicyConfig(negative_amortization_grace_periods=3)).amortize(
        1_000_000, 1_000_000, payments, rate, FINANCE_SL)
    assert result.warnings == []


def test_closure_plug_above_policy_maximum_raises():
    payments = _payments(220_000, 60)
    engine = AmortizationEngine(PolicyConfig(max_closure_plug=100))
    with pytest.raises(ClosureMismatch) as exc_info:
        engine.amortize(12_000_000, 12_000_000, payments, MONTHLY_6, FINANCE_SL, lease_id="L-PLUG")
    assert exc_info.value.lease_id == "L-PLUG"
    assert len(exc_info.value.context) == 60


def test_empty_schedule_is_rejected():
    with pytest.raises(InvalidTerm):
        AmortizationEngine().amortize(0, 0, [], MONTHLY_6, FINANCE_SL)


def test_residual_above_rou_asset_is_rejected():
    payments = _payments(100_000, 12)
    policy = DepreciationPolicy(LeaseType.FINANCE, residual_value=2_000_000)
    with pytest.raises(NegativeROUAsset):
        AmortizationEngine().amortize(1_000_000, 1_000_000, payments, MONTHLY_6, policy)


def test_verify_schedule_flags_broken_rows():
    payments = _payments(100_000, 12)
    liability = present_value_of(payments, MONTHLY_6)
    rows = AmortizationEngine().amortize(liability, liability, payments, MONTHLY_6, FINANCE_SL).rows

    tampered = list(rows)
    tampered[5] = replace(rows[5], closing_liability=rows[5].closing_liability + 1)
    with pytest.raises(ClosureMismatch) as exc_info:
        verify_schedule(tampered)
    assert exc_info.value.context == tampered

    negative = list(rows)
    negative[-1] = replace(rows[-1], opening_rou_asset=0, depreciation_expense=1, closing_rou_asset=-1)
    with pytest.raises(NegativeROUAsset):
        verify_schedule(negative)

    unclosed = list(rows)
    unclosed[-1] = replace(rows[-1], principal_reduction=rows[-1].principal_reduction - 5,
                           closing_liability=rows[-1].closing_liability + 5)
    with pytest.raises(ClosureMismatch):
        verify_schedule(unclosed)
