# tests/test_disclosures.py
from datetime import date
from decimal import Decimal

import pytest

from lease_accounting.core.errors import CurrencyMismatch
from lease_accounting.core.lease_modifications import ModificationTerms
from lease_accounting.core.models import LeaseType, ModificationType, RenewalOption
from lease_accounting.core.processor import LeaseProcessor
from lease_accounting.utils.disclosures_generator import DisclosureAggregator

YEAR_START = date(2025, 1, 1)
YEAR_END = date(2025, 12, 31)


@pytest.fixture
def two_leases(processor, finance_lease, operating_lease):
    return processor.process_single_lease(finance_lease), processor.process_single_lease(operating_lease)


def test_balances_at_period_end(processor, two_leases):
    finance, operating = two_leases
    disclosure = processor.disclosure(YEAR_START, YEAR_END)

    assert disclosure.total_finance_leases == 1
    assert disclosure.total_operating_leases == 1
    assert disclosure.currency == "USD"
    assert disclosure.reporting_period == "2025-01-01/2025-12-31"

    assert disclosure.total_lease_liabilities == finance.rows[11].closing_liability + operating.rows[11].closing_liability
    assert disclosure.total_rou_assets == finance.rows[11].closing_rou_asset + operating.rows[11].closing_rou_asset
    assert disclosure.non_current_lease_liabilities == (
        finance.rows[23].closing_liability + operating.rows[23].closing_liability)
    assert (disclosure.current_lease_liabilities + disclosure.non_current_lease_liabilities
            == disclosure.total_lease_liabilities)

    finance_totals = disclosure.totals_by_type[LeaseType.FINANCE]
    assert finance_totals.count == 1
    assert finance_totals.lease_liabilities == finance.rows[11].closing_liability
    assert disclosure.totals_by_type[LeaseType.OPERATING].rou_assets == operating.rows[11].closing_rou_asset


def test_activity_in_period(processor, two_leases):
    finance, operating = two_leases
    disclosure = processor.disclosure(YEAR_START, YEAR_END)

    first_year = list(finance.rows[:12]) + list(operating.rows[:12])
    assert disclosure.total_depreciation == sum(r.depreciation_expense for r in first_year)
    assert disclosure.total_interest == sum(r.interest_expense for r in first_year)
    assert disclosure.total_lease_payments == 12 * (220_000 + 100_000)


def test_maturity_analysis(processor, two_leases):
    disclosure = processor.disclosure(YEAR_START, YEAR_END)

    assert disclosure.maturities_within_1_year == 12 * 320_000
    assert disclosure.maturities_1_to_5_years == 36 * 320_000
    assert disclosure.maturities_after_5_years == 0
    assert disclosure.total_undiscounted_payments == 48 * 320_000


def test_weighted_averages(processor, two_leases):
    disclosure = processor.disclosure(YEAR_START, YEAR_END)
    assert disclosure.weighted_avg_discount_rate == Decimal("0.060000")
    assert disclosure.weighted_avg_lease_term_months == Decimal("48.00")


def test_leases_not_yet_commenced_are_left_out(processor, make_lease, two_leases):
    processor.process_single_lease(make_lease("LATER", commencement=date(2026, 6, 1)))
    disclosure = processor.disclosure(YEAR_START, YEAR_END)
    assert disclosure.total_finance_leases + disclosure.total_operating_leases == 2


def test_option_counts(processor, make_lease):
    processor.process_single_lease(make_lease(
        "RENEW", renewal_option=RenewalOption(exercisable=True, term_months=24)))
    processor.process_single_lease(make_lease("PLAIN"))
    disclosure = processor.disclosure(YEAR_START, YEAR_END)

    assert disclosure.leases_with_extension_options == 1
    assert disclosure.leases_with_purchase_options == 0


def test_mixed_currencies_are_rejected(make_lease):
    engine = LeaseProcessor()
    usd = engine.process_single_lease(make_lease("USD-1")).to_disclosure_input()
    eur = engine.process_single_lease(make_lease("EUR-1", currency="EUR")).to_disclosure_input()

    with pytest.raises(CurrencyMismatch) as exc_info:
        DisclosureAggregator().aggregate([usd, eur], YEAR_START, YEAR_END, currency="USD")
    assert exc_info.value.lease_id == "EUR-1"

    disclosure = DisclosureAggregator().aggregate([eur], YEAR_START, YEAR_END)
    assert disclosure.currency == "EUR"


def test_empty_portfolio():
    disclosure = DisclosureAggregator().aggregate([], YEAR_START, YEAR_END, reporting_period="FY2025")
    assert disclosure.reporting_period == "FY2025"
    assert disclosure.total_lease_liabilities == 0
    assert disclosure.weighted_avg_discount_rate == 0
    assert set(disclosure.totals_by_type) == {LeaseType.FINANCE, LeaseType.OPERATING}


def test_aggregation_does_not_touch_sources(processor, ledger, two_leases):
    before = ledger.current_schedule("FIN-001")
    processor.disclosure(YEAR_START, YEAR_END)
    assert ledger.current_schedule("FIN-001") == before


def test_terminated_lease_drops_off_the_balance_sheet(processor, operating_lease):
    rows = processor.process_single_lease(operating_lease).rows
    processor.apply_modification("OP-001", date(2027, 1, 1), ModificationTerms(
        "TERM-1", ModificationType.FULL_TERMINATION))

    before = processor.disclosure(date(2026, 1, 1), date(2026, 12, 31))
    assert before.total_operating_leases == 1
    assert before.total_lease_liabilities == rows[23].closing_liability

    after = processor.disclosure(date(2027, 1, 1), date(2027, 12, 31))
    assert after.total_operating_leases == 0
    assert after.total_lease_liabilities == 0
    assert after.total_rou_assets == 0
    assert after.total_undiscounted_payments == 0

    # a period straddling the termination keeps the activity up to it
    straddling = processor.disclosure(date(2026, 7, 1), date(2027, 6, 30))
    assert straddling.total_lease_liabilities == 0
    assert straddling.total_operating_leases == 0
    assert straddling.total_interest == sum(r.interest_expense for r in rows[18:24])
