# tests/test_rate_resolver.py
from datetime import date
from decimal import Decimal

import pytest

from lease_accounting.config import PolicyConfig
from lease_accounting.core.errors import InvalidRate
from lease_accounting.core.models import LesseeType, RateSource
from lease_accounting.core.rate_resolver import LeaseRateTerms, RateResolver
from lease_accounting.utils.rfr_rates import RiskFreeRateTable

RFR_TABLE = RiskFreeRateTable([
    (date(2024, 1, 1), Decimal("0.04")),
    (date(2025, 1, 1), Decimal("0.045")),
])
RFR_POLICY = PolicyConfig(risk_free_rate_election=True)


def test_implicit_rate_is_preferred(make_lease):
    lease = make_lease(implicit_rate=Decimal("0.05"), incremental_borrowing_rate=Decimal("0.07"))
    rate = RateResolver().resolve_rate(LeaseRateTerms.from_lease(lease))
    assert rate.source is RateSource.IMPLICIT
    assert rate.annual_rate == Decimal("0.050000")


def test_incremental_borrowing_rate_fallback(make_lease):
    rate = RateResolver().resolve_rate(LeaseRateTerms.from_lease(make_lease()))
    assert rate.source is RateSource.INCREMENTAL_BORROWING
    assert rate.annual_rate == Decimal("0.06")
    assert str(rate.annual_rate) == "0.060000"


def test_no_rate_supplied(make_lease):
    with pytest.raises(InvalidRate) as exc_info:
        RateResolver().resolve_rate(LeaseRateTerms.from_lease(make_lease(incremental_borrowing_rate=None)))
    assert exc_info.value.lease_id == "L-001"


@pytest.mark.parametrize("value", [Decimal("6"), Decimal("0"), Decimal("-0.01"), "abc"])
def test_rates_must_be_fractions_between_zero_and_one(value):
    with pytest.raises(InvalidRate):
        RateResolver().resolve_rate(LeaseRateTerms(implicit_rate=value))


def test_private_lessee_risk_free_election(make_lease):
    lease = make_lease(lessee_type=LesseeType.PRIVATE)
    rate = RateResolver(RFR_POLICY, RFR_TABLE).resolve_rate(LeaseRateTerms.from_lease(lease))
    assert rate.source is RateSource.RISK_FREE
    assert rate.annual_rate == Decimal("0.045")


def test_risk_free_rate_needs_election_and_private_lessee(make_lease):
    public = make_lease(lessee_type=LesseeType.PUBLIC)
    assert RateResolver(RFR_POLICY, RFR_TABLE).resolve_rate(
        LeaseRateTerms.from_lease(public)).source is RateSource.INCREMENTAL_BORROWING

    private = make_lease(lessee_type=LesseeType.PRIVATE)
    assert RateResolver(PolicyConfig(), RFR_TABLE).resolve_rate(
        LeaseRateTerms.from_lease(private)).source is RateSource.INCREMENTAL_BORROWING


def test_implicit_rate_beats_risk_free(make_lease):
    lease = make_lease(lessee_type=LesseeType.PRIVATE, implicit_rate=Decimal("0.05"))
    rate = RateResolver(RFR_POLICY, RFR_TABLE).resolve_rate(LeaseRateTerms.from_lease(lease))
    assert rate.source is RateSource.IMPLICIT


def test_risk_free_rate_as_of_remeasurement_date(make_lease):
    lease = make_lease(lessee_type=LesseeType.PRIVATE)
    rate = RateResolver(RFR_POLICY, RFR_TABLE).resolve_rate(
        LeaseRateTerms.from_lease(lease, as_of=date(2024, 6, 30)))
    assert rate.annual_rate == Decimal("0.04")


def test_rate_table_lookup():
    assert RFR_TABLE.get_rate(date(2024, 6, 1)) == Decimal("0.040000")
    assert RFR_TABLE.get_rate(date(2025, 1, 1)) == Decimal("0.045000")
    assert RFR_TABLE.get_rate(date(2023, 12, 31)) is None


def test_rate_table_from_csv(tmp_path):
    csv_file = tmp_path / "rfr.csv"
    csv_file.write_text("effective_date,rate\n2024-01-01,4.25\nnot-a-date,4\n2024-07-01,3.9\n")

    table = RiskFreeRateTable()
    table.load_from_file(str(csv_file))
    assert table.get_rate(date(2024, 3, 1)) == Decimal("0.042500")
    assert table.get_rate(date(2024, 8, 1)) == Decimal("0.039000")
    assert len(table.rates) == 2
