"""
Disclosures Generator
Aggregates active leases into an IFRS 16 / ASC 842 reporting-period disclosure

Pure aggregation: source schedules are only read.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from lease_accounting.core.errors import CurrencyMismatch
from lease_accounting.core.models import (
    Lease,
    LeaseAmortizationSchedule,
    LeaseDisclosure,
    LeasePayment,
    LeaseStatus,
    LeaseType,
    LeaseTypeTotals,
)
from lease_accounting.core.period_activity import PeriodActivityCalculator
from lease_accounting.utils.date_utils import add_months
from lease_accounting.utils.finance import quantize_rate, weighted_average

logger = logging.getLogger(__name__)

TERM_QUANTUM = Decimal('0.01')

_CLOSED_STATUSES = (LeaseStatus.TERMINATED, LeaseStatus.EXPIRED)


def _derecognized(lease: Lease, as_of: date) -> bool:
    """Terminated or expired and off the balance sheet by as_of"""
    return lease.status in _CLOSED_STATUSES and lease.end_date < as_of


@dataclass(frozen=True)
class DisclosureInput:
    """One lease with the schedule in force and the rate it is measured at"""
    lease: Lease
    rows: Sequence[LeaseAmortizationSchedule]
    payments: Sequence[LeasePayment]
    discount_rate: Decimal


class DisclosureAggregator:
    """
    Generate lease disclosures for a reporting period

    Returns a LeaseDisclosure with:
    - Balances at period end (ROU assets, liabilities split current/non-current)
    - Activity in the period (depreciation, interest, payments)
    - Maturity analysis of undiscounted remaining payments (<=1yr, 1-5yr, >5yr)
    - Weighted-average discount rate and remaining term, weighted by outstanding balance
    - Extension and purchase option counts

    Terminated or expired leases count only for activity up to their end date.
    """

    def aggregate(self, active_leases_with_schedules: Iterable[DisclosureInput], period_start: date,
                  period_end: date, currency: Optional[str] = None,
                  reporting_period: Optional[str] = None) -> LeaseDisclosure:
        leases: List[DisclosureInput] = [
            item for item in active_leases_with_schedules
            if item.rows and item.lease.commencement_date <= period_end
            and not _derecognized(item.lease, period_start)
        ]

        if currency is None:
            currency = leases[0].lease.currency if leases else "USD"
        for item in leases:
            if item.lease.currency != currency:
                raise CurrencyMismatch(
                    f"Lease {item.lease.lease_id} is in {item.lease.currency}, disclosure is in {currency}",
                    lease_id=item.lease.lease_id,
                )

        disclosure = LeaseDisclosure(
            reporting_period=reporting_period or f"{period_start.isoformat()}/{period_end.isoformat()}",
            period_start=period_start,
            period_end=period_end,
            currency=currency,
            totals_by_type={lease_type: LeaseTypeTotals() for lease_type in LeaseType},
        )

        one_year = add_months(period_end, 12)
        five_years = add_months(period_end, 60)
        rate_weights = []
        term_weights = []

        for item in leases:
            calculator = PeriodActivityCalculator(item.rows)
            activity = calculator.activity(period_start, period_end)
            disclosure.total_depreciation += activity.depreciation
            disclosure.total_interest += activity.interest
            disclosure.total_lease_payments += activity.payments
            if _derecognized(item.lease, period_end):
                # ended during the period: activity only, nothing left on the balance sheet
                continue

            liability, rou = calculator.closing_at(period_end)
            liability_in_a_year = calculator.outstanding_balance(one_year)

            lease_type = item.lease.lease_type or LeaseType.OPERATING
            if lease_type is LeaseType.FINANCE:
                disclosure.total_finance_leases += 1
            else:
                disclosure.total_operating_leases += 1
            totals = disclosure.totals_by_type[lease_type]
            totals.count += 1
            totals.rou_assets += rou
            totals.lease_liabilities += liability

            disclosure.total_rou_assets += rou
            disclosure.total_lease_liabilities += liability
            disclosure.current_lease_liabilities += liability - liability_in_a_year
            disclosure.non_current_lease_liabilities += liability_in_a_year

            for payment in item.payments:
                if payment.period_start <= period_end:
                    continue
                if payment.period_start <= one_year:
                    disclosure.maturities_within_1_year += payment.total_payment
                elif payment.period_start <= five_years:
                    disclosure.maturities_1_to_5_years += payment.total_payment
                else:
                    disclosure.maturities_after_5_years += payment.total_payment

            rate_weights.append((item.discount_rate, liability))
            term_weights.append((Decimal(calculator.remaining_months(period_end)), liability))

            if item.lease.renewal_option.exercisable:
                disclosure.leases_with_extension_options += 1
            if item.lease.purchase_option.exercisable:
                disclosure.leases_with_purchase_options += 1

        disclosure.weighted_avg_discount_rate = quantize_rate(weighted_average(rate_weights))
        disclosure.weighted_avg_lease_term_months = weighted_average(term_weights).quantize(TERM_QUANTUM)

        logger.info(f"📑 Disclosure {disclosure.reporting_period}: {len(leases)} leases, "
                    f"liabilities {disclosure.total_lease_liabilities}, ROU {disclosure.total_rou_assets}")
        return disclosure
