"""
Period Activity Calculator
Balances as of a date and activity between two dates, read off amortization rows

Rows are attributed to the reporting window that contains their period_end.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Sequence, Tuple

from lease_accounting.core.models import LeaseAmortizationSchedule, _Serializable
from lease_accounting.utils.date_utils import eomonth

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodActivity(_Serializable):
    depreciation: int = 0
    interest: int = 0
    payments: int = 0


@dataclass(frozen=True)
class PeriodProjection(_Serializable):
    projection_number: int
    projection_date: date
    closing_liability: int
    closing_rou_asset: int
    depreciation: int
    interest: int
    payments: int


class PeriodActivityCalculator:
    """
    Queries over one lease's merged amortization rows
    """

    def __init__(self, rows: Sequence[LeaseAmortizationSchedule]):
        self.rows = sorted(rows, key=lambda r: r.period_number)

    def closing_at(self, as_of: date) -> Tuple[int, int]:
        """
        (liability, ROU asset) as of a date

        Before the first period starts nothing is recognized yet; inside the
        first period the opening balances apply.
        """
        if not self.rows or as_of < self.rows[0].period_start:
            return 0, 0

        closed = [r for r in self.rows if r.period_end <= as_of]
        if not closed:
            return self.rows[0].opening_liability, self.rows[0].opening_rou_asset
        last = closed[-1]
        return last.closing_liability, last.closing_rou_asset

    def outstanding_balance(self, as_of: date) -> int:
        return self.closing_at(as_of)[0]

    def activity(self, start_date: date, end_date: date) -> PeriodActivity:
        """
        Depreciation, interest and payments of rows whose period ends in [start_date, end_date]
        """
        depreciation = interest = payments = 0
        for row in self.rows:
            if start_date <= row.period_end <= end_date:
                depreciation += row.depreciation_expense
                interest += row.interest_expense
                payments += row.payment
        return PeriodActivity(depreciation, interest, payments)

    def remaining_months(self, as_of: date) -> int:
        """Months of lease term left after as_of; depreciation-only rows are not lease term"""
        remaining = 0
        for row in self.rows:
            if row.period_start > as_of and (row.payment or row.opening_liability):
                remaining += _months_in(row)
        return remaining

    def projections(self, balance_date: date, projection_periods: int = 3,
                    period_months: int = 3) -> List[PeriodProjection]:
        """
        Roll balances forward in fixed windows from a balance date

        Args:
            balance_date: Date the first window opens after
            projection_periods: Number of windows (at most 6)
            period_months: Length of each window in months, each ending on a month end
        Returns:
            One PeriodProjection per window, stopping at the end of the schedule
        """
        if not self.rows or projection_periods <= 0:
            return []

        last_end = self.rows[-1].period_end
        projections = []
        opened = balance_date
        for number in range(1, min(projection_periods, 6) + 1):
            if opened >= last_end:
                break
            closes = min(eomonth(opened, period_months), last_end)

            liability, rou = self.closing_at(closes)
            activity = self.activity(opened + timedelta(days=1), closes)
            projections.append(PeriodProjection(
                projection_number=number,
                projection_date=closes,
                closing_liability=liability,
                closing_rou_asset=rou,
                depreciation=activity.depreciation,
                interest=activity.interest,
                payments=activity.payments,
            ))
            opened = closes

        logger.debug(f"🔮 {len(projections)} projection windows from {balance_date}")
        return projections


def _months_in(row: LeaseAmortizationSchedule) -> int:
    months = (row.period_end.year - row.period_start.year) * 12 + row.period_end.month - row.period_start.month
    return months + 1
