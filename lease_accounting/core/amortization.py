"""
Amortization Engine
Effective-interest liability amortization with ROU asset depreciation

The liability is rolled forward unrounded; each row takes the rounded
cumulative interest less what earlier rows took, so rows balance in whole
minor units and rounding never accumulates. Whatever is left on the final
closing balance (rounding, or an opening liability that is not the PV of
the payments) is absorbed by the last row of the segment as a flagged
closure plug.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, localcontext
from typing import Iterator, List, Optional, Sequence

from lease_accounting.config import PolicyConfig
from lease_accounting.core.errors import ClosureMismatch, InvalidTerm, NegativeROUAsset
from lease_accounting.core.models import (
    DayCountConvention,
    DepreciationMethod,
    Lease,
    LeaseAmortizationSchedule,
    LeasePayment,
    LeaseType,
    PaymentTiming,
)
from lease_accounting.utils.date_utils import add_months, months_between
from lease_accounting.utils.finance import PRECISION, allocate_evenly, present_value, round_minor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodicRate:
    """
    Annual discount rate converted to the rate for one payment period

    PERIODIC: annual_rate * months in the period / 12 (e.g. annual/12 for monthly)
    ACTUAL_365: annual_rate * days in the period / 365

    frequency_months is the fallback period length, also used to lay out
    depreciation-only rows after the last payment.
    """
    annual_rate: Decimal
    frequency_months: int = 1
    day_count: DayCountConvention = DayCountConvention.PERIODIC

    def for_payment(self, payment: LeasePayment) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = PRECISION
            if self.day_count is DayCountConvention.ACTUAL_365:
                days = (payment.period_end - payment.period_start).days + 1
                return self.annual_rate * days / 365
            months = months_between(payment.period_start, payment.period_end + timedelta(days=1))
            return self.annual_rate * (months or self.frequency_months) / 12


@dataclass(frozen=True)
class DepreciationPolicy:
    """
    How the ROU asset is written down

    depreciation_periods is the number of payment periods the asset is
    depreciated over (Finance only); None means one per payment.
    """
    lease_type: LeaseType
    method: DepreciationMethod = DepreciationMethod.STRAIGHT_LINE
    residual_value: int = 0
    depreciation_periods: Optional[int] = None


@dataclass(frozen=True)
class NegativeAmortizationDetected:
    """Interest exceeded the capitalized payment for a sustained run of periods"""
    start_period: int
    end_period: int
    periods: int

    @property
    def message(self) -> str:
        return (f"Negative amortization for {self.periods} consecutive periods "
                f"({self.start_period}-{self.end_period})")


@dataclass
class AmortizationResult:
    """Rows of one amortization segment plus anything reported alongside them"""
    rows: List[LeaseAmortizationSchedule]
    warnings: List[NegativeAmortizationDetected] = field(default_factory=list)
    closure_plug: int = 0

    def __iter__(self) -> Iterator[LeaseAmortizationSchedule]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    def __getitem__(self, index):
        return self.rows[index]


def useful_life_months(lease: Lease) -> int:
    """
    Depreciation window of the ROU asset

    The asset's economic life when ownership passes to the lessee (outright
    or through a reasonably certain purchase option), otherwise the shorter
    of lease term and economic life.
    """
    economic_life = lease.economic_life_months
    if not economic_life or economic_life <= 0:
        return lease.term_months
    if lease.ownership_transfer or (lease.purchase_option.exercisable and lease.purchase_option.reasonably_certain):
        return economic_life
    return min(lease.term_months, economic_life)


def present_value_of(payments: Sequence[LeasePayment], periodic_rate: PeriodicRate) -> int:
    """
    PV of the capitalized (fixed + escalation) part of a payment run
    Variable payments are never capitalized
    """
    return present_value(
        [p.capitalized_amount for p in payments],
        [periodic_rate.for_payment(p) for p in payments],
        [p.payment_timing is PaymentTiming.ADVANCE for p in payments],
    )


def schedule_fingerprint(initial_liability: int, initial_rou_asset: int,
                         payment_schedule: Sequence[LeasePayment], periodic_rate: PeriodicRate,
                         depreciation_policy: DepreciationPolicy) -> str:
    """
    SHA-256 of everything amortize() depends on

    Equal fingerprints mean identical rows, so re-runs can be deduplicated.
    Payment actuals (status, paid amount) are left out: they never change the schedule.
    """
    payload = {
        'initial_liability': initial_liability,
        'initial_rou_asset': initial_rou_asset,
        'payments': [
            [p.period_number, p.period_start.isoformat(), p.period_end.isoformat(),
             p.capitalized_amount, p.payment_timing.value, p.currency]
            for p in payment_schedule
        ],
        'rate': [str(periodic_rate.annual_rate), periodic_rate.frequency_months, periodic_rate.day_count.value],
        'depreciation': [depreciation_policy.lease_type.value, depreciation_policy.method.value,
                         depreciation_policy.residual_value, depreciation_policy.depreciation_periods],
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(',', ':')).encode('utf-8')
    return hashlib.sha256(encoded).hexdigest()


def verify_schedule(rows: Sequence[LeaseAmortizationSchedule], tolerance: int = 1):
    """
    Audit a finished schedule

    Raises ClosureMismatch if a row does not balance or the liability does not
    close within tolerance, NegativeROUAsset if the ROU asset ever goes negative.
    Both carry every row as diagnostic context.
    """
    if not rows:
        return
    lease_id = rows[0].lease_id

    for row in rows:
        if row.opening_liability - row.principal_reduction != row.closing_liability:
            raise ClosureMismatch(
                f"Period {row.period_number}: liability does not roll forward "
                f"({row.opening_liability} - {row.principal_reduction} != {row.closing_liability})",
                lease_id=lease_id, context=rows,
            )
        if row.opening_rou_asset - row.depreciation_expense != row.closing_rou_asset:
            raise ClosureMismatch(
                f"Period {row.period_number}: ROU asset does not roll forward "
                f"({row.opening_rou_asset} - {row.depreciation_expense} != {row.closing_rou_asset})",
                lease_id=lease_id, context=rows,
            )
        if row.closing_rou_asset < 0:
            raise NegativeROUAsset(
                f"Period {row.period_number}: ROU asset closes at {row.closing_rou_asset}",
                lease_id=lease_id, context=rows,
            )

    final_balance = rows[-1].closing_liability
    if abs(final_balance) > tolerance:
        raise ClosureMismatch(
            f"Liability closes at {final_balance}, outside tolerance {tolerance}",
            lease_id=lease_id, context=rows,
        )


class AmortizationEngine:
    """
    Generates LeaseAmortizationSchedule rows for one schedule segment

    Stateless apart from the policy; the same inputs always give the same rows.
    """

    def __init__(self, policy: Optional[PolicyConfig] = None):
        self.policy = policy or PolicyConfig()

    def amortize(self, initial_liability: int, initial_rou_asset: int,
                 payment_schedule: Sequence[LeasePayment], periodic_rate: PeriodicRate,
                 depreciation_policy: DepreciationPolicy, lease_id: Optional[str] = None,
                 segment_number: int = 1) -> AmortizationResult:
        """
        Amortize a liability and its ROU asset over a payment run

        Args:
            initial_liability: Opening liability (minor units)
            initial_rou_asset: Opening ROU asset (minor units)
            payment_schedule: Payments of the segment, ordered by period
            periodic_rate: Rate per payment period
            depreciation_policy: Finance straight-line/accelerated or Operating single lease cost
            lease_id: Owning lease, defaults to the payments' lease_id
            segment_number: Schedule segment the rows belong to
        Returns:
            AmortizationResult with rows, negative amortization warnings and the closure plug
        """
        if not payment_schedule:
            raise InvalidTerm("Cannot amortize an empty payment schedule", lease_id=lease_id)
        lease_id = lease_id or payment_schedule[0].lease_id
        if initial_rou_asset < 0:
            raise NegativeROUAsset(f"Opening ROU asset is negative ({initial_rou_asset})", lease_id=lease_id)

        liability_rows = self._amortize_liability(initial_liability, payment_schedule, periodic_rate)
        closure_plug = liability_rows[-1][5]
        self._check_closure_plug(closure_plug, lease_id, liability_rows, payment_schedule)

        warnings = self._detect_negative_amortization(payment_schedule, liability_rows, lease_id)

        interest = [r[2] for r in liability_rows]
        if depreciation_policy.lease_type is LeaseType.OPERATING:
            depreciation = self._operating_depreciation(
                initial_liability, initial_rou_asset, payment_schedule, interest, depreciation_policy.residual_value)
        else:
            depreciation = self._finance_depreciation(
                initial_rou_asset, len(payment_schedule), depreciation_policy)

        rows = []
        rou = initial_rou_asset
        for index, payment in enumerate(payment_schedule):
            opening, payment_amount, interest_expense, principal, closing, plug = liability_rows[index]
            depreciation_expense = depreciation[index] if index < len(depreciation) else 0
            closing_rou = rou - depreciation_expense
            rows.append(LeaseAmortizationSchedule(
                lease_id=lease_id,
                period_number=payment.period_number,
                period_start=payment.period_start,
                period_end=payment.period_end,
                opening_liability=opening,
                payment=payment_amount,
                interest_expense=interest_expense,
                principal_reduction=principal,
                closing_liability=closing,
                opening_rou_asset=rou,
                depreciation_expense=depreciation_expense,
                closing_rou_asset=closing_rou,
                total_expense=interest_expense + depreciation_expense,
                closure_plug=plug,
                segment_number=segment_number,
                currency=payment.currency,
            ))
            rou = closing_rou

        rows.extend(self._trailing_depreciation_rows(
            rows[-1], depreciation[len(payment_schedule):], periodic_rate.frequency_months))

        for row in rows:
            if row.closing_rou_asset < 0:
                raise NegativeROUAsset(
                    f"Period {row.period_number}: ROU asset closes at {row.closing_rou_asset}",
                    lease_id=lease_id, context=rows,
                )

        logger.debug(f"📊 Lease {lease_id} segment {segment_number}: {len(rows)} rows, "
                     f"opening liability {initial_liability}, ROU {initial_rou_asset}")
        return AmortizationResult(rows=rows, warnings=warnings, closure_plug=closure_plug)

    def _amortize_liability(self, initial_liability: int, payments: Sequence[LeasePayment],
                            periodic_rate: PeriodicRate) -> List[tuple]:
        """
        Effective-interest roll forward on the unrounded balance
        Row interest is the rounded cumulative interest less what earlier rows took
        Returns (opening, payment, interest, principal, closing, plug) per payment
        """
        rows = []
        opening = initial_liability
        exact_balance = Decimal(initial_liability)
        exact_accrued = Decimal(0)
        accrued = 0
        for payment in payments:
            amount = payment.capitalized_amount
            rate = periodic_rate.for_payment(payment)
            with localcontext() as ctx:
                ctx.prec = PRECISION
                # In advance the payment settles before interest accrues
                base = exact_balance - amount if payment.payment_timing is PaymentTiming.ADVANCE else exact_balance
                exact_interest = base * rate
                exact_balance = exact_balance + exact_interest - amount
                exact_accrued += exact_interest
                interest = round_minor(exact_accrued) - accrued
            accrued += interest
            principal = amount - interest
            closing = opening - principal
            rows.append([opening, amount, interest, principal, closing, 0])
            opening = closing

        last = rows[-1]
        plug = last[4]
        if plug != 0:
            last[3] += plug
            last[4] = 0
            last[5] = plug
        return [tuple(r) for r in rows]

    def _check_closure_plug(self, plug: int, lease_id: Optional[str], liability_rows: List[tuple],
                            payments: Sequence[LeasePayment]):
        if abs(plug) <= self.policy.rounding_tolerance:
            return

        logger.warning(f"⚠️  Lease {lease_id}: closing liability of {plug} absorbed in period "
                       f"{payments[-1].period_number} as closure plug")
        limit = self.policy.max_closure_plug
        if limit is not None and abs(plug) > limit:
            raise ClosureMismatch(
                f"Closure plug {plug} exceeds the allowed maximum of {limit}",
                lease_id=lease_id,
                context=[dict(zip(('opening', 'payment', 'interest', 'principal', 'closing', 'plug'), r))
                         for r in liability_rows],
            )

    def _detect_negative_amortization(self, payments: Sequence[LeasePayment], liability_rows: List[tuple],
                                      lease_id: Optional[str]) -> List[NegativeAmortizationDetected]:
        grace = self.policy.negative_amortization_grace_periods
        warnings = []
        run: List[int] = []

        def close_run():
            if len(run) > grace:
                warning = NegativeAmortizationDetected(run[0], run[-1], len(run))
                logger.warning(f"⚠️  Lease {lease_id}: {warning.message}")
                warnings.append(warning)

        for payment, row in zip(payments, liability_rows):
            if row[2] > payment.capitalized_amount:
                run.append(payment.period_number)
            else:
                close_run()
                run = []
        close_run()
        return warnings

    @staticmethod
    def _operating_depreciation(initial_liability: int, initial_rou_asset: int,
                                payments: Sequence[LeasePayment], interest: List[int],
                                residual_value: int) -> List[int]:
        """
        Single lease cost: the total cost is straight-lined and depreciation is
        the balancing figure after interest. A charge never takes the ROU asset
        below the residual value; the final row lands it on the residual exactly.
        """
        total_cost = (sum(p.capitalized_amount for p in payments)
                      + (initial_rou_asset - initial_liability) - residual_value)
        straight_line = allocate_evenly(total_cost, len(payments))
        depreciation = []
        remaining = initial_rou_asset - residual_value
        for cost, interest_t in zip(straight_line[:-1], interest[:-1]):
            charge = min(cost - interest_t, remaining)
            depreciation.append(charge)
            remaining -= charge
        depreciation.append(remaining)
        return depreciation


    @staticmethod
    def _finance_depreciation(initial_rou_asset: int, payment_count: int,
                              policy: DepreciationPolicy) -> List[int]:
        periods = policy.depreciation_periods or payment_count
        depreciable = initial_rou_asset - policy.residual_value
        if depreciable < 0:
            raise NegativeROUAsset(
                f"Residual value {policy.residual_value} exceeds ROU asset {initial_rou_asset}")

        if policy.method is DepreciationMethod.DECLINING_BALANCE:
            return _declining_balance(depreciable, policy.residual_value, periods)
        if policy.method is DepreciationMethod.SUM_OF_YEARS_DIGITS:
            return _sum_of_years_digits(depreciable, periods)
        return allocate_evenly(depreciable, periods)

    @staticmethod
    def _trailing_depreciation_rows(last_row: LeaseAmortizationSchedule, depreciation: List[int],
                                    frequency_months: int) -> List[LeaseAmortizationSchedule]:
        """Depreciation-only rows once payments end but the useful life has not"""
        rows = []
        previous = last_row
        first_start = last_row.period_end + timedelta(days=1)
        for index, depreciation_expense in enumerate(depreciation):
            period_start = add_months(first_start, index * frequency_months)
            period_end = add_months(first_start, (index + 1) * frequency_months) - timedelta(days=1)
            row = LeaseAmortizationSchedule(
                lease_id=previous.lease_id,
                period_number=previous.period_number + 1,
                period_start=period_start,
                period_end=period_end,
                opening_liability=0,
                payment=0,
                interest_expense=0,
                principal_reduction=0,
                closing_liability=0,
                opening_rou_asset=previous.closing_rou_asset,
                depreciation_expense=depreciation_expense,
                closing_rou_asset=previous.closing_rou_asset - depreciation_expense,
                total_expense=depreciation_expense,
                segment_number=previous.segment_number,
                currency=previous.currency,
            )
            rows.append(row)
            previous = row
        return rows


def _declining_balance(depreciable: int, residual_value: int, periods: int) -> List[int]:
    """
    Double-declining balance on net book value, switching to straight-line
    once that gives the larger charge; the last period takes what is left
    """
    allocations = []
    remaining = depreciable
    for t in range(periods):
        left = periods - t
        if left == 1:
            charge = remaining
        else:
            with localcontext() as ctx:
                ctx.prec = PRECISION
                declining = round_minor(Decimal(remaining + residual_value) * 2 / periods)
                straight = round_minor(Decimal(remaining) / left)
            charge = min(max(declining, straight), remaining)
        allocations.append(charge)
        remaining -= charge
    return allocations


def _sum_of_years_digits(depreciable: int, periods: int) -> List[int]:
    """Weights periods, periods-1, ..., 1 with cumulative rounding"""
    total_weight = periods * (periods + 1) // 2
    allocations = []
    allocated = 0
    weight = 0
    for t in range(periods):
        weight += periods - t
        with localcontext() as ctx:
            ctx.prec = PRECISION
            cumulative = round_minor(Decimal(depreciable) * weight / total_weight)
        allocations.append(cumulative - allocated)
        allocated = cumulative
    return allocations
