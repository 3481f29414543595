"""
Lease Modification Handler
Remeasures the liability and ROU asset when lease terms change

A modification takes effect at a payment-period boundary: the first period
starting on or after the effective date (period k). Rows 1..k-1 are never
touched; a new amortization segment is generated from period k with the
remeasured balances as opening values.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from typing import List, NamedTuple, Optional, Sequence

from lease_accounting.config import PolicyConfig
from lease_accounting.core.amortization import (
    AmortizationEngine,
    AmortizationResult,
    DepreciationPolicy,
    PeriodicRate,
    present_value_of,
    useful_life_months,
)
from lease_accounting.core.classification import ClassificationEngine
from lease_accounting.core.errors import (
    InvalidTerm,
    ModificationBeforeCommencement,
    ModificationError,
)
from lease_accounting.core.models import (
    DiscountRate,
    Lease,
    LeaseAmortizationSchedule,
    LeaseLiability,
    LeaseModification,
    LeasePayment,
    LeasePaymentSchedule,
    LeaseStatus,
    ModificationType,
    RightOfUseAsset,
    advance_status,
)
from lease_accounting.core.rate_resolver import LeaseRateTerms, RateResolver
from lease_accounting.schedule.payment_schedule import PaymentScheduleBuilder, lease_coverage_end, terminal_amount
from lease_accounting.utils.date_utils import add_months, months_between
from lease_accounting.utils.finance import round_minor

logger = logging.getLogger(__name__)

# Modification types that change the lease term or the underlying asset,
# after which the discount rate is determined afresh
_RATE_RESET_TYPES = {
    ModificationType.TERM_EXTENSION,
    ModificationType.TERM_REDUCTION,
    ModificationType.SCOPE_CHANGE,
    ModificationType.PARTIAL_TERMINATION,
}


@dataclass(frozen=True)
class ModificationTerms:
    """
    What changes, effective from the modification date

    new_term_months is the total term measured from commencement.
    scope_change_fraction is the share of the asset given up (0.5 = half the
    floor space); zero or negative means no decrease in scope.
    new_schedule replaces the payment rule from the effective period; if only
    new_base_payment is given, the rule in force is continued at that amount.
    """
    modification_id: str
    modification_type: ModificationType
    modification_date: Optional[date] = None
    reason: str = ""
    new_term_months: Optional[int] = None
    new_schedule: Optional[LeasePaymentSchedule] = None
    new_base_payment: Optional[int] = None
    new_implicit_rate: Optional[Decimal] = None
    new_incremental_borrowing_rate: Optional[Decimal] = None
    scope_change_fraction: Decimal = Decimal(0)
    termination_penalty: int = 0


class Remeasurement(NamedTuple):
    modification: LeaseModification
    liability: LeaseLiability
    rou_asset: RightOfUseAsset
    segment: AmortizationResult


class ModificationOutcome(NamedTuple):
    """A remeasurement together with the lease and payments it leaves in force from period k"""
    remeasurement: Remeasurement
    lease: Lease
    payments: List[LeasePayment]


def effective_period_number(rows: Sequence[LeaseAmortizationSchedule], effective_date: date) -> int:
    """First period starting on or after effective_date (k)"""
    for row in rows:
        if row.period_start >= effective_date:
            return row.period_number
    raise ModificationError(
        f"Modification effective {effective_date} falls after the last scheduled period",
        lease_id=rows[-1].lease_id if rows else None,
    )


class ModificationEngine:
    """
    Remeasures a lease at a modification and produces the new schedule segment
    """

    def __init__(self, policy: Optional[PolicyConfig] = None,
                 rate_resolver: Optional[RateResolver] = None,
                 schedule_builder: Optional[PaymentScheduleBuilder] = None,
                 amortization_engine: Optional[AmortizationEngine] = None,
                 classification_engine: Optional[ClassificationEngine] = None):
        self.policy = policy or PolicyConfig()
        self.rate_resolver = rate_resolver or RateResolver(self.policy)
        self.schedule_builder = schedule_builder or PaymentScheduleBuilder()
        self.amortization_engine = amortization_engine or AmortizationEngine(self.policy)
        self.classification_engine = classification_engine or ClassificationEngine(self.policy)

    def remeasure(self, lease: Lease, existing_liability: LeaseLiability, existing_rou_asset: RightOfUseAsset,
                  effective_date: date, new_terms: ModificationTerms,
                  existing_rows: Sequence[LeaseAmortizationSchedule]) -> Remeasurement:
        """
        Remeasure a lease from effective_date

        Returns:
            Remeasurement(modification record, new liability, new ROU asset, new segment rows)
        """
        return self.apply(lease, existing_liability, existing_rou_asset, effective_date, new_terms,
                          existing_rows).remeasurement

    def apply(self, lease: Lease, existing_liability: LeaseLiability, existing_rou_asset: RightOfUseAsset,
              effective_date: date, new_terms: ModificationTerms,
              existing_rows: Sequence[LeaseAmortizationSchedule]) -> ModificationOutcome:
        """
        Remeasure a lease and build the lease as it reads afterwards

        Args:
            lease: Lease as currently in force (before this modification)
            existing_liability: Liability recognized for the current segment
            existing_rou_asset: ROU asset recognized for the current segment
            effective_date: Date the new terms apply from
            new_terms: The modification
            existing_rows: Current amortization schedule (all segments merged)
        Returns:
            ModificationOutcome(remeasurement, modified lease, payments from period k)
        """
        if effective_date < lease.commencement_date:
            raise ModificationBeforeCommencement(
                f"Modification {new_terms.modification_id} effective {effective_date} "
                f"precedes commencement {lease.commencement_date}",
                lease_id=lease.lease_id,
            )
        if not existing_rows:
            raise ModificationError("Lease has no amortization schedule to modify", lease_id=lease.lease_id)

        k = effective_period_number(existing_rows, effective_date)
        boundary_row = next(r for r in existing_rows if r.period_number == k)
        boundary = boundary_row.period_start
        if boundary >= lease_coverage_end(lease):
            raise ModificationError(
                f"Modification effective {effective_date} falls after the last payment period",
                lease_id=lease.lease_id,
            )
        prior = [r for r in existing_rows if r.period_number < k]

        # (a) balances carried into the modification
        old_liability = prior[-1].closing_liability if prior else existing_liability.initial_liability
        old_rou = prior[-1].closing_rou_asset if prior else existing_rou_asset.initial_cost

        # (b) discount rate
        original_rate = self.rate_resolver.resolve_rate(LeaseRateTerms.from_lease(lease))
        new_rate = self._new_rate(lease, boundary, new_terms, original_rate)

        # (c) remaining payments under the modified terms
        modified = self.modified_lease(lease, boundary, new_terms, k)
        full_termination = new_terms.modification_type is ModificationType.FULL_TERMINATION
        remaining = [] if full_termination else [
            p for p in self.schedule_builder.build_for_lease(modified) if p.period_number >= k
        ]
        segment_number = max(r.segment_number for r in existing_rows) + 1

        # (d) new liability
        periodic_rate = PeriodicRate(new_rate.annual_rate, self._frequency_months(modified, boundary),
                                     self.policy.day_count)
        new_liability = present_value_of(remaining, periodic_rate) if remaining else 0

        # (e)-(f) adjustments and gain/loss
        liability_adjustment = new_liability - old_liability
        rou_adjustment, gain_loss = self._adjustments(old_rou, liability_adjustment, new_terms)
        new_rou = old_rou + rou_adjustment
        if new_rou < 0:
            # the part of the reduction the asset cannot absorb is a gain
            gain_loss += new_rou
            rou_adjustment -= new_rou
            new_rou = 0

        # (g) new segment from period k
        if full_termination:
            lease_type = modified.lease_type
            segment = AmortizationResult(rows=[])
            remaining_life = 0
        else:
            lease_type = self.classification_engine.classify(modified, new_liability)
            modified.lease_type = lease_type
            elapsed = months_between(lease.commencement_date, boundary)
            remaining_life = max(useful_life_months(modified) - elapsed, periodic_rate.frequency_months)
            depreciation_policy = DepreciationPolicy(
                lease_type=lease_type,
                method=modified.depreciation_method,
                residual_value=modified.residual_value,
                depreciation_periods=max(1, remaining_life // periodic_rate.frequency_months),
            )
            segment = self.amortization_engine.amortize(
                new_liability, new_rou, remaining, periodic_rate, depreciation_policy,
                lease_id=lease.lease_id, segment_number=segment_number,
            )

        modification = LeaseModification(
            modification_id=new_terms.modification_id,
            lease_id=lease.lease_id,
            modification_type=new_terms.modification_type,
            modification_date=new_terms.modification_date or effective_date,
            effective_date=effective_date,
            effective_period_number=k,
            reason=new_terms.reason,
            original_term_months=lease.term_months,
            new_term_months=modified.term_months,
            original_payment=boundary_row.payment,
            new_payment=remaining[0].capitalized_amount if remaining else 0,
            original_discount_rate=original_rate.annual_rate,
            new_discount_rate=new_rate.annual_rate,
            old_liability=old_liability,
            new_liability=new_liability,
            old_rou_asset=old_rou,
            new_rou_asset=new_rou,
            liability_adjustment=liability_adjustment,
            rou_adjustment=rou_adjustment,
            remeasurement_gain_loss=gain_loss,
            currency=lease.currency,
        )
        liability = LeaseLiability(
            lease_id=lease.lease_id,
            initial_liability=new_liability,
            calculation_date=boundary,
            currency=lease.currency,
        )
        rou_asset = RightOfUseAsset(
            lease_id=lease.lease_id,
            initial_cost=new_rou,
            depreciation_method=modified.depreciation_method,
            useful_life_months=remaining_life,
            depreciation_start_date=boundary,
            depreciation_end_date=add_months(boundary, remaining_life) - timedelta(days=1),
            residual_value=0 if full_termination else modified.residual_value,
            currency=lease.currency,
        )

        logger.info(f"🔄 Lease {lease.lease_id}: {new_terms.modification_type.value} from period {k} "
                    f"(liability {old_liability} -> {new_liability}, ROU {old_rou} -> {new_rou}, "
                    f"gain/loss {gain_loss})")
        return ModificationOutcome(Remeasurement(modification, liability, rou_asset, segment), modified, remaining)

    def modified_lease(self, lease: Lease, boundary: date, new_terms: ModificationTerms, k: int) -> Lease:
        """
        The lease as it reads after the modification: schedules cut at the
        boundary, the new payment rule appended, term and status updated
        """
        full_termination = new_terms.modification_type is ModificationType.FULL_TERMINATION
        if full_termination:
            term_months = months_between(lease.commencement_date, boundary)
        else:
            term_months = new_terms.new_term_months or lease.term_months
        end = add_months(lease.commencement_date, term_months)
        if not full_termination and end <= boundary:
            raise InvalidTerm(
                f"New term of {term_months} months ends {end}, not after the modification boundary {boundary}",
                lease_id=lease.lease_id,
            )

        kept: List[LeasePaymentSchedule] = []
        in_force: Optional[LeasePaymentSchedule] = None
        for segment in sorted(lease.schedules, key=lambda s: s.effective_date):
            if segment.effective_date >= boundary:
                if in_force is None and segment.effective_date == boundary:
                    in_force = segment
                continue
            in_force = segment
            kept.append(replace(segment, end_date=boundary) if segment.end_date is None or segment.end_date > boundary
                        else segment)

        if not full_termination:
            kept.append(self._new_segment(lease, boundary, new_terms, in_force, k))

        status = LeaseStatus.TERMINATED if full_termination else LeaseStatus.MODIFIED
        modified = replace(
            lease,
            term_months=term_months,
            end_date=end - timedelta(days=1),
            schedules=kept,
            implicit_rate=new_terms.new_implicit_rate if new_terms.new_implicit_rate is not None
            else lease.implicit_rate,
            incremental_borrowing_rate=new_terms.new_incremental_borrowing_rate
            if new_terms.new_incremental_borrowing_rate is not None else lease.incremental_borrowing_rate,
        )
        if lease.status in (LeaseStatus.ACTIVE, LeaseStatus.MODIFIED):
            modified = advance_status(modified, status)
        return modified

    def _new_segment(self, lease: Lease, boundary: date, new_terms: ModificationTerms,
                     in_force: Optional[LeasePaymentSchedule], k: int) -> LeasePaymentSchedule:
        if new_terms.new_schedule is not None:
            return replace(new_terms.new_schedule, effective_date=boundary, end_date=None)
        if in_force is None:
            raise ModificationError(
                f"No payment schedule in force at {boundary} to continue", lease_id=lease.lease_id)

        base_payment = new_terms.new_base_payment
        if base_payment is None:
            # continue at the escalated amount payable in period k
            payments = self.schedule_builder.build_for_lease(lease)
            payment = next(p for p in payments if p.period_number == k)
            base_payment = payment.capitalized_amount
            if payment.period_number == payments[-1].period_number:
                base_payment -= terminal_amount(lease)

        return replace(
            in_force,
            schedule_id=f"{in_force.schedule_id}/{new_terms.modification_id}",
            effective_date=boundary,
            base_payment=base_payment,
            end_date=None,
        )

    def _new_rate(self, lease: Lease, boundary: date, new_terms: ModificationTerms,
                  original_rate: DiscountRate) -> DiscountRate:
        supplied = new_terms.new_implicit_rate is not None or new_terms.new_incremental_borrowing_rate is not None
        if new_terms.modification_type is ModificationType.RATE_CHANGE and not supplied:
            raise ModificationError(
                f"Rate change {new_terms.modification_id} supplies no new rate", lease_id=lease.lease_id)

        if supplied:
            return self.rate_resolver.resolve_rate(LeaseRateTerms(
                implicit_rate=new_terms.new_implicit_rate,
                incremental_borrowing_rate=new_terms.new_incremental_borrowing_rate
                if new_terms.new_incremental_borrowing_rate is not None else lease.incremental_borrowing_rate,
                lessee_type=lease.lessee_type,
                as_of=boundary,
                lease_id=lease.lease_id,
            ))
        if new_terms.modification_type in _RATE_RESET_TYPES:
            return self.rate_resolver.resolve_rate(LeaseRateTerms.from_lease(lease, as_of=boundary))
        return original_rate

    @staticmethod
    def _adjustments(old_rou: int, liability_adjustment: int, new_terms: ModificationTerms):
        """
        Returns (rou_adjustment, remeasurement_gain_loss); gain/loss positive = loss
        """
        modification_type = new_terms.modification_type
        fraction = Decimal(new_terms.scope_change_fraction)

        if modification_type is ModificationType.FULL_TERMINATION:
            rou_adjustment = -old_rou
            return rou_adjustment, liability_adjustment - rou_adjustment + new_terms.termination_penalty

        if modification_type is ModificationType.PARTIAL_TERMINATION and not Decimal(0) < fraction < Decimal(1):
            raise ModificationError(
                f"Partial termination {new_terms.modification_id} needs a scope fraction between 0 and 1, "
                f"got {fraction}"
            )

        if fraction > 0:
            rou_adjustment = -round_minor(Decimal(old_rou) * fraction)
            gain_loss = liability_adjustment - rou_adjustment + new_terms.termination_penalty
            return rou_adjustment, gain_loss

        # scope increase or re-pricing: capitalize the whole change
        return liability_adjustment, 0

    @staticmethod
    def _frequency_months(lease: Lease, boundary: date) -> int:
        if not lease.schedules:
            return 1
        in_force = [s for s in lease.schedules if s.effective_date <= boundary]
        segment = max(in_force, key=lambda s: s.effective_date) if in_force else lease.schedules[0]
        return segment.payment_frequency.months
