"""
Payment Schedule Builder
Expands payment schedule segments into concrete, dated LeasePayment rows

A lease may carry several segments (e.g. after a modification). Segments
must not overlap and must jointly cover [commencement, commencement + term).
Each segment holds a whole number of payment periods, so a single payment is
never split across two segments.
"""

import logging
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from lease_accounting.core.errors import (
    ConfigurationError,
    InvalidRate,
    InvalidTerm,
    MissingScheduleSegment,
    OverlappingScheduleSegments,
)
from lease_accounting.core.models import (
    EscalationType,
    Lease,
    LeasePayment,
    LeasePaymentSchedule,
    PaymentTiming,
)
from lease_accounting.utils.date_utils import add_months, months_between, with_day_of_month
from lease_accounting.utils.finance import round_minor

logger = logging.getLogger(__name__)

DEFAULT_ESCALATION_FREQUENCY_MONTHS = 12


def lease_coverage_end(lease: Lease) -> date:
    """Exclusive end of the period the payment schedules must cover"""
    return add_months(lease.commencement_date, lease.term_months)


def segment_period_count(start_date: date, end_date: date, frequency_months: int,
                         lease_id: Optional[str] = None) -> int:
    """
    Number of whole payment periods in [start_date, end_date)
    Raises InvalidTerm if the span is not a whole number of periods
    """
    months = months_between(start_date, end_date)
    if add_months(start_date, months) != end_date or months % frequency_months != 0:
        raise InvalidTerm(
            f"Segment {start_date} -> {end_date} is not a whole number of "
            f"{frequency_months}-month periods",
            lease_id=lease_id,
        )
    return months // frequency_months


def validate_segments(lease: Lease) -> List[Tuple[LeasePaymentSchedule, date]]:
    """
    Check that the lease's schedule segments tile its term

    Returns:
        (segment, exclusive end date) pairs ordered by effective date
    """
    if not lease.schedules:
        raise MissingScheduleSegment(f"Lease {lease.lease_id} has no payment schedule", lease_id=lease.lease_id)

    segments = sorted(lease.schedules, key=lambda s: s.effective_date)
    coverage_end = lease_coverage_end(lease)

    if segments[0].effective_date < lease.commencement_date:
        raise InvalidTerm(
            f"Segment {segments[0].schedule_id} starts {segments[0].effective_date}, "
            f"before commencement {lease.commencement_date}",
            lease_id=lease.lease_id,
        )
    if segments[0].effective_date > lease.commencement_date:
        raise MissingScheduleSegment(
            f"No payment schedule covers {lease.commencement_date} -> {segments[0].effective_date}",
            lease_id=lease.lease_id,
        )

    bounded = []
    for index, segment in enumerate(segments):
        next_start = segments[index + 1].effective_date if index + 1 < len(segments) else coverage_end
        end = segment.end_date or next_start

        if segment.currency != lease.currency:
            raise ConfigurationError(
                f"Segment {segment.schedule_id} currency {segment.currency} differs from lease currency {lease.currency}",
                lease_id=lease.lease_id,
            )
        if end > next_start or segment.effective_date >= end:
            raise OverlappingScheduleSegments(
                f"Segment {segment.schedule_id} ({segment.effective_date} -> {end}) overlaps the next segment",
                lease_id=lease.lease_id,
            )
        if end < next_start:
            raise MissingScheduleSegment(
                f"No payment schedule covers {end} -> {next_start}",
                lease_id=lease.lease_id,
            )
        bounded.append((segment, end))

    return bounded


def terminal_amount(lease: Lease) -> int:
    """Amounts owed with the final payment: expected residual value guarantee plus a reasonably certain purchase price"""
    amount = lease.residual_value_guarantee or 0
    option = lease.purchase_option
    if option.exercisable and option.reasonably_certain and option.price:
        amount += option.price
    return amount


def truncate_payments(payments: Sequence[LeasePayment], effective_date: date) -> Tuple[List[LeasePayment], int]:
    """
    Cut a payment run at a modification date without splitting a payment

    The period containing effective_date stays whole in the old run; the new
    run starts at the first period beginning on or after effective_date.

    Returns:
        (payments kept, period number the new run starts with)
    """
    kept = [p for p in payments if p.period_start < effective_date]
    next_number = kept[-1].period_number + 1 if kept else 1
    return kept, next_number


class PaymentScheduleBuilder:
    """
    Generates LeasePayment rows from LeasePaymentSchedule segments
    """

    def build(self, schedule_def: LeasePaymentSchedule, period_count: int,
              lease_id: str = "", first_period_number: int = 1) -> List[LeasePayment]:
        """
        Expand one schedule segment into period_count payments

        Args:
            schedule_def: Generative rule (frequency, timing, escalation, cap/floor)
            period_count: Number of periods to materialize
            lease_id: Owning lease
            first_period_number: Period number of the first payment (segments continue numbering)
        Returns:
            Payments ordered by period start
        """
        if period_count < 0:
            raise InvalidTerm(f"Negative period count {period_count}", lease_id=lease_id)
        self._validate_escalation(schedule_def, lease_id)

        frequency = schedule_def.payment_frequency.months
        payments: List[LeasePayment] = []
        current = schedule_def.base_payment
        applied_events = 0

        for index in range(period_count):
            period_start = add_months(schedule_def.effective_date, index * frequency)
            period_end = add_months(schedule_def.effective_date, (index + 1) * frequency) - timedelta(days=1)

            events = self._escalation_events(schedule_def, period_start)
            for _ in range(events - applied_events):
                current = self._escalate(schedule_def, current)
            applied_events = events

            if schedule_def.payment_timing is PaymentTiming.ADVANCE:
                due_date = period_start
            else:
                due_date = period_end
            if schedule_def.payment_day is not None:
                due_date = with_day_of_month(due_date, schedule_def.payment_day)

            payments.append(LeasePayment(
                lease_id=lease_id,
                period_number=first_period_number + index,
                period_start=period_start,
                period_end=period_end,
                due_date=due_date,
                fixed_payment=schedule_def.base_payment,
                variable_payment=0,
                escalation_amount=current - schedule_def.base_payment,
                payment_timing=schedule_def.payment_timing,
                schedule_id=schedule_def.schedule_id,
                currency=schedule_def.currency,
            ))

        return payments

    def build_for_lease(self, lease: Lease) -> List[LeasePayment]:
        """
        Expand every segment of a lease into one contiguous payment run,
        adding terminal amounts (reasonably-certain purchase price, expected
        residual value guarantee) to the last payment
        """
        payments: List[LeasePayment] = []
        for segment, end in validate_segments(lease):
            count = segment_period_count(segment.effective_date, end,
                                         segment.payment_frequency.months, lease.lease_id)
            payments.extend(self.build(segment, count, lease.lease_id, len(payments) + 1))

        terminal = terminal_amount(lease)
        if terminal and payments:
            last = payments[-1]
            payments[-1] = replace(last, fixed_payment=last.fixed_payment + terminal)
            logger.debug(f"💼 Lease {lease.lease_id}: {terminal} terminal amount added to period {last.period_number}")

        logger.debug(f"📅 Lease {lease.lease_id}: {len(payments)} payments generated")
        return payments

    @staticmethod
    def _validate_escalation(schedule_def: LeasePaymentSchedule, lease_id: str):
        escalation = schedule_def.escalation_type
        if escalation is EscalationType.PERCENTAGE:
            rate = schedule_def.escalation_rate
            if rate is None or not Decimal(-1) < Decimal(rate) < Decimal(1):
                raise InvalidRate(
                    f"Percentage escalation needs escalation_rate as a decimal fraction, got {rate!r}",
                    lease_id=lease_id,
                )
        elif escalation is EscalationType.FIXED and schedule_def.escalation_amount is None:
            raise ConfigurationError("Fixed escalation needs escalation_amount", lease_id=lease_id)

        frequency = schedule_def.escalation_frequency_months
        if frequency is not None and frequency <= 0:
            raise ConfigurationError(
                f"Escalation frequency must be a positive number of months, got {frequency}",
                lease_id=lease_id,
            )

        if (schedule_def.cap_amount is not None and schedule_def.floor_amount is not None
                and schedule_def.floor_amount > schedule_def.cap_amount):
            raise ConfigurationError(
                f"Floor {schedule_def.floor_amount} exceeds cap {schedule_def.cap_amount}",
                lease_id=lease_id,
            )

    @staticmethod
    def _escalation_events(schedule_def: LeasePaymentSchedule, period_start: date) -> int:
        """
        Escalation anniversaries after the segment's effective date and on or before period_start
        """
        first = schedule_def.first_escalation_date
        if first is None or schedule_def.escalation_type in (EscalationType.NONE, EscalationType.CPI,
                                                               EscalationType.MARKET_RATE):
            return 0

        step = schedule_def.escalation_frequency_months
        if step is None:
            step = DEFAULT_ESCALATION_FREQUENCY_MONTHS
        events = 0
        k = 0
        while True:
            anniversary = add_months(first, k * step)
            if anniversary > period_start:
                return events
            if anniversary > schedule_def.effective_date:
                events += 1
            k += 1

    @staticmethod
    def _escalate(schedule_def: LeasePaymentSchedule, current: int) -> int:
        if schedule_def.escalation_type is EscalationType.FIXED:
            escalated = current + schedule_def.escalation_amount
        else:
            escalated = round_minor(Decimal(current) * (1 + Decimal(schedule_def.escalation_rate)))

        if schedule_def.cap_amount is not None:
            escalated = min(escalated, schedule_def.cap_amount)
        if schedule_def.floor_amount is not None:
            escalated = max(escalated, schedule_def.floor_amount)
        return escalated
