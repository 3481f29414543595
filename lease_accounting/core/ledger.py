"""
Lease Ledger
In-memory, append-only store for lease schedules

Each lease owns an ordered list of immutable schedule segments. The initial
measurement is segment 1; every modification appends a segment that takes
over from its effective period. Earlier rows are never rewritten, so the
current schedule is always "segment rows up to where the next segment starts".

Segment and modification creation are at-most-once: repeating a call with
the same input fingerprint / modification id returns what is already stored.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Dict, List, Optional, Tuple

from lease_accounting.core.errors import InvalidStatusTransition, OverlappingScheduleSegments, UnknownLease
from lease_accounting.core.models import (
    Lease,
    LeaseAmortizationSchedule,
    LeaseLiability,
    LeaseModification,
    LeasePayment,
    LeaseStatus,
    PaymentStatus,
    RightOfUseAsset,
    advance_status,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleSegment:
    segment_number: int
    starts_at_period: int
    fingerprint: str
    liability: LeaseLiability
    rou_asset: RightOfUseAsset
    rows: Tuple[LeaseAmortizationSchedule, ...]
    payments: Tuple[LeasePayment, ...]
    modification_id: Optional[str] = None


@dataclass
class LeaseRecord:
    lease: Lease
    segments: List[ScheduleSegment] = field(default_factory=list)
    modifications: List[LeaseModification] = field(default_factory=list)
    # payment actuals by period number; overrides the scheduled payment
    actuals: Dict[int, LeasePayment] = field(default_factory=dict)


class LeaseLedger:
    """
    Arena of lease records keyed by lease id
    """

    def __init__(self):
        self._records: Dict[str, LeaseRecord] = {}

    def __contains__(self, lease_id: str) -> bool:
        return lease_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def lease_ids(self) -> List[str]:
        return list(self._records)

    def record(self, lease_id: str) -> LeaseRecord:
        try:
            return self._records[lease_id]
        except KeyError:
            raise UnknownLease(f"Lease {lease_id} is not in the ledger", lease_id=lease_id)

    def lease(self, lease_id: str) -> Lease:
        return self.record(lease_id).lease

    def create_schedule_segment(self, lease: Lease, liability: LeaseLiability, rou_asset: RightOfUseAsset,
                                rows: List[LeaseAmortizationSchedule], payments: List[LeasePayment],
                                fingerprint: str) -> ScheduleSegment:
        """
        Store the initial schedule of a lease (at most once)
        """
        record = self._records.get(lease.lease_id)
        if record is not None:
            initial = record.segments[0]
            if initial.fingerprint == fingerprint:
                logger.debug(f"♻️  Lease {lease.lease_id}: schedule segment already stored")
                return initial
            raise OverlappingScheduleSegments(
                f"Lease {lease.lease_id} already has an initial schedule; record changes as modifications",
                lease_id=lease.lease_id,
            )

        segment = ScheduleSegment(
            segment_number=1,
            starts_at_period=1,
            fingerprint=fingerprint,
            liability=liability,
            rou_asset=rou_asset,
            rows=tuple(rows),
            payments=tuple(payments),
        )
        self._records[lease.lease_id] = LeaseRecord(lease=lease, segments=[segment])
        logger.info(f"💾 Lease {lease.lease_id}: stored {len(rows)} schedule rows")
        return segment

    def create_modification(self, lease: Lease, modification: LeaseModification, liability: LeaseLiability,
                            rou_asset: RightOfUseAsset, rows: List[LeaseAmortizationSchedule],
                            payments: List[LeasePayment], fingerprint: str = "") -> ScheduleSegment:
        """
        Append the segment produced by a modification (at most once per modification id)

        The modification must take effect after the start of the latest
        segment; anything earlier would rewrite rows another segment owns.
        """
        record = self.record(modification.lease_id)
        for existing in record.segments:
            if existing.modification_id == modification.modification_id:
                logger.debug(f"♻️  Lease {modification.lease_id}: modification "
                             f"{modification.modification_id} already stored")
                return existing

        latest = record.segments[-1]
        k = modification.effective_period_number
        if k <= latest.starts_at_period:
            raise OverlappingScheduleSegments(
                f"Modification {modification.modification_id} starts at period {k}, not after the "
                f"current segment's first period {latest.starts_at_period}",
                lease_id=modification.lease_id,
            )
        if rows and rows[0].period_number != k:
            raise OverlappingScheduleSegments(
                f"Segment rows start at period {rows[0].period_number}, expected {k}",
                lease_id=modification.lease_id,
            )

        segment = ScheduleSegment(
            segment_number=latest.segment_number + 1,
            starts_at_period=k,
            fingerprint=fingerprint,
            liability=liability,
            rou_asset=rou_asset,
            rows=tuple(rows),
            payments=tuple(payments),
            modification_id=modification.modification_id,
        )
        record.segments.append(segment)
        record.modifications.append(modification)
        record.lease = lease
        logger.info(f"💾 Lease {modification.lease_id}: modification {modification.modification_id} "
                    f"stored as segment {segment.segment_number} from period {k}")
        return segment

    def segments(self, lease_id: str) -> List[ScheduleSegment]:
        return list(self.record(lease_id).segments)

    def modifications(self, lease_id: str) -> List[LeaseModification]:
        return list(self.record(lease_id).modifications)

    def current_schedule(self, lease_id: str) -> List[LeaseAmortizationSchedule]:
        """Rows in force: each segment up to where the next one takes over"""
        return self._merged(lease_id, lambda s: s.rows)

    def current_payments(self, lease_id: str) -> List[LeasePayment]:
        """Payments in force, with recorded actuals in place of scheduled amounts"""
        record = self.record(lease_id)
        payments = self._merged(lease_id, lambda s: s.payments)
        return [record.actuals.get(p.period_number, p) for p in payments]

    def current_balances(self, lease_id: str) -> Tuple[LeaseLiability, RightOfUseAsset]:
        latest = self.record(lease_id).segments[-1]
        return latest.liability, latest.rou_asset

    def record_payment(self, lease_id: str, period_number: int, paid_date: date,
                       paid_amount: Optional[int] = None, variable_payment: int = 0) -> LeasePayment:
        """
        Mark a scheduled payment as paid; variable_payment is the usage-based
        part only known once it occurs
        """
        payment = self._scheduled_payment(lease_id, period_number)
        if payment.payment_status is not PaymentStatus.SCHEDULED:
            raise InvalidStatusTransition(
                f"Payment {period_number} of lease {lease_id} is already {payment.payment_status.value}",
                lease_id=lease_id,
            )
        paid = replace(
            payment,
            payment_status=PaymentStatus.PAID,
            paid_date=paid_date,
            variable_payment=variable_payment,
            paid_amount=paid_amount if paid_amount is not None else payment.capitalized_amount + variable_payment,
        )
        self.record(lease_id).actuals[period_number] = paid
        return paid

    def mark_missed(self, lease_id: str, period_number: int) -> LeasePayment:
        payment = self._scheduled_payment(lease_id, period_number)
        if payment.payment_status is not PaymentStatus.SCHEDULED:
            raise InvalidStatusTransition(
                f"Payment {period_number} of lease {lease_id} is already {payment.payment_status.value}",
                lease_id=lease_id,
            )
        missed = replace(payment, payment_status=PaymentStatus.MISSED)
        self.record(lease_id).actuals[period_number] = missed
        logger.warning(f"⚠️  Lease {lease_id}: payment {period_number} missed")
        return missed

    def update_status(self, lease_id: str, new_status: LeaseStatus) -> Lease:
        record = self.record(lease_id)
        record.lease = advance_status(record.lease, new_status)
        return record.lease

    def archive_lease(self, lease_id: str) -> LeaseRecord:
        """Remove a lease together with its segments, modifications and actuals"""
        record = self.record(lease_id)
        del self._records[lease_id]
        logger.info(f"🗄️  Lease {lease_id}: archived with {len(record.segments)} segments")
        return record

    def _scheduled_payment(self, lease_id: str, period_number: int) -> LeasePayment:
        for payment in self.current_payments(lease_id):
            if payment.period_number == period_number:
                return payment
        raise UnknownLease(f"Lease {lease_id} has no payment for period {period_number}", lease_id=lease_id)

    def _merged(self, lease_id: str, items) -> list:
        segments = self.record(lease_id).segments
        merged = []
        for index, segment in enumerate(segments):
            cutoff = segments[index + 1].starts_at_period if index + 1 < len(segments) else None
            merged.extend(item for item in items(segment) if cutoff is None or item.period_number < cutoff)
        return merged
