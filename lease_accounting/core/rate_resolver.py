"""
Discount Rate Resolver
Picks the rate used to measure a lease liability at commencement or remeasurement
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from lease_accounting.config import PolicyConfig
from lease_accounting.core.errors import InvalidRate
from lease_accounting.core.models import DiscountRate, Lease, LesseeType, RateSource
from lease_accounting.utils.finance import quantize_rate
from lease_accounting.utils.rfr_rates import RiskFreeRateTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaseRateTerms:
    """Rate inputs for one measurement date"""
    implicit_rate: Optional[Decimal] = None
    incremental_borrowing_rate: Optional[Decimal] = None
    lessee_type: LesseeType = LesseeType.PUBLIC
    as_of: Optional[date] = None
    lease_id: Optional[str] = None

    @classmethod
    def from_lease(cls, lease: Lease, as_of: Optional[date] = None) -> 'LeaseRateTerms':
        return cls(
            implicit_rate=lease.implicit_rate,
            incremental_borrowing_rate=lease.incremental_borrowing_rate,
            lessee_type=lease.lessee_type,
            as_of=as_of or lease.commencement_date,
            lease_id=lease.lease_id,
        )


class RateResolver:
    """
    Resolves the discount rate for a lease

    Order of preference: rate implicit in the lease, then (private lessees
    under the policy election) the risk-free rate, then the incremental
    borrowing rate.
    """

    def __init__(self, policy: Optional[PolicyConfig] = None,
                 risk_free_rates: Optional[RiskFreeRateTable] = None):
        self.policy = policy or PolicyConfig()
        self.risk_free_rates = risk_free_rates

    def resolve_rate(self, lease_terms: LeaseRateTerms) -> DiscountRate:
        if lease_terms.implicit_rate is not None:
            return self._validated(lease_terms.implicit_rate, RateSource.IMPLICIT, lease_terms)

        risk_free = self._risk_free_rate(lease_terms)
        if risk_free is not None:
            return self._validated(risk_free, RateSource.RISK_FREE, lease_terms)

        if lease_terms.incremental_borrowing_rate is not None:
            return self._validated(lease_terms.incremental_borrowing_rate,
                                   RateSource.INCREMENTAL_BORROWING, lease_terms)

        raise InvalidRate(
            "Neither an implicit rate nor an incremental borrowing rate was supplied",
            lease_id=lease_terms.lease_id,
        )

    def _risk_free_rate(self, lease_terms: LeaseRateTerms) -> Optional[Decimal]:
        if not self.policy.risk_free_rate_election or lease_terms.lessee_type is not LesseeType.PRIVATE:
            return None
        if self.risk_free_rates is None or lease_terms.as_of is None:
            return None
        return self.risk_free_rates.get_rate(lease_terms.as_of)

    def _validated(self, value, source: RateSource, lease_terms: LeaseRateTerms) -> DiscountRate:
        try:
            rate = quantize_rate(value)
        except (InvalidOperation, TypeError, ValueError):
            raise InvalidRate(f"Unparseable {source.value} rate: {value!r}", lease_id=lease_terms.lease_id)

        # Rates are decimal fractions; 6 means 600%, not 6%
        if not Decimal(0) < rate < Decimal(1):
            raise InvalidRate(
                f"{source.value} rate {rate} must be a decimal fraction between 0 and 1",
                lease_id=lease_terms.lease_id,
            )

        logger.debug(f"📐 Lease {lease_terms.lease_id}: using {source.value} rate {rate}")
        return DiscountRate(annual_rate=rate, source=source)
