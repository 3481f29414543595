"""
Lease Classification
Finance vs Operating tests at commencement, plus the short-term and
low-value recognition exemptions
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, List, Optional, Tuple

from lease_accounting.config import PolicyConfig
from lease_accounting.core.models import Lease, LeaseType, RecognitionExemption

logger = logging.getLogger(__name__)


class ClassificationTest(str, Enum):
    OWNERSHIP_TRANSFER = "OwnershipTransfer"
    PURCHASE_OPTION = "PurchaseOptionReasonablyCertain"
    MAJOR_PART_OF_ECONOMIC_LIFE = "MajorPartOfEconomicLife"
    SUBSTANTIALLY_ALL_FAIR_VALUE = "SubstantiallyAllOfFairValue"
    SPECIALIZED_ASSET = "SpecializedAsset"


@dataclass(frozen=True)
class ClassificationResult:
    lease_type: LeaseType
    deciding_test: Optional[ClassificationTest]  # None when no test matched (Operating)


class ClassificationEngine:
    """
    Classifies a lease as Finance or Operating

    Tests run in a fixed order and the first one that matches wins, so the
    same lease always produces the same, auditable answer.
    """

    def __init__(self, policy: Optional[PolicyConfig] = None):
        self.policy = policy or PolicyConfig()

    def classify(self, lease: Lease, present_value_of_payments: Optional[int] = None) -> LeaseType:
        return self.evaluate(lease, present_value_of_payments).lease_type

    def evaluate(self, lease: Lease, present_value_of_payments: Optional[int] = None) -> ClassificationResult:
        tests: List[Tuple[ClassificationTest, Callable[[], bool]]] = [
            (ClassificationTest.OWNERSHIP_TRANSFER, lambda: lease.ownership_transfer),
            (ClassificationTest.PURCHASE_OPTION,
             lambda: lease.purchase_option.exercisable and lease.purchase_option.reasonably_certain),
            (ClassificationTest.MAJOR_PART_OF_ECONOMIC_LIFE, lambda: self._major_part_of_life(lease)),
            (ClassificationTest.SUBSTANTIALLY_ALL_FAIR_VALUE,
             lambda: self._substantially_all_of_fair_value(lease, present_value_of_payments)),
            (ClassificationTest.SPECIALIZED_ASSET, lambda: lease.specialized_asset),
        ]

        for test, predicate in tests:
            if predicate():
                logger.info(f"🏷️  Lease {lease.lease_id}: Finance ({test.value})")
                return ClassificationResult(LeaseType.FINANCE, test)

        logger.info(f"🏷️  Lease {lease.lease_id}: Operating (no finance test met)")
        return ClassificationResult(LeaseType.OPERATING, None)

    def recognition_exemption(self, lease: Lease) -> Optional[RecognitionExemption]:
        """
        Short-term and low-value leases stay off balance sheet when the policy elects it
        """
        if (self.policy.short_term_election
                and lease.term_months <= self.policy.short_term_months
                and not lease.purchase_option.reasonably_certain):
            return RecognitionExemption.SHORT_TERM

        threshold = self.policy.low_value_threshold
        if threshold is not None and 0 < lease.fair_value <= threshold:
            return RecognitionExemption.LOW_VALUE

        return None

    def _major_part_of_life(self, lease: Lease) -> bool:
        if not lease.economic_life_months or lease.economic_life_months <= 0:
            return False
        ratio = Decimal(lease.term_months) / Decimal(lease.economic_life_months)
        return ratio >= self.policy.major_part_threshold

    def _substantially_all_of_fair_value(self, lease: Lease, present_value: Optional[int]) -> bool:
        if present_value is None or lease.fair_value <= 0:
            return False
        ratio = Decimal(present_value) / Decimal(lease.fair_value)
        return ratio >= self.policy.substantially_all_threshold
