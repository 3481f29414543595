"""
Data models for the lease accounting engine

Monetary amounts are integers in minor currency units, rates are Decimal
fractions. Enumerations are closed: an unknown value raises ValueError
instead of falling back to a default.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from lease_accounting.core.errors import InvalidStatusTransition


class LeaseType(str, Enum):
    FINANCE = "Finance"
    OPERATING = "Operating"


class RecognitionExemption(str, Enum):
    """Leases kept off balance sheet; payments are expensed straight-line"""
    SHORT_TERM = "ShortTerm"
    LOW_VALUE = "LowValue"


class LeaseStatus(str, Enum):
    DRAFT = "Draft"
    CLASSIFIED = "Classified"
    ACTIVE = "Active"
    MODIFIED = "Modified"
    TERMINATED = "Terminated"
    EXPIRED = "Expired"


class LesseeType(str, Enum):
    PUBLIC = "Public"
    PRIVATE = "Private"


class PaymentFrequency(str, Enum):
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    SEMI_ANNUALLY = "SemiAnnually"
    ANNUALLY = "Annually"

    @property
    def months(self) -> int:
        return _FREQUENCY_MONTHS[self]

    @property
    def periods_per_year(self) -> int:
        return 12 // _FREQUENCY_MONTHS[self]


_FREQUENCY_MONTHS = {
    PaymentFrequency.MONTHLY: 1,
    PaymentFrequency.QUARTERLY: 3,
    PaymentFrequency.SEMI_ANNUALLY: 6,
    PaymentFrequency.ANNUALLY: 12,
}


class PaymentTiming(str, Enum):
    ADVANCE = "Advance"  # due at period start
    ARREARS = "Arrears"  # due at period end


class EscalationType(str, Enum):
    NONE = "None"
    FIXED = "Fixed"
    PERCENTAGE = "Percentage"
    CPI = "CPI"
    MARKET_RATE = "MarketRate"


class PaymentStatus(str, Enum):
    SCHEDULED = "Scheduled"
    PAID = "Paid"
    MISSED = "Missed"


class DepreciationMethod(str, Enum):
    STRAIGHT_LINE = "StraightLine"
    DECLINING_BALANCE = "DecliningBalance"
    SUM_OF_YEARS_DIGITS = "SumOfYearsDigits"


class AmortizationMethod(str, Enum):
    EFFECTIVE_INTEREST = "EffectiveInterest"


class RateSource(str, Enum):
    IMPLICIT = "Implicit"
    INCREMENTAL_BORROWING = "IncrementalBorrowing"
    RISK_FREE = "RiskFree"


class DayCountConvention(str, Enum):
    PERIODIC = "Periodic"  # annual rate / periods per year
    ACTUAL_365 = "Actual365"  # annual rate * elapsed days / 365


class ModificationType(str, Enum):
    TERM_EXTENSION = "TermExtension"
    TERM_REDUCTION = "TermReduction"
    SCOPE_CHANGE = "ScopeChange"
    PAYMENT_CHANGE = "PaymentChange"
    RATE_CHANGE = "RateChange"
    PARTIAL_TERMINATION = "PartialTermination"
    FULL_TERMINATION = "FullTermination"


class ModificationStatus(str, Enum):
    DRAFT = "Draft"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    PROCESSED = "Processed"


# Monotonic lifecycle; Modified may repeat
ALLOWED_TRANSITIONS = {
    LeaseStatus.DRAFT: {LeaseStatus.CLASSIFIED},
    LeaseStatus.CLASSIFIED: {LeaseStatus.ACTIVE},
    LeaseStatus.ACTIVE: {LeaseStatus.MODIFIED, LeaseStatus.TERMINATED, LeaseStatus.EXPIRED},
    LeaseStatus.MODIFIED: {LeaseStatus.MODIFIED, LeaseStatus.TERMINATED, LeaseStatus.EXPIRED},
    LeaseStatus.TERMINATED: set(),
    LeaseStatus.EXPIRED: set(),
}


def _to_primitive(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {_to_primitive(k): _to_primitive(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_primitive(v) for v in value]
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    return value


class _Serializable:
    """to_dict() for dataclasses: enums by value, dates ISO, Decimals as strings"""

    def to_dict(self) -> dict:
        return {f.name: _to_primitive(getattr(self, f.name)) for f in fields(self)}


@dataclass(frozen=True)
class RenewalOption(_Serializable):
    exercisable: bool = False
    term_months: Optional[int] = None
    reasonably_certain: bool = False


@dataclass(frozen=True)
class TerminationOption(_Serializable):
    exercisable: bool = False
    notice_days: Optional[int] = None
    penalty: Optional[int] = None


@dataclass(frozen=True)
class PurchaseOption(_Serializable):
    exercisable: bool = False
    price: Optional[int] = None
    reasonably_certain: bool = False


@dataclass(frozen=True)
class DiscountRate(_Serializable):
    """Effective annual discount rate, a decimal fraction in (0, 1)"""
    annual_rate: Decimal
    source: RateSource


@dataclass(frozen=True)
class LeasePaymentSchedule(_Serializable):
    """
    Generative rule for one segment of recurring payments

    base_payment is the amount in effect at effective_date. end_date is
    exclusive; None means the segment runs to the lease end date.
    """
    schedule_id: str
    effective_date: date
    base_payment: int
    payment_frequency: PaymentFrequency = PaymentFrequency.MONTHLY
    payment_timing: PaymentTiming = PaymentTiming.ARREARS
    payment_day: Optional[int] = None
    escalation_type: EscalationType = EscalationType.NONE
    escalation_rate: Optional[Decimal] = None
    escalation_amount: Optional[int] = None
    escalation_frequency_months: Optional[int] = None
    first_escalation_date: Optional[date] = None
    cap_amount: Optional[int] = None
    floor_amount: Optional[int] = None
    end_date: Optional[date] = None
    currency: str = "USD"


@dataclass
class Lease(_Serializable):
    """Contractual right to use an asset for a term"""

    lease_id: str
    commencement_date: date
    end_date: date
    term_months: int
    lessor_id: str = ""
    lessee_id: str = ""
    asset_id: Optional[str] = None
    description: str = ""

    # Classification inputs
    lease_type: Optional[LeaseType] = None
    lessee_type: LesseeType = LesseeType.PUBLIC
    renewal_option: RenewalOption = field(default_factory=RenewalOption)
    termination_option: TerminationOption = field(default_factory=TerminationOption)
    purchase_option: PurchaseOption = field(default_factory=PurchaseOption)
    ownership_transfer: bool = False
    specialized_asset: bool = False
    economic_life_months: Optional[int] = None
    fair_value: int = 0

    # Measurement inputs
    residual_value_guarantee: int = 0  # amount expected to be owed at end of term
    residual_value: int = 0  # ROU value left at the end of the depreciation window
    implicit_rate: Optional[Decimal] = None
    incremental_borrowing_rate: Optional[Decimal] = None
    initial_direct_costs: int = 0
    prepayments: int = 0
    lease_incentives: int = 0
    decommissioning_provision: int = 0
    depreciation_method: DepreciationMethod = DepreciationMethod.STRAIGHT_LINE

    currency: str = "USD"
    status: LeaseStatus = LeaseStatus.DRAFT
    schedules: List[LeasePaymentSchedule] = field(default_factory=list)


def advance_status(lease: Lease, new_status: LeaseStatus) -> Lease:
    """Return a copy of the lease in new_status, enforcing the lifecycle"""
    if new_status not in ALLOWED_TRANSITIONS[lease.status]:
        raise InvalidStatusTransition(
            f"Lease {lease.lease_id}: cannot move from {lease.status.value} to {new_status.value}",
            lease_id=lease.lease_id,
        )
    return replace(lease, status=new_status)


@dataclass(frozen=True)
class LeasePayment(_Serializable):
    """One concrete, dated cash flow expanded from a payment schedule"""
    lease_id: str
    period_number: int
    period_start: date
    period_end: date
    due_date: date
    fixed_payment: int
    variable_payment: int = 0
    escalation_amount: int = 0
    payment_timing: PaymentTiming = PaymentTiming.ARREARS
    payment_status: PaymentStatus = PaymentStatus.SCHEDULED
    paid_date: Optional[date] = None
    paid_amount: Optional[int] = None
    schedule_id: str = ""
    currency: str = "USD"

    @property
    def total_payment(self) -> int:
        return self.fixed_payment + self.variable_payment + self.escalation_amount

    @property
    def capitalized_amount(self) -> int:
        """In-substance fixed part of the payment: contractual base plus scheduled escalation"""
        return self.fixed_payment + self.escalation_amount

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['total_payment'] = self.total_payment
        return data


@dataclass
class RightOfUseAsset(_Serializable):
    lease_id: str
    initial_cost: int
    depreciation_method: DepreciationMethod
    useful_life_months: int
    depreciation_start_date: date
    depreciation_end_date: date
    residual_value: int = 0
    accumulated_depreciation: int = 0
    impairment_loss: int = 0
    currency: str = "USD"

    @property
    def net_book_value(self) -> int:
        return self.initial_cost - self.accumulated_depreciation - self.impairment_loss


@dataclass
class LeaseLiability(_Serializable):
    lease_id: str
    initial_liability: int
    calculation_date: date
    interest_accrued: int = 0
    principal_paid: int = 0
    amortization_method: AmortizationMethod = AmortizationMethod.EFFECTIVE_INTEREST
    currency: str = "USD"

    @property
    def outstanding_balance(self) -> int:
        return self.initial_liability + self.interest_accrued - self.principal_paid


@dataclass(frozen=True)
class LeaseAmortizationSchedule(_Serializable):
    """
    One amortization row tying the liability and the ROU asset together

    closure_plug is non-zero only on the last row of a segment that absorbed
    a residual balance; it is added to principal_reduction so the liability
    closes at zero.
    """
    lease_id: str
    period_number: int
    period_start: date
    period_end: date
    opening_liability: int
    payment: int
    interest_expense: int
    principal_reduction: int
    closing_liability: int
    opening_rou_asset: int
    depreciation_expense: int
    closing_rou_asset: int
    total_expense: int
    closure_plug: int = 0
    segment_number: int = 1
    currency: str = "USD"


@dataclass(frozen=True)
class LeaseModification(_Serializable):
    modification_id: str
    lease_id: str
    modification_type: ModificationType
    modification_date: date
    effective_date: date
    effective_period_number: int
    reason: str
    original_term_months: int
    new_term_months: int
    original_payment: int
    new_payment: int
    original_discount_rate: Decimal
    new_discount_rate: Decimal
    old_liability: int
    new_liability: int
    old_rou_asset: int
    new_rou_asset: int
    liability_adjustment: int
    rou_adjustment: int
    remeasurement_gain_loss: int  # positive = loss, negative = gain
    currency: str = "USD"
    status: ModificationStatus = ModificationStatus.PROCESSED


@dataclass(frozen=True)
class LeaseExpense(_Serializable):
    """Period expense record for the ledger-posting collaborator"""
    lease_id: str
    period_number: int
    expense_date: date
    period_start: date
    period_end: date
    depreciation_expense: int = 0
    interest_expense: int = 0
    variable_lease_expense: int = 0
    short_term_lease_expense: int = 0
    low_value_lease_expense: int = 0
    currency: str = "USD"

    @property
    def total_expense(self) -> int:
        return (self.depreciation_expense + self.interest_expense + self.variable_lease_expense
                + self.short_term_lease_expense + self.low_value_lease_expense)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['total_expense'] = self.total_expense
        return data


@dataclass
class LeaseTypeTotals(_Serializable):
    count: int = 0
    rou_assets: int = 0
    lease_liabilities: int = 0


@dataclass
class LeaseDisclosure(_Serializable):
    """Reporting-period snapshot aggregating all active leases"""
    reporting_period: str
    period_start: date
    period_end: date
    currency: str
    total_finance_leases: int = 0
    total_operating_leases: int = 0
    totals_by_type: Dict[LeaseType, LeaseTypeTotals] = field(default_factory=dict)
    total_rou_assets: int = 0
    total_lease_liabilities: int = 0
    current_lease_liabilities: int = 0
    non_current_lease_liabilities: int = 0
    total_depreciation: int = 0
    total_interest: int = 0
    total_lease_payments: int = 0
    maturities_within_1_year: int = 0
    maturities_1_to_5_years: int = 0
    maturities_after_5_years: int = 0
    weighted_avg_lease_term_months: Decimal = Decimal(0)
    weighted_avg_discount_rate: Decimal = Decimal(0)
    leases_with_extension_options: int = 0
    leases_with_purchase_options: int = 0

    @property
    def total_undiscounted_payments(self) -> int:
        return self.maturities_within_1_year + self.maturities_1_to_5_years + self.maturities_after_5_years

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['total_undiscounted_payments'] = self.total_undiscounted_payments
        return data
