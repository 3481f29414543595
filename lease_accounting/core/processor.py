"""
Main Lease Processor
Runs the commencement pipeline for one lease and the batch close over many

Per lease: validate term -> build payments -> recognition exemption ->
resolve rate -> measure liability -> classify -> measure ROU asset ->
amortize -> expenses. Each lease is independent, so a batch is a plain map
over leases on a worker pool; the parent process is the only writer to the
ledger.
"""

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from lease_accounting.config import Config, PolicyConfig
from lease_accounting.core.amortization import (
    AmortizationEngine,
    AmortizationResult,
    DepreciationPolicy,
    PeriodicRate,
    present_value_of,
    schedule_fingerprint,
    useful_life_months,
)
from lease_accounting.core.classification import ClassificationEngine
from lease_accounting.core.errors import InvalidTerm, LeaseEngineError, ModificationError, NegativeROUAsset
from lease_accounting.core.ledger import LeaseLedger
from lease_accounting.core.lease_modifications import ModificationEngine, ModificationTerms, Remeasurement
from lease_accounting.core.models import (
    DiscountRate,
    Lease,
    LeaseAmortizationSchedule,
    LeaseDisclosure,
    LeaseExpense,
    LeaseLiability,
    LeasePayment,
    LeaseStatus,
    RecognitionExemption,
    RightOfUseAsset,
    _Serializable,
    advance_status,
)
from lease_accounting.core.rate_resolver import LeaseRateTerms, RateResolver
from lease_accounting.schedule.payment_schedule import PaymentScheduleBuilder
from lease_accounting.utils.date_utils import add_months, term_months_for
from lease_accounting.utils.disclosures_generator import DisclosureAggregator, DisclosureInput
from lease_accounting.utils.expense_generator import ExpenseGenerator
from lease_accounting.utils.rfr_rates import RiskFreeRateTable

logger = logging.getLogger(__name__)


@dataclass
class LeaseComputation(_Serializable):
    """Everything produced for one lease at commencement"""
    lease: Lease
    payments: List[LeasePayment]
    amortization: AmortizationResult
    expenses: List[LeaseExpense]
    fingerprint: str = ""
    exemption: Optional[RecognitionExemption] = None
    discount_rate: Optional[DiscountRate] = None
    liability: Optional[LeaseLiability] = None
    rou_asset: Optional[RightOfUseAsset] = None

    @property
    def rows(self) -> List[LeaseAmortizationSchedule]:
        return self.amortization.rows

    def to_disclosure_input(self) -> DisclosureInput:
        rate = self.discount_rate.annual_rate if self.discount_rate else 0
        return DisclosureInput(self.lease, self.rows, self.payments, rate)

    def to_dict(self) -> dict:
        return {
            'lease': self.lease.to_dict(),
            'exemption': self.exemption.value if self.exemption else None,
            'discount_rate': self.discount_rate.to_dict() if self.discount_rate else None,
            'liability': self.liability.to_dict() if self.liability else None,
            'rou_asset': self.rou_asset.to_dict() if self.rou_asset else None,
            'payments': [p.to_dict() for p in self.payments],
            'schedule': [r.to_dict() for r in self.rows],
            'closure_plug': self.amortization.closure_plug,
            'warnings': [w.message for w in self.amortization.warnings],
            'expenses': [e.to_dict() for e in self.expenses],
            'fingerprint': self.fingerprint,
        }


class LeaseProcessor:
    """
    Main lease accounting processor
    Measures leases at commencement and applies modifications through the ledger
    """

    def __init__(self, policy: Optional[PolicyConfig] = None,
                 risk_free_rates: Optional[RiskFreeRateTable] = None,
                 ledger: Optional[LeaseLedger] = None):
        self.policy = policy or PolicyConfig()
        self.ledger = ledger
        self.rate_resolver = RateResolver(self.policy, risk_free_rates)
        self.classification_engine = ClassificationEngine(self.policy)
        self.schedule_builder = PaymentScheduleBuilder()
        self.amortization_engine = AmortizationEngine(self.policy)
        self.modification_engine = ModificationEngine(
            self.policy, self.rate_resolver, self.schedule_builder,
            self.amortization_engine, self.classification_engine,
        )
        self.disclosure_aggregator = DisclosureAggregator()
        self._amortization_cache: Dict[Tuple[str, str], AmortizationResult] = {}

    def process_single_lease(self, lease: Lease) -> LeaseComputation:
        """
        Measure a lease at commencement

        Configuration problems (rate, term, schedule coverage) raise before any
        row is produced. If the processor has a ledger the result is stored as
        the lease's first schedule segment.
        """
        self._validate_term(lease)
        payments = self.schedule_builder.build_for_lease(lease)

        exemption = self.classification_engine.recognition_exemption(lease)
        if exemption is not None:
            return self._exempt_computation(lease, payments, exemption)

        rate = self.rate_resolver.resolve_rate(LeaseRateTerms.from_lease(lease))
        frequency = sorted(lease.schedules, key=lambda s: s.effective_date)[0].payment_frequency.months
        periodic_rate = PeriodicRate(rate.annual_rate, frequency, self.policy.day_count)

        initial_liability = present_value_of(payments, periodic_rate)
        lease_type = lease.lease_type or self.classification_engine.classify(lease, initial_liability)
        classified = self._activate(replace(lease, lease_type=lease_type))

        initial_rou = self._initial_rou_cost(lease, initial_liability)
        useful_life = useful_life_months(lease)
        depreciation_policy = DepreciationPolicy(
            lease_type=lease_type,
            method=lease.depreciation_method,
            residual_value=lease.residual_value,
            depreciation_periods=max(1, useful_life // frequency),
        )

        fingerprint = schedule_fingerprint(initial_liability, initial_rou, payments, periodic_rate,
                                           depreciation_policy)
        amortization = self._amortization_cache.get((lease.lease_id, fingerprint))
        if amortization is None:
            amortization = self.amortization_engine.amortize(
                initial_liability, initial_rou, payments, periodic_rate, depreciation_policy,
                lease_id=lease.lease_id,
            )
            self._amortization_cache[(lease.lease_id, fingerprint)] = amortization
        else:
            logger.debug(f"♻️  Lease {lease.lease_id}: reusing cached schedule {fingerprint[:12]}")

        liability = LeaseLiability(
            lease_id=lease.lease_id,
            initial_liability=initial_liability,
            calculation_date=lease.commencement_date,
            currency=lease.currency,
        )
        rou_asset = RightOfUseAsset(
            lease_id=lease.lease_id,
            initial_cost=initial_rou,
            depreciation_method=lease.depreciation_method,
            useful_life_months=useful_life,
            depreciation_start_date=lease.commencement_date,
            depreciation_end_date=add_months(lease.commencement_date, useful_life) - timedelta(days=1),
            residual_value=lease.residual_value,
            currency=lease.currency,
        )
        expenses = ExpenseGenerator().generate_expenses(lease.lease_id, amortization.rows, payments)

        computation = LeaseComputation(
            lease=classified,
            payments=payments,
            amortization=amortization,
            expenses=expenses,
            fingerprint=fingerprint,
            discount_rate=rate,
            liability=liability,
            rou_asset=rou_asset,
        )
        logger.info(f"✅ Lease {lease.lease_id}: {lease_type.value}, liability {initial_liability}, "
                    f"ROU {initial_rou}, {len(amortization.rows)} periods")

        if self.ledger is not None:
            self.store(computation)
        return computation

    def store(self, computation: LeaseComputation):
        """Write a commencement computation to the ledger (at most once)"""
        self.ledger.create_schedule_segment(
            computation.lease,
            computation.liability,
            computation.rou_asset,
            computation.rows,
            computation.payments,
            computation.fingerprint,
        )

    def apply_modification(self, lease_id: str, effective_date: date,
                           new_terms: ModificationTerms) -> Remeasurement:
        """
        Remeasure a stored lease and append the new segment to the ledger

        A rejected modification raises before the ledger is touched. Repeating
        a modification id returns the stored result.
        """
        ledger = self._require_ledger()
        lease = ledger.lease(lease_id)

        for segment in ledger.segments(lease_id):
            if segment.modification_id == new_terms.modification_id:
                stored = next(m for m in ledger.modifications(lease_id)
                              if m.modification_id == new_terms.modification_id)
                logger.debug(f"♻️  Lease {lease_id}: modification {new_terms.modification_id} already applied")
                return Remeasurement(stored, segment.liability, segment.rou_asset,
                                     AmortizationResult(list(segment.rows)))

        liability, rou_asset = ledger.current_balances(lease_id)
        rows = ledger.current_schedule(lease_id)
        outcome = self.modification_engine.apply(lease, liability, rou_asset, effective_date, new_terms, rows)
        result = outcome.remeasurement

        ledger.create_modification(
            outcome.lease, result.modification, result.liability, result.rou_asset,
            result.segment.rows, outcome.payments,
        )
        return result

    def expenses_for(self, lease_id: str) -> List[LeaseExpense]:
        """Expense records for the schedule currently in force, including recorded variable payments"""
        ledger = self._require_ledger()
        return ExpenseGenerator().generate_expenses(
            lease_id, ledger.current_schedule(lease_id), ledger.current_payments(lease_id))

    def disclosure(self, period_start: date, period_end: date, currency: Optional[str] = None,
                   reporting_period: Optional[str] = None) -> LeaseDisclosure:
        """Aggregate every lease in the ledger into a disclosure for the period"""
        ledger = self._require_ledger()
        inputs = []
        for lease_id in ledger.lease_ids():
            lease = ledger.lease(lease_id)
            rows = ledger.current_schedule(lease_id)
            if not rows:
                continue
            liability, _ = ledger.current_balances(lease_id)
            rate = self.rate_resolver.resolve_rate(LeaseRateTerms.from_lease(lease, liability.calculation_date))
            inputs.append(DisclosureInput(lease, rows, ledger.current_payments(lease_id), rate.annual_rate))
        return self.disclosure_aggregator.aggregate(inputs, period_start, period_end, currency, reporting_period)

    def _require_ledger(self) -> LeaseLedger:
        if self.ledger is None:
            raise ModificationError("This operation needs a processor with a ledger")
        return self.ledger

    def _exempt_computation(self, lease: Lease, payments: List[LeasePayment],
                            exemption: RecognitionExemption) -> LeaseComputation:
        lease_type = lease.lease_type or self.classification_engine.classify(lease)
        expenses = ExpenseGenerator().generate_expenses(lease.lease_id, [], payments, exemption)
        logger.info(f"✅ Lease {lease.lease_id}: {exemption.value} exemption, expensed straight-line")
        return LeaseComputation(
            lease=self._activate(replace(lease, lease_type=lease_type)),
            payments=payments,
            amortization=AmortizationResult(rows=[]),
            expenses=expenses,
            exemption=exemption,
        )

    @staticmethod
    def _activate(lease: Lease) -> Lease:
        if lease.status is LeaseStatus.DRAFT:
            lease = advance_status(lease, LeaseStatus.CLASSIFIED)
        if lease.status is LeaseStatus.CLASSIFIED:
            lease = advance_status(lease, LeaseStatus.ACTIVE)
        return lease

    @staticmethod
    def _validate_term(lease: Lease):
        if lease.term_months <= 0:
            raise InvalidTerm(f"Lease term must be positive, got {lease.term_months} months",
                              lease_id=lease.lease_id)
        if lease.end_date <= lease.commencement_date:
            raise InvalidTerm(f"End date {lease.end_date} is not after commencement {lease.commencement_date}",
                              lease_id=lease.lease_id)
        stated = term_months_for(lease.commencement_date, lease.end_date)
        if stated != lease.term_months:
            raise InvalidTerm(
                f"Term of {lease.term_months} months does not match {lease.commencement_date} -> "
                f"{lease.end_date} ({stated} months)",
                lease_id=lease.lease_id,
            )

    def _initial_rou_cost(self, lease: Lease, initial_liability: int) -> int:
        """ROU cost = liability + initial direct costs + prepayments - incentives (+ decommissioning)"""
        cost = initial_liability + lease.initial_direct_costs + lease.prepayments - lease.lease_incentives
        if self.policy.capitalize_decommissioning:
            cost += lease.decommissioning_provision
        if cost < 0:
            raise NegativeROUAsset(f"Initial ROU cost is negative ({cost})", lease_id=lease.lease_id)
        return cost


@dataclass(frozen=True)
class LeaseOutcome:
    """Typed per-lease result of a batch: exactly one of computation / error is set"""
    lease_id: str
    computation: Optional[LeaseComputation] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchResult:
    outcomes: List[LeaseOutcome] = field(default_factory=list)

    @property
    def processed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def skipped_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)

    @property
    def computations(self) -> List[LeaseComputation]:
        return [o.computation for o in self.outcomes if o.ok]

    @property
    def errors(self) -> Dict[str, Exception]:
        return {o.lease_id: o.error for o in self.outcomes if not o.ok}


def _process_lease_task(policy: PolicyConfig, risk_free_rates: Optional[RiskFreeRateTable],
                        lease: Lease) -> LeaseComputation:
    # runs in a worker process; no ledger, the parent stores results
    return LeaseProcessor(policy, risk_free_rates).process_single_lease(lease)


class BatchProcessor:
    """
    Batch close: one lease per task on a process pool bounded by max_workers

    Any failure of one lease (computing it or storing it) is logged and
    reported as a skipped outcome; one bad lease never aborts the run.
    """

    def __init__(self, policy: Optional[PolicyConfig] = None, max_workers: Optional[int] = None,
                 risk_free_rates: Optional[RiskFreeRateTable] = None, ledger: Optional[LeaseLedger] = None):
        self.policy = policy or PolicyConfig()
        self.max_workers = max_workers or Config.MAX_WORKERS
        self.risk_free_rates = risk_free_rates
        self.ledger = ledger
        self.processor = LeaseProcessor(self.policy, risk_free_rates)

    def process_all_leases(self, leases: Sequence[Lease]) -> BatchResult:
        if self.max_workers <= 1 or len(leases) <= 1:
            outcomes = [self._run_inline(lease) for lease in leases]
        else:
            outcomes = self._run_pool(leases)

        if self.ledger is not None:
            outcomes = [self._store(outcome) for outcome in outcomes]

        result = BatchResult(outcomes)
        logger.info(f"📦 Batch complete: {result.processed_count} processed, {result.skipped_count} skipped")
        return result

    def _run_inline(self, lease: Lease) -> LeaseOutcome:
        try:
            return LeaseOutcome(lease.lease_id, computation=self.processor.process_single_lease(lease))
        except Exception as e:
            return self._skipped(lease.lease_id, e)

    def _run_pool(self, leases: Sequence[Lease]) -> List[LeaseOutcome]:
        outcomes = []
        with ProcessPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [
                (lease.lease_id, executor.submit(_process_lease_task, self.policy, self.risk_free_rates, lease))
                for lease in leases
            ]
            for lease_id, future in futures:
                try:
                    outcomes.append(LeaseOutcome(lease_id, computation=future.result()))
                except Exception as e:
                    outcomes.append(self._skipped(lease_id, e))
        return outcomes

    def _store(self, outcome: LeaseOutcome) -> LeaseOutcome:
        computation = outcome.computation
        if not outcome.ok or computation.exemption is not None:
            return outcome
        try:
            self.ledger.create_schedule_segment(
                computation.lease, computation.liability, computation.rou_asset,
                computation.rows, computation.payments, computation.fingerprint,
            )
        except LeaseEngineError as e:
            return self._skipped(outcome.lease_id, e)
        return outcome

    @staticmethod
    def _skipped(lease_id: str, error: Exception) -> LeaseOutcome:
        # engine errors are expected outcomes; anything else gets its traceback logged
        logger.error(f"❌ Lease {lease_id} skipped: {type(error).__name__}: {error}",
                     exc_info=not isinstance(error, LeaseEngineError))
        return LeaseOutcome(lease_id, error=error)
