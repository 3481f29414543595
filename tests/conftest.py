# tests/conftest.py
"""
Shared lease builders for the engine tests

Amounts are in minor units (cents): 220_000 = $2,200.00.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from lease_accounting.config import PolicyConfig
from lease_accounting.core.ledger import LeaseLedger
from lease_accounting.core.models import (
    Lease,
    LeasePaymentSchedule,
    PaymentFrequency,
    PaymentTiming,
)
from lease_accounting.core.processor import LeaseProcessor
from lease_accounting.utils.date_utils import add_months


def build_lease(lease_id="L-001", commencement=date(2025, 1, 1), term_months=60, base_payment=100_000,
                incremental_borrowing_rate=Decimal("0.06"), frequency=PaymentFrequency.MONTHLY,
                timing=PaymentTiming.ARREARS, schedule_overrides=None, **lease_fields):
    """One-segment lease with an inclusive end date"""
    schedule = LeasePaymentSchedule(
        schedule_id=f"{lease_id}-S1",
        effective_date=commencement,
        base_payment=base_payment,
        payment_frequency=frequency,
        payment_timing=timing,
        currency=lease_fields.get("currency", "USD"),
        **(schedule_overrides or {}),
    )
    lease_fields.setdefault("schedules", [schedule])
    return Lease(
        lease_id=lease_id,
        commencement_date=commencement,
        end_date=add_months(commencement, term_months) - timedelta(days=1),
        term_months=term_months,
        incremental_borrowing_rate=incremental_borrowing_rate,
        **lease_fields,
    )


@pytest.fixture
def make_lease():
    return build_lease


@pytest.fixture
def policy():
    return PolicyConfig()


@pytest.fixture
def ledger():
    return LeaseLedger()


@pytest.fixture
def processor(policy, ledger):
    return LeaseProcessor(policy, ledger=ledger)


@pytest.fixture
def operating_lease():
    """$1,000/month for 60 months in arrears at 6%, no finance indicators"""
    return build_lease("OP-001")


@pytest.fixture
def finance_lease():
    """$2,200/month for 60 months in arrears at 6% over a specialized asset"""
    return build_lease("FIN-001", base_payment=220_000, specialized_asset=True)
