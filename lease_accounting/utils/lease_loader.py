"""
Lease Loader
Maps JSON lease payloads (from the contract-management collaborator) onto Lease models

Amounts are integer minor units; rates are decimal fractions given as
strings or numbers ("0.06" = 6%).
"""

import json
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from lease_accounting.core.errors import ConfigurationError, InvalidRate
from lease_accounting.core.models import (
    DepreciationMethod,
    EscalationType,
    Lease,
    LeasePaymentSchedule,
    LeaseStatus,
    LeaseType,
    LesseeType,
    PaymentFrequency,
    PaymentTiming,
    PurchaseOption,
    RenewalOption,
    TerminationOption,
)
from lease_accounting.utils.date_utils import term_months_for

logger = logging.getLogger(__name__)


def _parse_date(date_str: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD string to a date"""
    if not date_str:
        return None
    if isinstance(date_str, date):
        return date_str
    try:
        return datetime.strptime(date_str, '%Y-%m-%d').date()
    except (ValueError, TypeError):
        raise ConfigurationError(f"Invalid date {date_str!r}, expected YYYY-MM-DD")


def _parse_rate(value: Any, field_name: str) -> Optional[Decimal]:
    if value is None or value == '':
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise InvalidRate(f"Invalid {field_name} value {value!r}, must be a decimal fraction")


def _enum(enum_class, value, default=None):
    if value is None or value == '':
        return default
    try:
        return enum_class(value)
    except ValueError:
        raise ConfigurationError(f"Unknown {enum_class.__name__} value {value!r}")


def schedule_from_dict(data: Dict[str, Any], currency: str = "USD") -> LeasePaymentSchedule:
    return LeasePaymentSchedule(
        schedule_id=str(data.get('schedule_id', '')),
        effective_date=_parse_date(data.get('effective_date')),
        base_payment=int(data['base_payment']),
        payment_frequency=_enum(PaymentFrequency, data.get('payment_frequency'), PaymentFrequency.MONTHLY),
        payment_timing=_enum(PaymentTiming, data.get('payment_timing'), PaymentTiming.ARREARS),
        payment_day=data.get('payment_day'),
        escalation_type=_enum(EscalationType, data.get('escalation_type'), EscalationType.NONE),
        escalation_rate=_parse_rate(data.get('escalation_rate'), 'escalation_rate'),
        escalation_amount=data.get('escalation_amount'),
        escalation_frequency_months=data.get('escalation_frequency_months'),
        first_escalation_date=_parse_date(data.get('first_escalation_date')),
        cap_amount=data.get('cap_amount'),
        floor_amount=data.get('floor_amount'),
        end_date=_parse_date(data.get('end_date')),
        currency=data.get('currency', currency),
    )


def lease_from_dict(data: Dict[str, Any]) -> Lease:
    """
    Build a Lease from a JSON payload

    term_months may be omitted and is then derived from the dates.
    """
    lease_id = str(data.get('lease_id', ''))
    commencement = _parse_date(data.get('commencement_date'))
    end_date = _parse_date(data.get('end_date'))
    if not lease_id or commencement is None or end_date is None:
        raise ConfigurationError("Lease payload needs lease_id, commencement_date and end_date", lease_id=lease_id)

    currency = data.get('currency', 'USD')
    renewal = data.get('renewal_option') or {}
    termination = data.get('termination_option') or {}
    purchase = data.get('purchase_option') or {}

    lease = Lease(
        lease_id=lease_id,
        commencement_date=commencement,
        end_date=end_date,
        term_months=int(data.get('term_months') or term_months_for(commencement, end_date)),
        lessor_id=data.get('lessor_id', ''),
        lessee_id=data.get('lessee_id', ''),
        asset_id=data.get('asset_id'),
        description=data.get('description', ''),
        lease_type=_enum(LeaseType, data.get('lease_type')),
        lessee_type=_enum(LesseeType, data.get('lessee_type'), LesseeType.PUBLIC),
        renewal_option=RenewalOption(
            exercisable=bool(renewal.get('exercisable', False)),
            term_months=renewal.get('term_months'),
            reasonably_certain=bool(renewal.get('reasonably_certain', False)),
        ),
        termination_option=TerminationOption(
            exercisable=bool(termination.get('exercisable', False)),
            notice_days=termination.get('notice_days'),
            penalty=termination.get('penalty'),
        ),
        purchase_option=PurchaseOption(
            exercisable=bool(purchase.get('exercisable', False)),
            price=purchase.get('price'),
            reasonably_certain=bool(purchase.get('reasonably_certain', False)),
        ),
        ownership_transfer=bool(data.get('ownership_transfer', False)),
        specialized_asset=bool(data.get('specialized_asset', False)),
        economic_life_months=data.get('economic_life_months'),
        fair_value=int(data.get('fair_value', 0)),
        residual_value_guarantee=int(data.get('residual_value_guarantee', 0)),
        residual_value=int(data.get('residual_value', 0)),
        implicit_rate=_parse_rate(data.get('implicit_rate'), 'implicit_rate'),
        incremental_borrowing_rate=_parse_rate(data.get('incremental_borrowing_rate'), 'incremental_borrowing_rate'),
        initial_direct_costs=int(data.get('initial_direct_costs', 0)),
        prepayments=int(data.get('prepayments', 0)),
        lease_incentives=int(data.get('lease_incentives', 0)),
        decommissioning_provision=int(data.get('decommissioning_provision', 0)),
        depreciation_method=_enum(DepreciationMethod, data.get('depreciation_method'),
                                  DepreciationMethod.STRAIGHT_LINE),
        currency=currency,
        status=_enum(LeaseStatus, data.get('status'), LeaseStatus.DRAFT),
        schedules=[schedule_from_dict(s, currency) for s in data.get('schedules', [])],
    )
    logger.debug(f"📥 Loaded lease {lease_id}: {lease.term_months} months, {len(lease.schedules)} schedule(s)")
    return lease


def load_leases(filename: str) -> List[Lease]:
    """
    Load leases from a JSON file holding a list of lease payloads
    (or an object with a "leases" list)
    """
    with open(filename, 'r') as f:
        payload = json.load(f)
    if isinstance(payload, dict):
        payload = payload.get('leases', [])
    leases = [lease_from_dict(item) for item in payload]
    logger.info(f"📥 Loaded {len(leases)} leases from {filename}")
    return leases
