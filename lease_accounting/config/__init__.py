"""
Configuration Management
Environment-driven settings plus the immutable accounting policy passed to the engine
"""

import os
from dataclasses import dataclass, replace
from decimal import Decimal
from pathlib import Path
from typing import Optional

from lease_accounting.core.models import DayCountConvention

# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or value == '':
        return None
    return int(value)


class Config:
    """Base configuration"""
    LOG_DIR = Path(os.environ.get('LEASE_LOG_DIR', BASE_DIR / 'logs'))
    LOG_LEVEL = os.environ.get('LEASE_LOG_LEVEL', 'INFO')

    # Logging
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    # Batch close: one lease per task
    MAX_WORKERS = _optional_int(os.environ.get('LEASE_MAX_WORKERS')) or os.cpu_count() or 1

    # Policy defaults
    MAJOR_PART_THRESHOLD = Decimal(os.environ.get('LEASE_MAJOR_PART_THRESHOLD', '0.75'))
    SUBSTANTIALLY_ALL_THRESHOLD = Decimal(os.environ.get('LEASE_SUBSTANTIALLY_ALL_THRESHOLD', '0.90'))
    ROUNDING_TOLERANCE = int(os.environ.get('LEASE_ROUNDING_TOLERANCE', 1))
    MAX_CLOSURE_PLUG = _optional_int(os.environ.get('LEASE_MAX_CLOSURE_PLUG'))
    NEGATIVE_AMORTIZATION_GRACE = int(os.environ.get('LEASE_NEGATIVE_AMORTIZATION_GRACE', 3))
    DAY_COUNT = DayCountConvention(os.environ.get('LEASE_DAY_COUNT', DayCountConvention.PERIODIC.value))
    SHORT_TERM_MONTHS = int(os.environ.get('LEASE_SHORT_TERM_MONTHS', 12))
    SHORT_TERM_ELECTION = os.environ.get('LEASE_SHORT_TERM_ELECTION', '1') == '1'
    LOW_VALUE_THRESHOLD = _optional_int(os.environ.get('LEASE_LOW_VALUE_THRESHOLD'))
    RISK_FREE_RATE_ELECTION = os.environ.get('LEASE_RISK_FREE_RATE_ELECTION', '0') == '1'
    CAPITALIZE_DECOMMISSIONING = os.environ.get('LEASE_CAPITALIZE_DECOMMISSIONING', '0') == '1'


class DevelopmentConfig(Config):
    """Development configuration"""
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(Config):
    """Production configuration"""
    LOG_LEVEL = 'WARNING'


class TestingConfig(Config):
    """Testing configuration"""
    MAX_WORKERS = 1


# Get configuration based on environment
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


@dataclass(frozen=True)
class PolicyConfig:
    """
    Accounting policy thresholds for one jurisdiction/tenant

    Passed explicitly to the classification and amortization engines so
    different policies can run side by side.
    """
    major_part_threshold: Decimal = Decimal('0.75')
    substantially_all_threshold: Decimal = Decimal('0.90')
    rounding_tolerance: int = 1
    max_closure_plug: Optional[int] = None
    negative_amortization_grace_periods: int = 3
    day_count: DayCountConvention = DayCountConvention.PERIODIC
    short_term_months: int = 12
    short_term_election: bool = True
    low_value_threshold: Optional[int] = None
    risk_free_rate_election: bool = False
    capitalize_decommissioning: bool = False

    @classmethod
    def from_config(cls, config_class=Config) -> 'PolicyConfig':
        return cls(
            major_part_threshold=config_class.MAJOR_PART_THRESHOLD,
            substantially_all_threshold=config_class.SUBSTANTIALLY_ALL_THRESHOLD,
            rounding_tolerance=config_class.ROUNDING_TOLERANCE,
            max_closure_plug=config_class.MAX_CLOSURE_PLUG,
            negative_amortization_grace_periods=config_class.NEGATIVE_AMORTIZATION_GRACE,
            day_count=config_class.DAY_COUNT,
            short_term_months=config_class.SHORT_TERM_MONTHS,
            short_term_election=config_class.SHORT_TERM_ELECTION,
            low_value_threshold=config_class.LOW_VALUE_THRESHOLD,
            risk_free_rate_election=config_class.RISK_FREE_RATE_ELECTION,
            capitalize_decommissioning=config_class.CAPITALIZE_DECOMMISSIONING,
        )

    def with_overrides(self, **overrides) -> 'PolicyConfig':
        return replace(self, **overrides)
