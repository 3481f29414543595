"""
Utility functions for lease accounting
"""

from .date_utils import (
    eomonth,
    add_months,
    months_between,
    term_months_for,
)

from .finance import (
    quantize_rate,
    round_minor,
    present_value,
    allocate_evenly,
    weighted_average,
)

from .rfr_rates import RiskFreeRateTable

from .expense_generator import (
    ExpenseGenerator,
    generate_lease_expenses,
)

from .lease_loader import (
    lease_from_dict,
    load_leases,
)

__all__ = [
    # Date utilities
    'eomonth',
    'add_months',
    'months_between',
    'term_months_for',

    # Finance utilities
    'quantize_rate',
    'round_minor',
    'present_value',
    'allocate_evenly',
    'weighted_average',

    # Risk-free rates
    'RiskFreeRateTable',

    # Expense generation
    'ExpenseGenerator',
    'generate_lease_expenses',

    # Lease payloads
    'lease_from_dict',
    'load_leases',
]
