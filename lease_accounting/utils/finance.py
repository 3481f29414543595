"""
Financial calculation utilities
Fixed-point helpers for lease calculations

Monetary amounts are integers in minor currency units. Rates are Decimal
fractions (0.06 = 6%) quantized to RATE_SCALE decimal places. Intermediate
values are carried as Decimal and converted back to minor units with a single
rounding rule (round-half-even).
"""

from decimal import Decimal, ROUND_HALF_EVEN, localcontext
from typing import Iterable, List, Sequence, Tuple, Union

RATE_SCALE = 6
RATE_QUANTUM = Decimal(1).scaleb(-RATE_SCALE)
PRECISION = 28

Number = Union[int, float, str, Decimal]


def quantize_rate(value: Number) -> Decimal:
    """
    Convert a rate to a fixed-point Decimal with RATE_SCALE digits
    Floats are routed through str() so 0.06 stays 0.060000
    """
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(RATE_QUANTUM, rounding=ROUND_HALF_EVEN)


def round_minor(value: Decimal) -> int:
    """
    Round a Decimal amount to whole minor units (round-half-even)
    """
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_EVEN))


def discount_factors(period_rates: Sequence[Decimal],
                     advance: Union[bool, Sequence[bool]] = False) -> List[Decimal]:
    """
    Calculate cumulative discount factors for a run of periods

    Args:
        period_rates: Interest rate applying to each period
        advance: True if payments fall at the beginning of each period, or one
                 flag per period when timing changes between schedule segments
    Returns:
        One discount factor per period. In arrears the payment of period t is
        discounted through period t; in advance only through period t-1.
    """
    if isinstance(advance, bool):
        flags = [advance] * len(period_rates)
    else:
        flags = list(advance)
        if len(flags) != len(period_rates):
            raise ValueError("advance flags and period_rates must have the same length")

    factors = []
    with localcontext() as ctx:
        ctx.prec = PRECISION
        accumulated = Decimal(1)
        for rate, in_advance in zip(period_rates, flags):
            if in_advance:
                factors.append(1 / accumulated)
                accumulated *= (1 + rate)
            else:
                accumulated *= (1 + rate)
                factors.append(1 / accumulated)
    return factors


def present_value(amounts: Sequence[int], period_rates: Sequence[Decimal],
                  advance: Union[bool, Sequence[bool]] = False) -> int:
    """
    Calculate the present value of a payment stream in minor units

    Args:
        amounts: Payment per period (minor units)
        period_rates: Interest rate applying to each period
        advance: Payment timing, a single flag or one per period
    Returns:
        Present value rounded to minor units
    """
    if len(amounts) != len(period_rates):
        raise ValueError("amounts and period_rates must have the same length")

    with localcontext() as ctx:
        ctx.prec = PRECISION
        total = Decimal(0)
        for amount, factor in zip(amounts, discount_factors(period_rates, advance)):
            total += Decimal(amount) * factor
        return round_minor(total)


def allocate_evenly(total: int, periods: int) -> List[int]:
    """
    Spread an amount over periods in whole minor units

    Uses cumulative rounding: the amount allocated up to period t is
    round(total * t / periods), so each period differs by at most one unit
    and the allocations always sum exactly to total.
    """
    if periods <= 0:
        return []
    allocations = []
    allocated = 0
    for t in range(1, periods + 1):
        cumulative = round_minor(Decimal(total) * t / periods)
        allocations.append(cumulative - allocated)
        allocated = cumulative
    return allocations


def weighted_average(pairs: Iterable[Tuple[Decimal, int]]) -> Decimal:
    """
    Weighted average of values by integer weights (e.g. outstanding balances)
    Returns 0 when the weights sum to zero
    """
    numerator = Decimal(0)
    denominator = 0
    with localcontext() as ctx:
        ctx.prec = PRECISION
        for value, weight in pairs:
            numerator += Decimal(value) * weight
            denominator += weight
        if denominator == 0:
            return Decimal(0)
        return numerator / denominator
