"""
Date utilities for lease accounting
Calendar helpers shared by schedule generation, amortization and disclosures
"""

from datetime import date
from dateutil.relativedelta import relativedelta


def eomonth(d: date, months: int = 0) -> date:
    """
    Calculate end of month
    Args:
        d: Starting date
        months: Number of months to add/subtract
    Returns:
        Last day of the month, adjusted by months
    """
    target_month = d + relativedelta(months=months)
    return target_month + relativedelta(day=31)


def add_months(d: date, months: int) -> date:
    """
    Add months to a date, preserving the day of month when possible
    (Jan 31 + 1 month = Feb 28/29)
    """
    return d + relativedelta(months=months)


def with_day_of_month(d: date, day_of_month: int) -> date:
    """
    Move a date to a specific day inside its month
    day_of_month = 0 means the last day of the month; days past month end are clamped
    """
    if day_of_month <= 0:
        return eomonth(d, 0)
    return d + relativedelta(day=day_of_month)


def months_between(start_date: date, end_date: date) -> int:
    """
    Whole calendar months from start_date to end_date (negative if end is earlier)
    """
    delta = relativedelta(end_date, start_date)
    return delta.years * 12 + delta.months


def term_months_for(start_date: date, end_date: date) -> int:
    """
    Lease term in months for a [start, end) span

    Accepts both exclusive (2025-01-01 -> 2030-01-01) and inclusive
    (2025-01-01 -> 2029-12-31) end date conventions: a trailing partial
    month counts as a full month.
    """
    delta = relativedelta(end_date, start_date)
    months = delta.years * 12 + delta.months
    if delta.days > 0:
        months += 1
    return months


def days_between(start_date: date, end_date: date) -> int:
    """
    Calculate days between two dates
    """
    return (end_date - start_date).days

