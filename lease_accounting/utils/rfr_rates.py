"""
Risk-Free Rate (RFR) Rate Tables
Date-keyed risk-free rates for the private-company discount rate election
"""

import csv
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Tuple

from lease_accounting.utils.finance import quantize_rate

logger = logging.getLogger(__name__)


class RiskFreeRateTable:
    """
    Risk-free rate lookup table
    Each entry is (effective_date, annual_rate); the rate in force on a date is
    the latest entry effective on or before it.
    """

    def __init__(self, rates: Optional[Iterable[Tuple[date, Decimal]]] = None):
        self.rates: List[Tuple[date, Decimal]] = []
        if rates:
            self.update(rates)

    def update(self, rates: Iterable[Tuple[date, Decimal]]):
        """Merge new rates into the table"""
        for rate_date, rate in rates:
            self.rates.append((rate_date, quantize_rate(rate)))
        # Sort by date descending
        self.rates.sort(key=lambda x: x[0], reverse=True)

    def get_rate(self, rate_date: date) -> Optional[Decimal]:
        """
        Get the risk-free rate in force on rate_date
        Returns None if the table has no entry on or before that date
        """
        for table_date, rate in self.rates:
            if table_date <= rate_date:
                return rate
        return None

    def load_from_file(self, filename: str):
        """
        Load RFR rates from CSV file
        Format: header row, then effective_date (YYYY-MM-DD), rate in percent
        """
        loaded = []
        with open(filename, 'r', newline='') as f:
            reader = csv.reader(f)
            # Skip header
            next(reader, None)
            for line_number, row in enumerate(reader, start=2):
                if len(row) < 2:
                    continue
                try:
                    rate_date = date.fromisoformat(row[0].strip())
                    rate = Decimal(row[1].strip()) / 100  # Convert percentage to decimal
                except (ValueError, InvalidOperation):
                    logger.warning(f"⚠️  Skipping malformed RFR row {line_number} in {filename}: {row}")
                    continue
                loaded.append((rate_date, rate))

        self.update(loaded)
        logger.info(f"📈 Loaded {len(loaded)} risk-free rates from {filename}")
