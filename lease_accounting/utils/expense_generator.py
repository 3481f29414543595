"""
Lease Expense Generator
Creates period LeaseExpense records for the ledger-posting collaborator
"""

from typing import Dict, List, Optional, Sequence

from lease_accounting.core.models import (
    LeaseAmortizationSchedule,
    LeaseExpense,
    LeasePayment,
    RecognitionExemption,
)
from lease_accounting.utils.finance import allocate_evenly


class ExpenseGenerator:
    """
    Generate expense records from a lease's schedule
    One record per period; variable payments are expensed in the period they occur
    """

    def __init__(self):
        self.expenses: List[LeaseExpense] = []

    def generate_expenses(
        self,
        lease_id: str,
        rows: Sequence[LeaseAmortizationSchedule],
        payments: Sequence[LeasePayment],
        exemption: Optional[RecognitionExemption] = None
    ) -> List[LeaseExpense]:
        """
        Generate expense records

        Args:
            lease_id: Lease the expenses belong to
            rows: Amortization rows in force (empty for exempt leases)
            payments: Payments in force, with recorded actuals
            exemption: Short-term / low-value exemption, if the lease is off balance sheet
        Returns:
            Expense records ordered by period
        """
        variable = {p.period_number: p.variable_payment for p in payments}

        if exemption is not None:
            self.expenses = self._exempt_expenses(lease_id, payments, exemption, variable)
        else:
            self.expenses = [
                LeaseExpense(
                    lease_id=lease_id,
                    period_number=row.period_number,
                    expense_date=row.period_end,
                    period_start=row.period_start,
                    period_end=row.period_end,
                    depreciation_expense=row.depreciation_expense,
                    interest_expense=row.interest_expense,
                    variable_lease_expense=variable.get(row.period_number, 0),
                    currency=row.currency,
                )
                for row in rows
            ]
        return self.expenses

    @staticmethod
    def _exempt_expenses(lease_id: str, payments: Sequence[LeasePayment],
                         exemption: RecognitionExemption, variable: Dict[int, int]) -> List[LeaseExpense]:
        # Fixed payments are straight-lined over the term
        straight_line = allocate_evenly(sum(p.capitalized_amount for p in payments), len(payments))
        expenses = []
        for payment, amount in zip(payments, straight_line):
            short_term = amount if exemption is RecognitionExemption.SHORT_TERM else 0
            low_value = amount if exemption is RecognitionExemption.LOW_VALUE else 0
            expenses.append(LeaseExpense(
                lease_id=lease_id,
                period_number=payment.period_number,
                expense_date=payment.period_end,
                period_start=payment.period_start,
                period_end=payment.period_end,
                variable_lease_expense=variable.get(payment.period_number, 0),
                short_term_lease_expense=short_term,
                low_value_lease_expense=low_value,
                currency=payment.currency,
            ))
        return expenses

    def get_expense_summary(self) -> Dict[str, int]:
        """Totals by expense line across the generated records"""
        return {
            'depreciation_expense': sum(e.depreciation_expense for e in self.expenses),
            'interest_expense': sum(e.interest_expense for e in self.expenses),
            'variable_lease_expense': sum(e.variable_lease_expense for e in self.expenses),
            'short_term_lease_expense': sum(e.short_term_lease_expense for e in self.expenses),
            'low_value_lease_expense': sum(e.low_value_lease_expense for e in self.expenses),
            'total_expense': sum(e.total_expense for e in self.expenses),
        }


def generate_lease_expenses(
    lease_id: str,
    rows: Sequence[LeaseAmortizationSchedule],
    payments: Sequence[LeasePayment],
    exemption: Optional[RecognitionExemption] = None
) -> List[LeaseExpense]:
    """
    Convenience function to generate expense records
    """
    generator = ExpenseGenerator()
    return generator.generate_expenses(lease_id, rows, payments, exemption)
