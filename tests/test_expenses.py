# tests/test_expenses.py
from datetime import date

from lease_accounting.core.models import RecognitionExemption
from lease_accounting.schedule.payment_schedule import PaymentScheduleBuilder
from lease_accounting.utils.expense_generator import ExpenseGenerator, generate_lease_expenses


def test_expenses_follow_schedule_rows(processor, finance_lease):
    computation = processor.process_single_lease(finance_lease)
    expenses = computation.expenses

    assert len(expenses) == len(computation.rows)
    for expense, row in zip(expenses, computation.rows):
        assert expense.period_number == row.period_number
        assert expense.expense_date == row.period_end
        assert expense.depreciation_expense == row.depreciation_expense
        assert expense.interest_expense == row.interest_expense
        assert expense.total_expense == row.total_expense


def test_recorded_variable_payments_are_expensed_in_period(processor, ledger, operating_lease):
    processor.process_single_lease(operating_lease)
    ledger.record_payment("OP-001", 3, date(2025, 3, 31), variable_payment=7_500)

    expenses = processor.expenses_for("OP-001")
    assert expenses[2].variable_lease_expense == 7_500
    assert expenses[1].variable_lease_expense == 0
    assert expenses[2].total_expense == expenses[2].depreciation_expense + expenses[2].interest_expense + 7_500


def test_short_term_lease_is_expensed_straight_line(make_lease):
    lease = make_lease("ST-001", term_months=12, base_payment=100_001)
    payments = PaymentScheduleBuilder().build_for_lease(lease)

    generator = ExpenseGenerator()
    expenses = generator.generate_expenses("ST-001", [], payments, RecognitionExemption.SHORT_TERM)

    assert len(expenses) == 12
    assert sum(e.short_term_lease_expense for e in expenses) == 1_200_012
    assert max(e.short_term_lease_expense for e in expenses) - min(e.short_term_lease_expense for e in expenses) <= 1
    assert all(e.depreciation_expense == 0 and e.interest_expense == 0 for e in expenses)

    summary = generator.get_expense_summary()
    assert summary["short_term_lease_expense"] == 1_200_012
    assert summary["low_value_lease_expense"] == 0
    assert summary["total_expense"] == 1_200_012


def test_low_value_lease_expense_line(make_lease):
    lease = make_lease("LV-001", term_months=24, base_payment=5_000)
    payments = PaymentScheduleBuilder().build_for_lease(lease)
    expenses = generate_lease_expenses("LV-001", [], payments, RecognitionExemption.LOW_VALUE)

    assert sum(e.low_value_lease_expense for e in expenses) == 120_000
    assert all(e.short_term_lease_expense == 0 for e in expenses)
