"""
Tests for payment reversal
"""

from decimal import Decimal
from datetime import date

from lending_circle.allocation import PaymentAllocator
from lending_circle.amortization import AmortizationCalculator, LoanType, PaymentFrequency
from lending_circle.reversal import PaymentReversalEngine
from lending_circle.schedule import InstallmentStatus, LoanStatus, ScheduleBuilder


LOAN_AMOUNT = Decimal('1000.00')


def build_schedule():
    # Payments 350, 325, 300, 275 due 2024-01-31, 03-01, 03-31, 04-30
    rows = AmortizationCalculator().calculate(LOAN_AMOUNT, Decimal('0.10'), 4, LoanType.DECLINING_BALANCE)
    return ScheduleBuilder().build("loan-1", rows, date(2024, 1, 1), PaymentFrequency.MONTHLY)


class TestResetPoint:
    """Test where the reversal starts resetting installments"""

    def setup_method(self):
        self.engine = PaymentReversalEngine()
        self.schedule = build_schedule()

    def test_first_open_installment(self):
        """Test reset at the first open installment"""
        self.schedule[0].status = InstallmentStatus.PAID
        assert self.engine.find_reset_point(self.schedule, date(2024, 2, 10)) == 2

    def test_paid_installment_due_after_payment(self):
        """Test reset at a paid installment due after the payment"""
        self.schedule[0].status = InstallmentStatus.PAID
        self.schedule[1].status = InstallmentStatus.PAID
        # Installment 2 falls due after the payment date
        assert self.engine.find_reset_point(self.schedule, date(2024, 2, 10)) == 2

    def test_early_payment_resets_from_first(self):
        """Test early payment resets from installment 1"""
        self.schedule[0].status = InstallmentStatus.PAID
        assert self.engine.find_reset_point(self.schedule, date(2024, 1, 15)) == 1

    def test_falls_back_to_first_installment(self):
        """Test fallback to installment 1"""
        for item in self.schedule:
            item.status = InstallmentStatus.PAID
        assert self.engine.find_reset_point(self.schedule, date(2025, 1, 1)) == 1


class TestReverse:
    """Test recomputing schedule and loan position without a payment"""

    def setup_method(self):
        self.engine = PaymentReversalEngine()
        self.allocator = PaymentAllocator()
        self.schedule = build_schedule()

    def test_only_payment_reversed(self):
        """Test reversing the only payment"""
        allocated = self.allocator.allocate(Decimal('500.00'), self.schedule, Decimal('0'), LOAN_AMOUNT)

        result = self.engine.reverse(date(2024, 1, 15), allocated.schedule, Decimal('0'), LOAN_AMOUNT)

        assert result.reset_from == 1
        assert result.new_remaining_amount == LOAN_AMOUNT
        assert result.loan_status == LoanStatus.PENDING
        for item in result.schedule:
            assert item.status == InstallmentStatus.PENDING
            assert item.paid_amount == Decimal('0')
            assert item.expected_amount == item.principal + item.interest

    def test_running_balance_decreases_by_principal(self):
        """Test rebuilt running balance"""
        allocated = self.allocator.allocate(Decimal('350.00'), self.schedule, Decimal('0'), LOAN_AMOUNT)

        result = self.engine.reverse(date(2024, 1, 15), allocated.schedule, Decimal('0'), LOAN_AMOUNT)

        assert [item.remaining_balance for item in result.schedule] == [
            Decimal('1000.00'), Decimal('750.00'), Decimal('500.00'), Decimal('250.00')
        ]

    def test_installments_settled_before_payment_are_kept(self):
        """Test earlier settled installments survive"""
        first = self.allocator.allocate(Decimal('350.00'), self.schedule, Decimal('0'), LOAN_AMOUNT)
        second = self.allocator.allocate(Decimal('325.00'), first.schedule, Decimal('350.00'), LOAN_AMOUNT)

        # Deleting the second payment, made after installment 1 fell due
        result = self.engine.reverse(date(2024, 2, 10), second.schedule, Decimal('350.00'), LOAN_AMOUNT)

        assert result.reset_from == 2
        assert result.schedule[0].status == InstallmentStatus.PAID
        assert result.schedule[0].paid_amount == Decimal('350.00')
        assert [item.installment_number for item in result.reset] == [2, 3, 4]
        assert result.schedule[1].status == InstallmentStatus.PENDING
        assert result.schedule[1].remaining_balance == Decimal('650.00')
        assert result.new_remaining_amount == Decimal('650.00')
        assert result.loan_status == LoanStatus.PARTIAL

    def test_other_payments_covering_loan_clamp_to_zero(self):
        """Test remaining amount is clamped at zero"""
        result = self.engine.reverse(date(2024, 1, 15), self.schedule, Decimal('1100.00'), LOAN_AMOUNT)

        assert result.new_remaining_amount == Decimal('0')
        assert result.loan_status == LoanStatus.PARTIAL
        assert all(item.remaining_balance >= Decimal('0') for item in result.schedule)

    def test_input_schedule_is_not_mutated(self):
        """Test that reversal works on copies"""
        allocated = self.allocator.allocate(Decimal('350.00'), self.schedule, Decimal('0'), LOAN_AMOUNT)
        self.engine.reverse(date(2024, 1, 15), allocated.schedule, Decimal('0'), LOAN_AMOUNT)

        assert allocated.schedule[0].status == InstallmentStatus.PAID
