"""
Tests for installment schedule construction and schedule folds
"""

import pytest
from decimal import Decimal
from datetime import date

from lending_circle.amortization import AmortizationCalculator, LoanType, PaymentFrequency
from lending_circle.schedule import (
    Installment, InstallmentStatus, ScheduleBuilder,
    sort_schedule, total_expected, expected_after, expected_from,
    next_open_installment, has_overdue
)


def build_declining_schedule(frequency=PaymentFrequency.MONTHLY, start=date(2024, 1, 1)):
    rows = AmortizationCalculator().calculate(
        Decimal('1000.00'), Decimal('0.10'), 4, LoanType.DECLINING_BALANCE
    )
    return ScheduleBuilder().build("loan-1", rows, start, frequency)


class TestScheduleBuilder:
    """Test building dated installments from amortization rows"""

    def test_installments_start_pending(self):
        """Test new installments are pending"""
        schedule = build_declining_schedule()

        assert len(schedule) == 4
        assert [item.installment_number for item in schedule] == [1, 2, 3, 4]
        for item in schedule:
            assert item.status == InstallmentStatus.PENDING
            assert item.paid_amount == Decimal('0')
            assert item.expected_amount == item.principal + item.interest
            assert item.loan_id == "loan-1"

    def test_ids_are_derived_from_loan_and_number(self):
        """Test installment ids"""
        schedule = build_declining_schedule()
        assert schedule[2].id == "loan-1_3"
        assert Installment.make_id("abc", 7) == "abc_7"

    def test_remaining_balance_is_sum_of_later_payments(self):
        """Test look-ahead remaining balances"""
        schedule = build_declining_schedule()

        assert [item.remaining_balance for item in schedule] == [
            Decimal('900.00'), Decimal('575.00'), Decimal('275.00'), Decimal('0.00')
        ]

    @pytest.mark.parametrize("frequency,expected_dates", [
        (PaymentFrequency.WEEKLY, [date(2024, 1, 8), date(2024, 1, 15), date(2024, 1, 22), date(2024, 1, 29)]),
        (PaymentFrequency.BIWEEKLY, [date(2024, 1, 16), date(2024, 1, 31), date(2024, 2, 15), date(2024, 3, 1)]),
        (PaymentFrequency.MONTHLY, [date(2024, 1, 31), date(2024, 3, 1), date(2024, 3, 31), date(2024, 4, 30)]),
    ])
    def test_due_dates_follow_frequency(self, frequency, expected_dates):
        """Test due dates per frequency"""
        schedule = build_declining_schedule(frequency)
        assert [item.due_date for item in schedule] == expected_dates

    def test_storage_round_trip(self):
        """Test installment round trips through storage"""
        item = build_declining_schedule()[0]
        restored = Installment.from_dict(item.to_dict())

        assert restored == item
        assert item.to_dict()['status'] == "PENDING"
        assert item.to_dict()['due_date'] == "2024-01-31"


class TestScheduleFolds:
    """Test sums and lookups over an ordered schedule"""

    def setup_method(self):
        self.schedule = build_declining_schedule()

    def test_sort_schedule(self):
        """Test schedule ordering"""
        shuffled = [self.schedule[2], self.schedule[0], self.schedule[3], self.schedule[1]]
        assert [item.installment_number for item in sort_schedule(shuffled)] == [1, 2, 3, 4]

    def test_expected_sums(self):
        """Test expected amount sums"""
        assert total_expected(self.schedule) == Decimal('1250.00')
        assert expected_after(self.schedule, 2) == Decimal('575.00')
        assert expected_from(self.schedule, 2) == Decimal('900.00')
        assert expected_after(self.schedule, 4) == Decimal('0')

    def test_next_open_installment_skips_paid(self):
        """Test next open installment lookup"""
        self.schedule[0].status = InstallmentStatus.PAID
        self.schedule[1].status = InstallmentStatus.PARTIAL

        assert next_open_installment(self.schedule).installment_number == 2

    def test_next_open_installment_none_when_settled(self):
        """Test settled schedule has no open installment"""
        for item in self.schedule:
            item.status = InstallmentStatus.PAID
        assert next_open_installment(self.schedule) is None


class TestOverdueDerivation:
    """OVERDUE is derived on read and never stored"""

    def setup_method(self):
        self.schedule = build_declining_schedule()

    def test_open_installment_past_due_is_overdue(self):
        """Test overdue derivation on read"""
        first = self.schedule[0]
        assert first.status_as_of(date(2024, 1, 31)) == InstallmentStatus.PENDING
        assert first.status_as_of(date(2024, 2, 1)) == InstallmentStatus.OVERDUE
        assert first.status == InstallmentStatus.PENDING

    def test_paid_installment_never_overdue(self):
        """Test paid installments are never overdue"""
        first = self.schedule[0]
        first.status = InstallmentStatus.PAID
        assert first.status_as_of(date(2025, 1, 1)) == InstallmentStatus.PAID

    def test_has_overdue(self):
        """Test schedule overdue check"""
        assert not has_overdue(self.schedule, date(2024, 1, 15))
        assert has_overdue(self.schedule, date(2024, 2, 1))
