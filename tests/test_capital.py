"""
Test suite for the capital ledger

Every disbursement and payment must move the group's pool together with one
movement entry, and each reversal must be the exact inverse.
"""

import pytest
from decimal import Decimal
from datetime import date
from types import SimpleNamespace

from lending_circle.amortization import LoanType
from lending_circle.capital import CapitalLedger, MovementDirection, MovementType
from lending_circle.exceptions import InternalError
from lending_circle.groups import GroupManager
from lending_circle.storage import InMemoryStorage


class TestCapitalLedger:
    """Test capital pool updates and movement entries"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.groups = GroupManager(self.storage)
        self.ledger = CapitalLedger(self.storage, self.groups)
        self.group = self.groups.create_group("Circle", "facilitator-1", Decimal('5000.00'))
        self.loan = SimpleNamespace(
            id="loan-1", amount=Decimal('1000.00'), loan_type=LoanType.FIXED_INSTALLMENT,
            loan_code="FIXED_INSTALLMENT-1", affects_capital=True
        )
        self.payment = SimpleNamespace(
            id="payment-1", amount=Decimal('350.00'), payment_date=date(2024, 1, 15), affects_capital=True
        )

    def test_disbursement_decrements_pool(self):
        """Test disbursement lowers the capital pool"""
        movement = self.ledger.record_disbursement(self.group, self.loan)

        stored = self.groups.get_group(self.group.id)
        assert stored.current_capital == Decimal('4000.00')
        assert stored.available_capital == Decimal('4000.00')
        assert stored.base_capital == Decimal('5000.00')
        assert movement.direction == MovementDirection.DECREASE
        assert movement.movement_type == MovementType.LOAN_DISBURSEMENT
        assert movement.signed_amount == Decimal('-1000.00')
        assert "FIXED_INSTALLMENT-1" in movement.description

    def test_payment_increments_pool(self):
        """Test payment raises the capital pool"""
        self.ledger.record_disbursement(self.group, self.loan)
        movement = self.ledger.record_payment(self.group, self.loan, self.payment)

        stored = self.groups.get_group(self.group.id)
        assert stored.current_capital == Decimal('4350.00')
        assert stored.available_capital == Decimal('4350.00')
        assert movement.payment_id == "payment-1"
        assert movement.direction == MovementDirection.INCREASE
        assert self.ledger.count_for_loan("loan-1") == 2

    def test_payment_reversal_is_exact_inverse(self):
        """Test payment reversal undoes the payment movement"""
        self.ledger.record_disbursement(self.group, self.loan)
        self.ledger.record_payment(self.group, self.loan, self.payment)

        restored = self.ledger.reverse_payment(self.group, self.payment)

        stored = self.groups.get_group(self.group.id)
        assert restored == Decimal('350.00')
        assert stored.current_capital == Decimal('4000.00')
        assert stored.available_capital == Decimal('4000.00')
        movements = self.ledger.movements_for_loan("loan-1")
        assert [m.movement_type for m in movements] == [MovementType.LOAN_DISBURSEMENT]

    def test_reversal_without_capital_effect(self):
        """Test reversal of a payment that never touched capital"""
        self.ledger.record_disbursement(self.group, self.loan)
        self.payment.affects_capital = False

        assert self.ledger.reverse_payment(self.group, self.payment) == Decimal('0')
        assert self.groups.get_group(self.group.id).current_capital == Decimal('4000.00')

    def test_disbursement_reversal_restores_pool(self):
        """Test disbursement reversal restores the pool"""
        self.ledger.record_disbursement(self.group, self.loan)

        deleted = self.ledger.reverse_disbursement(self.group, self.loan)

        stored = self.groups.get_group(self.group.id)
        assert deleted == 1
        assert stored.current_capital == Decimal('5000.00')
        assert stored.available_capital == Decimal('5000.00')
        assert self.ledger.movements_for_group(self.group.id) == []

    def test_inconsistent_pool_detected(self):
        """Test available capital above current capital is detected"""
        self.group.available_capital = Decimal('6000.00')

        with pytest.raises(InternalError, match="inconsistent"):
            self.ledger.record_payment(self.group, self.loan, self.payment)
