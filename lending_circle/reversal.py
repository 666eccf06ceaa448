"""
Payment Reversal Module

Recomputes a loan's schedule and position as if a deleted payment had never
been made.

The replay works on the aggregate of the loan's other payments, not on their
chronological order: every installment from the reset point onward goes back
to PENDING with nothing paid, even when another surviving payment had
covered part of it. With several payments on a loan the result can therefore
differ from a true chronological replay.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field, replace
from typing import List, Sequence

from .currency import ZERO
from .schedule import Installment, InstallmentStatus, LoanStatus, sort_schedule


@dataclass
class ReversalResult:
    """Outcome of removing one payment from a loan"""
    schedule: List[Installment]
    reset: List[Installment] = field(default_factory=list)
    reset_from: int = 1
    new_remaining_amount: Decimal = ZERO
    loan_status: LoanStatus = LoanStatus.PENDING


class PaymentReversalEngine:
    """Rolls a schedule back to the state before a payment"""

    def find_reset_point(self, installments: Sequence[Installment], payment_date: date) -> int:
        """
        First installment that is not PAID or falls due after the payment

        Installments before it were settled before the payment was made and
        stay as they are. Falls back to installment 1.
        """
        for item in sort_schedule(installments):
            if item.status != InstallmentStatus.PAID or item.due_date > payment_date:
                return item.installment_number
        return 1

    def reverse(
        self,
        payment_date: date,
        installments: Sequence[Installment],
        other_payments_total: Decimal,
        loan_amount: Decimal
    ) -> ReversalResult:
        """
        Reverse a payment against the loan's schedule

        Args:
            payment_date: Date of the payment being deleted
            installments: The loan's full schedule
            other_payments_total: Sum of the loan's payments excluding this one
            loan_amount: Principal lent

        Returns:
            ReversalResult with updated copies of the schedule
        """
        new_remaining = max(ZERO, loan_amount - other_payments_total)
        reset_from = self.find_reset_point(installments, payment_date)

        schedule = [replace(item) for item in sort_schedule(installments)]
        reset = []
        running_balance = new_remaining

        for item in schedule:
            if item.installment_number < reset_from:
                continue
            item.status = InstallmentStatus.PENDING
            item.paid_amount = ZERO
            item.expected_amount = item.principal + item.interest
            item.remaining_balance = running_balance
            running_balance = max(ZERO, running_balance - item.principal)
            reset.append(item)

        if new_remaining == loan_amount:
            status = LoanStatus.PENDING
        else:
            status = LoanStatus.PARTIAL

        return ReversalResult(
            schedule=schedule,
            reset=reset,
            reset_from=reset_from,
            new_remaining_amount=new_remaining,
            loan_status=status
        )
