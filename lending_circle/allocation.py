"""
Payment Allocation Module

Applies an incoming cash amount to a loan's installment schedule with a
waterfall: earliest open installment first, each one fully settled before the
next is touched, a shortfall leaving exactly one installment PARTIAL.
"""

from decimal import Decimal
from dataclasses import dataclass, field, replace
from typing import List, Sequence

from .currency import quantize, ZERO
from .schedule import (
    Installment, InstallmentStatus, LoanStatus,
    sort_schedule, expected_after, expected_from
)


@dataclass
class AllocationResult:
    """Outcome of applying one payment to a schedule"""
    schedule: List[Installment]          # Full schedule after allocation, ordered
    changed: List[Installment] = field(default_factory=list)
    applied_amount: Decimal = ZERO
    unapplied_amount: Decimal = ZERO     # Cash beyond every remaining obligation
    total_paid: Decimal = ZERO
    remaining_amount: Decimal = ZERO
    loan_status: LoanStatus = LoanStatus.PARTIAL

    @property
    def changed_numbers(self) -> List[int]:
        return [item.installment_number for item in self.changed]


def loan_position(total_paid: Decimal, loan_amount: Decimal):
    """Loan status and remaining amount after ``total_paid`` has been paid"""
    if total_paid >= loan_amount:
        return LoanStatus.PAID, ZERO
    return LoanStatus.PARTIAL, loan_amount - total_paid


class PaymentAllocator:
    """Waterfall allocation of a payment across open installments"""

    def allocate(
        self,
        amount: Decimal,
        installments: Sequence[Installment],
        prior_total_paid: Decimal,
        loan_amount: Decimal
    ) -> AllocationResult:
        """
        Allocate ``amount`` to the schedule

        The input installments are left untouched; the result carries
        updated copies.

        Args:
            amount: Cash received, must be positive
            installments: The loan's full schedule in any order
            prior_total_paid: Sum of the loan's earlier payments
            loan_amount: Principal lent

        Returns:
            AllocationResult with the updated schedule and loan position
        """
        if amount <= ZERO:
            raise ValueError(f"Payment amount must be positive, got {amount}")

        schedule = [replace(item) for item in sort_schedule(installments)]
        changed = []
        remaining_cash = amount

        for item in schedule:
            if item.status == InstallmentStatus.PAID:
                continue
            if remaining_cash <= ZERO:
                break

            available = item.paid_amount + remaining_cash
            if available >= item.expected_amount:
                consumed = item.expected_amount - item.paid_amount
                item.status = InstallmentStatus.PAID
                item.paid_amount = item.expected_amount
                item.remaining_balance = quantize(expected_after(schedule, item.installment_number))
                remaining_cash = max(ZERO, remaining_cash - consumed)
                changed.append(item)
            else:
                item.status = InstallmentStatus.PARTIAL
                item.paid_amount = item.paid_amount + remaining_cash
                item.remaining_balance = quantize(
                    expected_from(schedule, item.installment_number) - remaining_cash
                )
                remaining_cash = ZERO
                changed.append(item)
                break

        total_paid = prior_total_paid + amount
        status, remaining_amount = loan_position(total_paid, loan_amount)

        return AllocationResult(
            schedule=schedule,
            changed=changed,
            applied_amount=amount - remaining_cash,
            unapplied_amount=remaining_cash,
            total_paid=total_paid,
            remaining_amount=remaining_amount,
            loan_status=status
        )
