"""
Payment Validation Module

Loan-type specific rules a payment must satisfy before it is accepted.
"""

from decimal import Decimal
from typing import Optional

from .amortization import LoanType
from .currency import ZERO
from .exceptions import BadRequestError
from .schedule import Installment


class PaymentValidator:
    """
    Checks an incoming payment against the loan and its next open installment

    Args:
        enforce_upper_bound: Also reject payments larger than the loan's
            remaining amount. Off by default: overpayments are accepted and
            recorded as unapplied cash.
    """

    def __init__(self, enforce_upper_bound: bool = False):
        self.enforce_upper_bound = enforce_upper_bound

    def validate(self, loan, amount: Decimal, next_installment: Optional[Installment]) -> None:
        """
        Raises:
            BadRequestError: If the payment is not acceptable
        """
        if amount <= ZERO:
            raise BadRequestError("Payment amount must be greater than zero")

        if self.enforce_upper_bound and amount > loan.remaining_amount:
            raise BadRequestError(
                f"Payment amount ({amount}) exceeds remaining balance ({loan.remaining_amount})"
            )

        if next_installment is None:
            raise BadRequestError("No pending payments found")

        minimum = self.minimum_payment(loan.loan_type, next_installment)
        if amount < minimum:
            raise BadRequestError(
                f"Payment must cover at least the interest amount: {minimum}"
            )

    @staticmethod
    def minimum_payment(loan_type: LoanType, next_installment: Installment) -> Decimal:
        """Smallest acceptable payment for the next open installment"""
        if loan_type == LoanType.FIXED_INSTALLMENT:
            return next_installment.interest
        elif loan_type == LoanType.DECLINING_BALANCE:
            return next_installment.interest
        elif loan_type == LoanType.BALLOON_AT_MATURITY:
            return next_installment.interest
        elif loan_type == LoanType.VARIABLE_INSTALLMENT:
            return next_installment.interest
        else:
            raise ValueError(f"Unsupported loan type: {loan_type}")
