"""
Amortization Module

Turns (principal, periodic rate, term, loan type) into an ordered sequence of
(payment, principal, interest) rows. Pure functions only: no storage, no
dates. Every row amount is rounded to cents and the principal components of a
schedule always add up to the principal exactly.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import List, Optional
from enum import Enum

from .currency import quantize, ZERO


class LoanType(Enum):
    """Repayment structure of a loan"""
    FIXED_INSTALLMENT = "FIXED_INSTALLMENT"          # Equal total payment each period
    DECLINING_BALANCE = "DECLINING_BALANCE"          # Constant principal, declining interest
    BALLOON_AT_MATURITY = "BALLOON_AT_MATURITY"      # Interest only, principal at the end
    VARIABLE_INSTALLMENT = "VARIABLE_INSTALLMENT"    # Interest minimum, principal when the borrower can


class PaymentFrequency(Enum):
    """Spacing between due dates"""
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"

    @property
    def days(self) -> int:
        """Days between consecutive installments"""
        return {
            PaymentFrequency.WEEKLY: 7,
            PaymentFrequency.BIWEEKLY: 15,
            PaymentFrequency.MONTHLY: 30,
        }[self]


@dataclass(frozen=True)
class AmortizationRow:
    """Single period of an amortization schedule"""
    period: int
    payment: Decimal
    principal: Decimal
    interest: Decimal

    def __post_init__(self):
        if self.principal + self.interest != self.payment:
            raise ValueError(f"Payment {self.payment} does not equal "
                             f"principal {self.principal} + interest {self.interest}")


class AmortizationCalculator:
    """
    Computes amortization rows for every supported loan type

    The periodic rate is already expressed per payment period, so payment
    frequency never changes the math; it is accepted only so callers can pass
    a loan's terms through unchanged.
    """

    def calculate(
        self,
        principal: Decimal,
        periodic_rate: Decimal,
        term: int,
        loan_type: LoanType,
        payment_frequency: Optional[PaymentFrequency] = None
    ) -> List[AmortizationRow]:
        """
        Calculate the amortization rows for a loan

        Args:
            principal: Amount lent, must be positive
            periodic_rate: Nominal interest rate per period, e.g. 0.02 for 2%
            term: Number of installments, at least 1
            loan_type: Repayment structure
            payment_frequency: Ignored by the math

        Returns:
            ``term`` rows ordered by period

        Raises:
            ValueError: If principal, rate or term are out of range
        """
        if principal <= ZERO:
            raise ValueError(f"Principal must be positive, got {principal}")
        if term < 1:
            raise ValueError(f"Term must be at least 1 installment, got {term}")
        if periodic_rate < ZERO:
            raise ValueError(f"Interest rate cannot be negative, got {periodic_rate}")

        if loan_type == LoanType.FIXED_INSTALLMENT:
            return self._fixed_installment(principal, periodic_rate, term)
        elif loan_type == LoanType.DECLINING_BALANCE:
            return self._declining_balance(principal, periodic_rate, term)
        elif loan_type == LoanType.BALLOON_AT_MATURITY:
            return self._balloon(principal, periodic_rate, term)
        elif loan_type == LoanType.VARIABLE_INSTALLMENT:
            return self._variable(principal, periodic_rate, term)
        else:
            raise ValueError(f"Unsupported loan type: {loan_type}")

    @staticmethod
    def annuity_payment(principal: Decimal, periodic_rate: Decimal, term: int) -> Decimal:
        """Equal payment per period, P*r / (1 - (1+r)^-n), unrounded"""
        if periodic_rate == ZERO:
            return principal / Decimal(term)
        discount = (Decimal('1') + periodic_rate) ** -term
        return principal * periodic_rate / (Decimal('1') - discount)

    def _fixed_installment(self, principal: Decimal, rate: Decimal, term: int) -> List[AmortizationRow]:
        payment = quantize(self.annuity_payment(principal, rate, term))
        outstanding = principal
        rows = []

        for period in range(1, term + 1):
            interest = quantize(outstanding * rate)
            if period == term:
                # Final row absorbs rounding residue
                period_principal = outstanding
            else:
                period_principal = min(payment - interest, outstanding)
            outstanding -= period_principal
            rows.append(AmortizationRow(
                period=period,
                payment=period_principal + interest,
                principal=period_principal,
                interest=interest
            ))

        return rows

    def _declining_balance(self, principal: Decimal, rate: Decimal, term: int) -> List[AmortizationRow]:
        fixed_principal = quantize(principal / Decimal(term))
        outstanding = principal
        rows = []

        for period in range(1, term + 1):
            interest = quantize(outstanding * rate)
            period_principal = outstanding if period == term else min(fixed_principal, outstanding)
            outstanding -= period_principal
            rows.append(AmortizationRow(
                period=period,
                payment=period_principal + interest,
                principal=period_principal,
                interest=interest
            ))

        return rows

    def _balloon(self, principal: Decimal, rate: Decimal, term: int) -> List[AmortizationRow]:
        interest = quantize(principal * rate)
        rows = [
            AmortizationRow(period=period, payment=interest, principal=ZERO, interest=interest)
            for period in range(1, term)
        ]
        rows.append(AmortizationRow(
            period=term,
            payment=principal + interest,
            principal=principal,
            interest=interest
        ))
        return rows

    def _variable(self, principal: Decimal, rate: Decimal, term: int) -> List[AmortizationRow]:
        # The scheduled minimum is interest only; principal can be prepaid at
        # any time and whatever is still outstanding falls due on the last row.
        interest = quantize(principal * rate)
        rows = []
        for period in range(1, term + 1):
            period_principal = principal if period == term else ZERO
            rows.append(AmortizationRow(
                period=period,
                payment=period_principal + interest,
                principal=period_principal,
                interest=interest
            ))
        return rows


def total_repayment(rows: List[AmortizationRow]) -> Decimal:
    """Sum of every scheduled payment"""
    total = ZERO
    for row in rows:
        total += row.payment
    return total
