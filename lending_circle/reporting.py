"""
Loan Reporting Module

Read-only views over loans, schedules and payments: what is left to pay on a
loan, its payment history and analytics, and group-wide summaries.

Every report takes an ``as_of`` date (today when omitted). It drives the
OVERDUE derivation: an open installment whose due date is before ``as_of``
is reported as overdue.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from typing import List, Optional, Union

from .access import UserRole
from .currency import quantize, ZERO
from .loans import Loan, LoanManager, LoanPayment
from .schedule import Installment, InstallmentStatus, LoanStatus, has_overdue


@dataclass
class RemainingPayments:
    """What is still owed on a loan"""
    loan_id: str
    total_paid: Decimal
    remaining_amount: Decimal
    remaining_installments: List[Installment] = field(default_factory=list)
    next_installment: Optional[Installment] = None
    next_remaining_balance: Decimal = ZERO
    next_due_date: Optional[date] = None
    is_overdue: bool = False


@dataclass
class PaymentHistoryEntry:
    """A payment in a group or member payment history"""
    payment: LoanPayment
    loan_id: str
    loan_code: str
    member_id: str
    remaining_installments: int          # Still-open installments of the loan


@dataclass
class LoanAnalytics:
    loan_id: str
    total_amount: Decimal
    total_paid: Decimal
    total_schedule_paid: Decimal         # Sum of paid_amount over the schedule
    remaining_amount: Decimal
    total_interest: Decimal
    paid_installments: int
    total_installments: int
    completion_percentage: Decimal
    status: LoanStatus
    is_overdue: bool


@dataclass
class GroupLoanSummary:
    group_id: str
    total_loans: int = 0
    active_loans: int = 0
    total_amount_lent: Decimal = ZERO
    total_amount_paid: Decimal = ZERO
    total_interest_earned: Decimal = ZERO
    overdue_loans: int = 0


class LoanReporting:
    """
    Reports over a LoanManager's data

    Access rules are the manager's: loan reports need view access to the loan,
    group reports view access to the group.
    """

    def __init__(self, loan_manager: LoanManager):
        self.loan_manager = loan_manager

    def get_remaining_payments(
        self,
        loan_id: str,
        actor_id: str,
        actor_role: Union[UserRole, str],
        as_of: Optional[date] = None
    ) -> RemainingPayments:
        """
        Open installments and next due payment of a loan

        A loan with nothing remaining reports no open installments and is
        never overdue.
        """
        as_of = as_of or date.today()
        loan = self.loan_manager.get_loan(loan_id, actor_id, actor_role)
        total_paid = self._sum_amounts(self.loan_manager.load_payments(loan.id))

        if loan.remaining_amount == ZERO:
            return RemainingPayments(loan_id=loan.id, total_paid=total_paid, remaining_amount=ZERO)

        open_installments = [item for item in self.loan_manager.load_schedule(loan.id) if item.is_open]
        next_installment = open_installments[0] if open_installments else None

        return RemainingPayments(
            loan_id=loan.id,
            total_paid=total_paid,
            remaining_amount=loan.remaining_amount,
            remaining_installments=open_installments,
            next_installment=next_installment,
            next_remaining_balance=next_installment.remaining_balance if next_installment else ZERO,
            next_due_date=next_installment.due_date if next_installment else None,
            is_overdue=bool(next_installment and next_installment.due_date < as_of)
        )

    def get_payment_history(
        self,
        loan_id: str,
        actor_id: str,
        actor_role: Union[UserRole, str]
    ) -> List[LoanPayment]:
        """Payments of a loan, newest first"""
        payments = self.loan_manager.get_payments(loan_id, actor_id, actor_role)
        payments.reverse()
        return payments

    def get_group_payment_history(
        self,
        group_id: str,
        actor_id: str,
        actor_role: Union[UserRole, str]
    ) -> List[PaymentHistoryEntry]:
        """Payments across every loan of a group, newest first"""
        return self._history(self.loan_manager.find_by_group(group_id, actor_id, actor_role))

    def get_member_payment_history(
        self,
        member_id: str,
        actor_id: str,
        actor_role: Union[UserRole, str]
    ) -> List[PaymentHistoryEntry]:
        """
        Payments across every loan a member borrowed, newest first

        Loans are filtered like ``LoanManager.find_by_member``: facilitators
        only see loans from groups they manage.
        """
        return self._history(self.loan_manager.find_by_member(member_id, actor_id, actor_role))

    def _history(self, loans: List[Loan]) -> List[PaymentHistoryEntry]:
        entries = []
        for loan in loans:
            open_count = sum(1 for item in self.loan_manager.load_schedule(loan.id) if item.is_open)
            for payment in self.loan_manager.load_payments(loan.id):
                entries.append(PaymentHistoryEntry(
                    payment=payment,
                    loan_id=loan.id,
                    loan_code=loan.loan_code,
                    member_id=loan.member_id,
                    remaining_installments=open_count
                ))

        entries.sort(key=lambda entry: (entry.payment.payment_date, entry.payment.created_at), reverse=True)
        return entries

    def get_loan_analytics(
        self,
        loan_id: str,
        actor_id: str,
        actor_role: Union[UserRole, str],
        as_of: Optional[date] = None
    ) -> LoanAnalytics:
        as_of = as_of or date.today()
        loan = self.loan_manager.get_loan(loan_id, actor_id, actor_role)
        schedule = self.loan_manager.load_schedule(loan.id)
        total_paid = self._sum_amounts(self.loan_manager.load_payments(loan.id))

        total_schedule_paid = ZERO
        total_interest = ZERO
        for item in schedule:
            total_schedule_paid += item.paid_amount
            total_interest += item.interest

        return LoanAnalytics(
            loan_id=loan.id,
            total_amount=loan.amount,
            total_paid=total_paid,
            total_schedule_paid=total_schedule_paid,
            remaining_amount=loan.remaining_amount,
            total_interest=total_interest,
            paid_installments=sum(1 for item in schedule if item.status == InstallmentStatus.PAID),
            total_installments=loan.term,
            completion_percentage=quantize(total_paid / loan.amount * Decimal('100')),
            status=loan.status,
            is_overdue=has_overdue(schedule, as_of)
        )

    def get_group_loan_summary(
        self,
        group_id: str,
        actor_id: str,
        actor_role: Union[UserRole, str],
        as_of: Optional[date] = None
    ) -> GroupLoanSummary:
        """
        Portfolio summary of a group

        Interest earned counts the interest component of every PAID
        installment.
        """
        as_of = as_of or date.today()
        summary = GroupLoanSummary(group_id=group_id)

        for loan in self.loan_manager.find_by_group(group_id, actor_id, actor_role):
            schedule = self.loan_manager.load_schedule(loan.id)

            summary.total_loans += 1
            if not loan.is_paid:
                summary.active_loans += 1
            summary.total_amount_lent += loan.amount
            summary.total_amount_paid += self._sum_amounts(self.loan_manager.load_payments(loan.id))
            for item in schedule:
                if item.status == InstallmentStatus.PAID:
                    summary.total_interest_earned += item.interest
            if has_overdue(schedule, as_of):
                summary.overdue_loans += 1

        return summary

    @staticmethod
    def _sum_amounts(payments: List[LoanPayment]) -> Decimal:
        total = ZERO
        for payment in payments:
            total += payment.amount
        return total
