"""
Loan Module

Handles loan origination, payment recording, payment deletion and loan
deletion for lending circle groups. Each of these runs as one atomic unit
spanning the loan, its installment schedule, its payments, the capital
movements and the group's capital pool.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union
from enum import Enum
from contextlib import contextmanager
import time
import uuid

from .access import AccessPolicy, UserRole
from .allocation import PaymentAllocator
from .amortization import AmortizationCalculator, LoanType, PaymentFrequency, total_repayment
from .capital import CapitalLedger, CapitalMovement
from .config import get_config
from .currency import quantize, to_decimal, ZERO
from .exceptions import LendingCircleError, NotFoundError, ForbiddenError, BadRequestError, InternalError
from .groups import GroupManager
from .logging_config import get_logger, log_action
from .reversal import PaymentReversalEngine
from .schedule import Installment, LoanStatus, ScheduleBuilder, sort_schedule, next_open_installment
from .storage import StorageInterface, StorageRecord
from .validation import PaymentValidator


class GuaranteeType(Enum):
    """How a loan is secured"""
    NONE = "NONE"
    GUARANTOR = "GUARANTOR"              # Another member vouches for the borrower
    COLLATERAL = "COLLATERAL"
    PROMISSORY_NOTE = "PROMISSORY_NOTE"


@dataclass
class LoanRequest:
    """Terms requested for a new loan"""
    group_id: str
    member_id: str
    amount: Decimal
    periodic_rate: Decimal               # e.g. 0.02 for 2% per period
    term: int                            # Number of installments
    loan_type: LoanType
    payment_frequency: PaymentFrequency
    request_date: date
    reason: str = ""
    guarantor_id: Optional[str] = None
    guarantee_type: GuaranteeType = GuaranteeType.NONE
    guarantee_detail: str = ""
    form_purchased: bool = False
    form_cost: Decimal = ZERO


@dataclass
class Loan(StorageRecord):
    """Loan drawn from a group's capital pool"""
    group_id: str
    member_id: str
    amount: Decimal                      # Principal lent
    periodic_rate: Decimal
    term: int
    loan_type: LoanType
    payment_frequency: PaymentFrequency
    request_date: date
    remaining_amount: Decimal
    total_repayment: Decimal             # Sum of every scheduled payment
    loan_number: int
    loan_code: str
    status: LoanStatus = LoanStatus.PENDING
    affects_capital: bool = True
    guarantor_id: Optional[str] = None
    reason: str = ""
    guarantee_type: GuaranteeType = GuaranteeType.NONE
    guarantee_detail: str = ""
    form_purchased: bool = False
    form_cost: Decimal = ZERO
    capital_at_time: Decimal = ZERO
    capital_snapshot: Dict[str, Decimal] = field(default_factory=dict)
    description: str = ""
    rejected: bool = False
    rejection_reason: str = ""

    @property
    def is_paid(self) -> bool:
        return self.status == LoanStatus.PAID

    @classmethod
    def from_dict(cls, data: Dict) -> 'Loan':
        data = cls.parse_timestamps(data)
        return cls(
            id=data['id'],
            created_at=data['created_at'],
            updated_at=data['updated_at'],
            group_id=data['group_id'],
            member_id=data['member_id'],
            amount=Decimal(data['amount']),
            periodic_rate=Decimal(data['periodic_rate']),
            term=int(data['term']),
            loan_type=LoanType(data['loan_type']),
            payment_frequency=PaymentFrequency(data['payment_frequency']),
            request_date=date.fromisoformat(data['request_date']),
            remaining_amount=Decimal(data['remaining_amount']),
            total_repayment=Decimal(data['total_repayment']),
            loan_number=int(data['loan_number']),
            loan_code=data['loan_code'],
            status=LoanStatus(data['status']),
            affects_capital=data.get('affects_capital', True),
            guarantor_id=data.get('guarantor_id'),
            reason=data.get('reason', ""),
            guarantee_type=GuaranteeType(data.get('guarantee_type', GuaranteeType.NONE.value)),
            guarantee_detail=data.get('guarantee_detail', ""),
            form_purchased=data.get('form_purchased', False),
            form_cost=Decimal(data.get('form_cost', '0')),
            capital_at_time=Decimal(data.get('capital_at_time', '0')),
            capital_snapshot={
                key: Decimal(value) for key, value in data.get('capital_snapshot', {}).items()
            },
            description=data.get('description', ""),
            rejected=data.get('rejected', False),
            rejection_reason=data.get('rejection_reason', "")
        )


@dataclass
class LoanUpdate:
    """Review fields of a loan; None leaves a field as it is"""
    description: Optional[str] = None
    rejected: Optional[bool] = None
    rejection_reason: Optional[str] = None


@dataclass
class LoanPayment(StorageRecord):
    """Cash received against a loan"""
    loan_id: str
    amount: Decimal
    payment_date: date
    affects_capital: bool = True
    recorded_by: str = ""
    unapplied_amount: Decimal = ZERO     # Cash beyond every remaining installment

    @classmethod
    def from_dict(cls, data: Dict) -> 'LoanPayment':
        data = cls.parse_timestamps(data)
        return cls(
            id=data['id'],
            created_at=data['created_at'],
            updated_at=data['updated_at'],
            loan_id=data['loan_id'],
            amount=Decimal(data['amount']),
            payment_date=date.fromisoformat(data['payment_date']),
            affects_capital=data.get('affects_capital', True),
            recorded_by=data.get('recorded_by', ""),
            unapplied_amount=Decimal(data.get('unapplied_amount', '0'))
        )


@dataclass
class LoanWithSchedule:
    """A newly created loan with its schedule and disbursement movement"""
    loan: Loan
    schedule: List[Installment]
    movement: CapitalMovement


@dataclass
class ReversalSummary:
    """What deleting a payment changed"""
    payment_id: str
    amount: Decimal
    capital_restored: Decimal
    new_remaining_amount: Decimal
    new_status: LoanStatus
    reset_from_installment: int


@dataclass
class DeletionSummary:
    """What deleting a loan removed"""
    loan_id: str
    schedules_deleted: int
    capital_movements_deleted: int
    capital_restored: Decimal


class LoanManager:
    """
    Manages loans from origination through payment and deletion
    """

    def __init__(
        self,
        storage: StorageInterface,
        group_manager: GroupManager,
        capital_ledger: Optional[CapitalLedger] = None,
        validator: Optional[PaymentValidator] = None,
        access_policy: Optional[AccessPolicy] = None
    ):
        self.storage = storage
        self.group_manager = group_manager
        self.capital_ledger = capital_ledger or CapitalLedger(storage, group_manager)
        self.validator = validator or PaymentValidator(
            enforce_upper_bound=get_config().enforce_payment_upper_bound
        )
        self.access_policy = access_policy or AccessPolicy()
        self.calculator = AmortizationCalculator()
        self.schedule_builder = ScheduleBuilder()
        self.allocator = PaymentAllocator()
        self.reversal_engine = PaymentReversalEngine()
        self.logger = get_logger("lending_circle.loans")

        self.loans_table = "loans"
        self.payments_table = "loan_payments"
        self.schedule_table = "installments"

    def create_loan(
        self,
        request: LoanRequest,
        actor_id: str,
        actor_role: Union[UserRole, str]
    ) -> LoanWithSchedule:
        """
        Originate a loan from a group's available capital

        Args:
            request: Requested loan terms
            actor_id: User creating the loan
            actor_role: Role of that user

        Returns:
            LoanWithSchedule with the persisted loan, schedule and movement

        Raises:
            NotFoundError: Group does not exist
            ForbiddenError: Actor may not lend from the group, or the
                borrower is not a member
            BadRequestError: Invalid terms or insufficient available capital
        """
        role = UserRole.coerce(actor_role)

        try:
            amount = quantize(to_decimal(request.amount))
            periodic_rate = to_decimal(request.periodic_rate)
            form_cost = quantize(to_decimal(request.form_cost))
            rows = self.calculator.calculate(
                amount, periodic_rate, request.term, request.loan_type, request.payment_frequency
            )
        except ValueError as e:
            raise BadRequestError(str(e))

        with self._transaction("create loan", f"group:{request.group_id}"):
            group = self.group_manager.require_group(request.group_id)
            self.access_policy.require_manage_group(
                actor_id, role, group, "You do not have permission to create loans in this group"
            )
            if not group.is_member(request.member_id):
                raise ForbiddenError("User is not a member of this group")

            if group.available_capital < amount:
                raise BadRequestError(
                    f"Insufficient funds. Available: {group.money(group.available_capital).to_string()}, "
                    f"Requested: {group.money(amount).to_string()}"
                )

            now = datetime.now(timezone.utc)
            loan_id = str(uuid.uuid4())
            schedule = self.schedule_builder.build(
                loan_id, rows, request.request_date, request.payment_frequency
            )

            loan = Loan(
                id=loan_id,
                created_at=now,
                updated_at=now,
                group_id=group.id,
                member_id=request.member_id,
                amount=amount,
                periodic_rate=periodic_rate,
                term=request.term,
                loan_type=request.loan_type,
                payment_frequency=request.payment_frequency,
                request_date=request.request_date,
                remaining_amount=amount,
                total_repayment=total_repayment(rows),
                loan_number=self._next_loan_number(group.id),
                loan_code=f"{request.loan_type.value}-{int(time.time() * 1000)}",
                status=LoanStatus.PENDING,
                affects_capital=True,
                guarantor_id=request.guarantor_id,
                reason=request.reason,
                guarantee_type=request.guarantee_type,
                guarantee_detail=request.guarantee_detail,
                form_purchased=request.form_purchased,
                form_cost=form_cost,
                capital_at_time=group.current_capital,
                capital_snapshot={
                    "current_capital": group.current_capital,
                    "base_capital": group.base_capital,
                    "available_capital": group.available_capital - amount,
                }
            )

            self._save_loan(loan)
            self._save_installments(schedule)
            movement = self.capital_ledger.record_disbursement(group, loan)

        log_action(
            self.logger, "info", f"Loan created: {loan.loan_code}",
            user_id=actor_id, action="create_loan", resource=f"loan:{loan.id}",
            extra={
                "group_id": group.id,
                "member_id": loan.member_id,
                "amount": group.money(amount).to_string(),
                "loan_type": loan.loan_type.value,
                "term": loan.term,
                "total_repayment": str(loan.total_repayment)
            }
        )

        return LoanWithSchedule(loan=loan, schedule=schedule, movement=movement)

    def validate_payment(
        self,
        loan_id: str,
        amount: Decimal,
        actor_id: str,
        actor_role: Union[UserRole, str]
    ) -> bool:
        """Check a payment against the loan's rules without recording it"""
        role = UserRole.coerce(actor_role)
        loan = self._require_loan(loan_id)
        group = self.group_manager.require_group(loan.group_id)
        self.access_policy.require_view_loan(actor_id, role, group, loan)

        schedule = self.load_schedule(loan.id)
        self.validator.validate(loan, self._payment_amount(amount), next_open_installment(schedule))
        return True

    def record_payment(
        self,
        loan_id: str,
        amount: Decimal,
        actor_id: str,
        actor_role: Union[UserRole, str],
        payment_date: Optional[date] = None
    ) -> LoanPayment:
        """
        Record a payment and allocate it over the schedule

        Args:
            loan_id: Loan being repaid
            amount: Cash received
            actor_id: User recording the payment
            actor_role: Role of that user
            payment_date: Date of the payment (defaults to today)

        Returns:
            The persisted LoanPayment

        Raises:
            NotFoundError: Loan does not exist
            ForbiddenError: Actor may not manage the loan's group
            BadRequestError: Payment fails validation
        """
        role = UserRole.coerce(actor_role)
        amount = self._payment_amount(amount)
        if not payment_date:
            payment_date = date.today()

        with self._transaction("record payment", f"loan:{loan_id}"):
            loan = self._require_loan(loan_id)
            group = self.group_manager.require_group(loan.group_id)
            self.access_policy.require_manage_group(
                actor_id, role, group, "You do not have permission to create payments for this loan"
            )

            schedule = self.load_schedule(loan.id)
            self.validator.validate(loan, amount, next_open_installment(schedule))

            prior_total = self._total_paid(self.load_payments(loan.id))
            allocation = self.allocator.allocate(amount, schedule, prior_total, loan.amount)

            now = datetime.now(timezone.utc)
            payment = LoanPayment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                amount=amount,
                payment_date=payment_date,
                affects_capital=True,
                recorded_by=actor_id,
                unapplied_amount=allocation.unapplied_amount
            )
            self._save_payment(payment)
            self._save_installments(allocation.changed)
            self.capital_ledger.record_payment(group, loan, payment)

            loan.status = allocation.loan_status
            loan.remaining_amount = allocation.remaining_amount
            loan.updated_at = now
            self._save_loan(loan)

        log_action(
            self.logger, "info", f"Payment recorded on loan {loan.loan_code}",
            user_id=actor_id, action="record_payment", resource=f"loan:{loan.id}",
            extra={
                "payment_id": payment.id,
                "amount": group.money(amount).to_string(),
                "installments_changed": allocation.changed_numbers,
                "unapplied_amount": str(allocation.unapplied_amount),
                "remaining_amount": str(loan.remaining_amount),
                "status": loan.status.value
            }
        )

        return payment

    def delete_payment(
        self,
        payment_id: str,
        actor_id: str,
        actor_role: Union[UserRole, str]
    ) -> ReversalSummary:
        """
        Delete a payment and undo its schedule and capital effects

        Raises:
            NotFoundError: Payment does not exist
            ForbiddenError: Actor may not manage the loan's group
            InternalError: The reversal failed and was rolled back
        """
        role = UserRole.coerce(actor_role)

        with self._transaction("delete payment", f"payment:{payment_id}"):
            payment = self._require_payment(payment_id)
            loan = self._require_loan(payment.loan_id)
            group = self.group_manager.require_group(loan.group_id)
            self.access_policy.require_manage_group(
                actor_id, role, group, "You do not have permission to delete this payment"
            )

            schedule = self.load_schedule(loan.id)
            others_total = self._total_paid(
                p for p in self.load_payments(loan.id) if p.id != payment.id
            )
            result = self.reversal_engine.reverse(
                payment.payment_date, schedule, others_total, loan.amount
            )

            self._save_installments(result.reset)
            capital_restored = self.capital_ledger.reverse_payment(group, payment)

            loan.status = result.loan_status
            loan.remaining_amount = result.new_remaining_amount
            loan.updated_at = datetime.now(timezone.utc)
            self._save_loan(loan)

            self.storage.delete(self.payments_table, payment.id)

        log_action(
            self.logger, "info", f"Payment deleted from loan {loan.loan_code}",
            user_id=actor_id, action="delete_payment", resource=f"payment:{payment.id}",
            extra={
                "loan_id": loan.id,
                "amount": str(payment.amount),
                "reset_from_installment": result.reset_from,
                "new_remaining_amount": str(result.new_remaining_amount),
                "status": result.loan_status.value
            }
        )

        return ReversalSummary(
            payment_id=payment.id,
            amount=payment.amount,
            capital_restored=capital_restored,
            new_remaining_amount=result.new_remaining_amount,
            new_status=result.loan_status,
            reset_from_installment=result.reset_from
        )

    def delete_loan(
        self,
        loan_id: str,
        actor_id: str,
        actor_role: Union[UserRole, str]
    ) -> DeletionSummary:
        """
        Delete a loan that has no payments and return its principal to the pool

        Raises:
            NotFoundError: Loan does not exist
            ForbiddenError: Actor may not manage the loan's group
            BadRequestError: The loan already has payments
            InternalError: The deletion failed and was rolled back
        """
        role = UserRole.coerce(actor_role)

        with self._transaction("delete loan", f"loan:{loan_id}"):
            loan = self._require_loan(loan_id)
            group = self.group_manager.require_group(loan.group_id)
            self.access_policy.require_manage_group(
                actor_id, role, group, "You do not have permission to delete this loan"
            )

            if self.storage.count_where(self.payments_table, {"loan_id": loan.id}) > 0:
                raise BadRequestError("Cannot delete loan with existing payments")

            schedules_deleted = self.storage.delete_where(self.schedule_table, {"loan_id": loan.id})
            movements_deleted = self.capital_ledger.reverse_disbursement(group, loan)
            self.storage.delete(self.loans_table, loan.id)

        capital_restored = loan.amount if loan.affects_capital else ZERO

        log_action(
            self.logger, "info", f"Loan deleted: {loan.loan_code}",
            user_id=actor_id, action="delete_loan", resource=f"loan:{loan.id}",
            extra={
                "schedules_deleted": schedules_deleted,
                "capital_movements_deleted": movements_deleted,
                "capital_restored": str(capital_restored)
            }
        )

        return DeletionSummary(
            loan_id=loan.id,
            schedules_deleted=schedules_deleted,
            capital_movements_deleted=movements_deleted,
            capital_restored=capital_restored
        )

    def update_loan(
        self,
        loan_id: str,
        changes: LoanUpdate,
        actor_id: str,
        actor_role: Union[UserRole, str]
    ) -> Loan:
        """
        Set a loan's review fields

        Only the description, rejected flag and rejection reason change;
        amounts, schedule and capital are left alone.

        Raises:
            NotFoundError: Loan does not exist
            ForbiddenError: Actor may not manage the loan's group
        """
        role = UserRole.coerce(actor_role)

        with self._transaction("update loan", f"loan:{loan_id}"):
            loan = self._require_loan(loan_id)
            group = self.group_manager.require_group(loan.group_id)
            self.access_policy.require_manage_group(
                actor_id, role, group, "You do not have permission to update this loan"
            )

            if changes.description is not None:
                loan.description = changes.description
            if changes.rejected is not None:
                loan.rejected = changes.rejected
            if changes.rejection_reason is not None:
                loan.rejection_reason = changes.rejection_reason
            loan.updated_at = datetime.now(timezone.utc)
            self._save_loan(loan)

        log_action(
            self.logger, "info", f"Loan updated: {loan.loan_code}",
            user_id=actor_id, action="update_loan", resource=f"loan:{loan.id}",
            extra={"rejected": loan.rejected}
        )

        return loan

    def get_loan(self, loan_id: str, actor_id: str, actor_role: Union[UserRole, str]) -> Loan:
        """Get a loan the actor is allowed to see"""
        loan, _ = self.get_loan_with_group(loan_id, actor_id, actor_role)
        return loan

    def get_loan_with_group(self, loan_id: str, actor_id: str, actor_role: Union[UserRole, str]):
        role = UserRole.coerce(actor_role)
        loan = self._require_loan(loan_id)
        group = self.group_manager.require_group(loan.group_id)
        self.access_policy.require_view_loan(actor_id, role, group, loan)
        return loan, group

    def get_schedule(self, loan_id: str, actor_id: str, actor_role: Union[UserRole, str]) -> List[Installment]:
        loan = self.get_loan(loan_id, actor_id, actor_role)
        return self.load_schedule(loan.id)

    def get_payments(self, loan_id: str, actor_id: str, actor_role: Union[UserRole, str]) -> List[LoanPayment]:
        loan = self.get_loan(loan_id, actor_id, actor_role)
        return self.load_payments(loan.id)

    def find_by_group(self, group_id: str, actor_id: str, actor_role: Union[UserRole, str]) -> List[Loan]:
        """Loans of a group, most recent loan number first"""
        role = UserRole.coerce(actor_role)
        group = self.group_manager.require_group(group_id)
        self.access_policy.require_view_group(actor_id, role, group)
        return self.load_group_loans(group.id)

    def find_by_member(self, member_id: str, actor_id: str, actor_role: Union[UserRole, str]) -> List[Loan]:
        """
        Loans borrowed by a member

        Admins see every loan; facilitators see the member's loans in groups
        they created; members see only their own.
        """
        role = UserRole.coerce(actor_role)
        if role != UserRole.ADMIN and role != UserRole.FACILITATOR and actor_id != member_id:
            raise ForbiddenError("You do not have permission to view these loans")

        loans = [Loan.from_dict(data) for data in self.storage.find(self.loans_table, {"member_id": member_id})]
        if role != UserRole.ADMIN and actor_id != member_id:
            loans = [
                loan for loan in loans
                if self.access_policy.can_manage_group(
                    actor_id, role, self.group_manager.require_group(loan.group_id)
                )
            ]
        loans.sort(key=lambda loan: loan.created_at, reverse=True)
        return loans

    def load_group_loans(self, group_id: str) -> List[Loan]:
        loans = [Loan.from_dict(data) for data in self.storage.find(self.loans_table, {"group_id": group_id})]
        loans.sort(key=lambda loan: loan.loan_number, reverse=True)
        return loans

    def load_schedule(self, loan_id: str) -> List[Installment]:
        """Installments of a loan ordered by installment number"""
        records = self.storage.find(self.schedule_table, {"loan_id": loan_id})
        return sort_schedule(Installment.from_dict(data) for data in records)

    def load_payments(self, loan_id: str) -> List[LoanPayment]:
        """Payments of a loan, oldest first"""
        records = self.storage.find(self.payments_table, {"loan_id": loan_id})
        payments = [LoanPayment.from_dict(data) for data in records]
        payments.sort(key=lambda p: (p.payment_date, p.created_at))
        return payments

    @staticmethod
    def _total_paid(payments) -> Decimal:
        total = ZERO
        for payment in payments:
            total += payment.amount
        return total

    @contextmanager
    def _transaction(self, operation: str, resource: str):
        """
        Atomic unit for a mutating operation

        Domain errors pass through unchanged; anything else is logged and
        surfaced as an opaque InternalError once the transaction has rolled
        back.
        """
        try:
            with self.storage.atomic():
                yield
        except LendingCircleError:
            raise
        except Exception as e:
            self.logger.exception(f"Failed to {operation} ({resource})")
            raise InternalError(f"Failed to {operation}") from e

    @staticmethod
    def _payment_amount(amount) -> Decimal:
        try:
            return quantize(to_decimal(amount))
        except ValueError as e:
            raise BadRequestError(str(e))

    def _require_loan(self, loan_id: str) -> Loan:
        data = self.storage.load(self.loans_table, loan_id)
        if not data:
            raise NotFoundError("Loan not found")
        return Loan.from_dict(data)

    def _require_payment(self, payment_id: str) -> LoanPayment:
        data = self.storage.load(self.payments_table, payment_id)
        if not data:
            raise NotFoundError("Payment not found")
        return LoanPayment.from_dict(data)

    def _next_loan_number(self, group_id: str) -> int:
        numbers = [int(data['loan_number']) for data in self.storage.find(self.loans_table, {"group_id": group_id})]
        return max(numbers, default=0) + 1

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def _save_payment(self, payment: LoanPayment) -> None:
        self.storage.save(self.payments_table, payment.id, payment.to_dict())

    def _save_installments(self, installments: List[Installment]) -> None:
        now = datetime.now(timezone.utc)
        for item in installments:
            item.updated_at = now
            self.storage.save(self.schedule_table, item.id, item.to_dict())
