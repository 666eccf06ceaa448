"""
Installment Schedule Module

Turns amortization rows into dated installment records and provides the folds
the allocator, the reversal engine and the reports use over an ordered
schedule.

An installment's ``remaining_balance`` is the sum of the expected amounts of
all strictly later installments: what is still to be repaid after this one
is settled, not the amortized outstanding principal.
"""

from decimal import Decimal
from datetime import datetime, timezone, timedelta, date
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence
from enum import Enum

from .amortization import AmortizationRow, PaymentFrequency
from .currency import quantize, ZERO
from .storage import StorageRecord


class InstallmentStatus(Enum):
    """Installment states; OVERDUE is derived on read and never stored"""
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class LoanStatus(Enum):
    """Loan lifecycle: PENDING -> PARTIAL -> PAID"""
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


OPEN_STATUSES = (InstallmentStatus.PENDING, InstallmentStatus.PARTIAL)


@dataclass
class Installment(StorageRecord):
    """One scheduled due obligation within a loan's term"""
    loan_id: str
    installment_number: int
    due_date: date
    expected_amount: Decimal
    principal: Decimal
    interest: Decimal
    paid_amount: Decimal = ZERO
    remaining_balance: Decimal = ZERO
    status: InstallmentStatus = InstallmentStatus.PENDING

    @staticmethod
    def make_id(loan_id: str, installment_number: int) -> str:
        return f"{loan_id}_{installment_number}"

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def outstanding(self) -> Decimal:
        """Amount still owed on this installment"""
        return max(ZERO, self.expected_amount - self.paid_amount)

    def status_as_of(self, as_of: date) -> InstallmentStatus:
        """Status with OVERDUE derived for open installments past their due date"""
        if self.is_open and self.due_date < as_of:
            return InstallmentStatus.OVERDUE
        return self.status

    @classmethod
    def from_dict(cls, data: Dict) -> 'Installment':
        data = cls.parse_timestamps(data)
        return cls(
            id=data['id'],
            created_at=data['created_at'],
            updated_at=data['updated_at'],
            loan_id=data['loan_id'],
            installment_number=int(data['installment_number']),
            due_date=date.fromisoformat(data['due_date']),
            expected_amount=Decimal(data['expected_amount']),
            principal=Decimal(data['principal']),
            interest=Decimal(data['interest']),
            paid_amount=Decimal(data['paid_amount']),
            remaining_balance=Decimal(data['remaining_balance']),
            status=InstallmentStatus(data['status'])
        )


class ScheduleBuilder:
    """Builds dated installment records from amortization rows"""

    def build(
        self,
        loan_id: str,
        rows: Sequence[AmortizationRow],
        start_date: date,
        frequency: PaymentFrequency
    ) -> List[Installment]:
        """
        Build the installment schedule for a loan

        Installment ``k`` falls due ``frequency.days * k`` days after the
        start date.
        """
        now = datetime.now(timezone.utc)
        balances = self._look_ahead_balances([row.payment for row in rows])

        installments = []
        for index, (row, balance) in enumerate(zip(rows, balances)):
            number = index + 1
            installments.append(Installment(
                id=Installment.make_id(loan_id, number),
                created_at=now,
                updated_at=now,
                loan_id=loan_id,
                installment_number=number,
                due_date=start_date + timedelta(days=frequency.days * number),
                expected_amount=row.payment,
                principal=row.principal,
                interest=row.interest,
                paid_amount=ZERO,
                remaining_balance=balance,
                status=InstallmentStatus.PENDING
            ))
        return installments

    @staticmethod
    def _look_ahead_balances(payments: Sequence[Decimal]) -> List[Decimal]:
        """For each position, the sum of all later payments"""
        balances = []
        running = ZERO
        for payment in reversed(payments):
            balances.append(quantize(running))
            running += payment
        balances.reverse()
        return balances


def sort_schedule(installments: Iterable[Installment]) -> List[Installment]:
    """Installments ordered by installment number"""
    return sorted(installments, key=lambda item: item.installment_number)


def total_expected(installments: Iterable[Installment]) -> Decimal:
    total = ZERO
    for item in installments:
        total += item.expected_amount
    return total


def expected_after(installments: Iterable[Installment], installment_number: int) -> Decimal:
    """Sum of expected amounts of installments strictly after the given number"""
    return total_expected(item for item in installments if item.installment_number > installment_number)


def expected_from(installments: Iterable[Installment], installment_number: int) -> Decimal:
    """Sum of expected amounts of the given installment and every later one"""
    return total_expected(item for item in installments if item.installment_number >= installment_number)


def next_open_installment(installments: Iterable[Installment]) -> Optional[Installment]:
    """Earliest PENDING or PARTIAL installment"""
    for item in sort_schedule(installments):
        if item.is_open:
            return item
    return None


def has_overdue(installments: Iterable[Installment], as_of: date) -> bool:
    return any(item.status_as_of(as_of) == InstallmentStatus.OVERDUE for item in installments)
