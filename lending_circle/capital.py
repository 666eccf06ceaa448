"""
Capital Ledger Module

Keeps a group's capital pool consistent with its loans. Every disbursement,
payment and payment reversal produces exactly one compensating change to the
pool together with its append-only CapitalMovement entry.

The ledger never opens its own transaction: callers wrap each operation in
``storage.atomic()`` together with the schedule and loan writes it belongs to.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import uuid

from .currency import ZERO
from .exceptions import InternalError
from .groups import Group, GroupManager
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


class MovementDirection(Enum):
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"


class MovementType(Enum):
    LOAN_DISBURSEMENT = "LOAN_DISBURSEMENT"
    PAYMENT = "PAYMENT"


@dataclass
class CapitalMovement(StorageRecord):
    """Append-only entry recording one change to a group's capital pool"""
    group_id: str
    loan_id: str
    amount: Decimal
    direction: MovementDirection
    movement_type: MovementType
    description: str = ""
    payment_id: Optional[str] = None

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.direction == MovementDirection.INCREASE else -self.amount

    @classmethod
    def from_dict(cls, data: Dict) -> 'CapitalMovement':
        data = cls.parse_timestamps(data)
        return cls(
            id=data['id'],
            created_at=data['created_at'],
            updated_at=data['updated_at'],
            group_id=data['group_id'],
            loan_id=data['loan_id'],
            amount=Decimal(data['amount']),
            direction=MovementDirection(data['direction']),
            movement_type=MovementType(data['movement_type']),
            description=data.get('description', ""),
            payment_id=data.get('payment_id')
        )


class CapitalLedger:
    """Applies loan lifecycle events to group capital pools"""

    def __init__(self, storage: StorageInterface, group_manager: GroupManager):
        self.storage = storage
        self.group_manager = group_manager
        self.table_name = "capital_movements"
        self.logger = get_logger("lending_circle.capital")

    def record_disbursement(self, group: Group, loan) -> CapitalMovement:
        """Lend ``loan.amount`` out of the pool"""
        movement = self._create_movement(
            group, loan.id, loan.amount, MovementDirection.DECREASE,
            MovementType.LOAN_DISBURSEMENT,
            description=f"Loan {loan.loan_type.value} - {loan.loan_code}"
        )
        self._adjust_capital(group, -loan.amount)
        return movement

    def record_payment(self, group: Group, loan, payment) -> CapitalMovement:
        """Return a payment's cash to the pool"""
        movement = self._create_movement(
            group, loan.id, payment.amount, MovementDirection.INCREASE,
            MovementType.PAYMENT,
            description=f"Payment on loan {loan.loan_code}",
            payment_id=payment.id
        )
        self._adjust_capital(group, payment.amount)
        return movement

    def reverse_payment(self, group: Group, payment) -> Decimal:
        """
        Undo ``record_payment``

        Returns:
            Capital taken back out of the pool, zero when the payment never
            affected it
        """
        deleted = self.storage.delete_where(self.table_name, {"payment_id": payment.id})
        restored = ZERO
        if payment.affects_capital:
            self._adjust_capital(group, -payment.amount)
            restored = payment.amount

        log_action(
            self.logger, "info", "Payment capital movement reversed",
            action="reverse_payment", resource=f"payment:{payment.id}",
            extra={"movements_deleted": deleted, "capital_restored": str(restored)}
        )
        return restored

    def reverse_disbursement(self, group: Group, loan) -> int:
        """
        Undo ``record_disbursement`` for a loan without payments

        Returns:
            Number of movements deleted
        """
        deleted = self.storage.delete_where(self.table_name, {"loan_id": loan.id})
        if loan.affects_capital:
            self._adjust_capital(group, loan.amount)
        return deleted

    def movements_for_loan(self, loan_id: str) -> List[CapitalMovement]:
        records = self.storage.find_ordered(self.table_name, {"loan_id": loan_id}, "created_at")
        return [CapitalMovement.from_dict(data) for data in records]

    def movements_for_group(self, group_id: str) -> List[CapitalMovement]:
        records = self.storage.find_ordered(self.table_name, {"group_id": group_id}, "created_at")
        return [CapitalMovement.from_dict(data) for data in records]

    def count_for_loan(self, loan_id: str) -> int:
        return self.storage.count_where(self.table_name, {"loan_id": loan_id})

    def _create_movement(
        self,
        group: Group,
        loan_id: str,
        amount: Decimal,
        direction: MovementDirection,
        movement_type: MovementType,
        description: str,
        payment_id: Optional[str] = None
    ) -> CapitalMovement:
        now = datetime.now(timezone.utc)
        movement = CapitalMovement(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            group_id=group.id,
            loan_id=loan_id,
            amount=amount,
            direction=direction,
            movement_type=movement_type,
            description=description,
            payment_id=payment_id
        )
        self.storage.save(self.table_name, movement.id, movement.to_dict())

        log_action(
            self.logger, "info", f"Capital movement: {direction.value} {group.money(amount).to_string()}",
            action="create_capital_movement", resource=f"group:{group.id}",
            extra={
                "movement_id": movement.id,
                "movement_type": movement_type.value,
                "loan_id": loan_id,
                "payment_id": payment_id
            }
        )
        return movement

    def _adjust_capital(self, group: Group, delta: Decimal) -> None:
        """Move both pool figures by ``delta`` and persist the group"""
        group.current_capital += delta
        group.available_capital += delta

        if group.available_capital > group.current_capital:
            raise InternalError(
                f"Capital pool inconsistent for group {group.id}: available "
                f"{group.available_capital} exceeds current {group.current_capital}"
            )

        group.updated_at = datetime.now(timezone.utc)
        self.group_manager.save_group(group)
