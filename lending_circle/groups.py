"""
Group Module

A group (lending circle) owns the capital pool its loans are drawn from.
``current_capital`` is the pool including money out on loan and
``available_capital`` what is free to lend right now.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import uuid

from .currency import Money, Currency, ZERO
from .exceptions import NotFoundError, BadRequestError
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


@dataclass
class Group(StorageRecord):
    """Lending circle with its capital pool"""
    name: str
    created_by_id: str
    currency: Currency = Currency.PEN
    member_ids: List[str] = field(default_factory=list)
    base_capital: Decimal = ZERO
    current_capital: Decimal = ZERO
    available_capital: Decimal = ZERO

    def is_member(self, user_id: str) -> bool:
        return user_id in self.member_ids

    def money(self, amount: Decimal) -> Money:
        """Amount in the group's currency"""
        return Money(amount, self.currency)

    def to_dict(self) -> Dict:
        result = super().to_dict()
        result['currency'] = self.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'Group':
        data = cls.parse_timestamps(data)
        return cls(
            id=data['id'],
            created_at=data['created_at'],
            updated_at=data['updated_at'],
            name=data['name'],
            created_by_id=data['created_by_id'],
            currency=Currency[data['currency']],
            member_ids=list(data.get('member_ids', [])),
            base_capital=Decimal(data['base_capital']),
            current_capital=Decimal(data['current_capital']),
            available_capital=Decimal(data['available_capital'])
        )


class GroupManager:
    """Creates and loads groups"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "groups"
        self.logger = get_logger("lending_circle.groups")

    def create_group(
        self,
        name: str,
        created_by_id: str,
        initial_capital: Decimal,
        currency: Currency = Currency.PEN,
        member_ids: Optional[List[str]] = None
    ) -> Group:
        """
        Create a group with its starting capital pool

        Args:
            name: Group name
            created_by_id: Facilitator that owns the group
            initial_capital: Pooled capital, all of it available to lend
            currency: Currency of the pool
            member_ids: Initial members

        Returns:
            Created Group
        """
        if initial_capital < ZERO:
            raise BadRequestError("Initial capital cannot be negative")

        now = datetime.now(timezone.utc)
        group = Group(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            created_by_id=created_by_id,
            currency=currency,
            member_ids=list(member_ids or []),
            base_capital=initial_capital,
            current_capital=initial_capital,
            available_capital=initial_capital
        )
        self.save_group(group)

        log_action(
            self.logger, "info", f"Group created: {name}",
            user_id=created_by_id, action="create_group", resource=f"group:{group.id}",
            extra={"initial_capital": group.money(initial_capital).to_string()}
        )
        return group

    def add_member(self, group_id: str, user_id: str) -> Group:
        group = self.require_group(group_id)
        if not group.is_member(user_id):
            group.member_ids.append(user_id)
            group.updated_at = datetime.now(timezone.utc)
            self.save_group(group)
        return group

    def get_group(self, group_id: str) -> Optional[Group]:
        """Get group by ID"""
        data = self.storage.load(self.table_name, group_id)
        if data:
            return Group.from_dict(data)
        return None

    def require_group(self, group_id: str) -> Group:
        group = self.get_group(group_id)
        if not group:
            raise NotFoundError("Group not found")
        return group

    def save_group(self, group: Group) -> None:
        self.storage.save(self.table_name, group.id, group.to_dict())
