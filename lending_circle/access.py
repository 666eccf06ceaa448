"""
Access Policy Module

Role and membership rules for loan operations. Roles and memberships arrive
already authenticated; this module only decides what an actor may do with a
group and its loans.
"""

from enum import Enum
from typing import Union

from .exceptions import ForbiddenError


class UserRole(Enum):
    """Actor roles"""
    ADMIN = "ADMIN"              # Full access to every group
    FACILITATOR = "FACILITATOR"  # Manages the groups they created
    MEMBER = "MEMBER"            # Borrows from groups they belong to

    @classmethod
    def coerce(cls, role: Union['UserRole', str]) -> 'UserRole':
        if isinstance(role, cls):
            return role
        try:
            return cls(str(role).upper())
        except ValueError:
            raise ForbiddenError(f"Unknown role: {role}")


class AccessPolicy:
    """Permission checks for groups and loans"""

    def can_manage_group(self, actor_id: str, role: UserRole, group) -> bool:
        """Create loans, record and delete payments, delete loans"""
        return role == UserRole.ADMIN or (
            role == UserRole.FACILITATOR and group.created_by_id == actor_id
        )

    def can_view_group(self, actor_id: str, role: UserRole, group) -> bool:
        return self.can_manage_group(actor_id, role, group) or group.is_member(actor_id)

    def can_view_loan(self, actor_id: str, role: UserRole, group, loan) -> bool:
        return self.can_manage_group(actor_id, role, group) or loan.member_id == actor_id

    def require_manage_group(self, actor_id: str, role: UserRole, group, message: str) -> None:
        if not self.can_manage_group(actor_id, role, group):
            raise ForbiddenError(message)

    def require_view_group(self, actor_id: str, role: UserRole, group) -> None:
        if not self.can_view_group(actor_id, role, group):
            raise ForbiddenError("You do not have access to this group")

    def require_view_loan(self, actor_id: str, role: UserRole, group, loan) -> None:
        if not self.can_view_loan(actor_id, role, group, loan):
            raise ForbiddenError("You do not have access to this loan")
