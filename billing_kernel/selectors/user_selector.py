"""
Module: billing_kernel.selectors.user_selector
Responsibility: Read access to users for pricing, notifications and the
    deadline report.
Architecture position: Kernel > Selectors.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.dtos import UserInfo
from billing_kernel.exceptions import UserNotFoundError
from billing_kernel.models.user import User, UserRole
from billing_kernel.selectors.base import BaseSelector


def _to_info(user: User) -> UserInfo:
    return UserInfo(
        id=user.id,
        name=user.name,
        email=user.email,
        role=UserRole(user.role).value,
        rate=Decimal(user.rate) if user.rate is not None else None,
    )


class UserSelector(BaseSelector[User]):
    """Users by id, or all of them ordered by name."""

    def find(self, user_id: UUID) -> UserInfo | None:
        user = self.session.get(User, user_id)
        return _to_info(user) if user is not None else None

    def get(self, user_id: UUID) -> UserInfo:
        """Raises UserNotFoundError if the id is unknown."""
        info = self.find(user_id)
        if info is None:
            raise UserNotFoundError(user_id)
        return info

    def list_users(self) -> list[UserInfo]:
        users = self.session.execute(
            select(User).order_by(User.name, User.id)
        ).scalars().all()
        return [_to_info(user) for user in users]
