"""
Module: billing_kernel.models.user
Responsibility: ORM persistence for the people who log time and the admins
    who approve and pay invoices.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - email is unique.
    - rate is nullable; a user without a finite rate cannot be invoiced
      unless every entry carries its own rate override (pricing guard).
"""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class UserRole(str, Enum):
    """Role of a user. Admin capability checks are done by the caller."""

    MEMBER = "member"
    ADMIN = "admin"


class User(TrackedBase):
    """A person who logs time (member) or administers invoices (admin)."""

    __tablename__ = "users"

    __table_args__ = (
        Index("idx_user_email", "email", unique=True),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    email: Mapped[str] = mapped_column(String(320), nullable=False)

    role: Mapped[UserRole] = mapped_column(
        String(10),
        default=UserRole.MEMBER.value,
        nullable=False,
    )

    # Default hourly rate; None means "no rate configured"
    rate: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 4),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
