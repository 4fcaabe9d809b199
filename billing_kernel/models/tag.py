"""
Module: billing_kernel.models.tag
Responsibility: ORM persistence for the work-category tags an entry may carry.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - name is unique and compared case-sensitively.
    - Only active tags are accepted on new or edited entries.
"""

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class Tag(TrackedBase):
    """Work category (Dev, Bug, Meeting, ...)."""

    __tablename__ = "tags"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    description: Mapped[str | None] = mapped_column(String(200), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Display order; ties broken by name
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<Tag {self.name}{'' if self.is_active else ' (inactive)'}>"
