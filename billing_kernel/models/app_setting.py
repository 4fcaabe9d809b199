"""
Module: billing_kernel.models.app_setting
Responsibility: Key/value persistence for runtime-editable settings (the
    invoice submission window).
Architecture position: Kernel > Models.  May import from db/ only.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class AppSetting(TrackedBase):
    """Single setting row. Values are stored as text and parsed by the reader."""

    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    value: Mapped[str] = mapped_column(String(200), nullable=False)

    def __repr__(self) -> str:
        return f"<AppSetting {self.key}={self.value!r}>"
