"""
SettingsService -- runtime-editable billing window and tag set.

Responsibility:
    Reads and writes the invoice-deadline settings stored as key/value
    rows, and manages the active tag set that entry validation checks
    against.

Architecture position:
    Kernel > Services.  Flushes only; the caller commits.

Failure modes:
    - SettingsValidationError when stored or supplied values are out of
      range.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.period import SETTING_KEYS, BillingWindowSettings
from billing_kernel.logging_config import get_logger
from billing_kernel.models.app_setting import AppSetting
from billing_kernel.models.tag import Tag
from billing_kernel.services.base import BaseService

logger = get_logger("services.settings")


class SettingsService(BaseService[AppSetting]):
    """Invoice window settings and tags."""

    def get_invoice_settings(self) -> BillingWindowSettings:
        """Stored settings, with defaults for any key that is not set."""
        rows = self.session.execute(
            select(AppSetting).where(AppSetting.key.in_(SETTING_KEYS))
        ).scalars().all()
        return BillingWindowSettings.from_mapping({row.key: row.value for row in rows})

    def set_invoice_settings(self, settings: BillingWindowSettings) -> BillingWindowSettings:
        """Validate and upsert every window setting."""
        settings.validate()
        existing = {
            row.key: row
            for row in self.session.execute(
                select(AppSetting).where(AppSetting.key.in_(SETTING_KEYS))
            ).scalars()
        }
        now = self.clock.now()
        for key, value in settings.to_mapping().items():
            row = existing.get(key)
            if row is None:
                self.session.add(AppSetting(key=key, value=value, created_at=now))
            elif row.value != value:
                row.value = value
                row.updated_at = now
        self.session.flush()

        logger.info(
            "invoice_settings_updated",
            extra={
                "weekday": settings.weekday,
                "hour": settings.hour,
                "minute": settings.minute,
                "zone": settings.zone,
                "warn_window_hours": settings.warn_window_hours,
            },
        )
        return settings

    def active_tag_names(self) -> frozenset[str]:
        return frozenset(
            self.session.execute(
                select(Tag.name).where(Tag.is_active.is_(True))
            ).scalars()
        )

    def list_tags(self, include_inactive: bool = False) -> list[Tag]:
        stmt = select(Tag).order_by(Tag.sort_order, Tag.name)
        if not include_inactive:
            stmt = stmt.where(Tag.is_active.is_(True))
        return list(self.session.execute(stmt).scalars())

    def ensure_tags(self, names: Iterable[str]) -> list[UUID]:
        """
        Create any missing tags (active, in the given order).

        Existing tags are left as they are, including their active flag.
        Returns the ids of newly created tags.
        """
        existing = set(self.session.execute(select(Tag.name)).scalars())
        now = self.clock.now()
        created: list[Tag] = []
        for order, name in enumerate(names, start=1):
            if name in existing:
                continue
            tag = Tag(name=name, is_active=True, sort_order=order, created_at=now)
            self.session.add(tag)
            created.append(tag)
            existing.add(name)
        self.session.flush()

        if created:
            logger.info(
                "tags_created",
                extra={"tags": [tag.name for tag in created]},
            )
        return [tag.id for tag in created]

    def set_tag_active(self, name: str, active: bool) -> None:
        tag = self.session.execute(select(Tag).where(Tag.name == name)).scalar_one_or_none()
        if tag is None:
            return
        tag.is_active = active
        tag.updated_at = self.clock.now()
        self.session.flush()
