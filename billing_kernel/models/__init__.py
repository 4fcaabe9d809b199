"""ORM models for the billing kernel."""

from billing_kernel.models.app_setting import AppSetting
from billing_kernel.models.audit_event import AuditAction, AuditEvent
from billing_kernel.models.batch_import import BatchImportRecord
from billing_kernel.models.invoice import Invoice, InvoiceStatus
from billing_kernel.models.tag import Tag
from billing_kernel.models.time_entry import TimeEntry
from billing_kernel.models.user import User, UserRole

__all__ = [
    "AppSetting",
    "AuditAction",
    "AuditEvent",
    "BatchImportRecord",
    "Invoice",
    "InvoiceStatus",
    "Tag",
    "TimeEntry",
    "User",
    "UserRole",
]
