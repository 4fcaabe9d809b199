"""Kernel services. Each flushes within the caller's transaction."""

from billing_kernel.services.auditor_service import AuditorService
from billing_kernel.services.batch_import_service import BatchImportService
from billing_kernel.services.entry_ledger import EntryLedgerService
from billing_kernel.services.invoice_lifecycle import InvoiceLifecycleService
from billing_kernel.services.settings_service import SettingsService

__all__ = [
    "AuditorService",
    "BatchImportService",
    "EntryLedgerService",
    "InvoiceLifecycleService",
    "SettingsService",
]
