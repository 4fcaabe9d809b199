"""Outer services: the InvoiceEngine facade and post-commit notifications."""

from billing_services.invoice_engine import InvoiceEngine, KernelServices
from billing_services.notifications import (
    LoggingNotifier,
    NotificationDispatcher,
    NotificationMessage,
    Notifier,
)

__all__ = [
    "InvoiceEngine",
    "KernelServices",
    "LoggingNotifier",
    "NotificationDispatcher",
    "NotificationMessage",
    "Notifier",
]
