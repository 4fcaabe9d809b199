"""
billing_services.notifications -- post-commit delivery of invoice notices.

Responsibility:
    Turns the notices collected in a unit of work's Outbox into messages
    and hands them to a Notifier on a background worker thread.

Architecture position:
    Services -- outer layer.  Consumes ``billing_kernel.domain.notices``;
    the engine facade publishes only after its transaction has committed.

Invariants enforced:
    - A notification failure never propagates to the caller and never
      touches the committed transition.
    - A failed paid-notice writes one NOTIFICATION_FAILED audit row in its
      own short transaction.
    - No retries.

Failure modes:
    - Notifier exceptions are logged as ``notification_failed``.
    - A failing audit write for a failed notice is logged and dropped.
"""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from billing_kernel.db.engine import session_scope
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.notices import InvoicePaidNotice, InvoiceSubmittedNotice, Notice
from billing_kernel.logging_config import get_logger
from billing_kernel.services.auditor_service import AuditorService

logger = get_logger("services.notifications")

DEFAULT_ZONE = "America/Denver"


@dataclass(frozen=True)
class NotificationMessage:
    to: tuple[str, ...]
    subject: str
    text: str


def format_currency(amount: Decimal) -> str:
    """``Decimal("600")`` -> ``"$600.00"``."""
    return f"${Decimal(amount):,.2f}"


def format_instant(instant: datetime, zone: str = DEFAULT_ZONE) -> str:
    local = instant.astimezone(ZoneInfo(zone))
    return f"{local:%a, %b} {local.day} {local:%Y at %I:%M %p %Z}"


def submitted_message(
    notice: InvoiceSubmittedNotice,
    admin_emails: Iterable[str],
    zone: str = DEFAULT_ZONE,
) -> NotificationMessage:
    total = format_currency(notice.total)
    return NotificationMessage(
        to=tuple(admin_emails),
        subject=f"[Invoice Submitted] {notice.user_name} — #{notice.invoice_id} • {total}",
        text=(
            f"{notice.user_name} submitted invoice #{notice.invoice_id} ({total}) "
            f"on {format_instant(notice.submitted_at, zone)}."
        ),
    )


def paid_message(notice: InvoicePaidNotice, zone: str = DEFAULT_ZONE) -> NotificationMessage:
    total = format_currency(notice.total)
    return NotificationMessage(
        to=(notice.user_email,),
        subject=f"[Paid] Invoice #{notice.invoice_id} — {total}",
        text=(
            f"Your invoice #{notice.invoice_id} was marked Paid on "
            f"{format_instant(notice.paid_at, zone)} by {notice.paid_by_name or 'Admin'}."
        ),
    )


class Notifier(Protocol):
    """Outbound channel for invoice notices (email transport lives elsewhere)."""

    def notify_admins_on_submit(self, notice: InvoiceSubmittedNotice) -> None: ...

    def notify_user_on_paid(self, notice: InvoicePaidNotice) -> None: ...


class LoggingNotifier:
    """
    Default Notifier: formats each message and logs it.

    Sent messages are also kept in ``sent`` so callers can inspect them.
    Submit notices with no admin recipients are dropped.
    """

    def __init__(self, admin_emails: Iterable[str] = (), zone: str = DEFAULT_ZONE):
        self.admin_emails = tuple(e.strip() for e in admin_emails if e and e.strip())
        self.zone = zone
        self.sent: list[NotificationMessage] = []

    def notify_admins_on_submit(self, notice: InvoiceSubmittedNotice) -> None:
        if not self.admin_emails:
            logger.debug("notification_skipped_no_recipients")
            return
        self._send(submitted_message(notice, self.admin_emails, self.zone))

    def notify_user_on_paid(self, notice: InvoicePaidNotice) -> None:
        self._send(paid_message(notice, self.zone))

    def _send(self, message: NotificationMessage) -> None:
        self.sent.append(message)
        logger.info(
            "notification_sent",
            extra={"to": list(message.to), "subject": message.subject},
        )


_STOP = object()


class NotificationDispatcher:
    """Background delivery of notices to a Notifier.

    Contract:
        - ``publish()`` only enqueues; the worker thread starts on the first
          publish if ``start()`` was not called.
        - ``flush(timeout)`` waits until every queued notice was handled.
        - ``stop()`` drains the queue, then ends the worker.
    """

    def __init__(
        self,
        notifier: Notifier | None = None,
        session_factory: Callable[[], Session] | None = None,
        clock: Clock | None = None,
    ):
        self.notifier = notifier if notifier is not None else LoggingNotifier()
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._queue: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                return
            self._thread = threading.Thread(
                target=self._run_loop,
                name="notification-dispatcher",
                daemon=True,
            )
            self._thread.start()
        logger.info("notification_dispatcher_started")

    def stop(self, timeout: float = 10.0) -> None:
        with self._lock:
            thread, self._thread = self._thread, None
        if thread is None:
            return
        if thread.is_alive():
            self._queue.put(_STOP)
            thread.join(timeout=timeout)
        logger.info("notification_dispatcher_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def publish(self, notices: Iterable[Notice]) -> None:
        notices = list(notices)
        if not notices:
            return
        self.start()
        for notice in notices:
            self._queue.put(notice)

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait for queued notices. Returns False if the timeout expired."""
        deadline = time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def deliver(self, notice: Notice) -> bool:
        """Send one notice. Returns False (after logging) when it failed."""
        try:
            if isinstance(notice, InvoiceSubmittedNotice):
                self.notifier.notify_admins_on_submit(notice)
            elif isinstance(notice, InvoicePaidNotice):
                self.notifier.notify_user_on_paid(notice)
            else:
                raise TypeError(f"Unknown notice type: {type(notice).__name__}")
        except Exception as exc:
            logger.warning(
                "notification_failed",
                extra={
                    "invoice_id": str(getattr(notice, "invoice_id", "")),
                    "notice_type": type(notice).__name__,
                    "error": str(exc),
                },
                exc_info=True,
            )
            if isinstance(notice, InvoicePaidNotice):
                self._record_failure(notice, exc)
            return False
        return True

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self.deliver(item)
            finally:
                self._queue.task_done()

    def _record_failure(self, notice: InvoicePaidNotice, exc: Exception) -> None:
        if self._session_factory is None:
            return
        try:
            with session_scope(self._session_factory) as session:
                AuditorService(session, self._clock).record_notification_failed(
                    notice.invoice_id, type(notice).__name__, str(exc),
                )
        except Exception:
            logger.exception(
                "notification_failure_audit_failed",
                extra={"invoice_id": str(notice.invoice_id)},
            )
