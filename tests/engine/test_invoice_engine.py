"""
Tests for the InvoiceEngine facade.

These tests verify:
- Each call is one committed unit of work
- Expected errors reach the caller unchanged; anything else becomes
  InternalError and rolls the unit of work back
- Notices are dispatched only after commit, off the calling thread
"""

import threading
import time
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_config import get_active_settings
from billing_config.loader import BillingConfig
from billing_kernel.db.engine import session_scope
from billing_kernel.domain.invoice import InvoiceStatus
from billing_kernel.domain.period import BillingWindowSettings
from billing_kernel.exceptions import (
    DuplicateImportError,
    EntryInvoicedError,
    InternalError,
    InvoiceAlreadyExistsError,
    InvoiceAlreadyPaidError,
    InvoiceNotFoundError,
    NoOpenEntriesError,
    UserNotFoundError,
)
from billing_kernel.models.audit_event import AuditAction
from billing_kernel.services.auditor_service import AuditorService
from billing_kernel.services.invoice_lifecycle import InvoiceLifecycleService


def add_week(engine, user_id):
    monday = engine.create_entry(user_id, {"date": "2024-01-15", "hours": "3", "task": "API", "tag": "Dev"})
    wednesday = engine.create_entry(user_id, {"date": "2024-01-17", "hours": "5", "task": "Review"})
    return monday, wednesday


class TestSubmitAndPay:

    def test_weekly_flow(self, invoice_engine, seeded, notifier):
        monday, wednesday = add_week(invoice_engine, seeded.member_id)

        invoice = invoice_engine.submit_invoice(seeded.member_id)

        assert invoice.total == Decimal("600.00")
        assert set(invoice.entry_ids) == {monday.id, wednesday.id}
        assert invoice_engine.dispatcher.flush()
        assert [m.subject for m in notifier.sent] == [
            f"[Invoice Submitted] Alice Member — #{invoice.id} • $600.00",
        ]
        assert notifier.sent[0].to == ("admin@example.com",)

        with pytest.raises(InvoiceAlreadyExistsError):
            invoice_engine.submit_invoice(seeded.member_id)
        assert invoice_engine.dispatcher.flush()
        assert len(notifier.sent) == 1

        paid = invoice_engine.mark_invoice_paid(invoice.id, seeded.admin_id)

        assert paid.status == InvoiceStatus.PAID
        assert paid.approved_at is None
        assert paid.paid_by_id == seeded.admin_id
        assert invoice_engine.dispatcher.flush()
        assert notifier.sent[-1].subject == f"[Paid] Invoice #{invoice.id} — $600.00"
        assert notifier.sent[-1].to == ("alice@example.com",)
        assert notifier.sent[-1].text.endswith("by Dana Admin.")

        with pytest.raises(InvoiceAlreadyPaidError):
            invoice_engine.mark_invoice_paid(invoice.id, seeded.admin_id)

    def test_entries_locked_until_revert(self, invoice_engine, seeded):
        monday, _ = add_week(invoice_engine, seeded.member_id)
        invoice = invoice_engine.submit_invoice(seeded.member_id)

        with pytest.raises(EntryInvoicedError):
            invoice_engine.update_entry(monday.id, seeded.member_id, {"hours": "1"})

        invoice_engine.revert_invoice_to_draft(invoice.id, seeded.admin_id)
        updated = invoice_engine.update_entry(monday.id, seeded.member_id, {"hours": "1"})

        assert updated.hours == Decimal("1.00")
        assert invoice_engine.submit_invoice(seeded.member_id).total == Decimal("450.00")

    def test_approve_withdraw_cancel(self, invoice_engine, seeded):
        add_week(invoice_engine, seeded.member_id)
        invoice = invoice_engine.submit_invoice(seeded.member_id)

        assert invoice_engine.withdraw_invoice(invoice.id, seeded.member_id).status == InvoiceStatus.DRAFT
        invoice_engine.submit_invoice(seeded.member_id)
        assert invoice_engine.approve_invoice(invoice.id, seeded.admin_id).status == InvoiceStatus.APPROVED
        assert invoice_engine.cancel_invoice(invoice.id, seeded.admin_id).status == InvoiceStatus.CANCELLED
        assert len(invoice_engine.list_entries(seeded.member_id)) == 2
        assert all(e.invoice_id is None for e in invoice_engine.list_entries(seeded.member_id))

    def test_no_open_entries(self, invoice_engine, seeded, notifier):
        with pytest.raises(NoOpenEntriesError):
            invoice_engine.submit_invoice(seeded.member_id)

        assert invoice_engine.list_invoices() == []
        assert invoice_engine.dispatcher.flush()
        assert notifier.sent == []

    def test_explicit_settings(self, invoice_engine, seeded):
        add_week(invoice_engine, seeded.member_id)

        invoice = invoice_engine.submit_invoice(seeded.member_id, BillingWindowSettings(zone="UTC"))

        assert invoice.period_start.utcoffset().total_seconds() == 0

    def test_unknown_invoice(self, invoice_engine, seeded):
        with pytest.raises(InvoiceNotFoundError):
            invoice_engine.mark_invoice_paid(uuid4(), seeded.admin_id)

    def test_get_invoice_owner_scope(self, invoice_engine, seeded):
        add_week(invoice_engine, seeded.member_id)
        invoice = invoice_engine.submit_invoice(seeded.member_id)

        assert invoice_engine.get_invoice(invoice.id, seeded.member_id).total == Decimal("600.00")
        with pytest.raises(InvoiceNotFoundError):
            invoice_engine.get_invoice(invoice.id, seeded.other_member_id)
        assert [i.id for i in invoice_engine.list_invoices(seeded.member_id)] == [invoice.id]


class TestDeadlineStatus:

    def test_single_user(self, invoice_engine, seeded):
        before = invoice_engine.get_deadline_status(user_id=seeded.member_id)

        assert len(before.statuses) == 1
        assert not before.statuses[0].submitted

        add_week(invoice_engine, seeded.member_id)
        invoice_engine.submit_invoice(seeded.member_id)
        after = invoice_engine.get_deadline_status(user_id=seeded.member_id)

        assert after.statuses[0].submitted
        assert after.statuses[0].status == "ok"

    def test_all_users(self, invoice_engine, seeded):
        report = invoice_engine.get_deadline_status(
            settings=BillingWindowSettings(warn_window_hours=24 * 7),
        )

        assert {item.user_id for item in report.statuses} == {
            seeded.member_id, seeded.other_member_id, seeded.no_rate_member_id, seeded.admin_id,
        }
        assert {item.status for item in report.statuses} == {"approaching"}

    def test_unknown_user(self, invoice_engine):
        with pytest.raises(UserNotFoundError):
            invoice_engine.get_deadline_status(user_id=uuid4())

    def test_uses_stored_settings(self, invoice_engine, seeded):
        invoice_engine.set_invoice_settings(BillingWindowSettings(zone="UTC", warn_window_hours=200))

        report = invoice_engine.get_deadline_status(user_id=seeded.member_id)

        assert report.zone == "UTC"
        assert report.statuses[0].status == "approaching"


class TestEntriesAndImport:

    def test_import_is_idempotent(self, invoice_engine, seeded):
        rows = [
            {"date": "2024-01-15", "hours": "2", "task": "One"},
            {"date": "2024-01-16", "hours": "x", "task": "Two"},
        ]

        result = invoice_engine.import_entries_batch(seeded.member_id, "k-1", rows)

        assert (result.created, result.skipped) == (1, 1)
        with pytest.raises(DuplicateImportError):
            invoice_engine.import_entries_batch(seeded.member_id, "k-1", rows)
        assert len(invoice_engine.list_entries(seeded.member_id)) == 1

    def test_delete_entry(self, invoice_engine, seeded):
        entry = invoice_engine.create_entry(seeded.member_id, {"date": "2024-01-15", "hours": 1, "task": "x"})

        invoice_engine.delete_entry(entry.id, seeded.member_id)

        assert invoice_engine.list_entries(seeded.member_id) == []

    def test_preview_uses_clock_date(self, invoice_engine):
        preview = invoice_engine.preview_batch("3.5,Write docs\nnonsense")

        assert preview.rows[0].parsed["date"] == "2024-01-17"
        assert preview.summary.valid == 1
        assert preview.summary.invalid == 1


class TestUnexpectedErrors:

    def test_wrapped_as_internal_error(self, invoice_engine, seeded, monkeypatch, captured_logs):
        add_week(invoice_engine, seeded.member_id)
        invoice = invoice_engine.submit_invoice(seeded.member_id)

        def boom(self, invoice_id, admin_id):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(InvoiceLifecycleService, "approve_invoice", boom)

        with pytest.raises(InternalError) as exc_info:
            invoice_engine.approve_invoice(invoice.id, seeded.admin_id)

        assert str(exc_info.value) == "Failed to approve invoice"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        failures = [r for r in captured_logs() if r["message"] == "engine_operation_failed"]
        assert failures[0]["operation"] == "approve_invoice"
        assert failures[0]["exc_type"] == "RuntimeError"

    def test_failure_rolls_back_transition(self, invoice_engine, seeded, notifier, monkeypatch):
        add_week(invoice_engine, seeded.member_id)
        invoice = invoice_engine.submit_invoice(seeded.member_id)

        def broken_audit(self, *args, **kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(AuditorService, "record_invoice_paid", broken_audit)

        with pytest.raises(InternalError):
            invoice_engine.mark_invoice_paid(invoice.id, seeded.admin_id)

        assert invoice_engine.get_invoice(invoice.id).status == InvoiceStatus.SUBMITTED
        assert invoice_engine.dispatcher.flush()
        assert len(notifier.sent) == 1


class TestNotificationFailure:

    def test_failed_paid_notice_is_audited_not_raised(self, invoice_engine, seeded, session_factory, monkeypatch):
        add_week(invoice_engine, seeded.member_id)
        invoice = invoice_engine.submit_invoice(seeded.member_id)

        def smtp_down(notice):
            raise ConnectionError("smtp down")

        monkeypatch.setattr(invoice_engine.dispatcher.notifier, "notify_user_on_paid", smtp_down)

        paid = invoice_engine.mark_invoice_paid(invoice.id, seeded.admin_id)

        assert paid.status == InvoiceStatus.PAID
        assert invoice_engine.dispatcher.flush()
        with session_scope(session_factory) as session:
            trace = AuditorService(session).get_trace("Invoice", invoice.id)
            assert AuditAction.NOTIFICATION_FAILED in trace.actions
            assert AuditAction.INVOICE_PAID in trace.actions

    def test_failed_submit_notice_leaves_invoice_submitted(self, invoice_engine, seeded, monkeypatch, captured_logs):
        add_week(invoice_engine, seeded.member_id)

        def smtp_down(notice):
            raise ConnectionError("smtp down")

        monkeypatch.setattr(invoice_engine.dispatcher.notifier, "notify_admins_on_submit", smtp_down)

        invoice = invoice_engine.submit_invoice(seeded.member_id)

        assert invoice_engine.dispatcher.flush()
        assert invoice_engine.get_invoice(invoice.id).status == InvoiceStatus.SUBMITTED
        failures = [r for r in captured_logs() if r["message"] == "notification_failed"]
        assert failures[0]["notice_type"] == "InvoiceSubmittedNotice"


class TestAsyncDelivery:

    def test_slow_notifier_does_not_delay_submit(self, invoice_engine, seeded, notifier, monkeypatch):
        add_week(invoice_engine, seeded.member_id)
        release = threading.Event()
        deliver_submit = notifier.notify_admins_on_submit

        def slow_submit(notice):
            release.wait(timeout=5)
            deliver_submit(notice)

        monkeypatch.setattr(notifier, "notify_admins_on_submit", slow_submit)

        started = time.monotonic()
        invoice = invoice_engine.submit_invoice(seeded.member_id)
        elapsed = time.monotonic() - started

        assert elapsed < 2
        assert notifier.sent == []
        assert invoice_engine.get_invoice(invoice.id).status == InvoiceStatus.SUBMITTED

        release.set()
        assert invoice_engine.dispatcher.flush()
        assert len(notifier.sent) == 1

    def test_slow_notifier_does_not_delay_mark_paid(self, invoice_engine, seeded, notifier, monkeypatch):
        add_week(invoice_engine, seeded.member_id)
        invoice = invoice_engine.submit_invoice(seeded.member_id)
        assert invoice_engine.dispatcher.flush()
        release = threading.Event()
        deliver_paid = notifier.notify_user_on_paid

        def slow_paid(notice):
            release.wait(timeout=5)
            deliver_paid(notice)

        monkeypatch.setattr(notifier, "notify_user_on_paid", slow_paid)

        started = time.monotonic()
        paid = invoice_engine.mark_invoice_paid(invoice.id, seeded.admin_id)

        assert time.monotonic() - started < 2
        assert paid.status == InvoiceStatus.PAID
        assert len(notifier.sent) == 1

        release.set()
        assert invoice_engine.dispatcher.flush()
        assert notifier.sent[-1].subject.startswith("[Paid]")

    def test_close_drains_queue(self, invoice_engine, seeded, notifier):
        add_week(invoice_engine, seeded.member_id)
        invoice_engine.submit_invoice(seeded.member_id)

        invoice_engine.close()

        assert not invoice_engine.dispatcher.is_running
        assert len(notifier.sent) == 1


class TestConfigBootstrap:

    def test_apply_config(self, invoice_engine):
        config = get_active_settings()
        custom = BillingConfig(
            window=BillingWindowSettings(weekday=5, zone="UTC"),
            default_tags=config.default_tags + ("Design",),
        )

        created = invoice_engine.apply_config(custom)

        assert len(created) == 1
        assert invoice_engine.get_invoice_settings() == custom.window
