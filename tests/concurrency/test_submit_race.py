"""
Concurrent Submit / Import / Pay Race Tests.

Several threads hit the engine facade at once, each with its own session.

Expected Behavior:
- Concurrent submits for the same user and period produce exactly one
  active invoice; every other caller gets InvoiceAlreadyExistsError
- Concurrent imports with the same idempotency key apply the batch once
- Concurrent pays of one invoice succeed once; the rest see it paid
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from billing_kernel.domain.invoice import InvoiceStatus
from billing_kernel.exceptions import (
    DuplicateImportError,
    InvoiceAlreadyExistsError,
    InvoiceAlreadyPaidError,
)

pytestmark = pytest.mark.slow

THREADS = 4


def run_concurrently(fn, count=THREADS):
    """Run ``fn`` on ``count`` threads released together; return results or exceptions."""
    barrier = Barrier(count)

    def call():
        barrier.wait(timeout=10)
        try:
            return fn()
        except Exception as exc:
            return exc

    with ThreadPoolExecutor(max_workers=count) as pool:
        futures = [pool.submit(call) for _ in range(count)]
        return [f.result(timeout=60) for f in futures]


def split(outcomes):
    errors = [o for o in outcomes if isinstance(o, Exception)]
    successes = [o for o in outcomes if not isinstance(o, Exception)]
    return successes, errors


class TestSubmitRace:

    def test_one_invoice_per_period(self, invoice_engine, seeded, notifier):
        invoice_engine.create_entry(seeded.member_id, {"date": "2024-01-15", "hours": "3", "task": "API"})
        invoice_engine.create_entry(seeded.member_id, {"date": "2024-01-17", "hours": "5", "task": "Review"})

        successes, errors = split(
            run_concurrently(lambda: invoice_engine.submit_invoice(seeded.member_id))
        )

        assert len(successes) == 1
        assert len(errors) == THREADS - 1
        assert all(isinstance(e, InvoiceAlreadyExistsError) for e in errors)
        assert all(e.invoice_id == successes[0].id for e in errors)

        invoices = invoice_engine.list_invoices(seeded.member_id)
        assert [i.id for i in invoices] == [successes[0].id]
        assert len(invoices[0].lines) == 2
        assert invoice_engine.dispatcher.flush()
        assert len(notifier.sent) == 1

    def test_different_users_do_not_conflict(self, invoice_engine, seeded):
        for user_id in (seeded.member_id, seeded.other_member_id):
            invoice_engine.create_entry(user_id, {"date": "2024-01-16", "hours": "1", "task": "Work"})
        users = iter([seeded.member_id, seeded.other_member_id])

        outcomes = run_concurrently(lambda: invoice_engine.submit_invoice(next(users)), count=2)

        successes, errors = split(outcomes)
        assert errors == []
        assert {i.user_id for i in successes} == {seeded.member_id, seeded.other_member_id}


class TestImportRace:

    def test_same_key_applied_once(self, invoice_engine, seeded):
        rows = [
            {"date": "2024-01-15", "hours": "2", "task": "One"},
            {"date": "2024-01-16", "hours": "3", "task": "Two"},
        ]

        successes, errors = split(
            run_concurrently(
                lambda: invoice_engine.import_entries_batch(seeded.member_id, "race-key", rows)
            )
        )

        assert len(successes) == 1
        assert successes[0].created == 2
        assert all(isinstance(e, DuplicateImportError) for e in errors)
        assert len(invoice_engine.list_entries(seeded.member_id)) == 2


class TestPayRace:

    def test_paid_once(self, invoice_engine, seeded, notifier):
        invoice_engine.create_entry(seeded.member_id, {"date": "2024-01-15", "hours": "3", "task": "API"})
        invoice = invoice_engine.submit_invoice(seeded.member_id)

        successes, errors = split(
            run_concurrently(lambda: invoice_engine.mark_invoice_paid(invoice.id, seeded.admin_id))
        )

        assert len(successes) == 1
        assert successes[0].status == InvoiceStatus.PAID
        assert all(isinstance(e, InvoiceAlreadyPaidError) for e in errors)
        assert invoice_engine.dispatcher.flush()
        assert sum(1 for m in notifier.sent if m.subject.startswith("[Paid]")) == 1
