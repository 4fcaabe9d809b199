"""
Billing Kernel

A transactional timesheet invoicing core with:
- Canonical Monday-Sunday billing periods in a configured time zone
- Exactly-once binding of open time entries to an invoice per period
- Compare-and-swap invoice status transitions
- Idempotent batch import of time entries
- Append-only audit trail
"""

__version__ = "0.1.0"
