"""Billing record storage."""

from billsync.storage.base import BillingStore, record_to_row, row_to_record
from billsync.storage.sqlite_store import SQLiteBillingStore

__all__ = [
    "BillingStore",
    "SQLiteBillingStore",
    "record_to_row",
    "row_to_record",
]
