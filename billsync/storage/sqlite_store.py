"""
SQLite Billing Store

Billing records in a local SQLite database, written with
INSERT ... ON CONFLICT ... DO UPDATE.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Any, Mapping, Optional

from billsync.models.billing import BillingRecord, BillingSubject
from billsync.storage.base import (
    BillingStore,
    record_to_row,
    row_to_record,
    scope_key,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "./data/db/billing.db"


class SQLiteBillingStore(BillingStore):
    """Billing store backed by SQLite. Opens one connection per operation."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH, table: str = "billing"):
        if not table.isidentifier():
            raise ValueError(f"Invalid table name: {table}")
        self.db_path = db_path
        self.table = table
        self.init_database()

    def get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def init_database(self) -> None:
        """Create the billing table if needed."""
        conn = self.get_connection()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    organization_id TEXT NOT NULL DEFAULT '',
                    stripe_customer_id TEXT NOT NULL,
                    stripe_subscription_id TEXT,
                    plan_id TEXT,
                    price_id TEXT,
                    status TEXT DEFAULT 'inactive',
                    mode TEXT DEFAULT 'subscription',
                    cancel_at TEXT,
                    current_period_end TEXT,
                    checkout_session_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (user_id, organization_id)
                )
            """)
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS {self.table}_customer_idx ON {self.table} (stripe_customer_id)"
            )
            conn.commit()
        finally:
            conn.close()

        logger.info(f"Billing store initialized at {self.db_path}")

    def get(self, subject: BillingSubject) -> Optional[BillingRecord]:
        conn = self.get_connection()
        try:
            row = conn.execute(
                f"SELECT * FROM {self.table} WHERE user_id = ? AND organization_id = ?",
                (subject.user_id, scope_key(subject)),
            ).fetchone()
        finally:
            conn.close()
        return row_to_record(row) if row else None

    def find_by_customer(self, stripe_customer_id: str) -> Optional[BillingRecord]:
        conn = self.get_connection()
        try:
            row = conn.execute(
                f"SELECT * FROM {self.table} WHERE stripe_customer_id = ? ORDER BY updated_at DESC LIMIT 1",
                (stripe_customer_id,),
            ).fetchone()
        finally:
            conn.close()
        return row_to_record(row) if row else None

    def upsert(
        self,
        subject: BillingSubject,
        values: Mapping[str, Any],
        insert_values: Optional[Mapping[str, Any]] = None,
    ) -> BillingRecord:
        update_row = record_to_row(values)
        insert_row = record_to_row({**(insert_values or {}), **values})
        if "stripe_customer_id" not in insert_row:
            raise ValueError("stripe_customer_id is required to create a billing record")

        now = utcnow().isoformat()
        columns = ["user_id", "organization_id", *insert_row.keys(), "created_at", "updated_at"]
        params = [subject.user_id, scope_key(subject), *insert_row.values(), now, now]
        assignments = [f"{column} = excluded.{column}" for column in update_row]
        assignments.append("updated_at = excluded.updated_at")

        sql = (
            f"INSERT INTO {self.table} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)}) "
            f"ON CONFLICT (user_id, organization_id) DO UPDATE SET {', '.join(assignments)}"
        )

        conn = self.get_connection()
        try:
            with conn:
                conn.execute(sql, params)
            row = conn.execute(
                f"SELECT * FROM {self.table} WHERE user_id = ? AND organization_id = ?",
                (subject.user_id, scope_key(subject)),
            ).fetchone()
        finally:
            conn.close()

        return row_to_record(row)
