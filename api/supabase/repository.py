"""
Supabase Repository

Billing records, user profiles and organization membership stored in
Supabase PostgreSQL.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from supabase import Client

from billsync.models.billing import BillingRecord, BillingSubject
from billsync.services.directory import Directory, Profile
from billsync.storage.base import (
    BillingStore,
    record_to_row,
    row_to_record,
    scope_key,
    utcnow,
)

logger = logging.getLogger(__name__)

ON_CONFLICT = "user_id,organization_id"


class SupabaseBillingStore(BillingStore):
    """
    Billing store backed by a Supabase table.

    The table needs a unique constraint on (user_id, organization_id), with
    organization_id stored as '' for individual billing.
    """

    def __init__(self, client: Client, table: str = "billing"):
        self.client = client
        self.table = table

    def _select_one(self, **filters: str) -> Optional[Dict[str, Any]]:
        query = self.client.table(self.table).select("*")
        for column, value in filters.items():
            query = query.eq(column, value)
        result = query.order("updated_at", desc=True).limit(1).execute()
        return result.data[0] if result.data else None

    def get(self, subject: BillingSubject) -> Optional[BillingRecord]:
        row = self._select_one(user_id=subject.user_id, organization_id=scope_key(subject))
        return row_to_record(row) if row else None

    def find_by_customer(self, stripe_customer_id: str) -> Optional[BillingRecord]:
        row = self._select_one(stripe_customer_id=stripe_customer_id)
        return row_to_record(row) if row else None

    def upsert(
        self,
        subject: BillingSubject,
        values: Mapping[str, Any],
        insert_values: Optional[Mapping[str, Any]] = None,
    ) -> BillingRecord:
        update_row = record_to_row(values)
        now = utcnow().isoformat()

        if self.get(subject) is None:
            insert_row = record_to_row({**(insert_values or {}), **values})
            if "stripe_customer_id" not in insert_row:
                raise ValueError("stripe_customer_id is required to create a billing record")

            # Losing an insert race returns no rows; fall through to the update
            result = self.client.table(self.table).upsert(
                {
                    "user_id": subject.user_id,
                    "organization_id": scope_key(subject),
                    **insert_row,
                    "created_at": now,
                    "updated_at": now,
                },
                on_conflict=ON_CONFLICT,
                ignore_duplicates=True,
            ).execute()
            if result.data:
                return row_to_record(result.data[0])

        result = (
            self.client.table(self.table)
            .update({**update_row, "updated_at": now})
            .eq("user_id", subject.user_id)
            .eq("organization_id", scope_key(subject))
            .execute()
        )
        if result.data:
            return row_to_record(result.data[0])

        record = self.get(subject)
        if record is None:
            raise RuntimeError(f"Billing record for {subject} vanished during upsert")
        return record


class SupabaseDirectory(Directory):
    """Profiles from user_profiles, membership from organization_members."""

    def __init__(self, client: Client):
        self.client = client

    def get_profile(self, user_id: str) -> Optional[Profile]:
        result = (
            self.client.table("user_profiles")
            .select("email, full_name")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        data = result.data[0]
        return Profile(email=data.get("email"), name=data.get("full_name"))

    def get_member_role(self, organization_id: str, user_id: str) -> Optional[str]:
        result = (
            self.client.table("organization_members")
            .select("role")
            .eq("org_id", organization_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        return result.data[0].get("role") if result.data else None

    def count_members(self, organization_id: str) -> int:
        result = (
            self.client.table("organization_members")
            .select("user_id", count="exact")
            .eq("org_id", organization_id)
            .execute()
        )
        return result.count or 0
