"""
Billing Record Store

One upsertable record per billing subject. Individual records are keyed
by (user_id, "") and team records by (user_id, organization_id), so a
single composite unique key covers both scopes.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from billsync.models.billing import BillingRecord, BillingSubject

# organization_id stored for individual billing records
PERSONAL_SCOPE = ""

RECORD_FIELDS = (
    "stripe_customer_id",
    "stripe_subscription_id",
    "plan_id",
    "price_id",
    "status",
    "mode",
    "cancel_at",
    "current_period_end",
    "checkout_session_id",
)

_DATETIME_FIELDS = {"cancel_at", "current_period_end", "created_at", "updated_at"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _encode(field: str, value: Any) -> Any:
    if value is None:
        return None
    if field in _DATETIME_FIELDS and isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


def _decode_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def record_to_row(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Encode record fields for storage."""
    unknown = set(values) - set(RECORD_FIELDS)
    if unknown:
        raise ValueError(f"Unknown billing record fields: {sorted(unknown)}")
    return {field: _encode(field, value) for field, value in values.items()}


def row_to_record(row: Mapping[str, Any]) -> BillingRecord:
    """Decode a stored row into a BillingRecord."""
    data = dict(row)
    organization_id = data.get("organization_id") or None
    return BillingRecord(
        user_id=data["user_id"],
        organization_id=organization_id,
        stripe_customer_id=data["stripe_customer_id"],
        stripe_subscription_id=data.get("stripe_subscription_id"),
        plan_id=data.get("plan_id"),
        price_id=data.get("price_id"),
        status=data.get("status"),
        mode=data.get("mode"),
        cancel_at=_decode_datetime(data.get("cancel_at")),
        current_period_end=_decode_datetime(data.get("current_period_end")),
        checkout_session_id=data.get("checkout_session_id"),
        created_at=_decode_datetime(data.get("created_at")),
        updated_at=_decode_datetime(data.get("updated_at")),
    )


def scope_key(subject: BillingSubject) -> str:
    return subject.organization_id if subject.organization_id is not None else PERSONAL_SCOPE


class BillingStore(ABC):
    """Persisted projection of billing state, one record per subject."""

    @abstractmethod
    def get(self, subject: BillingSubject) -> Optional[BillingRecord]:
        """Load the record for a subject, if any."""

    @abstractmethod
    def find_by_customer(self, stripe_customer_id: str) -> Optional[BillingRecord]:
        """Load the record bound to a Stripe customer, if any."""

    @abstractmethod
    def upsert(
        self,
        subject: BillingSubject,
        values: Mapping[str, Any],
        insert_values: Optional[Mapping[str, Any]] = None,
    ) -> BillingRecord:
        """
        Insert or update the subject's record atomically.

        On insert the row gets insert_values overlaid with values; on
        conflict only values (and updated_at) are overwritten. Returns the
        stored record.
        """
