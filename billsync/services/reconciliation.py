"""
Billing Reconciliation Engine

Decides what plan a subject is actually on by reading Stripe and merging
the authoritative state into the local billing record. Every billing
operation syncs through here before acting.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import stripe

from billsync.errors import bad_request
from billsync.models.billing import (
    ENDED_SUBSCRIPTION_STATUSES,
    BillingRecord,
    BillingSubject,
    PlanMode,
    RecordStatus,
)
from billsync.services.directory import Directory, Profile
from billsync.services.plan_catalog import PlanCatalog, mode_from_price
from billsync.services.stripe_gateway import StripeGateway
from billsync.storage.base import BillingStore

logger = logging.getLogger(__name__)


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Convert a Stripe unix timestamp to an aware UTC datetime."""
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def first_item(subscription: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """The single billable item of a subscription."""
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else None


def first_item_price(subscription: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    item = first_item(subscription)
    return item.get("price") if item else None


def subscription_period_end(subscription: Mapping[str, Any]) -> Optional[datetime]:
    """
    End of the subscription's current billing period.

    Newer Stripe API versions carry the period on the subscription item
    instead of the subscription; schedules and the latest invoice are
    consulted when neither is present.
    """
    item = first_item(subscription) or {}
    for candidate in (subscription.get("current_period_end"), item.get("current_period_end")):
        if candidate:
            return from_timestamp(candidate)

    schedule = subscription.get("schedule")
    if isinstance(schedule, Mapping):
        phase = schedule.get("current_phase") or {}
        if phase.get("end_date"):
            return from_timestamp(phase["end_date"])

    invoice = subscription.get("latest_invoice")
    if isinstance(invoice, Mapping):
        lines = (invoice.get("lines") or {}).get("data") or []
        line_end = ((lines[0].get("period") or {}).get("end")) if lines else None
        return from_timestamp(line_end or invoice.get("period_end"))

    return None


def projected_status(subscription: Mapping[str, Any]) -> Optional[str]:
    """Local status for a subscription; scheduled cancellations show as canceled."""
    if subscription.get("cancel_at_period_end"):
        return RecordStatus.CANCELED.value
    return subscription.get("status")


def subscription_ended(subscription: Mapping[str, Any]) -> bool:
    """True for a subscription that is over, not merely scheduled to end."""
    return (
        subscription.get("status") in ENDED_SUBSCRIPTION_STATUSES
        and not subscription.get("cancel_at_period_end")
    )


class ReconciliationEngine:
    """Keeps billing records consistent with Stripe."""

    def __init__(
        self,
        gateway: StripeGateway,
        store: BillingStore,
        directory: Directory,
        catalog: PlanCatalog,
    ):
        self.gateway = gateway
        self.store = store
        self.directory = directory
        self.catalog = catalog

    # =========================================================================
    # Customers
    # =========================================================================

    def ensure_customer(self, subject: BillingSubject) -> BillingRecord:
        """
        Return the subject's billing record, creating it on first use.

        The Stripe customer is found by metadata tag, then (individual
        billing only) by email, and created only when neither matches.
        Concurrent first calls may both create a customer; the upsert keeps
        a single record and the last write wins on the customer id.
        """
        existing = self.store.get(subject)
        if existing:
            return existing

        profile = self.directory.get_profile(subject.user_id)
        if not profile or not profile.email:
            raise bad_request("User profile missing an email address.")

        customer = self._find_or_create_customer(subject, profile)

        return self.store.upsert(
            subject,
            {"stripe_customer_id": customer["id"]},
            insert_values={"status": RecordStatus.INACTIVE.value},
        )

    def _find_or_create_customer(self, subject: BillingSubject, profile: Profile) -> Dict[str, Any]:
        customer = None

        try:
            matches = self.gateway.search_customers(subject.customer_search_query, limit=1)
            customer = matches[0] if matches else None
        except stripe.StripeError as e:
            logger.warning(f"Stripe customer search failed for {subject}, falling back: {e}")

        # Team customers are separate from the owner's personal customer
        if customer is None and not subject.is_team:
            matches = self.gateway.list_customers(profile.email, limit=1)
            customer = matches[0] if matches else None

        if customer is not None:
            logger.info(f"Found Stripe customer {customer['id']} for {subject}")
            return customer

        name = profile.name
        if subject.is_team and name:
            name = f"{name} (Team)"

        customer = self.gateway.create_customer(
            email=profile.email,
            name=name,
            metadata=subject.metadata,
        )
        logger.info(f"Created Stripe customer {customer['id']} for {subject}")
        return customer

    # =========================================================================
    # Subscription sync
    # =========================================================================

    def sync_subscription(self, subject: BillingSubject) -> BillingRecord:
        """Refresh the subject's record from Stripe and return it."""
        record = self.ensure_customer(subject)

        subscriptions = self.gateway.list_subscriptions(
            record.stripe_customer_id,
            status="all",
            limit=1,
        )

        if subscriptions:
            subscription = self.gateway.retrieve_subscription(
                subscriptions[0]["id"],
                expand=["latest_invoice", "schedule"],
            )
            # A lifetime purchase outranks a subscription that has already ended
            updates: Dict[str, Any] = {}
            if subscription_ended(subscription):
                updates = self._lifetime_updates(record)
            if updates:
                updates.update({
                    "stripe_subscription_id": None,
                    "cancel_at": None,
                    "current_period_end": None,
                })
            else:
                updates = self.subscription_updates(subscription, record)
        else:
            updates = self._lifetime_updates(record)

        return self.persist_changes(record, updates)

    def subscription_updates(
        self,
        subscription: Mapping[str, Any],
        record: BillingRecord,
    ) -> Dict[str, Any]:
        """Record fields implied by a Stripe subscription."""
        price = first_item_price(subscription)
        metadata = subscription.get("metadata") or {}

        return {
            "stripe_subscription_id": subscription["id"],
            "price_id": price["id"] if price else record.price_id,
            "plan_id": self.catalog.resolve_plan(metadata.get("planId"), price, record.plan_id),
            "status": projected_status(subscription),
            "cancel_at": from_timestamp(subscription.get("cancel_at")),
            "mode": mode_from_price(price),
            "current_period_end": subscription_period_end(subscription),
        }

    def _lifetime_updates(self, record: BillingRecord) -> Dict[str, Any]:
        """Fields for a succeeded one-time lifetime purchase, if the customer has one."""
        intents = self.gateway.list_payment_intents(record.stripe_customer_id, limit=10)

        for intent in intents:
            if intent.get("status") != "succeeded":
                continue
            metadata = intent.get("metadata") or {}
            plan_id = metadata.get("planId")
            if not self.catalog.is_lifetime(plan_id):
                continue
            return {
                "plan_id": plan_id,
                "status": RecordStatus.PAID.value,
                "mode": PlanMode.PAYMENT,
                "price_id": metadata.get("priceId") or record.price_id,
            }

        return {}

    def persist_changes(self, record: BillingRecord, updates: Mapping[str, Any]) -> BillingRecord:
        """Write only the fields that differ from the stored record."""
        changes = {
            field: value
            for field, value in updates.items()
            if getattr(record, field) != value
        }
        if not changes:
            return record

        logger.info(f"Billing record for {record.subject} changed: {sorted(changes)}")
        return self.store.upsert(
            record.subject,
            changes,
            insert_values={"stripe_customer_id": record.stripe_customer_id},
        )
