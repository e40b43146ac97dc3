"""
Billing Service

Entry point for individual billing, team billing and Stripe webhooks.
Wires the reconciliation engine, checkout service and seat synchronizer
together and applies the billing-enabled gate and owner policy.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from billsync.errors import PRECONDITION_FAILED, BillingError
from billsync.models.billing import (
    BillingRecord,
    BillingStatusResponse,
    BillingSubject,
    PlanChangeEstimate,
    PlansResponse,
    RecordStatus,
    SeatSyncResponse,
    SubscriptionState,
    TeamBillingStatusResponse,
    UrlResponse,
)
from billsync.services.authorization import OwnerPolicy
from billsync.services.checkout_service import CheckoutService
from billsync.services.directory import Directory
from billsync.services.plan_catalog import PlanCatalog
from billsync.services.reconciliation import ReconciliationEngine
from billsync.services.seat_sync import SeatSynchronizer
from billsync.services.stripe_gateway import StripeGateway
from billsync.storage.base import BillingStore

logger = logging.getLogger(__name__)

SUBSCRIPTION_SYNC_EVENTS = (
    "customer.subscription.created",
    "customer.subscription.updated",
    "checkout.session.completed",
)


class WebhookNotConfiguredError(Exception):
    """Raised when a webhook arrives but no signing secret is configured."""


class BillingService:
    """Service for managing Stripe billing and subscriptions."""

    def __init__(
        self,
        gateway: StripeGateway,
        store: BillingStore,
        directory: Directory,
        catalog: Optional[PlanCatalog] = None,
        app_url: str = "http://localhost:3000",
        webhook_secret: Optional[str] = None,
        enabled: bool = True,
    ):
        self.gateway = gateway
        self.store = store
        self.directory = directory
        self.catalog = catalog or PlanCatalog()
        self.webhook_secret = webhook_secret
        self.enabled = enabled

        self.engine = ReconciliationEngine(gateway, store, directory, self.catalog)
        self.checkout = CheckoutService(
            self.engine,
            gateway,
            store,
            self.catalog,
            directory,
            app_url=app_url,
        )
        self.seats = SeatSynchronizer(gateway, store, directory)
        self.policy = OwnerPolicy(directory)

    def _ensure_enabled(self) -> None:
        if not self.enabled:
            raise BillingError(PRECONDITION_FAILED, "Billing is disabled.")

    def _individual(self, user_id: str) -> BillingSubject:
        self._ensure_enabled()
        return BillingSubject(user_id=user_id)

    def _team(self, user_id: str, organization_id: str) -> BillingSubject:
        self._ensure_enabled()
        subject = BillingSubject(user_id=user_id, organization_id=organization_id)
        self.policy.authorize(subject)
        return subject

    # =========================================================================
    # Individual billing
    # =========================================================================

    def list_plans(self) -> PlansResponse:
        self._ensure_enabled()
        return PlansResponse(plans=self.checkout.list_plans(team=False))

    def get_status(self, user_id: str) -> BillingStatusResponse:
        """Current billing status, refreshed from Stripe."""
        record = self.engine.sync_subscription(self._individual(user_id))
        return BillingStatusResponse.from_record(record)

    def create_checkout_session(self, user_id: str, plan_id: str) -> UrlResponse:
        return self.checkout.create_checkout_session(self._individual(user_id), plan_id)

    def confirm_checkout(self, user_id: str, session_id: str) -> SubscriptionState:
        return self.checkout.confirm_checkout(self._individual(user_id), session_id)

    def create_portal_session(self, user_id: str) -> UrlResponse:
        return self.checkout.create_portal_session(self._individual(user_id))

    def change_plan(self, user_id: str, plan_id: str) -> SubscriptionState:
        return self.checkout.change_plan(self._individual(user_id), plan_id)

    def estimate_plan_change(self, user_id: str, plan_id: str) -> PlanChangeEstimate:
        return self.checkout.estimate_plan_change(self._individual(user_id), plan_id)

    def cancel_subscription(self, user_id: str) -> SubscriptionState:
        return self.checkout.cancel_subscription(self._individual(user_id))

    def resume_subscription(self, user_id: str) -> SubscriptionState:
        return self.checkout.resume_subscription(self._individual(user_id))

    # =========================================================================
    # Team billing (organization owners only)
    # =========================================================================

    def list_team_plans(self) -> PlansResponse:
        self._ensure_enabled()
        return PlansResponse(plans=self.checkout.list_plans(team=True))

    def get_team_status(self, user_id: str, organization_id: str) -> TeamBillingStatusResponse:
        """Team billing status plus the current member count."""
        subject = self._team(user_id, organization_id)
        record = self.engine.sync_subscription(subject)
        status = BillingStatusResponse.from_record(record)
        return TeamBillingStatusResponse(
            **status.model_dump(),
            member_count=self.directory.count_members(organization_id),
        )

    def create_team_checkout_session(self, user_id: str, organization_id: str, plan_id: str) -> UrlResponse:
        return self.checkout.create_checkout_session(self._team(user_id, organization_id), plan_id)

    def create_team_portal_session(self, user_id: str, organization_id: str) -> UrlResponse:
        return self.checkout.create_portal_session(self._team(user_id, organization_id))

    def change_team_plan(self, user_id: str, organization_id: str, plan_id: str) -> SubscriptionState:
        return self.checkout.change_plan(self._team(user_id, organization_id), plan_id)

    def cancel_team_subscription(self, user_id: str, organization_id: str) -> SubscriptionState:
        return self.checkout.cancel_subscription(self._team(user_id, organization_id))

    def resume_team_subscription(self, user_id: str, organization_id: str) -> SubscriptionState:
        return self.checkout.resume_subscription(self._team(user_id, organization_id))

    def sync_seat_count(self, user_id: str, organization_id: str) -> SeatSyncResponse:
        self.seats.sync_seat_count(self._team(user_id, organization_id))
        return SeatSyncResponse(success=True)

    # =========================================================================
    # Webhooks
    # =========================================================================

    def verify_webhook_signature(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Verify Stripe webhook signature and return the event.

        Raises: WebhookNotConfiguredError if no secret is set,
                ValueError if the signature is invalid
        """
        if not self.webhook_secret:
            raise WebhookNotConfiguredError("Webhook secret is not configured")
        return self.gateway.construct_event(payload, signature, self.webhook_secret)

    def handle_webhook_event(self, event: Mapping[str, Any]) -> None:
        """
        Handle a Stripe webhook event.

        The event only identifies who changed; state is always re-read from
        Stripe through a sync.
        """
        event_type = event.get("type", "")
        data = (event.get("data") or {}).get("object") or {}

        logger.info(f"Processing webhook event: {event_type}")

        if event_type in SUBSCRIPTION_SYNC_EVENTS:
            subject = self._resolve_subject(data)
            if subject is None:
                return
            record = self.engine.sync_subscription(subject)
            logger.info(f"Webhook sync for {subject}: plan={record.plan_id}, status={record.status}")
        elif event_type == "customer.subscription.deleted":
            self._handle_subscription_deleted(data)
        else:
            logger.info(f"Unhandled webhook event type: {event_type}")

    def _resolve_subject(self, data: Mapping[str, Any]) -> Optional[BillingSubject]:
        """Subject named by event metadata, else the record holding the customer."""
        metadata = data.get("metadata") or {}
        user_id = metadata.get("userId")
        if user_id:
            return BillingSubject(user_id=user_id, organization_id=metadata.get("organizationId") or None)

        customer_id = data.get("customer")
        record = self.store.find_by_customer(customer_id) if customer_id else None
        if record is None:
            logger.warning(f"No billing record found for Stripe customer {customer_id}")
            return None
        return record.subject

    def _handle_subscription_deleted(self, subscription: Mapping[str, Any]) -> None:
        """Reset the subject's record once its subscription is gone."""
        subject = self._resolve_subject(subscription)
        if subject is None:
            return

        record: Optional[BillingRecord] = self.store.get(subject)
        if record is None:
            logger.warning(f"No billing record for {subject}, ignoring subscription deletion")
            return

        # A newer subscription may already be bound to the record
        if record.stripe_subscription_id not in (None, subscription.get("id")):
            logger.info(
                f"Ignoring deletion of {subscription.get('id')} for {subject}; "
                f"record holds {record.stripe_subscription_id}"
            )
            return

        if record.holds_lifetime_plan:
            logger.info(f"Ignoring deletion of {subscription.get('id')} for {subject}; lifetime plan owned")
            return

        self.store.upsert(subject, {
            "stripe_subscription_id": None,
            "plan_id": None,
            "price_id": None,
            "status": RecordStatus.INACTIVE.value,
            "mode": None,
            "cancel_at": None,
            "current_period_end": None,
        }, insert_values={"stripe_customer_id": record.stripe_customer_id})
        logger.info(f"Subscription {subscription.get('id')} deleted, reset billing for {subject}")
