"""
Checkout Service

Creates Stripe checkout sessions and applies plan changes, cancellations
and resumptions to existing subscriptions. Every operation re-syncs the
subject first and writes the provider's response back to the store.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

import stripe

from billsync.errors import bad_request, unauthorized
from billsync.models.billing import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    BillingPlan,
    BillingRecord,
    BillingSubject,
    PlanChangeEstimate,
    PlanMode,
    PlanSummary,
    RecordStatus,
    SubscriptionState,
    UrlResponse,
)
from billsync.services.directory import Directory
from billsync.services.plan_catalog import PlanCatalog, mode_from_price
from billsync.services.reconciliation import (
    ReconciliationEngine,
    first_item,
    first_item_price,
    from_timestamp,
    projected_status,
    subscription_period_end,
)
from billsync.services.stripe_gateway import StripeGateway
from billsync.storage.base import BillingStore

logger = logging.getLogger(__name__)

PRORATION_BEHAVIOR = "always_invoice"


def _scope_label(subject: BillingSubject) -> str:
    return "team subscription" if subject.is_team else "subscription"


def _object_id(value: Any) -> Optional[str]:
    """ID of a Stripe field that may be either an ID or an expanded object."""
    if isinstance(value, Mapping):
        return value.get("id")
    return value


class CheckoutService:
    """Checkout and plan-change orchestration for any billing subject."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        gateway: StripeGateway,
        store: BillingStore,
        catalog: PlanCatalog,
        directory: Directory,
        app_url: str = "http://localhost:3000",
    ):
        self.engine = engine
        self.gateway = gateway
        self.store = store
        self.catalog = catalog
        self.directory = directory
        self.app_url = app_url.rstrip("/")

    def settings_url(self, subject: BillingSubject) -> str:
        """Settings page the hosted Stripe pages return to."""
        page = "team" if subject.is_team else "billing"
        return f"{self.app_url}/settings/{page}"

    def member_count(self, organization_id: str) -> int:
        return self.directory.count_members(organization_id) or 1

    # =========================================================================
    # Plans and prices
    # =========================================================================

    def price_for_plan(self, plan: BillingPlan) -> Dict[str, Any]:
        """Active Stripe price bound to a plan's lookup key."""
        prices = self.gateway.list_prices(plan.lookup_key)
        if not prices:
            raise bad_request(
                f"Unable to load {plan.lookup_key} price. "
                f"Configure lookup_key={plan.lookup_key} in Stripe."
            )
        return prices[0]

    def list_plans(self, team: bool = False) -> List[PlanSummary]:
        """Catalog plans of one scope joined with their live prices."""
        summaries = []
        for plan in self.catalog.plans(team=team):
            try:
                price = self.price_for_plan(plan)
            except stripe.StripeError as e:
                logger.error(f"Failed to load price for {plan.lookup_key}: {e}")
                raise bad_request(
                    f"Unable to load {plan.lookup_key} price. "
                    f"Configure lookup_key={plan.lookup_key} in Stripe."
                )

            recurring = price.get("recurring") or {}
            summaries.append(PlanSummary(
                id=plan.id,
                lookup_key=plan.lookup_key,
                name=plan.name,
                tagline=plan.tagline,
                highlights=plan.highlights,
                badge=plan.badge,
                mode=mode_from_price(price),
                is_team_plan=plan.is_team,
                price_id=price["id"],
                amount=price.get("unit_amount"),
                currency=price.get("currency"),
                interval=recurring.get("interval"),
                interval_count=recurring.get("interval_count") or 1,
            ))
        return summaries

    def _require_plan(
        self,
        subject: BillingSubject,
        plan_id: str,
        subscription_only: bool = False,
    ) -> BillingPlan:
        plan = self.catalog.find_by_id(plan_id)
        in_scope = plan is not None and plan.is_team == subject.is_team

        if subscription_only:
            if not in_scope or plan.mode != PlanMode.SUBSCRIPTION:
                if subject.is_team:
                    raise bad_request("Target plan must be a team subscription plan.")
                raise bad_request("Target plan must be a subscription plan.")
        elif not in_scope:
            raise bad_request("Unknown plan.")

        return plan

    @staticmethod
    def _ensure_not_lifetime(record: BillingRecord) -> None:
        if record.holds_lifetime_plan:
            raise bad_request("You already own the lifetime plan. No further plan changes are needed.")

    def _require_subscription(self, record: BillingRecord, message: str) -> str:
        if not record.stripe_subscription_id:
            raise bad_request(message)
        return record.stripe_subscription_id

    # =========================================================================
    # Checkout
    # =========================================================================

    def create_checkout_session(self, subject: BillingSubject, plan_id: str) -> UrlResponse:
        """
        Start a Stripe Checkout session for a plan.

        Subscription plans are refused while a live or cancel-pending
        subscription exists; the user must change or cancel instead.
        """
        plan = self._require_plan(subject, plan_id)

        record = self.engine.sync_subscription(subject)
        self._ensure_not_lifetime(record)

        price = self.price_for_plan(plan)
        mode = mode_from_price(price)

        if mode == PlanMode.SUBSCRIPTION:
            existing = self.gateway.list_subscriptions(record.stripe_customer_id, status="all", limit=10)
            live = [
                sub for sub in existing
                if sub.get("status") in ACTIVE_SUBSCRIPTION_STATUSES or sub.get("cancel_at_period_end")
            ]
            if live:
                owner = "This team already has" if subject.is_team else "You already have"
                raise bad_request(f"{owner} an active subscription. Use Change plan or cancel first.")

        quantity = self.member_count(subject.organization_id) if subject.is_team else 1
        metadata = {**subject.metadata, "planId": plan.id.value}
        return_url = self.settings_url(subject)

        params: Dict[str, Any] = {
            "mode": mode.value,
            "customer": record.stripe_customer_id,
            "client_reference_id": subject.user_id,
            "line_items": [{"price": price["id"], "quantity": quantity}],
            "metadata": metadata,
            "allow_promotion_codes": True,
            "success_url": f"{return_url}?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": return_url,
        }
        if mode == PlanMode.SUBSCRIPTION:
            params["subscription_data"] = {"metadata": metadata}
        else:
            params["payment_intent_data"] = {"metadata": {**metadata, "priceId": price["id"]}}

        session = self.gateway.create_checkout_session(**params)
        logger.info(f"Created checkout session {session['id']} for {subject}, plan {plan.id.value}, quantity {quantity}")

        self.store.upsert(
            subject,
            {
                "plan_id": plan.id.value,
                "price_id": price["id"],
                "status": RecordStatus.PENDING.value,
                "mode": mode,
                "checkout_session_id": session["id"],
            },
            insert_values={"stripe_customer_id": record.stripe_customer_id},
        )

        return UrlResponse(url=session.get("url"))

    def confirm_checkout(self, subject: BillingSubject, session_id: str) -> SubscriptionState:
        """
        Record the outcome of a completed checkout session.

        Idempotent: confirming the same session again rewrites the same
        fields.
        """
        session = self.gateway.retrieve_checkout_session(
            session_id,
            expand=["subscription", "payment_intent", "line_items"],
        )

        reference = session.get("client_reference_id")
        if reference and reference != subject.user_id:
            logger.warning(f"Checkout session {session_id} claimed by {subject}, owned by {reference}")
            raise unauthorized("Session does not belong to the current user.")

        metadata = session.get("metadata") or {}
        if metadata.get("organizationId") != subject.organization_id:
            raise bad_request("Session belongs to a different billing account.")

        record = self.engine.ensure_customer(subject)

        subscription = session.get("subscription")
        if not isinstance(subscription, Mapping):
            subscription = None
        payment_intent = session.get("payment_intent")
        if not isinstance(payment_intent, Mapping):
            payment_intent = None

        line_items = (session.get("line_items") or {}).get("data") or []
        price = line_items[0].get("price") if line_items else None
        if price is None and subscription is not None:
            price = first_item_price(subscription)

        if price:
            mode = mode_from_price(price)
        else:
            mode = PlanMode.PAYMENT if session.get("mode") == "payment" else PlanMode.SUBSCRIPTION

        updates: Dict[str, Any] = {
            "plan_id": self.catalog.resolve_plan(metadata.get("planId"), price, record.plan_id),
            "price_id": price["id"] if price else record.price_id,
            "mode": mode,
            "checkout_session_id": session["id"],
        }

        if subscription is not None:
            updates["stripe_subscription_id"] = subscription["id"]
            updates["status"] = projected_status(subscription)
            updates["current_period_end"] = subscription_period_end(subscription)
        elif payment_intent is not None and payment_intent.get("status") == "succeeded":
            updates["status"] = RecordStatus.PAID.value
            updates["mode"] = PlanMode.PAYMENT
        elif session.get("payment_status") == "paid":
            updates["status"] = RecordStatus.PAID.value

        saved = self.store.upsert(
            subject,
            updates,
            insert_values={"stripe_customer_id": record.stripe_customer_id},
        )
        logger.info(f"Confirmed checkout session {session_id} for {subject}: status={saved.status}")
        return SubscriptionState.from_record(saved)

    def create_portal_session(self, subject: BillingSubject) -> UrlResponse:
        """Stripe billing portal for self-service management."""
        record = self.engine.sync_subscription(subject)
        portal = self.gateway.create_portal_session(
            customer=record.stripe_customer_id,
            return_url=self.settings_url(subject),
        )
        return UrlResponse(url=portal.get("url"))

    # =========================================================================
    # Plan changes
    # =========================================================================

    def change_plan(self, subject: BillingSubject, plan_id: str) -> SubscriptionState:
        """Swap the subscription's price in place, invoicing the proration immediately."""
        plan = self._require_plan(subject, plan_id, subscription_only=True)
        price = self.price_for_plan(plan)
        if mode_from_price(price) != PlanMode.SUBSCRIPTION:
            raise bad_request("Target plan must be a subscription plan.")

        record = self.engine.sync_subscription(subject)
        self._ensure_not_lifetime(record)
        subscription_id = self._require_subscription(
            record,
            f"No active {_scope_label(subject)} found. Start with checkout instead.",
        )

        subscription = self.gateway.retrieve_subscription(subscription_id)
        item = first_item(subscription)
        if not item or not item.get("id"):
            raise bad_request("Subscription has no billable items to update.")

        updated = self.gateway.update_subscription(
            subscription["id"],
            items=[{"id": item["id"], "price": price["id"]}],
            metadata={**subject.metadata, "planId": plan.id.value},
            proration_behavior=PRORATION_BEHAVIOR,
        )
        logger.info(f"Changed {subject} from {record.plan_id} to {plan.id.value}")

        saved = self.store.upsert(
            subject,
            {
                "plan_id": plan.id.value,
                "price_id": price["id"],
                "mode": PlanMode.SUBSCRIPTION,
                "status": projected_status(updated),
                "current_period_end": subscription_period_end(updated),
                "stripe_subscription_id": updated["id"],
            },
            insert_values={"stripe_customer_id": record.stripe_customer_id},
        )
        return SubscriptionState.from_record(saved)

    def estimate_plan_change(self, subject: BillingSubject, plan_id: str) -> PlanChangeEstimate:
        """Preview the invoice a plan change would produce, without applying it."""
        plan = self._require_plan(subject, plan_id, subscription_only=True)
        price = self.price_for_plan(plan)
        if mode_from_price(price) != PlanMode.SUBSCRIPTION:
            raise bad_request("Target plan must be a subscription plan.")

        record = self.engine.sync_subscription(subject)
        subscription_id = self._require_subscription(
            record,
            f"No active {_scope_label(subject)} to estimate against.",
        )

        subscription = self.gateway.retrieve_subscription(subscription_id)
        item = first_item(subscription)
        if not item or not item.get("id"):
            raise bad_request("Subscription has no billable items to estimate.")

        current_price = item.get("price") or {}
        if current_price.get("id") == price["id"]:
            return PlanChangeEstimate(
                amount_due=0,
                currency=current_price.get("currency") or subscription.get("currency"),
            )

        preview = self.gateway.create_invoice_preview(
            customer=_object_id(subscription.get("customer")) or record.stripe_customer_id,
            subscription=subscription["id"],
            subscription_details={
                "items": [{"id": item["id"], "price": price["id"]}],
                "proration_behavior": PRORATION_BEHAVIOR,
            },
        )

        return PlanChangeEstimate(
            amount_due=preview.get("amount_due") or 0,
            currency=preview.get("currency") or current_price.get("currency"),
            next_payment_attempt=from_timestamp(preview.get("next_payment_attempt")),
        )

    # =========================================================================
    # Cancel / resume
    # =========================================================================

    def cancel_subscription(self, subject: BillingSubject) -> SubscriptionState:
        """Cancel at period end; the subscription stays live until then."""
        record = self.engine.sync_subscription(subject)
        subscription_id = self._require_subscription(
            record,
            f"No active {_scope_label(subject)} to cancel.",
        )

        canceled = self.gateway.update_subscription(subscription_id, cancel_at_period_end=True)
        logger.info(f"Scheduled cancellation of {subscription_id} for {subject}")

        saved = self.store.upsert(
            subject,
            {
                "stripe_subscription_id": subscription_id,
                "status": projected_status(canceled),
                "cancel_at": from_timestamp(canceled.get("cancel_at")),
                "current_period_end": subscription_period_end(canceled) or record.current_period_end,
            },
            insert_values={"stripe_customer_id": record.stripe_customer_id},
        )
        return SubscriptionState.from_record(saved)

    def resume_subscription(self, subject: BillingSubject) -> SubscriptionState:
        """Undo a scheduled cancellation."""
        record = self.engine.sync_subscription(subject)
        subscription_id = self._require_subscription(
            record,
            f"No {_scope_label(subject)} to resume.",
        )

        resumed = self.gateway.update_subscription(subscription_id, cancel_at_period_end=False)
        logger.info(f"Resumed {subscription_id} for {subject}")

        price = first_item_price(resumed)
        metadata = resumed.get("metadata") or {}

        saved = self.store.upsert(
            subject,
            {
                "stripe_subscription_id": resumed["id"],
                "status": projected_status(resumed),
                "cancel_at": from_timestamp(resumed.get("cancel_at")),
                "current_period_end": subscription_period_end(resumed),
                "price_id": price["id"] if price else record.price_id,
                "plan_id": self.catalog.resolve_plan(metadata.get("planId"), price, record.plan_id),
                "mode": mode_from_price(price),
            },
            insert_values={"stripe_customer_id": record.stripe_customer_id},
        )
        return SubscriptionState.from_record(saved)
