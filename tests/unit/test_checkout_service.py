"""Tests for individual checkout, plan changes, cancellation and resumption."""

from datetime import datetime, timezone

import pytest
import stripe

from billsync.errors import BAD_REQUEST, PRECONDITION_FAILED, UNAUTHORIZED, BillingError
from billsync.models import BillingSubject, PlanMode
from tests.conftest import OUTSIDER_ID, OWNER_ID, PERIOD_END

OWNER = BillingSubject(user_id=OWNER_ID)
PERIOD_END_AT = datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)


def session_id_from(url: str) -> str:
    return url.rsplit("/", 1)[-1]


@pytest.fixture
def subscriber(billing_service, fake_gateway):
    """Owner with an active pro-monthly subscription."""
    customer_id = billing_service.engine.ensure_customer(OWNER).stripe_customer_id
    return fake_gateway.add_subscription(
        customer_id,
        "pro_monthly",
        metadata={"userId": OWNER_ID, "planId": "pro-monthly"},
    )


def assert_billing_error(exc_info, code, message=None):
    assert exc_info.value.code == code
    if message is not None:
        assert exc_info.value.message == message


# =============================================================================
# Plans and status
# =============================================================================

def test_list_plans_includes_live_prices(billing_service):
    plans = billing_service.list_plans().plans

    assert [plan.id.value for plan in plans] == ["pro-monthly", "pro-quarterly", "pro-yearly", "max-lifetime"]
    quarterly = plans[1]
    assert quarterly.price_id == "price_pro_quarterly"
    assert quarterly.amount == 5400
    assert quarterly.interval == "month"
    assert quarterly.interval_count == 3
    assert plans[3].mode == PlanMode.PAYMENT
    assert plans[3].interval is None


def test_list_plans_missing_price(billing_service, fake_gateway):
    del fake_gateway.prices["pro_quarterly"]

    with pytest.raises(BillingError) as exc_info:
        billing_service.list_plans()

    assert_billing_error(exc_info, BAD_REQUEST)
    assert "Configure lookup_key=pro_quarterly in Stripe." in exc_info.value.message


def test_list_plans_wraps_stripe_errors(billing_service, fake_gateway):
    fake_gateway.price_error = stripe.InvalidRequestError("No such price", "lookup_keys")

    with pytest.raises(BillingError) as exc_info:
        billing_service.list_plans()

    assert_billing_error(exc_info, BAD_REQUEST)
    assert "Configure lookup_key=pro_monthly in Stripe." in exc_info.value.message


def test_status_for_new_user(billing_service, fake_gateway, store):
    status = billing_service.get_status(OWNER_ID)

    assert status.plan_id is None
    assert status.status == "inactive"
    assert status.stripe_customer_id in fake_gateway.customers
    assert store.get(OWNER).status == "inactive"


def test_disabled_billing_rejects_procedures(billing_service):
    billing_service.enabled = False

    for call in (
        lambda: billing_service.list_plans(),
        lambda: billing_service.get_status(OWNER_ID),
        lambda: billing_service.create_checkout_session(OWNER_ID, "pro-monthly"),
        lambda: billing_service.cancel_subscription(OWNER_ID),
    ):
        with pytest.raises(BillingError) as exc_info:
            call()
        assert_billing_error(exc_info, PRECONDITION_FAILED, "Billing is disabled.")


# =============================================================================
# Checkout
# =============================================================================

def test_checkout_then_confirm(billing_service, fake_gateway, store):
    response = billing_service.create_checkout_session(OWNER_ID, "pro-monthly")
    session_id = session_id_from(response.url)

    pending = store.get(OWNER)
    assert pending.status == "pending"
    assert pending.plan_id == "pro-monthly"
    assert pending.price_id == "price_pro_monthly"
    assert pending.checkout_session_id == session_id

    params = fake_gateway.calls_to("create_checkout_session")[0]
    metadata = {"userId": OWNER_ID, "planId": "pro-monthly"}
    assert params["mode"] == "subscription"
    assert params["customer"] == pending.stripe_customer_id
    assert params["client_reference_id"] == OWNER_ID
    assert params["line_items"] == [{"price": "price_pro_monthly", "quantity": 1}]
    assert params["metadata"] == metadata
    assert params["subscription_data"] == {"metadata": metadata}
    assert params["allow_promotion_codes"] is True
    assert params["success_url"] == "https://app.example.com/settings/billing?session_id={CHECKOUT_SESSION_ID}"
    assert params["cancel_url"] == "https://app.example.com/settings/billing"

    fake_gateway.complete_session(session_id)
    state = billing_service.confirm_checkout(OWNER_ID, session_id)

    assert state.plan_id == "pro-monthly"
    assert state.status == "active"
    assert state.mode == PlanMode.SUBSCRIPTION
    assert state.current_period_end == PERIOD_END_AT

    # Confirming twice is harmless
    assert billing_service.confirm_checkout(OWNER_ID, session_id) == state


def test_lifetime_checkout(billing_service, fake_gateway):
    response = billing_service.create_checkout_session(OWNER_ID, "max-lifetime")
    session_id = session_id_from(response.url)

    params = fake_gateway.calls_to("create_checkout_session")[0]
    assert params["mode"] == "payment"
    assert "subscription_data" not in params
    assert params["payment_intent_data"]["metadata"] == {
        "userId": OWNER_ID,
        "planId": "max-lifetime",
        "priceId": "price_max_lifetime",
    }

    fake_gateway.complete_session(session_id)
    state = billing_service.confirm_checkout(OWNER_ID, session_id)

    assert state.plan_id == "max-lifetime"
    assert state.status == "paid"
    assert state.mode == PlanMode.PAYMENT


def test_lifetime_owner_cannot_buy_or_change(billing_service, fake_gateway):
    customer_id = billing_service.engine.ensure_customer(OWNER).stripe_customer_id
    fake_gateway.add_payment_intent(customer_id)

    for call in (
        lambda: billing_service.create_checkout_session(OWNER_ID, "pro-monthly"),
        lambda: billing_service.create_checkout_session(OWNER_ID, "max-lifetime"),
        lambda: billing_service.change_plan(OWNER_ID, "pro-yearly"),
    ):
        with pytest.raises(BillingError) as exc_info:
            call()
        assert_billing_error(exc_info, BAD_REQUEST)

    assert fake_gateway.calls_to("create_checkout_session") == []


def test_lifetime_survives_an_ended_subscription(billing_service, fake_gateway, store):
    customer_id = billing_service.engine.ensure_customer(OWNER).stripe_customer_id
    fake_gateway.add_subscription(customer_id, "pro_monthly", status="canceled")

    response = billing_service.create_checkout_session(OWNER_ID, "max-lifetime")
    session_id = session_id_from(response.url)
    fake_gateway.complete_session(session_id)
    assert billing_service.confirm_checkout(OWNER_ID, session_id).plan_id == "max-lifetime"

    status = billing_service.get_status(OWNER_ID)
    assert status.plan_id == "max-lifetime"
    assert status.status == "paid"
    assert store.get(OWNER).holds_lifetime_plan

    with pytest.raises(BillingError) as exc_info:
        billing_service.create_checkout_session(OWNER_ID, "max-lifetime")
    assert_billing_error(exc_info, BAD_REQUEST)
    assert len(fake_gateway.calls_to("create_checkout_session")) == 1


@pytest.mark.parametrize("status,cancel_at_period_end", [
    ("active", False),
    ("trialing", False),
    ("past_due", False),
    ("incomplete", False),
    ("unpaid", False),
    ("active", True),
])
def test_no_double_subscription(billing_service, fake_gateway, status, cancel_at_period_end):
    customer_id = billing_service.engine.ensure_customer(OWNER).stripe_customer_id
    fake_gateway.add_subscription(customer_id, status=status, cancel_at_period_end=cancel_at_period_end)

    with pytest.raises(BillingError) as exc_info:
        billing_service.create_checkout_session(OWNER_ID, "pro-yearly")

    assert_billing_error(
        exc_info,
        BAD_REQUEST,
        "You already have an active subscription. Use Change plan or cancel first.",
    )
    assert fake_gateway.calls_to("create_checkout_session") == []


def test_checkout_after_ended_subscription(billing_service, fake_gateway):
    customer_id = billing_service.engine.ensure_customer(OWNER).stripe_customer_id
    fake_gateway.add_subscription(customer_id, status="canceled")

    response = billing_service.create_checkout_session(OWNER_ID, "pro-yearly")

    assert response.url.startswith("https://checkout.stripe.test/")


@pytest.mark.parametrize("plan_id", ["pro-team-monthly", "enterprise"])
def test_checkout_rejects_plans_outside_scope(billing_service, plan_id):
    with pytest.raises(BillingError) as exc_info:
        billing_service.create_checkout_session(OWNER_ID, plan_id)

    assert_billing_error(exc_info, BAD_REQUEST, "Unknown plan.")


def test_confirm_rejects_foreign_session(billing_service, fake_gateway):
    response = billing_service.create_checkout_session(OWNER_ID, "pro-monthly")
    session_id = session_id_from(response.url)
    fake_gateway.complete_session(session_id)

    with pytest.raises(BillingError) as exc_info:
        billing_service.confirm_checkout(OUTSIDER_ID, session_id)

    assert_billing_error(exc_info, UNAUTHORIZED, "Session does not belong to the current user.")


def test_confirm_keeps_existing_customer(billing_service, fake_gateway, store):
    response = billing_service.create_checkout_session(OWNER_ID, "pro-monthly")
    session_id = session_id_from(response.url)
    customer_id = store.get(OWNER).stripe_customer_id
    fake_gateway.complete_session(session_id)
    fake_gateway.sessions[session_id]["customer"] = "cus_elsewhere"

    billing_service.confirm_checkout(OWNER_ID, session_id)

    assert store.get(OWNER).stripe_customer_id == customer_id


# =============================================================================
# Plan changes
# =============================================================================

def test_change_plan_swaps_price(billing_service, fake_gateway, store, subscriber):
    state = billing_service.change_plan(OWNER_ID, "pro-yearly")

    assert state.plan_id == "pro-yearly"
    assert state.status == "active"
    assert state.current_period_end == PERIOD_END_AT
    assert store.get(OWNER).price_id == "price_pro_yearly"

    update = fake_gateway.calls_to("update_subscription")[0]
    item_id = subscriber["items"]["data"][0]["id"]
    assert update["subscription_id"] == subscriber["id"]
    assert update["items"] == [{"id": item_id, "price": "price_pro_yearly"}]
    assert update["metadata"] == {"userId": OWNER_ID, "planId": "pro-yearly"}
    assert update["proration_behavior"] == "always_invoice"

    price = fake_gateway.subscriptions[subscriber["id"]]["items"]["data"][0]["price"]
    assert price["id"] == "price_pro_yearly"


def test_change_plan_keeps_provider_status(billing_service, fake_gateway, subscriber):
    fake_gateway.subscriptions[subscriber["id"]]["status"] = "past_due"

    assert billing_service.change_plan(OWNER_ID, "pro-quarterly").status == "past_due"


def test_change_plan_requires_subscription_plan(billing_service, subscriber):
    with pytest.raises(BillingError) as exc_info:
        billing_service.change_plan(OWNER_ID, "max-lifetime")

    assert_billing_error(exc_info, BAD_REQUEST, "Target plan must be a subscription plan.")


def test_change_plan_without_subscription(billing_service):
    with pytest.raises(BillingError) as exc_info:
        billing_service.change_plan(OWNER_ID, "pro-yearly")

    assert_billing_error(exc_info, BAD_REQUEST, "No active subscription found. Start with checkout instead.")


def test_estimate_same_price_skips_preview(billing_service, fake_gateway, subscriber):
    estimate = billing_service.estimate_plan_change(OWNER_ID, "pro-monthly")

    assert estimate.amount_due == 0
    assert estimate.currency == "usd"
    assert fake_gateway.calls_to("create_invoice_preview") == []


def test_estimate_previews_swap(billing_service, fake_gateway, subscriber):
    estimate = billing_service.estimate_plan_change(OWNER_ID, "pro-yearly")

    assert estimate.amount_due == 1733
    assert estimate.next_payment_attempt == PERIOD_END_AT

    preview = fake_gateway.calls_to("create_invoice_preview")[0]
    assert preview["subscription"] == subscriber["id"]
    assert preview["subscription_details"] == {
        "items": [{"id": subscriber["items"]["data"][0]["id"], "price": "price_pro_yearly"}],
        "proration_behavior": "always_invoice",
    }
    # Nothing was changed
    assert fake_gateway.calls_to("update_subscription") == []


# =============================================================================
# Cancel / resume / portal
# =============================================================================

def test_cancel_keeps_period_end(billing_service, fake_gateway, store, subscriber):
    state = billing_service.cancel_subscription(OWNER_ID)

    assert state.status == "canceled"
    assert state.current_period_end == PERIOD_END_AT
    assert store.get(OWNER).cancel_at == PERIOD_END_AT
    assert fake_gateway.subscriptions[subscriber["id"]]["cancel_at_period_end"] is True


def test_resume_after_cancel(billing_service, store, subscriber):
    billing_service.cancel_subscription(OWNER_ID)
    state = billing_service.resume_subscription(OWNER_ID)

    assert state.status == "active"
    assert state.plan_id == "pro-monthly"
    assert store.get(OWNER).cancel_at is None


def test_cancel_without_subscription(billing_service):
    with pytest.raises(BillingError) as exc_info:
        billing_service.cancel_subscription(OWNER_ID)

    assert_billing_error(exc_info, BAD_REQUEST, "No active subscription to cancel.")


def test_portal_session(billing_service, fake_gateway):
    response = billing_service.create_portal_session(OWNER_ID)
    customer_id = billing_service.store.get(OWNER).stripe_customer_id

    assert response.url == f"https://billing.stripe.test/{customer_id}"
    assert fake_gateway.calls_to("create_portal_session") == [
        {"customer": customer_id, "return_url": "https://app.example.com/settings/billing"}
    ]
