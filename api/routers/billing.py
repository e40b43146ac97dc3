"""
Billing API endpoints.

Individual billing: plans, status, Stripe checkout, customer portal and
subscription changes for the signed-in user.
"""

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_billing_service
from api.supabase.middleware import get_current_user
from api.supabase.models import CurrentUser
from billsync.models import (
    BillingStatusResponse,
    ConfirmCheckoutRequest,
    PlanChangeEstimate,
    PlanId,
    PlanRequest,
    PlansResponse,
    SubscriptionState,
    UrlResponse,
)
from billsync.services import BillingService

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.get("/plans", response_model=PlansResponse)
def list_plans(
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """List individual plans with their live Stripe prices."""
    return service.list_plans()


@router.get("/status", response_model=BillingStatusResponse)
def get_billing_status(
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """
    Get the current billing status.

    Refreshes the stored record from Stripe before returning it. A user
    without any purchase gets status "inactive".
    """
    return service.get_status(current_user.user_id)


@router.post("/checkout", response_model=UrlResponse)
def create_checkout_session(
    request: PlanRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """
    Create a Stripe Checkout session for a plan.

    Returns a URL to redirect the user to Stripe's hosted checkout page.
    """
    return service.create_checkout_session(current_user.user_id, request.plan_id.value)


@router.post("/checkout/confirm", response_model=SubscriptionState)
def confirm_checkout(
    request: ConfirmCheckoutRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """Record the result of a completed checkout session."""
    return service.confirm_checkout(current_user.user_id, request.session_id)


@router.post("/portal", response_model=UrlResponse)
def create_portal_session(
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """
    Create a Stripe Customer Portal session.

    Returns a URL to Stripe's customer portal where the user can manage
    payment methods and invoices.
    """
    return service.create_portal_session(current_user.user_id)


@router.post("/change-plan", response_model=SubscriptionState)
def change_plan(
    request: PlanRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """Move the active subscription to another plan, invoicing the proration now."""
    return service.change_plan(current_user.user_id, request.plan_id.value)


@router.get("/estimate-plan-change", response_model=PlanChangeEstimate)
def estimate_plan_change(
    plan_id: PlanId = Query(..., alias="planId"),
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """Preview the amount a plan change would charge now."""
    return service.estimate_plan_change(current_user.user_id, plan_id.value)


@router.post("/cancel", response_model=SubscriptionState)
def cancel_subscription(
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """Cancel the subscription at the end of the current period."""
    return service.cancel_subscription(current_user.user_id)


@router.post("/resume", response_model=SubscriptionState)
def resume_subscription(
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    return service.resume_subscription(current_user.user_id)
