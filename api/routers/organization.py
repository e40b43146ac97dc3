"""
Organization billing API endpoints.

Team plans billed per seat to an organization. Everything except the
plan listing is restricted to the organization's owner.
"""

from fastapi import APIRouter, Depends

from api.dependencies import get_billing_service
from api.supabase.middleware import get_current_user
from api.supabase.models import CurrentUser
from billsync.models import (
    PlanRequest,
    PlansResponse,
    SeatSyncResponse,
    SubscriptionState,
    TeamBillingStatusResponse,
    UrlResponse,
)
from billsync.services import BillingService

router = APIRouter(prefix="/organizations", tags=["Organization Billing"])


@router.get("/team-plans", response_model=PlansResponse)
def list_team_plans(
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """List team plans with their live Stripe prices."""
    return service.list_team_plans()


@router.get("/{organization_id}/billing", response_model=TeamBillingStatusResponse)
def get_team_billing_status(
    organization_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """Team billing status with the organization's member count."""
    return service.get_team_status(current_user.user_id, organization_id)


@router.post("/{organization_id}/billing/checkout", response_model=UrlResponse)
def create_team_checkout_session(
    organization_id: str,
    request: PlanRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """
    Create a Stripe Checkout session for a team plan.

    The seat quantity is the organization's current member count.
    """
    return service.create_team_checkout_session(
        current_user.user_id,
        organization_id,
        request.plan_id.value,
    )


@router.post("/{organization_id}/billing/portal", response_model=UrlResponse)
def create_team_portal_session(
    organization_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    return service.create_team_portal_session(current_user.user_id, organization_id)


@router.post("/{organization_id}/billing/change-plan", response_model=SubscriptionState)
def change_team_plan(
    organization_id: str,
    request: PlanRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    return service.change_team_plan(current_user.user_id, organization_id, request.plan_id.value)


@router.post("/{organization_id}/billing/cancel", response_model=SubscriptionState)
def cancel_team_subscription(
    organization_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    return service.cancel_team_subscription(current_user.user_id, organization_id)


@router.post("/{organization_id}/billing/resume", response_model=SubscriptionState)
def resume_team_subscription(
    organization_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    return service.resume_team_subscription(current_user.user_id, organization_id)


@router.post("/{organization_id}/billing/sync-seats", response_model=SeatSyncResponse)
def sync_seat_count(
    organization_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service),
):
    """Match the subscription quantity to the current member count."""
    return service.sync_seat_count(current_user.user_id, organization_id)
