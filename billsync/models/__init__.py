"""billsync Data Models"""

from billsync.models.billing import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    ENDED_SUBSCRIPTION_STATUSES,
    LIFETIME_LOCK_STATUSES,
    BillingPlan,
    BillingRecord,
    BillingStatusResponse,
    BillingSubject,
    ConfirmCheckoutRequest,
    PlanChangeEstimate,
    PlanId,
    PlanMode,
    PlanRequest,
    PlansResponse,
    PlanSummary,
    RecordStatus,
    SeatSyncResponse,
    SubscriptionState,
    TeamBillingStatusResponse,
    UrlResponse,
)

__all__ = [
    # Plans
    "PlanId", "PlanMode", "BillingPlan",
    # Records
    "RecordStatus", "BillingSubject", "BillingRecord",
    "ACTIVE_SUBSCRIPTION_STATUSES",
    "ENDED_SUBSCRIPTION_STATUSES", "LIFETIME_LOCK_STATUSES",
    # Payloads
    "PlanRequest", "ConfirmCheckoutRequest", "UrlResponse", "PlanSummary", "PlansResponse",
    "SubscriptionState", "BillingStatusResponse", "TeamBillingStatusResponse",
    "PlanChangeEstimate", "SeatSyncResponse",
]
