"""
Billing Models

Plans, billing subjects, the locally cached billing record and the
payloads returned by the billing procedures.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PlanMode(str, Enum):
    """How a plan is charged."""
    SUBSCRIPTION = "subscription"
    PAYMENT = "payment"


class PlanId(str, Enum):
    """Billing plan identifiers."""
    PRO_MONTHLY = "pro-monthly"
    PRO_QUARTERLY = "pro-quarterly"
    PRO_YEARLY = "pro-yearly"
    MAX_LIFETIME = "max-lifetime"
    PRO_TEAM_MONTHLY = "pro-team-monthly"
    PRO_TEAM_YEARLY = "pro-team-yearly"


class RecordStatus(str, Enum):
    """Status values stored on a billing record.

    Provider subscription statuses are stored verbatim; the local-only
    values are INACTIVE, PENDING and PAID.
    """
    INACTIVE = "inactive"
    PENDING = "pending"
    PAID = "paid"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    UNPAID = "unpaid"
    PAUSED = "paused"
    CANCELED = "canceled"


# Provider statuses that count as a live subscription for duplicate checks
ACTIVE_SUBSCRIPTION_STATUSES = frozenset({
    RecordStatus.TRIALING.value,
    RecordStatus.ACTIVE.value,
    RecordStatus.PAST_DUE.value,
    RecordStatus.INCOMPLETE.value,
    RecordStatus.UNPAID.value,
})

# Provider statuses of a subscription that no longer grants access
ENDED_SUBSCRIPTION_STATUSES = frozenset({
    RecordStatus.CANCELED.value,
    RecordStatus.INCOMPLETE_EXPIRED.value,
})

# Statuses under which a lifetime purchase locks the record
LIFETIME_LOCK_STATUSES = frozenset({RecordStatus.PAID.value, RecordStatus.ACTIVE.value})


class BillingPlan(BaseModel):
    """Static billing plan definition."""
    model_config = ConfigDict(frozen=True)

    id: PlanId = Field(..., description="Plan identifier")
    lookup_key: str = Field(..., description="Stripe price lookup key")
    mode: PlanMode = Field(..., description="Subscription or one-time payment")
    is_team: bool = Field(default=False, description="Billed per organization seat")
    name: str = Field(..., description="Display name")
    tagline: str = Field(default="", description="Short marketing line")
    highlights: List[str] = Field(default_factory=list)
    badge: Optional[str] = None


@dataclass(frozen=True)
class BillingSubject:
    """The principal a billing record belongs to: a user, or a user acting for an organization."""

    user_id: str
    organization_id: Optional[str] = None

    @property
    def is_team(self) -> bool:
        return self.organization_id is not None

    @property
    def metadata(self) -> Dict[str, str]:
        """Metadata attached to Stripe objects created for this subject."""
        data = {"userId": self.user_id}
        if self.organization_id is not None:
            data["organizationId"] = self.organization_id
        return data

    @property
    def customer_search_query(self) -> str:
        """Stripe customer search query matching this subject's metadata tag."""
        if self.organization_id is not None:
            return f"metadata['organizationId']:'{self.organization_id}'"
        return f"metadata['userId']:'{self.user_id}'"

    def __str__(self) -> str:
        if self.organization_id is not None:
            return f"user={self.user_id} org={self.organization_id}"
        return f"user={self.user_id}"


class BillingRecord(BaseModel):
    """Locally cached projection of a subject's billing state at Stripe."""
    user_id: str = Field(..., description="Owning user ID")
    organization_id: Optional[str] = Field(None, description="Organization ID for team billing")
    stripe_customer_id: str = Field(..., description="Stripe Customer ID")
    stripe_subscription_id: Optional[str] = Field(None, description="Stripe Subscription ID")
    plan_id: Optional[str] = Field(None, description="Resolved billing plan")
    price_id: Optional[str] = Field(None, description="Stripe Price currently bound")
    status: Optional[str] = Field(default=RecordStatus.INACTIVE.value, description="Billing status")
    mode: Optional[PlanMode] = Field(default=PlanMode.SUBSCRIPTION)
    cancel_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    checkout_session_id: Optional[str] = Field(None, description="Last checkout session initiated")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def subject(self) -> BillingSubject:
        return BillingSubject(user_id=self.user_id, organization_id=self.organization_id)

    @property
    def holds_lifetime_plan(self) -> bool:
        """True when a lifetime purchase locks the record against plan changes."""
        return (
            self.plan_id == PlanId.MAX_LIFETIME.value
            and self.status in LIFETIME_LOCK_STATUSES
        )


# =============================================================================
# Procedure payloads
# =============================================================================

class CamelModel(BaseModel):
    """Payload model serialized with camelCase field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlanRequest(CamelModel):
    plan_id: PlanId


class ConfirmCheckoutRequest(CamelModel):
    session_id: str = Field(..., min_length=1)


class UrlResponse(CamelModel):
    """Hosted Stripe page to redirect the user to."""
    url: Optional[str] = None


class PlanSummary(CamelModel):
    """Catalog plan joined with its live Stripe price."""
    id: PlanId
    lookup_key: str
    name: str
    tagline: str = ""
    highlights: List[str] = Field(default_factory=list)
    badge: Optional[str] = None
    mode: PlanMode
    is_team_plan: bool = False
    price_id: str
    amount: Optional[int] = Field(None, description="Unit amount in the smallest currency unit")
    currency: Optional[str] = None
    interval: Optional[str] = None
    interval_count: int = 1


class PlansResponse(CamelModel):
    plans: List[PlanSummary]


class SubscriptionState(CamelModel):
    """Projected state returned by mutating procedures."""
    plan_id: Optional[str] = None
    status: Optional[str] = None
    mode: Optional[PlanMode] = None
    current_period_end: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: BillingRecord) -> "SubscriptionState":
        return cls(
            plan_id=record.plan_id,
            status=record.status,
            mode=record.mode,
            current_period_end=record.current_period_end,
        )


class BillingStatusResponse(SubscriptionState):
    """Full billing status of a subject."""
    cancel_at: Optional[datetime] = None
    price_id: Optional[str] = None
    stripe_customer_id: str

    @classmethod
    def from_record(cls, record: BillingRecord) -> "BillingStatusResponse":
        return cls(
            plan_id=record.plan_id,
            status=record.status,
            mode=record.mode,
            current_period_end=record.current_period_end,
            cancel_at=record.cancel_at,
            price_id=record.price_id,
            stripe_customer_id=record.stripe_customer_id,
        )


class TeamBillingStatusResponse(BillingStatusResponse):
    member_count: int


class PlanChangeEstimate(CamelModel):
    amount_due: int = 0
    currency: Optional[str] = None
    next_payment_attempt: Optional[datetime] = None


class SeatSyncResponse(CamelModel):
    success: bool = True
