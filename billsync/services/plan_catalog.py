"""
Plan Catalog

Static registry of billing plans and the resolver that maps Stripe
objects back onto catalog plans.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from billsync.models.billing import BillingPlan, PlanId, PlanMode

logger = logging.getLogger(__name__)


BILLING_PLANS: List[BillingPlan] = [
    BillingPlan(
        id=PlanId.PRO_MONTHLY,
        lookup_key="pro_monthly",
        mode=PlanMode.SUBSCRIPTION,
        name="Monthly",
        tagline="Get unbelievable usage limits",
        highlights=[
            "Get 4x usage for basic models",
            "Get 10x usage for premium models",
            "For trying it out",
        ],
    ),
    BillingPlan(
        id=PlanId.PRO_QUARTERLY,
        lookup_key="pro_quarterly",
        mode=PlanMode.SUBSCRIPTION,
        name="Quarterly",
        tagline="A little commitment, a lot of usage",
        highlights=[
            "Get 4x usage for basic models",
            "Get 10x usage for premium models",
            "Billed every three months",
        ],
    ),
    BillingPlan(
        id=PlanId.PRO_YEARLY,
        lookup_key="pro_yearly",
        mode=PlanMode.SUBSCRIPTION,
        name="Yearly",
        tagline="Incredible deal",
        highlights=[
            "Get 4x usage for basic models",
            "Get 10x usage for premium models",
            "Most cost-effective",
        ],
        badge="Best value",
    ),
    BillingPlan(
        id=PlanId.MAX_LIFETIME,
        lookup_key="max_lifetime",
        mode=PlanMode.PAYMENT,
        name="Lifetime",
        tagline="Pay once, keep Max forever",
        highlights=[
            "Get 10x usage for basic models",
            "Get 20x usage for premium models",
            "One-time payment",
        ],
    ),
    BillingPlan(
        id=PlanId.PRO_TEAM_MONTHLY,
        lookup_key="pro_team_monthly",
        mode=PlanMode.SUBSCRIPTION,
        is_team=True,
        name="Team Monthly",
        tagline="Pro for your whole organization",
        highlights=[
            "Pro limits for every member",
            "Billed per seat",
        ],
    ),
    BillingPlan(
        id=PlanId.PRO_TEAM_YEARLY,
        lookup_key="pro_team_yearly",
        mode=PlanMode.SUBSCRIPTION,
        is_team=True,
        name="Team Yearly",
        tagline="Pro for your whole organization, billed yearly",
        highlights=[
            "Pro limits for every member",
            "Billed per seat",
            "Most cost-effective",
        ],
    ),
]


class PlanCatalog:
    """Lookup over the billing plans, with optional lookup key overrides."""

    def __init__(
        self,
        plans: Iterable[BillingPlan] = BILLING_PLANS,
        lookup_key_overrides: Optional[Mapping[str, str]] = None,
    ):
        overrides = dict(lookup_key_overrides or {})
        self._plans: Dict[str, BillingPlan] = {}
        self._by_lookup_key: Dict[str, BillingPlan] = {}

        for plan in plans:
            if plan.id.value in overrides:
                plan = plan.model_copy(update={"lookup_key": overrides[plan.id.value]})
            if plan.id.value in self._plans:
                raise ValueError(f"Duplicate plan id: {plan.id.value}")
            if plan.lookup_key in self._by_lookup_key:
                raise ValueError(f"Duplicate lookup key: {plan.lookup_key}")
            self._plans[plan.id.value] = plan
            self._by_lookup_key[plan.lookup_key] = plan

        unknown = set(overrides) - set(self._plans)
        if unknown:
            logger.warning(f"Ignoring lookup key overrides for unknown plans: {sorted(unknown)}")

    def all(self) -> List[BillingPlan]:
        return list(self._plans.values())

    def plans(self, team: bool = False) -> List[BillingPlan]:
        """Plans of one billing scope (individual or team)."""
        return [plan for plan in self._plans.values() if plan.is_team == team]

    def find_by_id(self, plan_id: Optional[str]) -> Optional[BillingPlan]:
        if not plan_id:
            return None
        if isinstance(plan_id, PlanId):
            plan_id = plan_id.value
        return self._plans.get(plan_id)

    def find_by_lookup_key(self, lookup_key: Optional[str]) -> Optional[BillingPlan]:
        if not lookup_key:
            return None
        return self._by_lookup_key.get(lookup_key)

    def find_by_price(self, price: Optional[Mapping[str, Any]]) -> Optional[BillingPlan]:
        """Plan bound to a Stripe price, matched on the price lookup key."""
        if not price:
            return None
        return self.find_by_lookup_key(price.get("lookup_key"))

    def is_lifetime(self, plan_id: Optional[str]) -> bool:
        plan = self.find_by_id(plan_id)
        return plan is not None and plan.mode == PlanMode.PAYMENT

    def resolve_plan(
        self,
        metadata_plan_id: Optional[str] = None,
        price: Optional[Mapping[str, Any]] = None,
        previous_plan_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Resolve which plan a Stripe object represents.

        Tried in order: explicit metadata tag, bound price lookup key,
        previously stored plan id. Unrecognized hints fall through.
        """
        plan = self.find_by_id(metadata_plan_id) or self.find_by_price(price)
        if plan:
            return plan.id.value
        return previous_plan_id


def mode_from_price(price: Optional[Mapping[str, Any]]) -> PlanMode:
    """Recurring prices bill as subscriptions, everything else as one-time payments."""
    if not price:
        return PlanMode.SUBSCRIPTION
    return PlanMode.SUBSCRIPTION if price.get("recurring") else PlanMode.PAYMENT
