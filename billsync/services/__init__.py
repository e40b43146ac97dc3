"""billsync Services - Billing Logic"""

from billsync.services.authorization import OwnerPolicy
from billsync.services.billing_service import BillingService, WebhookNotConfiguredError
from billsync.services.checkout_service import CheckoutService
from billsync.services.directory import Directory, InMemoryDirectory, Profile
from billsync.services.plan_catalog import BILLING_PLANS, PlanCatalog, mode_from_price
from billsync.services.reconciliation import ReconciliationEngine
from billsync.services.seat_sync import SeatSynchronizer
from billsync.services.stripe_gateway import StripeGateway

__all__ = [
    "BillingService",
    "WebhookNotConfiguredError",
    "CheckoutService",
    "ReconciliationEngine",
    "SeatSynchronizer",
    "OwnerPolicy",
    "StripeGateway",
    "PlanCatalog",
    "BILLING_PLANS",
    "mode_from_price",
    "Directory",
    "InMemoryDirectory",
    "Profile",
]
