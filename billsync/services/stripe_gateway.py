"""
Stripe Gateway

Thin wrapper over the Stripe SDK. Every call is a synchronous request to
Stripe; results come back as plain dicts so the billing services never
depend on SDK object types. Stripe errors are not caught here.
"""

import logging
from typing import Any, Dict, List, Optional

import stripe

logger = logging.getLogger(__name__)


def _to_dict(obj: Any) -> Optional[Dict[str, Any]]:
    if obj is None:
        return None
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    return obj.to_dict()


def _data(result: Any) -> List[Dict[str, Any]]:
    return [_to_dict(item) for item in (result.data or [])]


class StripeGateway:
    """Payment provider gateway backed by the Stripe API."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key
        if api_key:
            stripe.api_key = api_key

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    # =========================================================================
    # Customers
    # =========================================================================

    def search_customers(self, query: str, limit: int = 1) -> List[Dict[str, Any]]:
        return _data(stripe.Customer.search(query=query, limit=limit))

    def list_customers(self, email: str, limit: int = 1) -> List[Dict[str, Any]]:
        return _data(stripe.Customer.list(email=email, limit=limit))

    def create_customer(
        self,
        email: str,
        name: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"email": email, "metadata": metadata or {}}
        if name:
            params["name"] = name
        customer = stripe.Customer.create(**params)
        logger.info(f"Created Stripe customer {customer.id}")
        return _to_dict(customer)

    # =========================================================================
    # Subscriptions and payments
    # =========================================================================

    def list_subscriptions(
        self,
        customer: str,
        status: str = "all",
        limit: int = 1,
    ) -> List[Dict[str, Any]]:
        return _data(stripe.Subscription.list(customer=customer, status=status, limit=limit))

    def retrieve_subscription(
        self,
        subscription_id: str,
        expand: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if expand:
            params["expand"] = expand
        return _to_dict(stripe.Subscription.retrieve(subscription_id, **params))

    def update_subscription(self, subscription_id: str, **params: Any) -> Dict[str, Any]:
        return _to_dict(stripe.Subscription.modify(subscription_id, **params))

    def list_payment_intents(self, customer: str, limit: int = 10) -> List[Dict[str, Any]]:
        return _data(stripe.PaymentIntent.list(customer=customer, limit=limit))

    def list_prices(self, lookup_key: str) -> List[Dict[str, Any]]:
        return _data(stripe.Price.list(lookup_keys=[lookup_key], active=True, limit=1))

    def create_invoice_preview(self, **params: Any) -> Dict[str, Any]:
        return _to_dict(stripe.Invoice.create_preview(**params))

    # =========================================================================
    # Hosted sessions
    # =========================================================================

    def create_checkout_session(self, **params: Any) -> Dict[str, Any]:
        return _to_dict(stripe.checkout.Session.create(**params))

    def retrieve_checkout_session(
        self,
        session_id: str,
        expand: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if expand:
            params["expand"] = expand
        return _to_dict(stripe.checkout.Session.retrieve(session_id, **params))

    def create_portal_session(self, customer: str, return_url: str) -> Dict[str, Any]:
        return _to_dict(stripe.billing_portal.Session.create(customer=customer, return_url=return_url))

    # =========================================================================
    # Webhooks
    # =========================================================================

    def construct_event(self, payload: bytes, signature: str, secret: str) -> Dict[str, Any]:
        """
        Verify a webhook signature and return the event.

        Raises: ValueError if the signature or payload is invalid
        """
        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            logger.error(f"Webhook signature verification failed: {e}")
            raise ValueError("Invalid webhook signature")
        return _to_dict(event)
