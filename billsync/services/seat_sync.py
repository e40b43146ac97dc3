"""Keeps a team subscription's quantity equal to the organization's member count."""

import logging

from billsync.models.billing import BillingSubject
from billsync.services.directory import Directory
from billsync.services.reconciliation import first_item
from billsync.services.stripe_gateway import StripeGateway
from billsync.storage.base import BillingStore

logger = logging.getLogger(__name__)


class SeatSynchronizer:
    """Team seat quantity sync."""

    def __init__(self, gateway: StripeGateway, store: BillingStore, directory: Directory):
        self.gateway = gateway
        self.store = store
        self.directory = directory

    def sync_seat_count(self, subject: BillingSubject) -> bool:
        """
        Update the subscription quantity if it differs from the member count.

        Returns True when Stripe was updated. A team without a subscription
        or with matching quantity is left alone.
        """
        record = self.store.get(subject)
        if record is None or not record.stripe_subscription_id:
            logger.info(f"No team subscription for {subject}, skipping seat sync")
            return False

        member_count = self.directory.count_members(subject.organization_id) or 1

        subscription = self.gateway.retrieve_subscription(record.stripe_subscription_id)
        item = first_item(subscription)
        if not item or not item.get("id"):
            logger.warning(f"Subscription {record.stripe_subscription_id} has no items to resize")
            return False

        if item.get("quantity") == member_count:
            return False

        self.gateway.update_subscription(
            subscription["id"],
            items=[{"id": item["id"], "quantity": member_count}],
            proration_behavior="always_invoice",
        )
        logger.info(
            f"Updated seats for {subject}: {item.get('quantity')} -> {member_count}"
        )
        return True
