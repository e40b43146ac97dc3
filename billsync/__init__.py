"""billsync - Billing state reconciliation between Stripe and the local billing store."""

__version__ = "0.1.0"
