"""API Routers"""

from api.routers import billing, health, organization, webhooks

__all__ = ["billing", "health", "organization", "webhooks"]
