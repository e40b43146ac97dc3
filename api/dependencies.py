"""
API Dependencies

Dependency injection for services.
"""

import logging
from functools import lru_cache

from api.config import get_settings
from billsync.services import (
    BillingService,
    Directory,
    InMemoryDirectory,
    PlanCatalog,
    StripeGateway,
)
from billsync.storage import BillingStore, SQLiteBillingStore

logger = logging.getLogger(__name__)


@lru_cache()
def get_billing_store() -> BillingStore:
    """Supabase billing table when configured, local SQLite otherwise."""
    settings = get_settings()

    if settings.supabase_enabled and settings.supabase_service_role_key:
        from api.supabase.client import get_supabase_admin_client
        from api.supabase.repository import SupabaseBillingStore
        return SupabaseBillingStore(get_supabase_admin_client(), table=settings.billing_table)

    logger.info("Supabase not configured, using SQLite billing store")
    return SQLiteBillingStore(db_path=settings.billing_db_path, table=settings.billing_table)


@lru_cache()
def get_directory() -> Directory:
    """Get profile and membership directory."""
    settings = get_settings()

    if settings.supabase_enabled and settings.supabase_service_role_key:
        from api.supabase.client import get_supabase_admin_client
        from api.supabase.repository import SupabaseDirectory
        return SupabaseDirectory(get_supabase_admin_client())

    logger.warning("Supabase not configured, using in-memory directory")
    return InMemoryDirectory()


@lru_cache()
def get_billing_service() -> BillingService:
    """Get singleton billing service."""
    settings = get_settings()

    return BillingService(
        gateway=StripeGateway(api_key=settings.stripe_secret_key),
        store=get_billing_store(),
        directory=get_directory(),
        catalog=PlanCatalog(lookup_key_overrides=settings.lookup_key_overrides),
        app_url=settings.app_base_url,
        webhook_secret=settings.stripe_webhook_secret,
        enabled=settings.billing_enabled,
    )
