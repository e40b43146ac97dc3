"""
Supabase Client

Cached Supabase clients. The anon client validates access tokens; the
service-role client reads profiles and membership and writes billing
records on behalf of users.
"""

import logging
from functools import lru_cache
from typing import Optional

from supabase import Client, create_client

from api.config import get_settings

logger = logging.getLogger(__name__)


class SupabaseClientError(Exception):
    """Error initializing Supabase client."""
    pass


def _create(key: Optional[str], key_env: str, role: str) -> Client:
    settings = get_settings()

    if not settings.supabase_url or not key:
        raise SupabaseClientError(f"Supabase {role} client not configured. Set SUPABASE_URL and {key_env}.")

    client = create_client(settings.supabase_url, key)
    logger.info(f"Supabase {role} client initialized")
    return client


@lru_cache()
def get_supabase_client() -> Client:
    """Anon-key client, used for token validation against the auth API."""
    return _create(get_settings().supabase_anon_key, "SUPABASE_ANON_KEY", "anon")


@lru_cache()
def get_supabase_admin_client() -> Client:
    """
    Service-role client for billing storage and directory lookups.

    Bypasses row level security. Never expose it to end users.
    """
    return _create(get_settings().supabase_service_role_key, "SUPABASE_SERVICE_ROLE_KEY", "admin")
