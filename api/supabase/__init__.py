"""
Supabase Integration Module

Provides authentication, profile/membership lookups and billing record
storage backed by Supabase.
"""

from api.supabase.auth_service import AuthError, AuthService
from api.supabase.client import (
    SupabaseClientError,
    get_supabase_admin_client,
    get_supabase_client,
)
from api.supabase.middleware import get_current_user
from api.supabase.models import CurrentUser
from api.supabase.repository import SupabaseBillingStore, SupabaseDirectory

__all__ = [
    # Client
    "get_supabase_client",
    "get_supabase_admin_client",
    "SupabaseClientError",
    # Auth Service
    "AuthService",
    "AuthError",
    # Middleware
    "get_current_user",
    # Repository
    "SupabaseBillingStore",
    "SupabaseDirectory",
    # Models
    "CurrentUser",
]
