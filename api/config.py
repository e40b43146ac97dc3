"""
API Configuration

All secrets loaded from environment variables.
NEVER hardcode API keys, passwords, or secrets.
"""

import json
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App info
    app_name: str = "billsync API"
    app_version: str = "0.1.0"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Billing
    billing_enabled: bool = True
    billing_db_path: str = "./data/db/billing.db"
    billing_table: str = "billing"
    app_base_url: str = "http://localhost:3000"  # Checkout and portal return pages live here

    # Stripe
    stripe_secret_key: Optional[str] = None  # Loaded from STRIPE_SECRET_KEY env var
    stripe_webhook_secret: Optional[str] = None  # Loaded from STRIPE_WEBHOOK_SECRET env var
    plan_lookup_key_overrides: str = ""  # JSON object, e.g. {"pro-monthly": "pro_monthly_v2"}

    # Supabase
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    supabase_jwt_secret: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def cors_origin_list(self) -> List[str]:
        """Parse comma-separated CORS origins."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def supabase_enabled(self) -> bool:
        """Supabase is used for auth, profiles and billing records when configured."""
        return bool(self.supabase_url and self.supabase_anon_key)

    @property
    def lookup_key_overrides(self) -> Dict[str, str]:
        """Parse the plan id -> Stripe lookup key override map."""
        if not self.plan_lookup_key_overrides:
            return {}
        overrides = json.loads(self.plan_lookup_key_overrides)
        if not isinstance(overrides, dict):
            raise ValueError("PLAN_LOOKUP_KEY_OVERRIDES must be a JSON object")
        return {str(k): str(v) for k, v in overrides.items()}


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
