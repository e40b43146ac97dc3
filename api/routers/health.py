"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends

from api.config import Settings, get_settings

router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Basic liveness check.

    Returns 200 if the service is running.
    """
    return {
        "status": "ok",
        "timestamp": _now()
    }


@router.get("/health/ready")
async def readiness_check(
    settings: Settings = Depends(get_settings)
) -> Dict[str, Any]:
    """
    Readiness check - reports which billing dependencies are configured.

    Checks:
    - Stripe secret key and webhook secret
    - Billing store backend (Supabase or SQLite)
    """
    checks = {
        "billing": {"status": "enabled" if settings.billing_enabled else "disabled"},
        "stripe": {"status": "configured" if settings.stripe_secret_key else "not_configured"},
        "stripe_webhook": {"status": "configured" if settings.stripe_webhook_secret else "not_configured"},
        "store": {"status": "ok", "backend": "supabase" if settings.supabase_enabled else "sqlite"},
    }

    # Billing cannot work without a Stripe key
    ready = not settings.billing_enabled or bool(settings.stripe_secret_key)

    return {
        "status": "ready" if ready else "degraded",
        "timestamp": _now(),
        "version": settings.app_version,
        "checks": checks
    }


@router.get("/health/info")
async def service_info(
    settings: Settings = Depends(get_settings)
) -> Dict[str, Any]:
    """Return service information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": "development" if settings.debug else "production",
    }
