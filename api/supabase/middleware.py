"""
Supabase Auth Middleware

JWT token validation and user context injection for FastAPI.
"""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.config import get_settings
from api.supabase.auth_service import AuthError, AuthService
from api.supabase.models import CurrentUser

logger = logging.getLogger(__name__)

# Bearer token security scheme
bearer_scheme = HTTPBearer(auto_error=False)

DEBUG_USER = CurrentUser(
    user_id="00000000-0000-0000-0000-000000000000",
    email="debug@example.com",
)


@lru_cache()
def get_auth_service() -> AuthService:
    """Get singleton auth service."""
    return AuthService()


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> CurrentUser:
    """
    Dependency to get the current authenticated user.

    Raises HTTPException if not authenticated.
    """
    settings = get_settings()

    # Skip auth in debug mode if Supabase not configured
    if settings.debug and not settings.supabase_enabled:
        return DEBUG_USER

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_REQUIRED",
                    "message": "Authentication required. Include Authorization: Bearer <token> header.",
                }
            },
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return auth_service.get_current_user(credentials.credentials)

    except AuthError as e:
        logger.warning(f"Auth failed: {e.code} - {e.message}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": e.code,
                    "message": e.message,
                }
            },
            headers={"WWW-Authenticate": "Bearer"},
        )
