"""
Supabase Auth Service

JWT validation for Supabase access tokens.
"""

import logging
from typing import Optional, Tuple

import jwt
from supabase import AuthApiError, Client

from api.config import get_settings
from api.supabase.client import get_supabase_client
from api.supabase.models import CurrentUser

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Authentication error."""

    def __init__(self, message: str, code: str = "AUTH_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class AuthService:
    """
    Supabase authentication service.

    Tokens are verified locally with the project's JWT secret when one is
    configured, otherwise by asking the Supabase auth API.
    """

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        """Lazy-load client; only needed when no JWT secret is configured."""
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    def validate_token(self, token: str) -> Tuple[str, Optional[str]]:
        """
        Validate a JWT token and extract user info.

        Returns: (user_id, email)
        Raises: AuthError if token is invalid
        """
        settings = get_settings()

        if not settings.supabase_jwt_secret:
            # Fall back to verifying with Supabase API
            return self._validate_token_via_api(token)

        try:
            payload = jwt.decode(
                token,
                settings.supabase_jwt_secret,
                algorithms=["HS256"],
                audience="authenticated",
            )
        except jwt.ExpiredSignatureError:
            raise AuthError("Token expired", "TOKEN_EXPIRED")
        except jwt.InvalidTokenError as e:
            logger.error(f"JWT validation error: {e}")
            raise AuthError("Invalid token", "INVALID_TOKEN")

        user_id = payload.get("sub")
        if not user_id:
            raise AuthError("Token has no subject", "INVALID_TOKEN")

        return str(user_id), payload.get("email")

    def _validate_token_via_api(self, token: str) -> Tuple[str, Optional[str]]:
        """Validate token by calling Supabase API."""
        try:
            response = self.client.auth.get_user(token)
        except AuthApiError as e:
            logger.error(f"Token validation error: {e}")
            raise AuthError("Invalid token", "INVALID_TOKEN")

        if not response or not response.user:
            raise AuthError("Invalid token", "INVALID_TOKEN")

        return str(response.user.id), response.user.email

    def get_current_user(self, token: str) -> CurrentUser:
        """Get the current user context from a token."""
        user_id, email = self.validate_token(token)
        return CurrentUser(user_id=user_id, email=email)
