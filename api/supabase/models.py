"""
Supabase Auth Models

Caller identity resolved from a Supabase access token.
"""

from typing import Optional

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """
    Current authenticated user context.

    Injected into endpoints via dependency injection. Billing treats the
    user id as an opaque string.
    """
    user_id: str
    email: Optional[str] = None
