"""
Directory

Read access to user profiles and organization membership, which live
outside the billing subsystem.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

OWNER_ROLE = "owner"


@dataclass
class Profile:
    """Profile fields billing needs to create a Stripe customer."""
    email: Optional[str]
    name: Optional[str] = None


class Directory(ABC):
    """Profile and membership lookups."""

    @abstractmethod
    def get_profile(self, user_id: str) -> Optional[Profile]:
        """Profile for a user, or None."""

    @abstractmethod
    def get_member_role(self, organization_id: str, user_id: str) -> Optional[str]:
        """The user's role in the organization, or None if not a member."""

    @abstractmethod
    def count_members(self, organization_id: str) -> int:
        """Number of members in the organization."""


class InMemoryDirectory(Directory):
    """Directory held in memory. Used in debug mode and tests."""

    def __init__(self):
        self._profiles: Dict[str, Profile] = {}
        self._members: Dict[Tuple[str, str], str] = {}

    def add_profile(self, user_id: str, email: Optional[str], name: Optional[str] = None) -> None:
        self._profiles[user_id] = Profile(email=email, name=name)

    def add_member(self, organization_id: str, user_id: str, role: str = "member") -> None:
        self._members[(organization_id, user_id)] = role

    def remove_member(self, organization_id: str, user_id: str) -> None:
        self._members.pop((organization_id, user_id), None)

    def get_profile(self, user_id: str) -> Optional[Profile]:
        return self._profiles.get(user_id)

    def get_member_role(self, organization_id: str, user_id: str) -> Optional[str]:
        return self._members.get((organization_id, user_id))

    def count_members(self, organization_id: str) -> int:
        return sum(1 for org_id, _ in self._members if org_id == organization_id)
