"""Authorization checks applied to organization-scoped billing."""

import logging

from billsync.errors import forbidden
from billsync.models.billing import BillingSubject
from billsync.services.directory import OWNER_ROLE, Directory

logger = logging.getLogger(__name__)


class OwnerPolicy:
    """Only organization owners may manage team billing."""

    def __init__(self, directory: Directory):
        self.directory = directory

    def authorize(self, subject: BillingSubject) -> None:
        """
        Raise FORBIDDEN unless the subject's user owns its organization.

        Individual subjects always pass.
        """
        if not subject.is_team:
            return

        role = self.directory.get_member_role(subject.organization_id, subject.user_id)
        if role != OWNER_ROLE:
            logger.warning(f"Team billing denied for {subject} (role={role})")
            raise forbidden("Only organization owners can manage team billing.")
