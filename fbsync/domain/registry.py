"""
Registry of resolved users keyed by lower-cased email.
"""

import logging
from typing import Iterable, List

from .models import User

logger = logging.getLogger(__name__)


class UserRegistry(dict):
    """
    Maps lower-cased email -> User.

    The reconciliation service updates the users held here in place; the
    registry itself is never resized by it. Users refused by ``add_user`` are
    kept in ``rejected`` so callers can report them.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.rejected: List[User] = []

    def add_user(self, user: User) -> bool:
        """
        Add a user unless it is invalid or already registered.

        Returns:
            True if the user was added
        """
        if not user.is_valid:
            logger.warning("User '%s' is invalid and will not be synchronized.", user.display_name or user.email)
            self.rejected.append(user)
            return False

        if user.key in self:
            logger.warning(
                "User '%s' was returned multiple times. Only the first instance was added.",
                user.email,
            )
            self.rejected.append(user)
            return False

        self[user.key] = user
        logger.info("Found and added '%s' as a user.", user.email)
        return True

    @classmethod
    def from_users(cls, users: Iterable[User]) -> "UserRegistry":
        registry = cls()
        for user in users:
            registry.add_user(user)
        return registry
