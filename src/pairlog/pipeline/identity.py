"""
Identity resolution: email address to durable User row.

A resolver is bound to one database session and one IdentityCache. The cache
lives for exactly one batch attempt and is never shared between batches, so a
rolled-back batch cannot leak user ids into another request.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from pairlog.db.repositories.user import UserRepository
from pairlog.exceptions import EventValidationError
from pairlog.models.db import User

logger = logging.getLogger(__name__)


class IdentityCache:
    """Batch-scoped email to User mapping."""

    def __init__(self) -> None:
        self._users: dict[str, User] = {}
        # Users created during this batch that have not been active yet
        self._fresh: set[str] = set()
        self.hits = 0
        self.misses = 0

    def get(self, email: str) -> Optional[User]:
        user = self._users.get(email)
        if user is None:
            self.misses += 1
        else:
            self.hits += 1
        return user

    def put(self, user: User, created: bool = False) -> None:
        self._users[user.email] = user
        if created:
            self._fresh.add(user.email)

    def take_fresh(self, email: str) -> bool:
        """Return True (once) if the user was created in this batch."""
        if email in self._fresh:
            self._fresh.discard(email)
            return True
        return False

    def clear(self) -> None:
        self._users.clear()
        self._fresh.clear()

    def __contains__(self, email: str) -> bool:
        return email in self._users

    def __len__(self) -> int:
        return len(self._users)


class IdentityResolver:
    """Resolves emails to users, creating them on first sight."""

    def __init__(self, session: Session, cache: Optional[IdentityCache] = None):
        self.session = session
        self.cache = cache if cache is not None else IdentityCache()
        self.user_repo = UserRepository(session)

    def preload(self, emails: Iterable[str]) -> int:
        """
        Warm the cache with every already-known user among emails.

        One query for the whole batch; missing emails are created lazily
        by resolve().

        Args:
            emails: Emails referenced anywhere in the batch

        Returns:
            Number of users loaded into the cache
        """
        wanted = {e for e in emails if isinstance(e, str) and e and e not in self.cache}
        if not wanted:
            return 0
        users = self.user_repo.get_by_emails(wanted)
        for user in users:
            self.cache.put(user)
        logger.debug(
            "Preloaded %d of %d referenced identities", len(users), len(wanted)
        )
        return len(users)

    def resolve(self, email: Optional[str]) -> User:
        """
        Map an email to its User, creating the row if needed.

        Args:
            email: Email address, matched case-sensitively

        Returns:
            User instance

        Raises:
            EventValidationError: If email is missing or not a string
        """
        if not isinstance(email, str) or not email.strip():
            raise EventValidationError("Missing user email", field="email")

        user = self.cache.get(email)
        if user is not None:
            return user

        user, created = self.user_repo.get_or_create(email)
        if created:
            logger.info("Created user %s (id=%s)", email, user.id)
        self.cache.put(user, created=created)
        return user

    def resolve_optional(self, email: Optional[str]) -> Optional[User]:
        """Resolve email if one was supplied, otherwise return None."""
        if email is None or (isinstance(email, str) and not email.strip()):
            return None
        return self.resolve(email)

    def touch(self, user: User, seen_at: datetime) -> None:
        """
        Record activity of the active actor at the event's timestamp.

        A user created in this batch takes the event time as-is; afterwards
        last-seen only moves forward.

        Args:
            user: Active actor of the event
            seen_at: Event timestamp (not wall clock)
        """
        self.user_repo.touch_last_active(
            user, seen_at, force=self.cache.take_fresh(user.email)
        )
