"""
User repository.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from pairlog.db.repositories.base import BaseRepository
from pairlog.models.db import User
from pairlog.utils.timeutil import ensure_utc, utc_now


def domain_of(email: str) -> Optional[str]:
    """Return the substring after the last '@', or None when there is none."""
    if "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1]
    return domain or None


class UserRepository(BaseRepository[User]):
    """Repository for User model."""

    def __init__(self, session: Session):
        super().__init__(User, session)

    def get_by_email(self, email: str) -> Optional[User]:
        """
        Get user by email.

        Args:
            email: Email address, matched exactly

        Returns:
            User instance or None
        """
        return self.session.query(User).filter(User.email == email).first()

    def get_by_emails(self, emails: Iterable[str]) -> List[User]:
        """
        Bulk-fetch users for a set of emails.

        Args:
            emails: Email addresses to look up

        Returns:
            Users that already exist (missing emails are simply absent)
        """
        emails = list({e for e in emails if e})
        if not emails:
            return []
        return self.session.query(User).filter(User.email.in_(emails)).all()

    def get_or_create(self, email: str) -> Tuple[User, bool]:
        """
        Get existing user or create new one (race-safe).

        Concurrent first-sightings of the same email converge on a single
        row through INSERT ... ON CONFLICT DO NOTHING followed by a refetch.

        Args:
            email: Email address

        Returns:
            Tuple of (User, created)

        Raises:
            RuntimeError: If the user cannot be fetched after the insert
        """
        # Fast path: try to get existing first
        user = self.get_by_email(email)
        if user:
            return user, False

        now = utc_now()
        created = self.insert_ignore_conflict(
            ["email"],
            email=email,
            university_domain=domain_of(email),
            created_at=now,
            last_active_at=now,
        )

        user = self.get_by_email(email)
        if not user:
            raise RuntimeError(f"User creation/fetch failed for email={email}")
        return user, created

    def touch_last_active(
        self, user: User, seen_at: datetime, force: bool = False
    ) -> None:
        """
        Move last_active_at forward to seen_at.

        Never moves it backwards, so out-of-order delivery keeps the latest
        observed activity.

        Args:
            user: User to update
            seen_at: Timezone-aware activity timestamp
            force: Overwrite unconditionally (first activity of a new user)
        """
        current = ensure_utc(user.last_active_at)
        if force or current is None or seen_at > current:
            user.last_active_at = seen_at
