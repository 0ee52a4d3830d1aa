"""
Tests for client session resolution.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from pairlog.models.db import ClientSession, User
from pairlog.pipeline.sessions import SessionResolver
from pairlog.utils.timeutil import ensure_utc

T0 = datetime(2025, 3, 10, 14, 0, 0, tzinfo=timezone.utc)


class TestSessionResolver:
    """Tests for SessionResolver."""

    def test_no_token_yields_none(self, db_session: Session, sample_user: User):
        resolver = SessionResolver(db_session)

        assert resolver.resolve(None, owner=sample_user, start_time=T0) is None
        assert resolver.resolve("", owner=sample_user, start_time=T0) is None
        assert db_session.query(ClientSession).count() == 0

    def test_creates_with_owner(self, db_session: Session, sample_user: User):
        resolver = SessionResolver(db_session)

        client_session = resolver.resolve(
            "sess-9", owner=sample_user, start_time=T0, device_id="dev-1"
        )

        assert client_session.user_id == sample_user.id
        assert client_session.device_id == "dev-1"

    def test_first_writer_wins(
        self, db_session: Session, sample_user: User, sample_navigator: User
    ):
        resolver = SessionResolver(db_session)
        resolver.resolve("sess-9", owner=sample_user, start_time=T0)

        client_session = resolver.resolve(
            "sess-9", owner=sample_navigator, start_time=T0 + timedelta(minutes=1)
        )

        assert client_session.user_id == sample_user.id

    def test_actorless_session_stays_ownerless(self, db_session: Session, sample_user: User):
        resolver = SessionResolver(db_session)
        resolver.resolve("sess-9", owner=None, start_time=T0)

        client_session = resolver.resolve(
            "sess-9",
            owner=sample_user,
            start_time=T0 + timedelta(minutes=1),
            device_id="dev-2",
            session_type="solo",
        )

        assert client_session.user_id is None
        assert client_session.device_id is None
        assert client_session.session_type is None
        assert ensure_utc(client_session.start_time) == T0

    def test_close(self, db_session: Session, sample_client_session: ClientSession):
        resolver = SessionResolver(db_session)

        assert resolver.close("sess-1", T0 + timedelta(hours=1)) is True
        assert resolver.close("sess-1", T0 + timedelta(hours=2)) is False
