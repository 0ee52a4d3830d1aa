"""
Tests for PairSessionRepository.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy.orm import Session

from pairlog.db.repositories import PairSessionRepository
from pairlog.models.db import PairSession, PairTask, RoleSwitch, User
from pairlog.utils.timeutil import ensure_utc

T0 = datetime(2025, 3, 10, 14, 0, 0, tzinfo=timezone.utc)


class TestPairSessionStart:
    """Tests for creating, refreshing and reopening pair sessions."""

    def test_start_creates(self, db_session: Session, sample_user: User, sample_navigator: User):
        repo = PairSessionRepository(db_session)

        row, action = repo.start(
            "p-new",
            driver_id=sample_user.id,
            navigator_id=sample_navigator.id,
            start_time=T0,
            workspace_name="lab-3",
        )

        assert action == "created"
        assert row.current_driver_id == sample_user.id
        assert row.total_role_switches == 0
        assert row.expected_duration_minutes == 15
        assert row.workspace_name == "lab-3"
        assert row.is_open

    def test_start_on_open_row_updates_in_place(
        self, db_session: Session, open_pair_session: PairSession, sample_user: User,
        sample_navigator: User,
    ):
        open_pair_session.total_role_switches = 2
        open_pair_session.pending_tasks_count = 3
        open_pair_session.current_driver_id = sample_navigator.id
        db_session.flush()
        repo = PairSessionRepository(db_session)

        row, action = repo.start(
            "p1",
            driver_id=sample_user.id,
            navigator_id=sample_navigator.id,
            start_time=T0 + timedelta(minutes=1),
            expected_duration_minutes=30,
        )

        assert action == "updated"
        assert row.id == open_pair_session.id
        assert row.total_role_switches == 2
        assert row.pending_tasks_count == 3
        assert row.current_driver_id == sample_navigator.id
        assert row.expected_duration_minutes == 30
        assert db_session.query(PairSession).count() == 1

    def test_start_on_closed_row_reopens(
        self, db_session: Session, open_pair_session: PairSession, sample_user: User,
        sample_navigator: User,
    ):
        open_pair_session.end_time = T0 + timedelta(minutes=30)
        open_pair_session.total_role_switches = 4
        open_pair_session.completed_tasks_count = 2
        db_session.flush()
        repo = PairSessionRepository(db_session)
        restart = T0 + timedelta(hours=2)

        row, action = repo.start(
            "p1",
            driver_id=sample_navigator.id,
            navigator_id=sample_user.id,
            start_time=restart,
        )

        assert action == "reopened"
        assert row.id == open_pair_session.id
        assert row.end_time is None
        assert ensure_utc(row.start_time) == restart
        assert row.total_role_switches == 0
        assert row.completed_tasks_count == 0
        assert row.current_driver_id == sample_navigator.id

    def test_lost_insert_race_updates_existing_row(
        self,
        db_session: Session,
        open_pair_session: PairSession,
        sample_user: User,
        sample_navigator: User,
        first_lookup_misses,
    ):
        open_pair_session.total_role_switches = 2
        db_session.flush()
        repo = PairSessionRepository(db_session)

        with patch.object(
            repo, "get_by_token", side_effect=first_lookup_misses(repo.get_by_token)
        ):
            row, action = repo.start(
                "p1",
                driver_id=sample_user.id,
                navigator_id=sample_navigator.id,
                start_time=T0 + timedelta(minutes=1),
            )

        assert action == "updated"
        assert row.id == open_pair_session.id
        assert row.total_role_switches == 2
        assert db_session.query(PairSession).filter_by(pair_session_id="p1").count() == 1


class TestPairSessionLookup:
    """Tests for token lookups."""

    def test_get_open(self, db_session: Session, open_pair_session: PairSession):
        repo = PairSessionRepository(db_session)

        assert repo.get_open("p1").id == open_pair_session.id
        assert repo.get_open("missing") is None

    def test_get_open_ignores_closed(self, db_session: Session, open_pair_session: PairSession):
        open_pair_session.end_time = T0 + timedelta(minutes=10)
        db_session.flush()

        assert PairSessionRepository(db_session).get_open("p1") is None


class TestRoleSwitchesAndTasks:
    """Tests for audit rows and task tracking."""

    def test_add_role_switch(
        self, db_session: Session, open_pair_session: PairSession, sample_user: User,
        sample_navigator: User,
    ):
        repo = PairSessionRepository(db_session)

        repo.add_role_switch(
            open_pair_session,
            timestamp=T0,
            previous_driver=sample_user.id,
            new_driver=sample_navigator.id,
            event_id="evt-1",
        )

        switches = (
            db_session.query(RoleSwitch)
            .filter(RoleSwitch.pp_session_id == open_pair_session.id)
            .all()
        )
        assert len(switches) == 1
        assert switches[0].previous_driver == sample_user.id
        assert switches[0].new_driver == sample_navigator.id
        assert switches[0].event_id == "evt-1"

    def test_upsert_task_creates_then_updates(
        self, db_session: Session, open_pair_session: PairSession, sample_user: User
    ):
        repo = PairSessionRepository(db_session)

        repo.upsert_task(open_pair_session, "t-1", description="Write tests", created_at=T0)
        later = T0 + timedelta(minutes=5)
        task = repo.upsert_task(
            open_pair_session,
            "t-1",
            created_at=later,
            completed_at=later,
            completed_by_user_id=sample_user.id,
        )

        assert db_session.query(PairTask).count() == 1
        assert task.description == "Write tests"
        assert ensure_utc(task.created_at) == T0
        assert ensure_utc(task.completed_at) == later
        assert task.completed_by_user_id == sample_user.id
