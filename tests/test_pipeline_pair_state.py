"""
Tests for the pair-programming session state store.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from pairlog.exceptions import DependencyResolutionError
from pairlog.models.db import PairSession, RoleSwitch, User
from pairlog.pipeline.pair_state import PairSessionStore
from pairlog.pipeline.payloads import EventType
from pairlog.utils.timeutil import ensure_utc

T0 = datetime(2025, 3, 10, 14, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(db_session: Session) -> PairSessionStore:
    return PairSessionStore(db_session, default_expected_duration=15)


class TestStart:
    """Tests for PairSessionStore.start."""

    def test_start_opens_session(
        self, store: PairSessionStore, sample_user: User, sample_navigator: User
    ):
        pair_session = store.start("p-new", sample_user, sample_navigator, T0)

        assert pair_session.is_open
        assert pair_session.current_driver_id == sample_user.id
        assert pair_session.expected_duration_minutes == 15

    def test_start_uses_explicit_duration(
        self, store: PairSessionStore, sample_user: User, sample_navigator: User
    ):
        pair_session = store.start(
            "p-new", sample_user, sample_navigator, T0, expected_duration_minutes=45
        )

        assert pair_session.expected_duration_minutes == 45

    def test_start_requires_token(
        self, store: PairSessionStore, sample_user: User, sample_navigator: User
    ):
        with pytest.raises(DependencyResolutionError):
            store.start(None, sample_user, sample_navigator, T0)

    def test_start_requires_navigator(
        self, db_session: Session, store: PairSessionStore, sample_user: User
    ):
        with pytest.raises(DependencyResolutionError) as exc_info:
            store.start("p-new", sample_user, None, T0)

        assert "navigator_email" in str(exc_info.value)
        assert db_session.query(PairSession).count() == 0


class TestRoleSwitch:
    """Tests for PairSessionStore.switch_roles."""

    def test_swap_without_explicit_driver(
        self, store: PairSessionStore, open_pair_session: PairSession,
        sample_navigator: User,
    ):
        result = store.switch_roles("p1", T0 + timedelta(minutes=1))

        assert result.pair_session.current_driver_id == sample_navigator.id
        assert result.pair_session.total_role_switches == 1

    def test_k_switches_form_a_chain(
        self, db_session: Session, store: PairSessionStore,
        open_pair_session: PairSession,
    ):
        for k in range(5):
            store.switch_roles("p1", T0 + timedelta(minutes=k), event_id=f"sw-{k}")

        switches = db_session.query(RoleSwitch).order_by(RoleSwitch.id).all()
        assert open_pair_session.total_role_switches == 5
        assert len(switches) == 5
        for current, following in zip(switches, switches[1:]):
            assert current.new_driver == following.previous_driver

    def test_explicit_new_driver(
        self, store: PairSessionStore, open_pair_session: PairSession,
        sample_user: User,
    ):
        result = store.switch_roles("p1", T0, new_driver=sample_user)

        # Naming the current driver still counts as a switch
        assert result.pair_session.current_driver_id == sample_user.id
        assert result.switch.previous_driver == sample_user.id
        assert result.pair_session.total_role_switches == 1

    def test_unknown_token_is_noop(self, db_session: Session, store: PairSessionStore):
        assert store.switch_roles("missing", T0) is None
        assert db_session.query(PairSession).count() == 0
        assert db_session.query(RoleSwitch).count() == 0


class TestEnd:
    """Tests for PairSessionStore.end."""

    def test_end_records_counts(self, store: PairSessionStore, open_pair_session: PairSession):
        end = T0 + timedelta(minutes=20)

        pair_session = store.end("p1", end, completed_tasks=2, pending_tasks=1)

        assert ensure_utc(pair_session.end_time) == end
        assert pair_session.completed_tasks_count == 2
        assert pair_session.pending_tasks_count == 1

    def test_end_twice_is_noop(self, store: PairSessionStore, open_pair_session: PairSession):
        end = T0 + timedelta(minutes=20)
        store.end("p1", end)

        assert store.end("p1", end + timedelta(minutes=5)) is None
        assert ensure_utc(open_pair_session.end_time) == end

    def test_closed_session_rejects_mutations(
        self, db_session: Session, store: PairSessionStore,
        open_pair_session: PairSession,
    ):
        store.end("p1", T0 + timedelta(minutes=20), completed_tasks=1, pending_tasks=0)

        assert store.switch_roles("p1", T0 + timedelta(minutes=21)) is None
        assert store.apply_task_event("p1", EventType.TASK_CREATE) is None

        db_session.refresh(open_pair_session)
        assert open_pair_session.total_role_switches == 0
        assert open_pair_session.pending_tasks_count == 0
        assert open_pair_session.completed_tasks_count == 1

    def test_restart_after_end_reopens(
        self, store: PairSessionStore, open_pair_session: PairSession,
        sample_user: User, sample_navigator: User,
    ):
        store.end("p1", T0 + timedelta(minutes=20))

        reopened = store.start("p1", sample_user, sample_navigator, T0 + timedelta(hours=1))

        assert reopened.id == open_pair_session.id
        assert reopened.is_open
        assert store.apply_task_event("p1", EventType.TASK_CREATE) is not None


class TestTaskCounters:
    """Tests for PairSessionStore.apply_task_event."""

    def test_creates_then_completes(
        self, store: PairSessionStore, open_pair_session: PairSession
    ):
        for _ in range(4):
            store.apply_task_event("p1", EventType.TASK_CREATE)
        for _ in range(3):
            store.apply_task_event("p1", EventType.TASK_COMPLETE)

        assert open_pair_session.pending_tasks_count == 1
        assert open_pair_session.completed_tasks_count == 3

    def test_pending_floors_at_zero(
        self, store: PairSessionStore, open_pair_session: PairSession
    ):
        store.apply_task_event("p1", EventType.TASK_DELETE)
        store.apply_task_event("p1", EventType.TASK_COMPLETE)

        assert open_pair_session.pending_tasks_count == 0
        assert open_pair_session.completed_tasks_count == 1

    def test_edit_changes_nothing(
        self, store: PairSessionStore, open_pair_session: PairSession
    ):
        store.apply_task_event("p1", EventType.TASK_CREATE)
        store.apply_task_event("p1", EventType.TASK_EDIT)

        assert open_pair_session.pending_tasks_count == 1
        assert open_pair_session.completed_tasks_count == 0

    def test_unknown_token_is_noop(self, db_session: Session, store: PairSessionStore):
        assert store.apply_task_event("missing", EventType.TASK_CREATE) is None
        assert db_session.query(PairSession).count() == 0
