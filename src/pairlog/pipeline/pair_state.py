"""
Pair-programming session state store.

Per external pair-session token the state machine is absent -> open -> closed,
with a closed token reopening on a new start event. Counter mutations lock
the row (SELECT ... FOR UPDATE) for the rest of the transaction, so
concurrent batches touching the same pair session are serialized by the
database and no increment is lost.

Transitions that target a token without an open session return None; the
caller reports them as warnings, never as failures.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from pairlog.db.repositories.pair_session import PairSessionRepository
from pairlog.exceptions import DependencyResolutionError
from pairlog.models.db import PairSession, RoleSwitch, User
from pairlog.pipeline.payloads import EventType

logger = logging.getLogger(__name__)


@dataclass
class RoleSwitchResult:
    pair_session: PairSession
    switch: RoleSwitch


class PairSessionStore:
    """Start / switch / end / task transitions on PairSession rows."""

    def __init__(self, session: Session, default_expected_duration: int = 15):
        self.session = session
        self.repo = PairSessionRepository(session)
        self.default_expected_duration = default_expected_duration

    def start(
        self,
        token: Optional[str],
        driver: Optional[User],
        navigator: Optional[User],
        start_time: datetime,
        workspace_name: Optional[str] = None,
        expected_duration_minutes: Optional[int] = None,
        client_session_id: Optional[str] = None,
    ) -> PairSession:
        """
        Open (or refresh) the pair session for a token.

        A start for an already-open token is a re-sent start: participants
        and settings are updated in place and counters are kept. A start for
        a closed token reopens it with zeroed counters.

        Args:
            token: External pair-session token
            driver: Resolved driver identity
            navigator: Resolved navigator identity
            start_time: Start timestamp
            workspace_name: Workspace label
            expected_duration_minutes: Planned duration, default from settings
            client_session_id: Client session the start arrived on

        Returns:
            The open PairSession

        Raises:
            DependencyResolutionError: If the token, driver or navigator is missing
        """
        if not token:
            raise DependencyResolutionError("PAIR_SESSION_START requires pair_session_id")
        if driver is None or navigator is None:
            missing = "driver_email" if driver is None else "navigator_email"
            raise DependencyResolutionError(
                f"PAIR_SESSION_START for {token} could not resolve {missing}"
            )

        pair_session, action = self.repo.start(
            token,
            driver_id=driver.id,
            navigator_id=navigator.id,
            start_time=start_time,
            workspace_name=workspace_name,
            expected_duration_minutes=(
                expected_duration_minutes
                if expected_duration_minutes is not None
                else self.default_expected_duration
            ),
            client_session_id=client_session_id,
        )
        logger.info(
            "Pair session %s %s (driver=%s, navigator=%s)",
            token,
            action,
            driver.email,
            navigator.email,
        )
        return pair_session

    def switch_roles(
        self,
        token: Optional[str],
        timestamp: datetime,
        new_driver: Optional[User] = None,
        event_id: Optional[str] = None,
    ) -> Optional[RoleSwitchResult]:
        """
        Swap the current driver of the open pair session.

        Args:
            token: External pair-session token
            timestamp: Switch timestamp
            new_driver: Explicit new driver; when None the role passes to the
                participant who is not currently driving
            event_id: Originating event id, kept on the audit row

        Returns:
            RoleSwitchResult, or None when no open session matches the token
        """
        pair_session = self.repo.get_open(token) if token else None
        if pair_session is None:
            logger.warning("Role switch for %s ignored: no open pair session", token)
            return None

        previous = pair_session.current_driver_id
        if new_driver is not None:
            new_driver_id = new_driver.id
        elif previous == pair_session.driver_id:
            new_driver_id = pair_session.navigator_id
        else:
            new_driver_id = pair_session.driver_id

        pair_session.current_driver_id = new_driver_id
        pair_session.total_role_switches = (pair_session.total_role_switches or 0) + 1
        switch = self.repo.add_role_switch(
            pair_session,
            timestamp=timestamp,
            previous_driver=previous,
            new_driver=new_driver_id,
            event_id=event_id,
        )
        logger.debug(
            "Pair session %s role switch #%d: %s -> %s",
            token,
            pair_session.total_role_switches,
            previous,
            new_driver_id,
        )
        return RoleSwitchResult(pair_session=pair_session, switch=switch)

    def end(
        self,
        token: Optional[str],
        end_time: datetime,
        completed_tasks: int = 0,
        pending_tasks: int = 0,
    ) -> Optional[PairSession]:
        """
        Close the open pair session and record final task counts.

        Args:
            token: External pair-session token
            end_time: End timestamp
            completed_tasks: Final completed count reported by the client
            pending_tasks: Final pending count reported by the client

        Returns:
            The closed PairSession, or None when no open session matches
        """
        pair_session = self.repo.get_open(token) if token else None
        if pair_session is None:
            logger.warning("Pair session end for %s ignored: no open pair session", token)
            return None

        pair_session.end_time = end_time
        pair_session.completed_tasks_count = completed_tasks
        pair_session.pending_tasks_count = pending_tasks
        self.session.flush()
        logger.info(
            "Pair session %s closed (switches=%d, completed=%d, pending=%d)",
            token,
            pair_session.total_role_switches,
            completed_tasks,
            pending_tasks,
        )
        return pair_session

    def apply_task_event(
        self, token: Optional[str], event_type: str
    ) -> Optional[PairSession]:
        """
        Apply a task event to the counters of the open pair session.

        create: pending + 1
        complete: pending - 1 (floored at 0), completed + 1
        delete: pending - 1 (floored at 0)
        edit: no counter change

        Args:
            token: External pair-session token
            event_type: One of the TASK_* event types

        Returns:
            The PairSession, or None when no open session matches
        """
        pair_session = self.repo.get_open(token) if token else None
        if pair_session is None:
            logger.warning("%s for %s ignored: no open pair session", event_type, token)
            return None

        pending = pair_session.pending_tasks_count or 0
        completed = pair_session.completed_tasks_count or 0
        if event_type == EventType.TASK_CREATE:
            pending += 1
        elif event_type == EventType.TASK_COMPLETE:
            pending = max(pending - 1, 0)
            completed += 1
        elif event_type == EventType.TASK_DELETE:
            pending = max(pending - 1, 0)

        pair_session.pending_tasks_count = pending
        pair_session.completed_tasks_count = completed
        self.session.flush()
        return pair_session
