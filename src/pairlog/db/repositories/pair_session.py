"""
Pair programming session repository.
"""

from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from pairlog.db.repositories.base import BaseRepository
from pairlog.models.db import PairSession, PairTask, RoleSwitch


class PairSessionRepository(BaseRepository[PairSession]):
    """Repository for PairSession, RoleSwitch and PairTask models."""

    def __init__(self, session: Session):
        super().__init__(PairSession, session)

    def get_by_token(
        self, pair_session_id: str, for_update: bool = False
    ) -> Optional[PairSession]:
        """
        Get a pair session by its external token.

        Args:
            pair_session_id: External pair session token
            for_update: Lock the row for the rest of the transaction

        Returns:
            PairSession instance or None
        """
        query = self.session.query(PairSession).filter(
            PairSession.pair_session_id == pair_session_id
        )
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    def get_open(self, pair_session_id: str) -> Optional[PairSession]:
        """
        Get the open pair session for a token, locked for update.

        Args:
            pair_session_id: External pair session token

        Returns:
            Open PairSession or None when missing or already ended
        """
        row = self.get_by_token(pair_session_id, for_update=True)
        if row is None or row.end_time is not None:
            return None
        return row

    def start(
        self,
        pair_session_id: str,
        driver_id: int,
        navigator_id: int,
        start_time: datetime,
        workspace_name: Optional[str] = None,
        expected_duration_minutes: int = 15,
        client_session_id: Optional[str] = None,
    ) -> Tuple[PairSession, str]:
        """
        Create, refresh or reopen the pair session for a token.

        A token maps to at most one row. A start for an open row refreshes
        participants and settings but keeps counters and the current
        driver. A start for an ended row reopens it with fresh counters.

        Args:
            pair_session_id: External pair session token
            driver_id: User id of the initial driver
            navigator_id: User id of the initial navigator
            start_time: Start event timestamp
            workspace_name: Optional workspace label
            expected_duration_minutes: Planned length of the session
            client_session_id: Owning client session token, if known

        Returns:
            Tuple of (PairSession, action) where action is one of
            'created', 'updated' or 'reopened'

        Raises:
            RuntimeError: If the row cannot be fetched after the insert
        """
        row = self.get_by_token(pair_session_id, for_update=True)
        if row is None:
            inserted = self.insert_ignore_conflict(
                ["pair_session_id"],
                pair_session_id=pair_session_id,
                client_session_id=client_session_id,
                driver_id=driver_id,
                navigator_id=navigator_id,
                current_driver_id=driver_id,
                start_time=start_time,
                workspace_name=workspace_name,
                expected_duration_minutes=expected_duration_minutes,
                total_role_switches=0,
                completed_tasks_count=0,
                pending_tasks_count=0,
            )
            row = self.get_by_token(pair_session_id, for_update=True)
            if row is None:
                raise RuntimeError(
                    f"Pair session creation/fetch failed for token={pair_session_id}"
                )
            if inserted:
                return row, "created"

        if row.end_time is not None:
            row.end_time = None
            row.start_time = start_time
            row.driver_id = driver_id
            row.navigator_id = navigator_id
            row.current_driver_id = driver_id
            row.total_role_switches = 0
            row.completed_tasks_count = 0
            row.pending_tasks_count = 0
            action = "reopened"
        else:
            row.driver_id = driver_id
            row.navigator_id = navigator_id
            if row.current_driver_id is None:
                row.current_driver_id = driver_id
            action = "updated"

        row.expected_duration_minutes = expected_duration_minutes
        if workspace_name:
            row.workspace_name = workspace_name
        if client_session_id and row.client_session_id is None:
            row.client_session_id = client_session_id
        self.session.flush()
        return row, action

    def add_role_switch(
        self,
        pair_session: PairSession,
        timestamp: datetime,
        previous_driver: Optional[int],
        new_driver: Optional[int],
        event_id: Optional[str] = None,
    ) -> RoleSwitch:
        """
        Append a role switch audit row.

        Args:
            pair_session: Pair session the switch belongs to
            timestamp: When the switch happened
            previous_driver: User id of the driver before the switch
            new_driver: User id of the driver after the switch
            event_id: Originating event id

        Returns:
            The new RoleSwitch
        """
        switch = RoleSwitch(
            pp_session_id=pair_session.id,
            timestamp=timestamp,
            previous_driver=previous_driver,
            new_driver=new_driver,
            event_id=event_id,
        )
        self.session.add(switch)
        self.session.flush()
        return switch

    def get_task(
        self, pair_session: PairSession, external_task_id: str
    ) -> Optional[PairTask]:
        """
        Get a tracked task by the client's task id.

        Args:
            pair_session: Pair session the task belongs to
            external_task_id: Task id chosen by the client

        Returns:
            PairTask or None
        """
        return (
            self.session.query(PairTask)
            .filter(
                PairTask.pp_session_id == pair_session.id,
                PairTask.external_task_id == external_task_id,
            )
            .first()
        )

    def upsert_task(
        self, pair_session: PairSession, external_task_id: str, **fields
    ) -> PairTask:
        """
        Create or update a tracked task.

        Args:
            pair_session: Pair session the task belongs to
            external_task_id: Task id chosen by the client
            **fields: PairTask column values to set

        Returns:
            The created or updated PairTask
        """
        task = self.get_task(pair_session, external_task_id)
        if task is None:
            fields.setdefault("description", "")
            task = PairTask(
                pp_session_id=pair_session.id,
                external_task_id=external_task_id,
                **fields,
            )
            self.session.add(task)
        else:
            for key, value in fields.items():
                if key == "created_at":
                    continue
                setattr(task, key, value)
        self.session.flush()
        return task
