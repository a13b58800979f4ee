"""
Persistence adapter between the balancing engine and the database.

``WorkloadStore`` is the only place where the engine reads or writes
rows.  Reads return immutable snapshots (see ``snapshots``); writes stage
changes on the session and are made durable by an explicit ``commit``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import ActivityLog, Task, TaskPriority, TaskStatus, Team, TeamMember
from .snapshots import MemberSnapshot, TaskSnapshot, TeamSnapshot

logger = logging.getLogger(__name__)


class WorkloadStore:
    """SQLAlchemy-backed reads and writes used by the workload engine."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # -- reads ---------------------------------------------------------

    def _open_tasks_by_member(self, member_ids: list[int]) -> dict[int, list[TaskSnapshot]]:
        grouped: dict[int, list[TaskSnapshot]] = defaultdict(list)
        if not member_ids:
            return grouped

        stmt = (
            select(Task)
            .where(Task.assigned_to_id.in_(member_ids))
            .where(Task.status != TaskStatus.DONE.value)
            .order_by(Task.id)
        )
        for task in self.session.scalars(stmt):
            grouped[task.assigned_to_id].append(
                TaskSnapshot(
                    id=task.id,
                    title=task.title,
                    priority=TaskPriority(task.priority),
                    status=TaskStatus(task.status),
                )
            )
        return grouped

    def _member_snapshots(self, members: list[TeamMember]) -> tuple[MemberSnapshot, ...]:
        tasks = self._open_tasks_by_member([member.id for member in members])
        return tuple(
            MemberSnapshot(
                id=member.id,
                team_id=member.team_id,
                name=member.name,
                role=member.role,
                capacity=member.capacity,
                tasks=tuple(tasks.get(member.id, ())),
            )
            for member in members
        )

    def _team_snapshot(self, team: Team) -> TeamSnapshot:
        members = list(
            self.session.scalars(
                select(TeamMember).where(TeamMember.team_id == team.id).order_by(TeamMember.id)
            )
        )
        return TeamSnapshot(id=team.id, name=team.name, members=self._member_snapshots(members))

    def team_snapshot(self, team_id: int) -> TeamSnapshot | None:
        """Return the team with each member's open tasks, or None."""
        team = self.session.get(Team, team_id)
        if team is None:
            return None
        return self._team_snapshot(team)

    def member_snapshot(self, member_id: int) -> MemberSnapshot | None:
        """Return one member with their open tasks, or None."""
        member = self.session.get(TeamMember, member_id)
        if member is None:
            return None
        return self._member_snapshots([member])[0]

    def all_team_snapshots(self) -> list[TeamSnapshot]:
        """Return every team in creation order, for the rebalancing sweep."""
        teams = self.session.scalars(select(Team).order_by(Team.id)).all()
        return [self._team_snapshot(team) for team in teams]

    # -- writes --------------------------------------------------------

    def reassign_task(self, task_id: int, member_id: int | None) -> Task:
        """Point a task at a new assignee (or none)."""
        task = self.session.get(Task, task_id)
        if task is None:
            raise LookupError(f"Task {task_id} not found")
        task.assigned_to_id = member_id
        self.session.flush()
        return task

    def log_activity(
        self,
        action: str,
        description: str,
        *,
        task_id: int | None,
        user_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> ActivityLog:
        """Stage an audit entry."""
        entry = ActivityLog(
            action=action,
            description=description,
            task_id=task_id,
            user_id=user_id,
            details=metadata,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
