"""
Bulk workload rebalancing.

A sweep walks every team and drains overloaded members (more open tasks
than their capacity) by moving their lowest-priority tasks to the least
loaded teammates that still have room.

Per team the algorithm is:

1. Overloaded members are those with load strictly above capacity.
   A member exactly at capacity is full for *new* work but has nothing
   in excess, so the sweep leaves them alone.
2. Each overloaded member sheds up to ``load - capacity`` tasks, picked
   from their open tasks LOW first, then MEDIUM.  HIGH tasks never move.
3. Targets are the other members under capacity at the start of the
   team, least loaded first.  Each move takes the first target whose
   running load is still under capacity; when none is left the member
   keeps the rest of their excess.

Planning is pure (``plan_team_moves``, ``plan_sweep``).  Applying the
plan (``run_rebalancing_sweep``) commits one move at a time together
with its audit entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from .capacity import current_load
from .errors import RebalanceError
from .models import TaskPriority
from .snapshots import MemberSnapshot, TaskSnapshot, TeamSnapshot

if TYPE_CHECKING:
    from .locks import SweepLock
    from .store import WorkloadStore

logger = logging.getLogger(__name__)

# HIGH is absent on purpose: it is not movable at all.
MOVABLE_PRIORITY_RANK = {
    TaskPriority.LOW: 0,
    TaskPriority.MEDIUM: 1,
}


@dataclass(frozen=True)
class PlannedMove:
    """One task moving from an overloaded member to a teammate."""

    task_id: int
    task_title: str
    from_member_id: int
    from_member: str
    to_member_id: int
    to_member: str
    team_id: int
    team_name: str

    @property
    def action(self) -> str:
        return f"Reassigned from {self.from_member} to {self.to_member}"

    @property
    def description(self) -> str:
        return (
            f'Task "{self.task_title}" reassigned from '
            f"{self.from_member} to {self.to_member}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "task_title": self.task_title,
            "from_member": self.from_member,
            "to_member": self.to_member,
            "team_name": self.team_name,
        }


@dataclass
class SweepResult:
    """Ordered reassignments performed by one sweep."""

    reassignments: list[PlannedMove] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.reassignments)

    @property
    def message(self) -> str:
        return f"Successfully reassigned {self.count} task(s)"

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "count": self.count,
            "reassignments": [move.to_dict() for move in self.reassignments],
        }


def is_overloaded(member: MemberSnapshot) -> bool:
    """Return True when the member holds more open tasks than capacity."""
    return current_load(member) > member.capacity


def movable_tasks(member: MemberSnapshot) -> list[TaskSnapshot]:
    """The member's open non-HIGH tasks, LOW before MEDIUM."""
    candidates = [
        task
        for task in member.tasks
        if task.is_open and task.priority in MOVABLE_PRIORITY_RANK
    ]
    return sorted(candidates, key=lambda task: MOVABLE_PRIORITY_RANK[task.priority])


def plan_team_moves(team: TeamSnapshot) -> list[PlannedMove]:
    """
    Compute the moves that relieve the team's overloaded members.

    Running loads are tracked in memory so that two moves in the same
    pass never fill a target past its capacity.
    """
    running = {member.id: current_load(member) for member in team.members}
    available = sorted(
        (member for member in team.members if running[member.id] < member.capacity),
        key=lambda member: running[member.id],
    )

    moves: list[PlannedMove] = []
    for member in team.members:
        if not is_overloaded(member):
            continue

        excess = running[member.id] - member.capacity
        for task in movable_tasks(member)[:excess]:
            target = next(
                (
                    candidate
                    for candidate in available
                    if candidate.id != member.id and running[candidate.id] < candidate.capacity
                ),
                None,
            )
            if target is None:
                logger.info(
                    "No teammate with spare capacity for %s in team %s",
                    member.name,
                    team.name,
                )
                break

            moves.append(
                PlannedMove(
                    task_id=task.id,
                    task_title=task.title,
                    from_member_id=member.id,
                    from_member=member.name,
                    to_member_id=target.id,
                    to_member=target.name,
                    team_id=team.id,
                    team_name=team.name,
                )
            )
            running[target.id] += 1
            running[member.id] -= 1

    return moves


def plan_sweep(teams: list[TeamSnapshot]) -> list[PlannedMove]:
    """Plan every team independently, in team order."""
    moves: list[PlannedMove] = []
    for team in teams:
        moves.extend(plan_team_moves(team))
    return moves


def apply_move(store: WorkloadStore, move: PlannedMove, user_id: str) -> None:
    """Persist one move and its audit entry as a single commit."""
    store.reassign_task(move.task_id, move.to_member_id)
    store.log_activity(
        move.action,
        move.description,
        task_id=move.task_id,
        user_id=user_id,
        metadata={
            "old_assigned_to_id": move.from_member_id,
            "new_assigned_to_id": move.to_member_id,
            "team_id": move.team_id,
            "rebalanced": True,
        },
    )
    store.commit()


def run_rebalancing_sweep(store: WorkloadStore, user_id: str, lock: SweepLock) -> SweepResult:
    """
    Run one rebalancing sweep over every team.

    Args:
        store: Persistence adapter for snapshots and writes.
        user_id: The authenticated user, recorded on every audit entry.
        lock: The sweep lease; it is held while the snapshot is taken and
            the moves are applied.

    Returns:
        The reassignments performed, in the order they were applied.

    Raises:
        SweepInProgressError: another sweep holds the lease.
        RebalanceError: a move could not be persisted.  Moves committed
            before the failure stay committed and are listed on the error.
    """
    result = SweepResult()
    with lock:
        moves = plan_sweep(store.all_team_snapshots())
        logger.info("Rebalancing sweep planned %s move(s)", len(moves))

        for move in moves:
            try:
                apply_move(store, move, user_id)
            except (SQLAlchemyError, LookupError) as exc:
                store.rollback()
                logger.exception("Failed to move task %s to %s", move.task_id, move.to_member)
                raise RebalanceError(result.reassignments, failed=move) from exc

            logger.info(
                "Moved task %s from %s to %s (team %s)",
                move.task_id,
                move.from_member,
                move.to_member,
                move.team_name,
            )
            result.reassignments.append(move)

    return result
