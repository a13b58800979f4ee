"""
Capacity evaluation for task assignment.

Answers two questions for the request handlers: "is assigning a task to
this member currently safe?" and "who should an unassigned task go to?".

Capacity is the maximum number of concurrently open tasks, so a member
whose load *equals* their capacity is already full for new work.  The
rebalancer uses a stricter notion (load strictly above capacity) to
decide who must shed existing work; see ``rebalancer.is_overloaded``.

An assignment decision is one of three variants:

* ``Allowed`` -- go ahead and commit the assignment.
* ``Warned`` -- the member is full; ask the user and retry with ``force``.
* ``Rejected`` -- the member does not exist.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .snapshots import MemberSnapshot, TeamSnapshot

if TYPE_CHECKING:
    from .store import WorkloadStore

logger = logging.getLogger(__name__)

MEMBER_NOT_FOUND = "Member not found"


def current_load(member: MemberSnapshot) -> int:
    """Count the member's tasks that are not done."""
    return sum(1 for task in member.tasks if task.is_open)


def is_over_capacity(member: MemberSnapshot) -> bool:
    """Return True when the member cannot take new work (load >= capacity)."""
    return current_load(member) >= member.capacity


def members_with_spare_capacity(team: TeamSnapshot) -> list[MemberSnapshot]:
    """
    List the team's members that can take new work, least loaded first.

    ``sorted`` is stable, so members with equal load keep the team's
    enumeration order.
    """
    available = [member for member in team.members if not is_over_capacity(member)]
    return sorted(available, key=current_load)


def best_member_for_assignment(team: TeamSnapshot) -> MemberSnapshot | None:
    """Return the least loaded member with spare capacity, or None."""
    candidates = members_with_spare_capacity(team)
    return candidates[0] if candidates else None


@dataclass(frozen=True)
class Allowed:
    """The assignment may be committed."""

    member: MemberSnapshot
    current_load: int
    capacity: int

    valid = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": True,
            "member": self.member.to_dict(),
            "current_load": self.current_load,
            "capacity": self.capacity,
        }


@dataclass(frozen=True)
class Warned:
    """The member is at or over capacity; the caller must confirm."""

    message: str
    current_load: int
    capacity: int

    valid = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": False,
            "warning": True,
            "message": self.message,
            "current_load": self.current_load,
            "capacity": self.capacity,
        }


@dataclass(frozen=True)
class Rejected:
    """The assignment cannot happen at all."""

    reason: str

    valid = False

    def to_dict(self) -> dict[str, Any]:
        return {"valid": False, "warning": False, "error": self.reason}


Decision = Allowed | Warned | Rejected


def capacity_warning_message(member: MemberSnapshot, load: int) -> str:
    return f"{member.name} has {load} tasks but capacity is {member.capacity}. Assign anyway?"


def validate_assignment(member: MemberSnapshot | None, force: bool = False) -> Decision:
    """
    Classify a proposed assignment of one more task to ``member``.

    Args:
        member: Snapshot of the proposed assignee, or ``None`` when the
            member could not be found.
        force: Set after a human confirmed a previous ``Warned`` result.
            It never overrides a ``Rejected`` result.

    Returns:
        ``Allowed``, ``Warned`` or ``Rejected``.
    """
    if member is None:
        return Rejected(reason=MEMBER_NOT_FOUND)

    load = current_load(member)
    if load >= member.capacity:
        if not force:
            return Warned(
                message=capacity_warning_message(member, load),
                current_load=load,
                capacity=member.capacity,
            )
        logger.info(
            "Forced assignment to member %s at load %s/%s",
            member.id,
            load,
            member.capacity,
        )
    return Allowed(member=member, current_load=load, capacity=member.capacity)


def check_assignment(store: WorkloadStore, member_id: int, force: bool = False) -> Decision:
    """Load the member from the store and validate an assignment to them."""
    return validate_assignment(store.member_snapshot(member_id), force=force)


def find_best_member_for_task(store: WorkloadStore, team_id: int) -> MemberSnapshot | None:
    """Pick the auto-assignment target for a new task in the team."""
    team = store.team_snapshot(team_id)
    if team is None:
        return None
    return best_member_for_assignment(team)
