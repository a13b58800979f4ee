"""
Read-only views of teams and members handed to the balancing engine.

The engine never touches ORM objects directly: the store flattens the
live rows into these immutable snapshots, which keeps the decision logic
pure and trivially testable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .models import TaskPriority, TaskStatus


@dataclass(frozen=True)
class TaskSnapshot:
    """An assigned task as seen by the engine."""

    id: int
    title: str
    priority: TaskPriority
    status: TaskStatus

    @property
    def is_open(self) -> bool:
        return self.status != TaskStatus.DONE


@dataclass(frozen=True)
class MemberSnapshot:
    """A team member together with the tasks currently assigned to them."""

    id: int
    team_id: int
    name: str
    role: str
    capacity: int
    tasks: tuple[TaskSnapshot, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "name": self.name,
            "role": self.role,
            "capacity": self.capacity,
        }


@dataclass(frozen=True)
class TeamSnapshot:
    """A team and its members, in member creation order."""

    id: int
    name: str
    members: tuple[MemberSnapshot, ...] = field(default_factory=tuple)
