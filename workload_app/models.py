"""
Database Models for the Team Workload Service.

Defines the SQLAlchemy ORM models for teams, their members, projects,
tasks and the activity log, along with the enumerations used for task
status and priority.  Ownership is tracked through ``owner_id``, the
opaque user identifier supplied by the identity provider.

A member's workload is never stored: it is always recomputed from the
live status of the tasks assigned to them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from . import db

MIN_CAPACITY = 0
MAX_CAPACITY = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_utc_iso(value: datetime | None) -> str | None:
    """
    Convert a datetime to a UTC ISO-8601 string.

    SQLite does not store timezone information, so values read back from
    the database may be naive even though they were written in UTC.
    Naive datetimes are assumed UTC; aware ones are converted.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.isoformat()


class TaskStatus(str, Enum):
    """
    Enumeration of task lifecycle statuses.

    Inherits from ``str`` so members compare equal to the raw strings
    stored in the database column and serialise directly to JSON.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TaskPriority(str, Enum):
    """Enumeration of task priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Team(db.Model):
    """
    A named group of members owning a set of projects.

    Attributes:
        id: Auto-incrementing primary key.
        owner_id: Identifier of the user who created the team.
        name: Display name of the team.
    """

    __tablename__ = "teams"

    id: int = db.Column(db.Integer, primary_key=True)
    owner_id: str = db.Column(db.String(128), nullable=False, index=True)
    name: str = db.Column(db.String(120), nullable=False)
    created_at: datetime = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: datetime = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    members = db.relationship(
        "TeamMember",
        back_populates="team",
        cascade="all, delete-orphan",
        order_by="TeamMember.id",
    )
    projects = db.relationship(
        "Project",
        back_populates="team",
        cascade="all, delete-orphan",
        order_by="Project.id",
    )

    def to_dict(self, *, include_members: bool = False) -> dict[str, Any]:
        data = {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "member_count": len(self.members),
            "project_count": len(self.projects),
            "created_at": _to_utc_iso(self.created_at),
            "updated_at": _to_utc_iso(self.updated_at),
        }
        if include_members:
            data["members"] = [member.to_dict() for member in self.members]
        return data

    def __repr__(self) -> str:
        return f"<Team {self.id}: {self.name}>"


class TeamMember(db.Model):
    """
    A person on a team who can be assigned tasks.

    Attributes:
        id: Auto-incrementing primary key.
        team_id: The team this member belongs to.
        name: Display name, unique within the team.
        role: Free-text role label.
        capacity: Maximum number of concurrently open tasks (0-5).
    """

    __tablename__ = "team_members"
    __table_args__ = (
        db.UniqueConstraint("team_id", "name", name="uq_team_members_team_name"),
        db.CheckConstraint(
            f"capacity >= {MIN_CAPACITY} AND capacity <= {MAX_CAPACITY}",
            name="ck_team_members_capacity",
        ),
    )

    id: int = db.Column(db.Integer, primary_key=True)
    team_id: int = db.Column(
        db.Integer,
        db.ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: str = db.Column(db.String(120), nullable=False)
    role: str = db.Column(db.String(120), nullable=False)
    capacity: int = db.Column(db.Integer, nullable=False, default=3)
    created_at: datetime = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: datetime = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    team = db.relationship("Team", back_populates="members")
    # No delete cascade: removing a member leaves its tasks unassigned.
    tasks = db.relationship("Task", back_populates="assigned_to")

    @property
    def open_tasks(self) -> list["Task"]:
        return [task for task in self.tasks if task.status != TaskStatus.DONE.value]

    def to_dict(self, *, include_tasks: bool = False) -> dict[str, Any]:
        open_tasks = self.open_tasks
        data = {
            "id": self.id,
            "team_id": self.team_id,
            "name": self.name,
            "role": self.role,
            "capacity": self.capacity,
            "current_load": len(open_tasks),
            "task_count": len(self.tasks),
            "created_at": _to_utc_iso(self.created_at),
            "updated_at": _to_utc_iso(self.updated_at),
        }
        if include_tasks:
            data["tasks"] = [task.to_summary() for task in self.tasks]
        return data

    def __repr__(self) -> str:
        return f"<TeamMember {self.id}: {self.name}>"


class Project(db.Model):
    """
    A body of work belonging to one team.

    Attributes:
        id: Auto-incrementing primary key.
        team_id: The owning team.
        owner_id: Identifier of the user who created the project.
        name: Display name.
        description: Optional longer text.
    """

    __tablename__ = "projects"

    id: int = db.Column(db.Integer, primary_key=True)
    team_id: int = db.Column(
        db.Integer,
        db.ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_id: str = db.Column(db.String(128), nullable=False, index=True)
    name: str = db.Column(db.String(200), nullable=False)
    description: str | None = db.Column(db.Text, nullable=True)
    created_at: datetime = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: datetime = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    team = db.relationship("Team", back_populates="projects")
    tasks = db.relationship(
        "Task",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Task.id",
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "team_name": self.team.name if self.team else None,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "task_count": len(self.tasks),
            "created_at": _to_utc_iso(self.created_at),
            "updated_at": _to_utc_iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name}>"


class Task(db.Model):
    """
    A unit of work inside a project, optionally assigned to a member.

    Attributes:
        id: Auto-incrementing primary key.
        project_id: The owning project.
        assigned_to_id: The assigned team member, or ``None``.
        title: Short summary of the task (max 200 characters).
        description: Optional longer text.
        status: Lifecycle status (see ``TaskStatus``).
        priority: Importance level (see ``TaskPriority``).
        due_date: Optional timezone-aware deadline.
    """

    __tablename__ = "tasks"

    id: int = db.Column(db.Integer, primary_key=True)
    project_id: int = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assigned_to_id: int | None = db.Column(
        db.Integer,
        db.ForeignKey("team_members.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    title: str = db.Column(db.String(200), nullable=False)
    description: str | None = db.Column(db.Text, nullable=True)
    status: str = db.Column(
        db.String(20),
        nullable=False,
        default=TaskStatus.PENDING.value,
        index=True,
    )
    priority: str = db.Column(
        db.String(20),
        nullable=False,
        default=TaskPriority.MEDIUM.value,
        index=True,
    )
    due_date: datetime | None = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at: datetime = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: datetime = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    project = db.relationship("Project", back_populates="tasks")
    assigned_to = db.relationship("TeamMember", back_populates="tasks")
    # Deleting a task keeps its audit entries with task_id nulled.
    activity = db.relationship("ActivityLog", back_populates="task")

    def to_summary(self) -> dict[str, Any]:
        """Return the compact shape used inside member and workload payloads."""
        return {
            "id": self.id,
            "title": self.title,
            "priority": self.priority,
            "status": self.status,
        }

    def to_dict(self) -> dict[str, Any]:
        """
        Serialise the task to a JSON-safe dictionary.

        Returns:
            All task fields, with datetimes as UTC ISO-8601 strings and the
            assignee rendered as ``{"id", "name"}`` (or ``None``).
        """
        assignee = None
        if self.assigned_to is not None:
            assignee = {"id": self.assigned_to.id, "name": self.assigned_to.name}
        return {
            "id": self.id,
            "project_id": self.project_id,
            "team_id": self.project.team_id if self.project else None,
            "assigned_to_id": self.assigned_to_id,
            "assigned_to": assignee,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "due_date": _to_utc_iso(self.due_date),
            "created_at": _to_utc_iso(self.created_at),
            "updated_at": _to_utc_iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Task {self.id}: {self.title}>"


class ActivityLog(db.Model):
    """
    Audit entry recording an assignment change.

    The ``metadata`` column is exposed as ``details`` because ``metadata``
    is reserved on declarative models.
    """

    __tablename__ = "activity_logs"

    id: int = db.Column(db.Integer, primary_key=True)
    action: str = db.Column(db.String(255), nullable=False)
    description: str = db.Column(db.Text, nullable=False)
    task_id: int | None = db.Column(
        db.Integer,
        db.ForeignKey("tasks.id", ondelete="SET NULL"),
        nullable=True,
    )
    user_id: str = db.Column(db.String(128), nullable=False, index=True)
    details: dict | None = db.Column("metadata", db.JSON, nullable=True)
    created_at: datetime = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        index=True,
    )

    task = db.relationship("Task", back_populates="activity")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "description": self.description,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "metadata": self.details,
            "created_at": _to_utc_iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<ActivityLog {self.id}: {self.action}>"


class SweepLease(db.Model):
    """
    Lease row marking a rebalancing sweep in progress.

    The primary key on ``name`` is what makes acquisition exclusive: a
    second insert for the same name fails with an integrity error.
    """

    __tablename__ = "sweep_leases"

    name: str = db.Column(db.String(64), primary_key=True)
    token: str = db.Column(db.String(64), nullable=False)
    holder_id: str = db.Column(db.String(128), nullable=False)
    acquired_at: datetime = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<SweepLease {self.name} held by {self.holder_id}>"
