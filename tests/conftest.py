"""
Shared pytest fixtures for the workload service test suite.

Provides the Flask application, test client, database session, JWT
headers for two users, ORM factories for teams, members, projects and
tasks, and builders for the immutable snapshots consumed by the
balancing engine.
"""

from __future__ import annotations

import os
from itertools import count
from typing import Any

import pytest
from faker import Faker

from shared.test_helpers import (
    DEFAULT_TEST_USER_ID,
    SECOND_TEST_USER_ID,
    TEST_PUBLIC_KEY,
    auth_headers,
    create_test_token,
)

# Set testing environment before importing app
os.environ["FLASK_ENV"] = "testing"
os.environ["TEST_JWT_PUBLIC_KEY"] = TEST_PUBLIC_KEY

from workload_app import create_app, db
from workload_app.models import Project, Task, TaskPriority, TaskStatus, Team, TeamMember
from workload_app.snapshots import MemberSnapshot, TaskSnapshot, TeamSnapshot

fake = Faker()


# -----------------------------------------------------------------------------
# Application Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(scope="session")
def app():
    """Create the Flask app once for the whole test session."""
    application = create_app("testing")
    yield application


@pytest.fixture(scope="function")
def client(app):
    """Provide a Flask test client scoped to a single test function."""
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture(scope="function")
def db_session(app):
    """
    Provide a clean database for each test function.

    Creates all tables before the test and drops them afterwards so every
    test starts from an empty schema.
    """
    with app.app_context():
        db.create_all()
        yield db
        db.session.rollback()
        db.drop_all()


# -----------------------------------------------------------------------------
# Authentication Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def user_id() -> str:
    return DEFAULT_TEST_USER_ID


@pytest.fixture
def api_headers() -> dict[str, str]:
    """Authorization + JSON headers for ``user_one``."""
    return auth_headers(create_test_token(user_id=DEFAULT_TEST_USER_ID))


@pytest.fixture
def second_user_headers() -> dict[str, str]:
    """Authorization + JSON headers for ``user_two``, used in isolation tests."""
    return auth_headers(create_test_token(user_id=SECOND_TEST_USER_ID))


# -----------------------------------------------------------------------------
# ORM Factory Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def team_factory(db_session):
    """
    Factory fixture that creates Team rows.

    Example:
        def test_something(team_factory):
            team = team_factory(name="Platform")
    """

    def _create_team(*, name: str | None = None, owner_id: str = DEFAULT_TEST_USER_ID) -> Team:
        team = Team(name=name or fake.company(), owner_id=owner_id)
        db_session.session.add(team)
        db_session.session.commit()
        return team

    return _create_team


@pytest.fixture
def member_factory(db_session):
    """Factory fixture that adds a member to a team."""

    def _create_member(
        team: Team,
        *,
        name: str | None = None,
        role: str = "Engineer",
        capacity: int = 3,
    ) -> TeamMember:
        member = TeamMember(
            team_id=team.id,
            name=name or fake.unique.first_name(),
            role=role,
            capacity=capacity,
        )
        db_session.session.add(member)
        db_session.session.commit()
        return member

    return _create_member


@pytest.fixture
def project_factory(db_session):
    """Factory fixture that creates a project in a team."""

    def _create_project(team: Team, *, name: str | None = None) -> Project:
        project = Project(
            team_id=team.id,
            owner_id=team.owner_id,
            name=name or fake.catch_phrase(),
            description=fake.sentence(),
        )
        db_session.session.add(project)
        db_session.session.commit()
        return project

    return _create_project


@pytest.fixture
def task_factory(db_session):
    """Factory fixture that creates a task, optionally assigned."""

    def _create_task(
        project: Project,
        *,
        assigned_to: TeamMember | None = None,
        title: str | None = None,
        status: str = TaskStatus.PENDING.value,
        priority: str = TaskPriority.MEDIUM.value,
    ) -> Task:
        task = Task(
            project_id=project.id,
            assigned_to_id=assigned_to.id if assigned_to else None,
            title=title or fake.sentence(nb_words=4),
            description=fake.paragraph(),
            status=status,
            priority=priority,
        )
        db_session.session.add(task)
        db_session.session.commit()
        return task

    return _create_task


@pytest.fixture
def staffed_team(team_factory, member_factory, project_factory) -> dict[str, Any]:
    """
    A team with one project and two members of capacity 2.

    Returns:
        Dictionary with ``team``, ``project``, ``alice`` and ``bob``.
    """
    team = team_factory(name="Platform")
    return {
        "team": team,
        "project": project_factory(team, name="Launch"),
        "alice": member_factory(team, name="Alice", capacity=2),
        "bob": member_factory(team, name="Bob", capacity=2),
    }


# -----------------------------------------------------------------------------
# Snapshot Builders
# -----------------------------------------------------------------------------


@pytest.fixture
def make_member():
    """
    Build ``MemberSnapshot`` values without touching the database.

    ``tasks`` accepts priorities (open PENDING tasks) or full
    ``(priority, status)`` tuples.
    """
    ids = count(1)

    def _make_member(
        name: str,
        capacity: int,
        tasks: list[TaskPriority | tuple[TaskPriority, TaskStatus]] = (),
        *,
        team_id: int = 1,
    ) -> MemberSnapshot:
        member_id = next(ids)
        snapshots = []
        for spec in tasks:
            priority, status = spec if isinstance(spec, tuple) else (spec, TaskStatus.PENDING)
            task_id = member_id * 100 + len(snapshots)
            snapshots.append(
                TaskSnapshot(
                    id=task_id,
                    title=f"{name} task {len(snapshots) + 1}",
                    priority=priority,
                    status=status,
                )
            )
        return MemberSnapshot(
            id=member_id,
            team_id=team_id,
            name=name,
            role="Engineer",
            capacity=capacity,
            tasks=tuple(snapshots),
        )

    return _make_member


@pytest.fixture
def make_team():
    """Build a ``TeamSnapshot`` from member snapshots."""

    def _make_team(*members: MemberSnapshot, name: str = "Platform", team_id: int = 1) -> TeamSnapshot:
        return TeamSnapshot(id=team_id, name=name, members=tuple(members))

    return _make_team
