"""
API tests for POST /api/tasks/reassign, the rebalancing sweep.

Key behaviours covered:
- Lowest-priority tasks move from overloaded members to idle teammates
- Members exactly at capacity are left alone
- A live sweep lease makes a concurrent request fail with 409
- A failure mid-sweep keeps the moves already committed and reports them
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from workload_app.locks import REBALANCE_LEASE
from workload_app.models import ActivityLog, SweepLease, Task, TaskPriority, TaskStatus
from workload_app.store import WorkloadStore

pytestmark = pytest.mark.integration

REASSIGN_URL = "/api/tasks/reassign"


def _assignee_id(db_session, task_id):
    db_session.session.expire_all()
    return db_session.session.get(Task, task_id).assigned_to_id


def test_sweep_moves_lowest_priority_task(client, db_session, api_headers, staffed_team, task_factory):
    # Arrange
    project = staffed_team["project"]
    alice, bob = staffed_team["alice"], staffed_team["bob"]
    high = task_factory(project, assigned_to=alice, priority=TaskPriority.HIGH.value)
    medium = task_factory(project, assigned_to=alice, priority=TaskPriority.MEDIUM.value)
    low = task_factory(project, assigned_to=alice, priority=TaskPriority.LOW.value, title="Tidy backlog")

    # Act
    response = client.post(REASSIGN_URL, headers=api_headers)

    # Assert
    assert response.status_code == 200
    assert response.get_json() == {
        "message": "Successfully reassigned 1 task(s)",
        "count": 1,
        "reassignments": [
            {
                "task_id": low.id,
                "task_title": "Tidy backlog",
                "from_member": "Alice",
                "to_member": "Bob",
                "team_name": "Platform",
            }
        ],
    }
    assert _assignee_id(db_session, low.id) == bob.id
    assert _assignee_id(db_session, medium.id) == alice.id
    assert _assignee_id(db_session, high.id) == alice.id

    entry = db_session.session.query(ActivityLog).one()
    assert entry.action == "Reassigned from Alice to Bob"
    assert entry.description == 'Task "Tidy backlog" reassigned from Alice to Bob'
    assert entry.user_id == "user_one"
    assert entry.task_id == low.id
    assert entry.details["rebalanced"] is True
    assert entry.details["old_assigned_to_id"] == alice.id
    assert entry.details["new_assigned_to_id"] == bob.id


def test_member_at_capacity_is_not_rebalanced(client, db_session, api_headers, staffed_team, task_factory):
    """Full but not overloaded: the sweep is a no-op while new work is still warned."""
    # Arrange
    alice = staffed_team["alice"]
    task_factory(staffed_team["project"], assigned_to=alice, priority=TaskPriority.LOW.value)
    task_factory(staffed_team["project"], assigned_to=alice, priority=TaskPriority.LOW.value)

    # Act
    response = client.post(REASSIGN_URL, headers=api_headers)
    check = client.get(f"/api/members/{alice.id}/assignment-check", headers=api_headers)

    # Assert
    assert response.status_code == 200
    assert response.get_json()["count"] == 0
    assert check.get_json()["warning"] is True


def test_done_tasks_do_not_count_towards_overload(client, api_headers, staffed_team, task_factory):
    alice = staffed_team["alice"]
    project = staffed_team["project"]
    task_factory(project, assigned_to=alice, priority=TaskPriority.LOW.value)
    task_factory(project, assigned_to=alice, priority=TaskPriority.LOW.value)
    task_factory(project, assigned_to=alice, status=TaskStatus.DONE.value)

    response = client.post(REASSIGN_URL, headers=api_headers)

    assert response.get_json()["count"] == 0


def test_no_available_target_moves_nothing(client, db_session, api_headers, staffed_team, task_factory):
    # Arrange
    project = staffed_team["project"]
    alice, bob = staffed_team["alice"], staffed_team["bob"]
    for priority in (TaskPriority.HIGH, TaskPriority.HIGH, TaskPriority.LOW, TaskPriority.HIGH):
        task_factory(project, assigned_to=alice, priority=priority.value)
    task_factory(project, assigned_to=bob)
    task_factory(project, assigned_to=bob)

    # Act
    response = client.post(REASSIGN_URL, headers=api_headers)

    # Assert
    assert response.status_code == 200
    assert response.get_json()["reassignments"] == []
    assert db_session.session.query(ActivityLog).count() == 0


def test_sweep_covers_every_team_in_creation_order(
    client, db_session, api_headers, team_factory, member_factory, project_factory, task_factory
):
    # Arrange
    low_tasks = []
    for name, owner in (("Alpha", "user_one"), ("Beta", "user_two")):
        team = team_factory(name=name, owner_id=owner)
        busy = member_factory(team, name=f"{name} busy", capacity=1)
        idle = member_factory(team, name=f"{name} idle", capacity=1)
        project = project_factory(team)
        task_factory(project, assigned_to=busy, priority=TaskPriority.MEDIUM.value)
        low = task_factory(project, assigned_to=busy, priority=TaskPriority.LOW.value)
        low_tasks.append((low.id, idle.id))

    # Act
    response = client.post(REASSIGN_URL, headers=api_headers)

    # Assert
    moves = response.get_json()["reassignments"]
    assert [(m["team_name"], m["from_member"], m["to_member"]) for m in moves] == [
        ("Alpha", "Alpha busy", "Alpha idle"),
    ]
    for task_id, idle_id in low_tasks:
        assert _assignee_id(db_session, task_id) == idle_id


def test_sweep_response_hides_other_owners_moves(
    client, db_session, second_user_headers, staffed_team, task_factory
):
    # Arrange
    alice, bob = staffed_team["alice"], staffed_team["bob"]
    private = task_factory(
        staffed_team["project"], assigned_to=alice, priority=TaskPriority.LOW.value, title="Private"
    )
    for _ in range(2):
        task_factory(staffed_team["project"], assigned_to=alice, priority=TaskPriority.HIGH.value)

    # Act
    response = client.post(REASSIGN_URL, headers=second_user_headers)

    # Assert
    assert response.status_code == 200
    assert response.get_json() == {
        "message": "Successfully reassigned 0 task(s)",
        "count": 0,
        "reassignments": [],
    }
    assert _assignee_id(db_session, private.id) == bob.id


def test_second_sweep_is_a_no_op(client, api_headers, staffed_team, task_factory):
    alice = staffed_team["alice"]
    for _ in range(3):
        task_factory(staffed_team["project"], assigned_to=alice, priority=TaskPriority.LOW.value)

    first = client.post(REASSIGN_URL, headers=api_headers)
    second = client.post(REASSIGN_URL, headers=api_headers)

    assert first.get_json()["count"] == 1
    assert second.get_json()["count"] == 0


def test_concurrent_sweep_is_rejected(client, db_session, api_headers, staffed_team, task_factory):
    # Arrange
    alice = staffed_team["alice"]
    tasks = [
        task_factory(staffed_team["project"], assigned_to=alice, priority=TaskPriority.LOW.value)
        for _ in range(3)
    ]
    db_session.session.add(
        SweepLease(
            name=REBALANCE_LEASE,
            token="held-elsewhere",
            holder_id="user_two",
            acquired_at=datetime.now(timezone.utc),
        )
    )
    db_session.session.commit()

    # Act
    response = client.post(REASSIGN_URL, headers=api_headers)

    # Assert
    assert response.status_code == 409
    assert response.get_json() == {"error": "Rebalancing already in progress"}
    assert all(_assignee_id(db_session, task.id) == alice.id for task in tasks)


def test_lease_is_released_after_sweep(client, db_session, api_headers, staffed_team):
    response = client.post(REASSIGN_URL, headers=api_headers)

    assert response.status_code == 200
    assert db_session.session.query(SweepLease).count() == 0


def test_failure_mid_sweep_reports_committed_moves(
    client, db_session, api_headers, staffed_team, task_factory, monkeypatch
):
    # Arrange
    project = staffed_team["project"]
    alice, bob = staffed_team["alice"], staffed_team["bob"]
    bob.capacity = 5
    db_session.session.commit()
    first = task_factory(project, assigned_to=alice, priority=TaskPriority.LOW.value, title="First")
    second = task_factory(project, assigned_to=alice, priority=TaskPriority.LOW.value, title="Second")
    task_factory(project, assigned_to=alice, priority=TaskPriority.HIGH.value)
    task_factory(project, assigned_to=alice, priority=TaskPriority.HIGH.value)

    original_log_activity = WorkloadStore.log_activity
    calls = {"count": 0}

    def flaky_log_activity(self, *args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 2:
            raise OperationalError("INSERT INTO activity_logs", {}, Exception("database is locked"))
        return original_log_activity(self, *args, **kwargs)

    monkeypatch.setattr(WorkloadStore, "log_activity", flaky_log_activity)

    # Act
    response = client.post(REASSIGN_URL, headers=api_headers)

    # Assert
    assert response.status_code == 500
    data = response.get_json()
    assert data["error"] == "Failed to reassign tasks"
    assert [move["task_id"] for move in data["reassignments"]] == [first.id]
    assert _assignee_id(db_session, first.id) == bob.id
    assert _assignee_id(db_session, second.id) == alice.id
    assert db_session.session.query(ActivityLog).count() == 1
    assert db_session.session.query(SweepLease).count() == 0
