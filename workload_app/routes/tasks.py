"""
REST API endpoints for tasks, the rebalancing sweep and the activity feed.

Every assignment change (create with an assignee, auto-assignment,
update of ``assigned_to_id``) is gated by the capacity evaluator:

* allowed -> the change is committed and logged,
* warned  -> ``409`` with the warning record; resend with
  ``force_assign: true`` once the user confirmed,
* rejected -> ``404`` (the member does not exist).

Endpoints:
    GET    /api/tasks                   - List tasks (filters: project_id, member_id, status, priority)
    POST   /api/tasks                   - Create a task
    GET    /api/tasks/<id>              - Retrieve a task
    PUT    /api/tasks/<id>              - Partial update of a task
    DELETE /api/tasks/<id>              - Delete a task
    PATCH  /api/tasks/<id>/status       - Update only the task status
    POST   /api/tasks/reassign          - Run one rebalancing sweep
    GET    /api/activity-logs           - The caller's recent audit entries
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, current_app, g, jsonify, request
from sqlalchemy import case, select

from .. import db
from ..auth import require_auth
from ..capacity import Rejected, Warned, find_best_member_for_task, validate_assignment
from ..errors import RebalanceError, SweepInProgressError
from ..locks import SweepLock
from ..models import ActivityLog, Project, Task, TaskPriority, TaskStatus, Team
from ..rebalancer import PlannedMove, SweepResult, run_rebalancing_sweep
from ..snapshots import MemberSnapshot
from ..store import WorkloadStore
from .api import (
    ErrorResponse,
    clean_optional_text,
    error_response,
    get_json_body,
    parse_bool,
    parse_due_date,
    validate_task_data,
)

logger = logging.getLogger(__name__)

tasks_bp = Blueprint("tasks", __name__)

UNASSIGNED = "Unassigned"
DEFAULT_ACTIVITY_LIMIT = 10
MAX_ACTIVITY_LIMIT = 100

PRIORITY_SORT_RANK = {
    TaskPriority.LOW.value: 0,
    TaskPriority.MEDIUM.value: 1,
    TaskPriority.HIGH.value: 2,
}


# =====================================================================
# Helper Functions
# =====================================================================


def _owned_task_query():
    """Base ``select`` restricted to tasks in the caller's teams."""
    return select(Task).join(Project).join(Team).where(Team.owner_id == g.user_id)


def get_owned_task(task_id: int) -> tuple[Task | None, ErrorResponse | None]:
    """Fetch a task in one of the caller's projects, or the error to return."""
    task = db.session.get(Task, task_id)
    if task is None:
        logger.warning("Task %s not found", task_id)
        return None, error_response("Task not found", 404)
    if task.project.team.owner_id != g.user_id:
        return None, error_response("Forbidden", 403)
    return task, None


def _moves_visible_to_caller(moves: list[PlannedMove]) -> list[PlannedMove]:
    """Keep only the moves made inside teams the caller owns."""
    owned_team_ids = set(db.session.scalars(select(Team.id).where(Team.owner_id == g.user_id)))
    return [move for move in moves if move.team_id in owned_team_ids]


def _is_member_id(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def gate_assignment(
    store: WorkloadStore,
    member_id: int,
    project: Project,
    *,
    force: bool,
) -> tuple[MemberSnapshot | None, ErrorResponse | None]:
    """
    Run a proposed assignee through the capacity evaluator.

    Returns:
        ``(member, None)`` when the assignment may be committed, otherwise
        ``(None, response)`` with the 400/404/409 response to send.
    """
    member = store.member_snapshot(member_id)
    if member is not None and member.team_id != project.team_id:
        return None, error_response("Member does not belong to this project's team", 400)

    decision = validate_assignment(member, force=force)
    if isinstance(decision, Rejected):
        logger.warning("Assignment rejected for member %s: %s", member_id, decision.reason)
        return None, (jsonify(decision.to_dict()), 404)
    if isinstance(decision, Warned):
        logger.info("Capacity warning for member %s: %s", member_id, decision.message)
        return None, (jsonify(decision.to_dict()), 409)
    return decision.member, None


# =====================================================================
# Task Endpoints
# =====================================================================


@tasks_bp.route("/tasks", methods=["GET"])
@require_auth
def get_tasks() -> tuple[Response, int]:
    """
    List tasks in the caller's projects, highest priority then newest first.

    Query Parameters:
        project_id: Only tasks of this project
        member_id: Only tasks assigned to this member, or ``unassigned``
        status: Filter by status (pending, in_progress, done)
        priority: Filter by priority (low, medium, high)
    """
    logger.info("GET /api/tasks - Fetching tasks for user_id=%s", g.user_id)

    stmt = _owned_task_query()

    project_id = request.args.get("project_id", type=int)
    if project_id is not None:
        stmt = stmt.where(Task.project_id == project_id)

    member_id = request.args.get("member_id")
    if member_id:
        if member_id == "unassigned":
            stmt = stmt.where(Task.assigned_to_id.is_(None))
        elif member_id.isdecimal() and member_id.isascii():
            stmt = stmt.where(Task.assigned_to_id == int(member_id))
        else:
            return error_response("member_id must be an integer or 'unassigned'", 400)

    status = request.args.get("status")
    if status in {s.value for s in TaskStatus}:
        stmt = stmt.where(Task.status == status)

    priority = request.args.get("priority")
    if priority in {p.value for p in TaskPriority}:
        stmt = stmt.where(Task.priority == priority)

    priority_rank = case(PRIORITY_SORT_RANK, value=Task.priority, else_=0)
    stmt = stmt.order_by(priority_rank.desc(), Task.created_at.desc(), Task.id.desc())

    tasks = db.session.scalars(stmt).all()
    logger.info("Found %s tasks", len(tasks))
    return jsonify({"tasks": [task.to_dict() for task in tasks], "count": len(tasks)}), 200


@tasks_bp.route("/tasks/<int:task_id>", methods=["GET"])
@require_auth
def get_task(task_id: int) -> tuple[Response, int]:
    task, error = get_owned_task(task_id)
    if error:
        return error
    return jsonify(task.to_dict()), 200


@tasks_bp.route("/tasks", methods=["POST"])
@require_auth
def create_task() -> tuple[Response, int]:
    """
    Create a task, optionally assigning it.

    Request Body (JSON):
        title: Task title (required)
        project_id: Owning project (required)
        description, status, priority, due_date: Optional task fields
        assigned_to_id: Member to assign (optional)
        auto_assign: Pick the least loaded member with spare capacity when
            no ``assigned_to_id`` is given; leaves the task unassigned if
            everybody is full
        force_assign: Confirm an assignment that triggered a capacity warning

    Returns:
        201 with the task, 409 with a warning record, or 400/403/404.
    """
    data = get_json_body()
    if data is None:
        return error_response("Request body must be JSON", 400)

    is_valid, message = validate_task_data(data, required_fields=["title"])
    if not is_valid:
        logger.warning("Validation failed: %s", message)
        return error_response(message, 400)

    project_id = data.get("project_id")
    if not _is_member_id(project_id):
        return error_response("Project ID is required", 400)

    project = db.session.get(Project, project_id)
    if project is None:
        return error_response("Project not found", 404)
    if project.team.owner_id != g.user_id:
        return error_response("You don't have permission to add tasks to this project", 403)

    store = WorkloadStore(db.session)
    assigned_to_id = data.get("assigned_to_id") or None
    if assigned_to_id is not None and not _is_member_id(assigned_to_id):
        return error_response("assigned_to_id must be an integer", 400)

    auto_assigned = False
    if parse_bool(data.get("auto_assign")) and assigned_to_id is None:
        best = find_best_member_for_task(store, project.team_id)
        if best is not None:
            assigned_to_id = best.id
            auto_assigned = True
        else:
            logger.info("No member with spare capacity in team %s; leaving task unassigned", project.team_id)

    assignee = None
    if assigned_to_id is not None:
        assignee, error = gate_assignment(
            store, assigned_to_id, project, force=parse_bool(data.get("force_assign"))
        )
        if error:
            return error

    task = Task(
        title=data["title"].strip(),
        description=clean_optional_text(data.get("description")),
        project_id=project.id,
        assigned_to_id=assignee.id if assignee else None,
        status=data.get("status", TaskStatus.PENDING.value),
        priority=data.get("priority", TaskPriority.MEDIUM.value),
        due_date=parse_due_date(data.get("due_date")),
    )
    db.session.add(task)
    db.session.flush()

    if assignee is not None:
        store.log_activity(
            "Task assigned",
            f'Task "{task.title}" assigned to {assignee.name}',
            task_id=task.id,
            user_id=g.user_id,
            metadata={"assigned_to_id": assignee.id, "auto_assigned": auto_assigned},
        )
    store.commit()

    logger.info("Created task with ID: %s", task.id)
    return jsonify(task.to_dict()), 201


@tasks_bp.route("/tasks/<int:task_id>", methods=["PUT"])
@require_auth
def update_task(task_id: int) -> tuple[Response, int]:
    """
    Partial update of a task.

    Only the fields present in the JSON body are modified.  Sending
    ``assigned_to_id`` as null or "" unassigns the task; a different
    member goes through the capacity check (``force_assign`` confirms a
    warning).  Re-sending the current assignee does not trigger a check.
    """
    task, error = get_owned_task(task_id)
    if error:
        return error

    data = get_json_body()
    if data is None:
        return error_response("Request body must be JSON", 400)

    is_valid, message = validate_task_data(data)
    if not is_valid:
        logger.warning("Validation failed: %s", message)
        return error_response(message, 400)

    store = WorkloadStore(db.session)
    previous_id = task.assigned_to_id
    previous_name = task.assigned_to.name if task.assigned_to else UNASSIGNED
    new_id = previous_id
    new_name = previous_name

    if "assigned_to_id" in data:
        requested = data["assigned_to_id"] or None
        if requested is None:
            new_id, new_name = None, UNASSIGNED
        elif not _is_member_id(requested):
            return error_response("assigned_to_id must be an integer", 400)
        elif requested != previous_id:
            assignee, error = gate_assignment(
                store, requested, task.project, force=parse_bool(data.get("force_assign"))
            )
            if error:
                return error
            new_id, new_name = assignee.id, assignee.name

    if "title" in data:
        task.title = data["title"].strip()
    if "description" in data:
        task.description = clean_optional_text(data["description"])
    if "status" in data:
        task.status = data["status"]
    if "priority" in data:
        task.priority = data["priority"]
    if "due_date" in data:
        task.due_date = parse_due_date(data["due_date"])

    if new_id != previous_id:
        store.reassign_task(task.id, new_id)
        store.log_activity(
            "Task reassigned",
            f'Task "{task.title}" reassigned from {previous_name} to {new_name}',
            task_id=task.id,
            user_id=g.user_id,
            metadata={"old_assigned_to_id": previous_id, "new_assigned_to_id": new_id},
        )
    store.commit()

    logger.info("Updated task %s", task_id)
    return jsonify(task.to_dict()), 200


@tasks_bp.route("/tasks/<int:task_id>", methods=["DELETE"])
@require_auth
def delete_task(task_id: int) -> tuple[Response, int]:
    task, error = get_owned_task(task_id)
    if error:
        return error

    db.session.delete(task)
    db.session.commit()

    logger.info("Deleted task %s", task_id)
    return jsonify({"message": "Task deleted successfully"}), 200


@tasks_bp.route("/tasks/<int:task_id>/status", methods=["PATCH"])
@require_auth
def update_task_status(task_id: int) -> tuple[Response, int]:
    """
    Update only the status of a task.

    Marking a task done frees a slot in the assignee's capacity; the
    status change itself is never gated.
    """
    task, error = get_owned_task(task_id)
    if error:
        return error

    data = get_json_body()
    if not data or "status" not in data:
        return error_response("'status' field is required", 400)

    valid_statuses = [s.value for s in TaskStatus]
    if data["status"] not in valid_statuses:
        return error_response(f"Invalid status. Must be one of: {valid_statuses}", 400)

    task.status = data["status"]
    db.session.commit()

    logger.info("Updated task %s status to %s", task_id, data["status"])
    return jsonify(task.to_dict()), 200


# =====================================================================
# Workload Endpoints
# =====================================================================


@tasks_bp.route("/tasks/reassign", methods=["POST"])
@require_auth
def reassign_tasks() -> tuple[Response, int]:
    """
    Run one rebalancing sweep across all teams.

    The sweep itself is global, but the response only reports moves in
    teams owned by the caller.

    Returns:
        200 with ``{"message", "count", "reassignments"}``; 409 while
        another sweep is running; 500 with the already committed
        reassignments when a move could not be persisted.
    """
    logger.info("POST /api/tasks/reassign - Sweep requested by user_id=%s", g.user_id)

    store = WorkloadStore(db.session)
    lock = SweepLock(
        db.session,
        holder_id=g.user_id,
        ttl_seconds=current_app.config.get("SWEEP_LOCK_TTL_SECONDS", 300),
    )
    try:
        result = run_rebalancing_sweep(store, g.user_id, lock)
    except SweepInProgressError:
        logger.warning("Rejected sweep for user_id=%s: another sweep is running", g.user_id)
        return error_response("Rebalancing already in progress", 409)
    except RebalanceError as exc:
        return error_response(
            "Failed to reassign tasks",
            500,
            reassignments=[move.to_dict() for move in _moves_visible_to_caller(exc.completed)],
        )

    visible = SweepResult(reassignments=_moves_visible_to_caller(result.reassignments))
    return jsonify(visible.to_dict()), 200


@tasks_bp.route("/activity-logs", methods=["GET"])
@require_auth
def list_activity_logs() -> tuple[Response, int]:
    """
    Return the caller's audit entries, newest first.

    Query Parameters:
        limit: Number of entries (default 10, max 100)
    """
    limit = request.args.get("limit", DEFAULT_ACTIVITY_LIMIT, type=int)
    limit = max(1, min(limit, MAX_ACTIVITY_LIMIT))

    stmt = (
        select(ActivityLog)
        .where(ActivityLog.user_id == g.user_id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(limit)
    )
    entries = db.session.scalars(stmt).all()
    return jsonify({"activity_logs": [entry.to_dict() for entry in entries], "count": len(entries)}), 200
