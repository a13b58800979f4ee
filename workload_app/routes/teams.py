"""
REST API endpoints for teams, their members and workload views.

Every endpoint requires authentication and only exposes teams owned by
the caller.

Endpoints:
    GET    /api/teams                                - List own teams
    POST   /api/teams                                - Create a team
    GET    /api/teams/<id>                           - Team with members and projects
    PUT    /api/teams/<id>                           - Rename a team
    DELETE /api/teams/<id>                           - Delete a team
    GET    /api/teams/<id>/members                   - List members
    POST   /api/teams/<id>/members                   - Add a member
    GET    /api/teams/<id>/members/<member_id>       - Member with tasks
    PUT    /api/teams/<id>/members/<member_id>       - Update a member
    DELETE /api/teams/<id>/members/<member_id>       - Remove a member
    GET    /api/teams/<id>/workload                  - Load vs. capacity per member
    GET    /api/teams/<id>/best-member               - Auto-assignment candidate
    GET    /api/members/<member_id>/assignment-check - Would one more task fit?
"""

from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, Response, current_app, g, jsonify, request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .. import db
from ..auth import require_auth
from ..capacity import (
    Rejected,
    best_member_for_assignment,
    check_assignment,
    current_load,
    is_over_capacity,
)
from ..models import MAX_CAPACITY, MIN_CAPACITY, Team, TeamMember
from ..rebalancer import is_overloaded
from ..snapshots import MemberSnapshot
from ..store import WorkloadStore
from .api import NAME_MAX_LENGTH, ErrorResponse, error_response, get_json_body, is_blank, parse_bool

logger = logging.getLogger(__name__)

teams_bp = Blueprint("teams", __name__)

DUPLICATE_MEMBER = "A member with this name already exists in this team"


# =====================================================================
# Helper Functions
# =====================================================================


def get_owned_team(team_id: int) -> tuple[Team | None, ErrorResponse | None]:
    """Fetch a team the caller owns, or the 404/403 response to return."""
    team = db.session.get(Team, team_id)
    if team is None:
        logger.warning("Team %s not found", team_id)
        return None, error_response("Team not found", 404)
    if team.owner_id != g.user_id:
        logger.warning("User %s denied access to team %s", g.user_id, team_id)
        return None, error_response("Forbidden", 403)
    return team, None


def _get_team_member(team: Team, member_id: int) -> TeamMember | None:
    member = db.session.get(TeamMember, member_id)
    if member is None or member.team_id != team.id:
        return None
    return member


def _validate_team_name(data: dict) -> str | None:
    if is_blank(data.get("name")):
        return "Team name is required"
    if len(data["name"].strip()) > NAME_MAX_LENGTH:
        return f"Team name must be {NAME_MAX_LENGTH} characters or less"
    return None


def validate_member_data(data: dict, *, partial: bool = False) -> str | None:
    """
    Validate a member payload.

    Args:
        data: The deserialised JSON body.
        partial: When True (updates), only the fields present are checked.

    Returns:
        An error message, or None when the payload is valid.
    """
    for field in ("name", "role"):
        if field in data or not partial:
            if is_blank(data.get(field)):
                if partial:
                    return f"Member {field} cannot be empty"
                return f"Member {field} is required"
            if len(data[field].strip()) > NAME_MAX_LENGTH:
                return f"Member {field} must be {NAME_MAX_LENGTH} characters or less"

    if "capacity" in data:
        capacity = data["capacity"]
        # bool is an int subclass; reject it explicitly.
        if (
            not isinstance(capacity, int)
            or isinstance(capacity, bool)
            or not MIN_CAPACITY <= capacity <= MAX_CAPACITY
        ):
            return f"Capacity must be a number between {MIN_CAPACITY} and {MAX_CAPACITY}"

    return None


def _name_taken(team_id: int, name: str, exclude_member_id: int | None = None) -> bool:
    stmt = select(TeamMember.id).where(TeamMember.team_id == team_id, TeamMember.name == name)
    if exclude_member_id is not None:
        stmt = stmt.where(TeamMember.id != exclude_member_id)
    return db.session.scalar(stmt) is not None


def _workload_entry(member: MemberSnapshot) -> dict[str, Any]:
    load = current_load(member)
    return {
        **member.to_dict(),
        "current_load": load,
        "spare_capacity": max(member.capacity - load, 0),
        "over_capacity": is_over_capacity(member),
        "overloaded": is_overloaded(member),
        "open_tasks": [
            {
                "id": task.id,
                "title": task.title,
                "priority": task.priority.value,
                "status": task.status.value,
            }
            for task in member.tasks
        ],
    }


# =====================================================================
# Team Endpoints
# =====================================================================


@teams_bp.route("/teams", methods=["GET"])
@require_auth
def list_teams() -> tuple[Response, int]:
    """List the caller's teams, newest first."""
    logger.info("GET /api/teams - Fetching teams for user_id=%s", g.user_id)

    stmt = (
        select(Team)
        .where(Team.owner_id == g.user_id)
        .order_by(Team.created_at.desc(), Team.id.desc())
    )
    teams = db.session.scalars(stmt).all()
    return jsonify({"teams": [team.to_dict(include_members=True) for team in teams], "count": len(teams)}), 200


@teams_bp.route("/teams", methods=["POST"])
@require_auth
def create_team() -> tuple[Response, int]:
    """
    Create a team owned by the caller.

    Request Body (JSON):
        name: Team name (required)
    """
    data = get_json_body()
    if data is None:
        return error_response("Request body must be JSON", 400)

    error = _validate_team_name(data)
    if error:
        return error_response(error, 400)

    team = Team(name=data["name"].strip(), owner_id=g.user_id)
    db.session.add(team)
    db.session.commit()

    logger.info("Created team %s for user_id=%s", team.id, g.user_id)
    return jsonify(team.to_dict(include_members=True)), 201


@teams_bp.route("/teams/<int:team_id>", methods=["GET"])
@require_auth
def get_team(team_id: int) -> tuple[Response, int]:
    """Return a team with its members (including load) and projects."""
    team, error = get_owned_team(team_id)
    if error:
        return error

    data = team.to_dict(include_members=True)
    data["projects"] = [project.to_dict() for project in team.projects]
    return jsonify(data), 200


@teams_bp.route("/teams/<int:team_id>", methods=["PUT"])
@require_auth
def update_team(team_id: int) -> tuple[Response, int]:
    """Rename a team."""
    team, error = get_owned_team(team_id)
    if error:
        return error

    data = get_json_body()
    if data is None:
        return error_response("Request body must be JSON", 400)

    message = _validate_team_name(data)
    if message:
        return error_response(message, 400)

    team.name = data["name"].strip()
    db.session.commit()

    logger.info("Renamed team %s", team_id)
    return jsonify(team.to_dict(include_members=True)), 200


@teams_bp.route("/teams/<int:team_id>", methods=["DELETE"])
@require_auth
def delete_team(team_id: int) -> tuple[Response, int]:
    """Delete a team together with its members and projects."""
    team, error = get_owned_team(team_id)
    if error:
        return error

    db.session.delete(team)
    db.session.commit()

    logger.info("Deleted team %s", team_id)
    return jsonify({"message": "Team deleted successfully"}), 200


# =====================================================================
# Member Endpoints
# =====================================================================


@teams_bp.route("/teams/<int:team_id>/members", methods=["GET"])
@require_auth
def list_members(team_id: int) -> tuple[Response, int]:
    """List a team's members in the order they joined."""
    team, error = get_owned_team(team_id)
    if error:
        return error

    members = [member.to_dict() for member in team.members]
    return jsonify({"members": members, "count": len(members)}), 200


@teams_bp.route("/teams/<int:team_id>/members", methods=["POST"])
@require_auth
def create_member(team_id: int) -> tuple[Response, int]:
    """
    Add a member to a team.

    Request Body (JSON):
        name: Member name, unique within the team (required)
        role: Role label (required)
        capacity: Maximum open tasks, 0-5 (optional, default from config)
    """
    team, error = get_owned_team(team_id)
    if error:
        return error

    data = get_json_body()
    if data is None:
        return error_response("Request body must be JSON", 400)

    message = validate_member_data(data)
    if message:
        return error_response(message, 400)

    name = data["name"].strip()
    if _name_taken(team.id, name):
        return error_response(DUPLICATE_MEMBER, 400)

    member = TeamMember(
        team_id=team.id,
        name=name,
        role=data["role"].strip(),
        capacity=data.get("capacity", current_app.config.get("DEFAULT_MEMBER_CAPACITY", 3)),
    )
    db.session.add(member)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return error_response(DUPLICATE_MEMBER, 400)

    logger.info("Added member %s to team %s", member.id, team.id)
    return jsonify(member.to_dict()), 201


@teams_bp.route("/teams/<int:team_id>/members/<int:member_id>", methods=["GET"])
@require_auth
def get_member(team_id: int, member_id: int) -> tuple[Response, int]:
    """Return a member with every task assigned to them."""
    team, error = get_owned_team(team_id)
    if error:
        return error

    member = _get_team_member(team, member_id)
    if member is None:
        return error_response("Member not found", 404)
    return jsonify(member.to_dict(include_tasks=True)), 200


@teams_bp.route("/teams/<int:team_id>/members/<int:member_id>", methods=["PUT"])
@require_auth
def update_member(team_id: int, member_id: int) -> tuple[Response, int]:
    """Update a member's name, role or capacity (partial update)."""
    team, error = get_owned_team(team_id)
    if error:
        return error

    member = _get_team_member(team, member_id)
    if member is None:
        return error_response("Member not found", 404)

    data = get_json_body()
    if data is None:
        return error_response("Request body must be JSON", 400)

    message = validate_member_data(data, partial=True)
    if message:
        return error_response(message, 400)

    if "name" in data:
        name = data["name"].strip()
        if _name_taken(team.id, name, exclude_member_id=member.id):
            return error_response(DUPLICATE_MEMBER, 400)
        member.name = name
    if "role" in data:
        member.role = data["role"].strip()
    if "capacity" in data:
        member.capacity = data["capacity"]

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return error_response(DUPLICATE_MEMBER, 400)

    logger.info("Updated member %s", member_id)
    return jsonify(member.to_dict()), 200


@teams_bp.route("/teams/<int:team_id>/members/<int:member_id>", methods=["DELETE"])
@require_auth
def delete_member(team_id: int, member_id: int) -> tuple[Response, int]:
    """Remove a member; their tasks become unassigned."""
    team, error = get_owned_team(team_id)
    if error:
        return error

    member = _get_team_member(team, member_id)
    if member is None:
        return error_response("Member not found", 404)

    db.session.delete(member)
    db.session.commit()

    logger.info("Deleted member %s from team %s", member_id, team_id)
    return jsonify({"message": "Member deleted successfully"}), 200


# =====================================================================
# Workload Endpoints
# =====================================================================


@teams_bp.route("/teams/<int:team_id>/workload", methods=["GET"])
@require_auth
def team_workload(team_id: int) -> tuple[Response, int]:
    """Report each member's open-task load against their capacity."""
    _, error = get_owned_team(team_id)
    if error:
        return error

    snapshot = WorkloadStore(db.session).team_snapshot(team_id)
    best = best_member_for_assignment(snapshot)
    return (
        jsonify(
            {
                "team_id": snapshot.id,
                "team_name": snapshot.name,
                "members": [_workload_entry(member) for member in snapshot.members],
                "best_member_id": best.id if best else None,
            }
        ),
        200,
    )


@teams_bp.route("/teams/<int:team_id>/best-member", methods=["GET"])
@require_auth
def best_member(team_id: int) -> tuple[Response, int]:
    """Return the member a new task would be auto-assigned to, or null."""
    _, error = get_owned_team(team_id)
    if error:
        return error

    snapshot = WorkloadStore(db.session).team_snapshot(team_id)
    member = best_member_for_assignment(snapshot)
    payload = None
    if member is not None:
        payload = {**member.to_dict(), "current_load": current_load(member)}
    return jsonify({"member": payload}), 200


@teams_bp.route("/members/<int:member_id>/assignment-check", methods=["GET"])
@require_auth
def assignment_check(member_id: int) -> tuple[Response, int]:
    """
    Classify assigning one more task to a member.

    Query Parameters:
        force: ``true`` after the user confirmed a capacity warning.

    Returns:
        The decision record: 200 for allowed or warned, 404 when the
        member does not exist, 403 for another user's member.
    """
    member = db.session.get(TeamMember, member_id)
    if member is not None and member.team.owner_id != g.user_id:
        return error_response("Forbidden", 403)

    decision = check_assignment(
        WorkloadStore(db.session),
        member_id,
        force=parse_bool(request.args.get("force")),
    )
    status = 404 if isinstance(decision, Rejected) else 200
    return jsonify(decision.to_dict()), status
