"""
REST API endpoints for projects.

Endpoints:
    GET    /api/projects          - List own projects (optional ``team_id`` filter)
    POST   /api/projects          - Create a project for one of the caller's teams
    GET    /api/projects/<id>     - Retrieve a project
    DELETE /api/projects/<id>     - Delete a project and its tasks
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, g, jsonify, request
from sqlalchemy import select

from .. import db
from ..auth import require_auth
from ..models import Project, Team
from .api import ErrorResponse, clean_optional_text, error_response, get_json_body, is_blank

logger = logging.getLogger(__name__)

projects_bp = Blueprint("projects", __name__)

PROJECT_NAME_MAX_LENGTH = 200


def get_owned_project(project_id: int) -> tuple[Project | None, ErrorResponse | None]:
    """Fetch a project the caller owns, or the 404/403 response to return."""
    project = db.session.get(Project, project_id)
    if project is None:
        logger.warning("Project %s not found", project_id)
        return None, error_response("Project not found", 404)
    if project.team.owner_id != g.user_id:
        return None, error_response("Forbidden", 403)
    return project, None


@projects_bp.route("/projects", methods=["GET"])
@require_auth
def list_projects() -> tuple[Response, int]:
    """
    List projects of the caller's teams, newest first.

    Query Parameters:
        team_id: Only projects of this team.
    """
    logger.info("GET /api/projects - Fetching projects for user_id=%s", g.user_id)

    stmt = select(Project).join(Team).where(Team.owner_id == g.user_id)
    team_id = request.args.get("team_id", type=int)
    if team_id is not None:
        stmt = stmt.where(Project.team_id == team_id)
    stmt = stmt.order_by(Project.created_at.desc(), Project.id.desc())

    projects = db.session.scalars(stmt).all()
    return jsonify({"projects": [project.to_dict() for project in projects], "count": len(projects)}), 200


@projects_bp.route("/projects", methods=["POST"])
@require_auth
def create_project() -> tuple[Response, int]:
    """
    Create a project.

    Request Body (JSON):
        name: Project name (required)
        team_id: Owning team, which must belong to the caller (required)
        description: Optional text
    """
    data = get_json_body()
    if data is None:
        return error_response("Request body must be JSON", 400)

    if is_blank(data.get("name")):
        return error_response("Project name is required", 400)
    if len(data["name"].strip()) > PROJECT_NAME_MAX_LENGTH:
        return error_response(f"Project name must be {PROJECT_NAME_MAX_LENGTH} characters or less", 400)

    team_id = data.get("team_id")
    if not isinstance(team_id, int) or isinstance(team_id, bool):
        return error_response("Team ID is required", 400)

    team = db.session.get(Team, team_id)
    if team is None:
        return error_response("Team not found", 404)
    if team.owner_id != g.user_id:
        return error_response("You don't have permission to create projects for this team", 403)

    project = Project(
        name=data["name"].strip(),
        description=clean_optional_text(data.get("description")),
        team_id=team.id,
        owner_id=g.user_id,
    )
    db.session.add(project)
    db.session.commit()

    logger.info("Created project %s in team %s", project.id, team.id)
    return jsonify(project.to_dict()), 201


@projects_bp.route("/projects/<int:project_id>", methods=["GET"])
@require_auth
def get_project(project_id: int) -> tuple[Response, int]:
    project, error = get_owned_project(project_id)
    if error:
        return error
    return jsonify(project.to_dict()), 200


@projects_bp.route("/projects/<int:project_id>", methods=["DELETE"])
@require_auth
def delete_project(project_id: int) -> tuple[Response, int]:
    project, error = get_owned_project(project_id)
    if error:
        return error

    db.session.delete(project)
    db.session.commit()

    logger.info("Deleted project %s", project_id)
    return jsonify({"message": "Project deleted successfully"}), 200
