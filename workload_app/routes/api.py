"""
Health check, error handlers and request helpers shared by the blueprints.

Endpoints:
    GET /api/health - Service health check (public)
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any

from flask import Blueprint, Response, jsonify, request

from ..models import TaskPriority, TaskStatus

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)

TITLE_MAX_LENGTH = 200
NAME_MAX_LENGTH = 120

ErrorResponse = tuple[Response, int]


# =====================================================================
# Helper Functions
# =====================================================================


def error_response(message: str, status: int, **extra: Any) -> ErrorResponse:
    """Build the ``{"error": ...}`` body every failing endpoint returns."""
    return jsonify({"error": message, **extra}), status


def get_json_body() -> dict[str, Any] | None:
    """Return the request's JSON object, or None when absent or not an object."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None
    return data


def is_blank(value: Any) -> bool:
    """True for missing, non-string or whitespace-only values."""
    return not isinstance(value, str) or not value.strip()


def parse_bool(value: Any) -> bool:
    """Interpret JSON booleans and query-string flags such as ``?force=true``."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def ensure_utc(value: datetime) -> datetime:
    """Normalise a datetime to UTC, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_due_date(date_string: str | None) -> datetime | None:
    """Parse an optional ISO-8601 string into a UTC datetime."""
    if not date_string:
        return None
    parsed = datetime.fromisoformat(date_string.replace("Z", "+00:00"))
    return ensure_utc(parsed)


def validate_task_data(
    data: dict, required_fields: list[str] | None = None
) -> tuple[bool, str | None]:
    """
    Validate an incoming task payload.

    Checks required fields, enum membership for status/priority, title
    length and ISO-8601 conformance for ``due_date``.

    Returns:
        ``(is_valid, error_message)``; the message is None when valid.
    """
    if required_fields:
        for field in required_fields:
            value = data.get(field)
            if not value or (isinstance(value, str) and not value.strip()):
                return False, f"'{field}' is required"

    if "title" in data:
        if is_blank(data["title"]):
            return False, "Task title cannot be empty"
        if len(data["title"].strip()) > TITLE_MAX_LENGTH:
            return False, f"Title must be {TITLE_MAX_LENGTH} characters or less"

    if "status" in data:
        valid_statuses = [s.value for s in TaskStatus]
        if data["status"] not in valid_statuses:
            return False, f"Invalid status. Must be one of: {valid_statuses}"

    if "priority" in data:
        valid_priorities = [p.value for p in TaskPriority]
        if data["priority"] not in valid_priorities:
            return False, f"Invalid priority. Must be one of: {valid_priorities}"

    if "description" in data and data["description"] is not None:
        if not isinstance(data["description"], str):
            return False, "Description must be a string"

    if "due_date" in data and data["due_date"]:
        try:
            datetime.fromisoformat(data["due_date"].replace("Z", "+00:00"))
        except (ValueError, AttributeError):
            return (
                False,
                "Invalid due_date format. Use ISO format (YYYY-MM-DDTHH:MM:SS)",
            )

    return True, None


def clean_optional_text(value: Any) -> str | None:
    """Strip optional free text, storing empty strings as None."""
    if not isinstance(value, str):
        return None
    return value.strip() or None


# =====================================================================
# API Endpoints
# =====================================================================


@api_bp.route("/health", methods=["GET"])
def health_check() -> tuple[Response, int]:
    """Public liveness probe for load balancers and orchestrators."""
    return (
        jsonify(
            {
                "status": "healthy",
                "service": "workload",
                "environment": os.getenv("ENVIRONMENT", "unknown"),
                "version": os.getenv("APP_VERSION", "unknown"),
            }
        ),
        200,
    )


# =====================================================================
# Error Handlers
# =====================================================================


@api_bp.app_errorhandler(400)
def bad_request(_: Exception) -> tuple[Response, int]:
    """Return a JSON 400 Bad Request error."""
    return jsonify({"error": "Bad request"}), 400


@api_bp.app_errorhandler(404)
def not_found(_: Exception) -> tuple[Response, int]:
    """Return a JSON 404 Not Found error."""
    return jsonify({"error": "Resource not found"}), 404


@api_bp.app_errorhandler(405)
def method_not_allowed(_: Exception) -> tuple[Response, int]:
    """Return a JSON 405 Method Not Allowed error."""
    return jsonify({"error": "Method not allowed"}), 405


@api_bp.app_errorhandler(500)
def internal_error(error: Exception) -> tuple[Response, int]:
    """Log the exception and return a JSON 500 Internal Server Error."""
    logger.error("Internal server error: %s", error)
    return jsonify({"error": "Internal server error"}), 500
