"""
Team Workload Service Flask Application Factory.

Provides the ``create_app`` factory that assembles the service: JSON REST
endpoints for teams, members, projects and tasks, plus the workload
balancing endpoints (assignment checks, auto-assignment and the
rebalancing sweep).

Blueprints, all mounted under ``/api``:
  * **api_bp** -- health check and JSON error handlers.
  * **teams_bp** -- teams, members and per-team workload views.
  * **projects_bp** -- projects owned by a team.
  * **tasks_bp** -- tasks, the rebalancing sweep and the activity feed.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from flask import Flask
from flask_sqlalchemy import SQLAlchemy

from config import get_config, load_jwt_public_key

db = SQLAlchemy()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _ensure_sqlite_db_parent_exists(database_uri: str) -> None:
    """Create parent directories for file-based SQLite URIs when missing."""
    sqlite_prefix = "sqlite:///"
    if not database_uri.startswith(sqlite_prefix):
        return

    sqlite_path = database_uri[len(sqlite_prefix) :].split("?", 1)[0]
    if sqlite_path == ":memory:":
        return

    Path(sqlite_path).parent.mkdir(parents=True, exist_ok=True)


def create_app(config_name: str | None = None) -> Flask:
    """
    Create and configure the workload service application.

    Args:
        config_name: Optional configuration environment name
            (``"development"``, ``"testing"``, ``"production"``).  When
            *None*, the value is read from ``FLASK_ENV``.

    Returns:
        A fully configured Flask application instance.
    """
    app = Flask(__name__, instance_relative_config=True)
    config_class = get_config(config_name)
    app.config.from_object(config_class)
    app.config["JWT_PUBLIC_KEY"] = load_jwt_public_key(testing=bool(app.config.get("TESTING")))

    logger.info("Creating workload service app with config: %s", config_class.__name__)

    os.makedirs(app.instance_path, exist_ok=True)
    _ensure_sqlite_db_parent_exists(app.config.get("SQLALCHEMY_DATABASE_URI", ""))

    db.init_app(app)

    from .routes.api import api_bp
    from .routes.projects import projects_bp
    from .routes.tasks import tasks_bp
    from .routes.teams import teams_bp

    app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(teams_bp, url_prefix="/api")
    app.register_blueprint(projects_bp, url_prefix="/api")
    app.register_blueprint(tasks_bp, url_prefix="/api")

    with app.app_context():
        db.create_all()
        logger.info("Workload service database tables created")

    return app
