"""WSGI entry point for the workload service."""

import os

from workload_app import create_app

app = create_app(os.getenv("FLASK_ENV", "production"))
