"""
JWT Verification Helpers for the Team Workload Service.

The service never issues tokens: it verifies RS256 tokens minted by the
external identity provider using the provider's public key and exposes
the caller's identifier on ``flask.g``.  Route handlers read ``g.user_id``
and pass it explicitly into the workload engine.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

import jwt
from flask import Response, current_app, g, jsonify, request

DEFAULT_ALLOWED_ALGORITHMS = ["RS256"]
REQUIRED_TOKEN_CLAIMS = ["user_id", "iat", "exp"]


def verify_token(
    token: str,
    public_key: str,
    algorithms: list[str] | None = None,
) -> dict[str, Any] | None:
    """
    Decode and validate a JWT, returning the payload on success.

    Performs signature, expiry and issued-at checks, requires every claim
    in ``REQUIRED_TOKEN_CLAIMS`` and insists that ``user_id`` is a
    non-empty string.

    Args:
        token: The encoded JWT string to verify.
        public_key: The RSA public key in PEM format.
        algorithms: Acceptable signing algorithms.  Defaults to
            ``["RS256"]`` to prevent algorithm-confusion attacks.

    Returns:
        The decoded payload, or ``None`` if verification fails.
    """
    try:
        decoded = jwt.decode(
            token,
            public_key,
            algorithms=algorithms or DEFAULT_ALLOWED_ALGORITHMS,
            options={"require": REQUIRED_TOKEN_CLAIMS},
            leeway=int(current_app.config.get("JWT_CLOCK_SKEW_SECONDS", 30)),
        )
    except jwt.InvalidTokenError:
        return None

    user_id = decoded.get("user_id")
    if not isinstance(user_id, str) or not user_id.strip():
        return None
    return decoded


def require_auth(view_func: Callable[..., tuple[Response, int] | Response]):
    """
    Decorator that enforces Bearer-token authentication on API endpoints.

    On success the caller's identifier is stored on ``g.user_id``;
    otherwise the request is answered with a ``401`` JSON error before the
    view runs.
    """

    @wraps(view_func)
    def wrapper(*args, **kwargs):
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return jsonify({"error": "Missing or invalid Authorization header"}), 401

        token = auth_header[7:].strip()
        if not token:
            return jsonify({"error": "Missing or invalid Authorization header"}), 401

        payload = verify_token(
            token,
            current_app.config["JWT_PUBLIC_KEY"],
            algorithms=DEFAULT_ALLOWED_ALGORITHMS,
        )
        if payload is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.user_id = payload["user_id"]
        return view_func(*args, **kwargs)

    return wrapper
