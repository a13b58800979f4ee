"""
Shared fixtures for the security test suite.

The application, client and database fixtures come from the root
conftest; this module adds a factory that mints a token for a fresh user
on every call so that tests can stage several isolated identities.
"""

from __future__ import annotations

import itertools

import pytest

from shared.test_helpers import auth_headers, create_test_token

_user_counter = itertools.count(1000)


@pytest.fixture
def token_for_user():
    """Return a factory producing ``(headers, user_id)`` for a unique user."""

    def _factory() -> tuple[dict[str, str], str]:
        user_id = f"security_user_{next(_user_counter)}"
        return auth_headers(create_test_token(user_id=user_id)), user_id

    return _factory


@pytest.fixture
def owned_project(client, db_session, token_for_user):
    """Create a team, one member and one project through the API for a fresh user."""
    headers, user_id = token_for_user()
    team = client.post("/api/teams", json={"name": "Red team"}, headers=headers).get_json()
    member = client.post(
        f"/api/teams/{team['id']}/members",
        json={"name": "Mallory", "role": "Engineer", "capacity": 2},
        headers=headers,
    ).get_json()
    project = client.post(
        "/api/projects",
        json={"name": "Target", "team_id": team["id"]},
        headers=headers,
    ).get_json()
    return {"headers": headers, "user_id": user_id, "team": team, "member": member, "project": project}
