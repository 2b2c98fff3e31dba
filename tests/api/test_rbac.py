"""Role checks across every protected route.

Each row is (method, path, roles that must get past the role check).  A
request that passes the check may still fail later (404 for the random ids
used here); only 401/403 are asserted.
"""

from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from courseflow.services import token_service
from tests.conftest import auth, mint_token

_ID = str(uuid4())

ROUTES = [
    ("post", "/v1/courses", {"admin", "instructor"}),
    ("post", f"/v1/courses/{_ID}/units", {"admin", "instructor"}),
    ("post", f"/v1/courses/{_ID}/videos", {"admin", "instructor"}),
    ("delete", f"/v1/units/{_ID}", {"admin", "instructor"}),
    ("delete", f"/v1/videos/{_ID}", {"admin", "instructor"}),
    ("post", f"/v1/units/{_ID}/quizzes", {"admin", "instructor"}),
    ("post", "/v1/progress/quiz-results", {"admin", "grader"}),
    ("post", f"/admin/courses/{_ID}/recalculate", {"admin"}),
]

ROLES = ["student", "instructor", "grader", "admin"]

_BODIES = {
    "/v1/courses": {"title": "t"},
    f"/v1/courses/{_ID}/units": {"title": "t"},
    f"/v1/courses/{_ID}/videos": {"title": "t"},
    f"/v1/units/{_ID}/quizzes": {"title": "t"},
    "/v1/progress/quiz-results": {
        "student_id": _ID,
        "unit_id": _ID,
        "passed": True,
    },
}


@pytest.mark.parametrize(("method", "path", "allowed"), ROUTES)
@pytest.mark.parametrize("role", ROLES)
def test_role_checks(
    client: TestClient, method: str, path: str, allowed: set[str], role: str
) -> None:
    kwargs: dict = {"headers": auth(mint_token(roles=[role]))}
    if path in _BODIES:
        kwargs["json"] = _BODIES[path]
    resp = getattr(client, method)(path, **kwargs)
    if role in allowed:
        assert resp.status_code not in (401, 403)
    else:
        assert resp.status_code == 403


@pytest.mark.parametrize(("method", "path", "allowed"), ROUTES)
def test_missing_token_is_401(
    client: TestClient, method: str, path: str, allowed: set[str]
) -> None:
    kwargs: dict = {}
    if path in _BODIES:
        kwargs["json"] = _BODIES[path]
    assert getattr(client, method)(path, **kwargs).status_code == 401


def test_garbage_token_is_401(client: TestClient) -> None:
    resp = client.get("/v1/courses", headers=auth("not-a-jwt"))
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"


def test_non_uuid_subject_is_401(client: TestClient) -> None:
    token = token_service.create_access_token(sub="alice", roles=["admin"])
    assert client.get("/v1/courses", headers=auth(token)).status_code == 401
