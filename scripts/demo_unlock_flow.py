"""Demo: walk the sequential unlock flow using FastAPI TestClient.

Run with:
    python scripts/demo_unlock_flow.py

Uses the in-memory stores and dev tokens, so no database is needed.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from courseflow.main import app
from courseflow.services import token_service


def _headers(sub: uuid.UUID, *roles: str) -> dict[str, str]:
    token = token_service.create_access_token(sub=str(sub), roles=list(roles))
    return {"Authorization": f"Bearer {token}"}


def _unit_states(view: dict) -> str:
    return ", ".join(f"{u['title']}={u['status']}" for u in view["units"])


def main() -> None:
    client = TestClient(app)
    instructor = _headers(uuid.uuid4(), "instructor")
    grader = _headers(uuid.uuid4(), "grader")
    admin = _headers(uuid.uuid4(), "admin")
    student_id = uuid.uuid4()
    student = _headers(student_id, "student")

    # ── Step 1: course with two units ───────────────────────────────
    course = client.post("/v1/courses", json={"title": "Demo"}, headers=instructor)
    course_id = course.json()["id"]
    unit0 = client.post(
        f"/v1/courses/{course_id}/units", json={"title": "Unit 0"}, headers=instructor
    ).json()
    client.post(
        f"/v1/courses/{course_id}/videos",
        json={"title": "Intro", "unit_id": unit0["id"]},
        headers=instructor,
    )
    print(f"1. Course {course_id} with Unit 0 (+ video)")

    # ── Step 2: enroll ──────────────────────────────────────────────
    r = client.post(f"/v1/courses/{course_id}/enroll", headers=student)
    print(f"2. Enroll → {r.status_code}  {r.json()['propagation']}")
    view = client.get(f"/v1/progress/courses/{course_id}", headers=student).json()
    print(f"   view: {_unit_states(view)}")

    # ── Step 3: pass unit 0 before unit 1 exists ────────────────────
    r = client.post(
        "/v1/progress/quiz-results",
        json={
            "student_id": str(student_id),
            "unit_id": unit0["id"],
            "passed": True,
        },
        headers=grader,
    )
    print(f"3. Quiz passed → {r.status_code}")

    # ── Step 4: unit 1 arrives late and unlocks immediately ─────────
    unit1 = client.post(
        f"/v1/courses/{course_id}/units", json={"title": "Unit 1"}, headers=instructor
    ).json()
    print(f"4. Unit 1 created → propagation {unit1['propagation']}")
    view = client.get(f"/v1/progress/courses/{course_id}", headers=student).json()
    print(f"   view: {_unit_states(view)}")

    # ── Step 5: recalculation has nothing left to do ────────────────
    r = client.post(f"/admin/courses/{course_id}/recalculate", headers=admin)
    print(f"5. Recalculate → {r.status_code}  {r.json()}")


if __name__ == "__main__":
    main()
