from __future__ import annotations

from uuid import UUID, uuid4

from fastapi.testclient import TestClient

from courseflow.repos.progress_repo import progress_repo
from tests.conftest import auth, mint_token


def _create_course(client: TestClient, token: str, title: str = "Biology") -> str:
    resp = client.post("/v1/courses", json={"title": title}, headers=auth(token))
    assert resp.status_code == 201
    return resp.json()["id"]


def _create_unit(
    client: TestClient, token: str, course_id: str, order: int | None = None
) -> dict:
    body: dict = {"title": f"Unit {order}"}
    if order is not None:
        body["order"] = order
    resp = client.post(
        f"/v1/courses/{course_id}/units", json=body, headers=auth(token)
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


# ---- courses ----


def test_create_and_list_courses(
    client: TestClient, instructor_token: str, student_token: str
) -> None:
    course_id = _create_course(client, instructor_token)
    resp = client.get("/v1/courses", headers=auth(student_token))
    assert resp.status_code == 200
    (course,) = resp.json()
    assert course["id"] == course_id
    assert course["has_units"] is False
    assert course["unit_count"] == 0


def test_students_cannot_create_courses(
    client: TestClient, student_token: str
) -> None:
    resp = client.post(
        "/v1/courses", json={"title": "Nope"}, headers=auth(student_token)
    )
    assert resp.status_code == 403


def test_course_list_requires_token(client: TestClient) -> None:
    assert client.get("/v1/courses").status_code == 401


def test_blank_course_title_is_rejected(
    client: TestClient, instructor_token: str
) -> None:
    resp = client.post(
        "/v1/courses", json={"title": ""}, headers=auth(instructor_token)
    )
    assert resp.status_code == 422


# ---- enrollment ----


def test_enroll_unlocks_first_unit(
    client: TestClient,
    instructor_token: str,
    student_id: UUID,
    student_token: str,
) -> None:
    course_id = _create_course(client, instructor_token)
    unit = _create_unit(client, instructor_token, course_id)

    resp = client.post(f"/v1/courses/{course_id}/enroll", headers=auth(student_token))
    assert resp.status_code == 201
    body = resp.json()
    assert body["student_id"] == str(student_id)
    assert body["propagation"]["units_unlocked"] == 1

    stored = progress_repo._store[(student_id, UUID(course_id))]
    assert stored.entry(UUID(unit["id"])).unlocked is True


def test_enroll_twice_conflicts(
    client: TestClient, instructor_token: str, student_token: str
) -> None:
    course_id = _create_course(client, instructor_token)
    url = f"/v1/courses/{course_id}/enroll"
    assert client.post(url, headers=auth(student_token)).status_code == 201
    assert client.post(url, headers=auth(student_token)).status_code == 409


def test_enroll_in_unknown_course(client: TestClient, student_token: str) -> None:
    resp = client.post(f"/v1/courses/{uuid4()}/enroll", headers=auth(student_token))
    assert resp.status_code == 404


# ---- units ----


def test_unit_created_after_enrollment_unlocks_for_student(
    client: TestClient, instructor_token: str, student_token: str
) -> None:
    course_id = _create_course(client, instructor_token)
    client.post(f"/v1/courses/{course_id}/enroll", headers=auth(student_token))

    unit = _create_unit(client, instructor_token, course_id)
    assert unit["order"] == 0
    assert unit["propagation"]["units_unlocked"] == 1

    later = _create_unit(client, instructor_token, course_id)
    assert later["order"] == 1
    assert later["propagation"]["units_unlocked"] == 0


def test_duplicate_unit_order_is_400(
    client: TestClient, instructor_token: str
) -> None:
    course_id = _create_course(client, instructor_token)
    _create_unit(client, instructor_token, course_id, order=0)
    resp = client.post(
        f"/v1/courses/{course_id}/units",
        json={"title": "Again", "order": 0},
        headers=auth(instructor_token),
    )
    assert resp.status_code == 400


def test_list_units_in_order(
    client: TestClient, instructor_token: str, student_token: str
) -> None:
    course_id = _create_course(client, instructor_token)
    for order in (1, 0):
        _create_unit(client, instructor_token, course_id, order=order)

    resp = client.get(f"/v1/courses/{course_id}/units", headers=auth(student_token))
    assert resp.status_code == 200
    assert [u["order"] for u in resp.json()] == [0, 1]

    missing = client.get(f"/v1/courses/{uuid4()}/units", headers=auth(student_token))
    assert missing.status_code == 404


def test_delete_unit(client: TestClient, instructor_token: str) -> None:
    course_id = _create_course(client, instructor_token)
    unit = _create_unit(client, instructor_token, course_id)
    url = f"/v1/units/{unit['id']}"
    assert client.delete(url, headers=auth(instructor_token)).status_code == 204
    assert client.delete(url, headers=auth(instructor_token)).status_code == 404


# ---- videos ----


def test_first_video_of_unlocked_unit_is_granted(
    client: TestClient,
    instructor_token: str,
    student_id: UUID,
    student_token: str,
) -> None:
    course_id = _create_course(client, instructor_token)
    unit = _create_unit(client, instructor_token, course_id)
    client.post(f"/v1/courses/{course_id}/enroll", headers=auth(student_token))

    resp = client.post(
        f"/v1/courses/{course_id}/videos",
        json={"title": "Cells", "unit_id": unit["id"], "duration": 300},
        headers=auth(instructor_token),
    )
    assert resp.status_code == 201
    video = resp.json()
    assert video["sequence"] == 1
    assert video["propagation"]["videos_unlocked"] == 1

    stored = progress_repo._store[(student_id, UUID(course_id))]
    assert UUID(video["id"]) in stored.unlocked_videos


def test_video_for_unknown_unit_is_404(
    client: TestClient, instructor_token: str
) -> None:
    course_id = _create_course(client, instructor_token)
    resp = client.post(
        f"/v1/courses/{course_id}/videos",
        json={"title": "Lost", "unit_id": str(uuid4())},
        headers=auth(instructor_token),
    )
    assert resp.status_code == 404


def test_delete_video(client: TestClient, instructor_token: str) -> None:
    course_id = _create_course(client, instructor_token)
    resp = client.post(
        f"/v1/courses/{course_id}/videos",
        json={"title": "Trailer"},
        headers=auth(instructor_token),
    )
    url = f"/v1/videos/{resp.json()['id']}"
    assert client.delete(url, headers=auth(instructor_token)).status_code == 204
    assert client.delete(url, headers=auth(instructor_token)).status_code == 404


# ---- unit content ----


def test_add_unit_content(client: TestClient, instructor_token: str) -> None:
    course_id = _create_course(client, instructor_token)
    unit = _create_unit(client, instructor_token, course_id)
    base = f"/v1/units/{unit['id']}"

    quiz = client.post(
        f"{base}/quizzes", json={"title": "Check"}, headers=auth(instructor_token)
    )
    assert quiz.status_code == 201
    pool = client.post(
        f"{base}/quiz-pools",
        json={"title": "Pool", "questions_per_attempt": 3},
        headers=auth(instructor_token),
    )
    assert pool.status_code == 201
    assert pool.json()["questions_per_attempt"] == 3
    material = client.post(
        f"{base}/reading-materials",
        json={"title": "Notes", "content_type": "pdf"},
        headers=auth(instructor_token),
    )
    assert material.status_code == 201
    assert material.json()["course_id"] == course_id

    bad_type = client.post(
        f"{base}/reading-materials",
        json={"title": "Notes", "content_type": "video"},
        headers=auth(instructor_token),
    )
    assert bad_type.status_code == 422

    missing = client.post(
        f"/v1/units/{uuid4()}/quizzes",
        json={"title": "Check"},
        headers=auth(mint_token(roles=["admin"])),
    )
    assert missing.status_code == 404


# ---- unit management ----


def test_get_unit_returns_its_content(
    client: TestClient, instructor_token: str, student_token: str
) -> None:
    course_id = _create_course(client, instructor_token)
    unit = _create_unit(client, instructor_token, course_id)
    headers = auth(instructor_token)
    for title in ("Second", "First"):
        client.post(
            f"/v1/courses/{course_id}/videos",
            json={
                "title": title,
                "unit_id": unit["id"],
                "sequence": 2 if title == "Second" else 1,
            },
            headers=headers,
        )
    client.post(
        f"/v1/units/{unit['id']}/quizzes", json={"title": "Check"}, headers=headers
    )

    resp = client.get(f"/v1/units/{unit['id']}", headers=auth(student_token))
    assert resp.status_code == 200
    body = resp.json()
    assert body["order"] == 0
    assert [v["title"] for v in body["videos"]] == ["First", "Second"]
    assert [q["title"] for q in body["quizzes"]] == ["Check"]

    missing = client.get(f"/v1/units/{uuid4()}", headers=auth(student_token))
    assert missing.status_code == 404


def test_patch_unit_reorders_and_unlocks(
    client: TestClient,
    instructor_token: str,
    grader_token: str,
    student_id: UUID,
    student_token: str,
) -> None:
    course_id = _create_course(client, instructor_token)
    first = _create_unit(client, instructor_token, course_id, order=0)
    stray = _create_unit(client, instructor_token, course_id, order=4)
    client.post(f"/v1/courses/{course_id}/enroll", headers=auth(student_token))
    passed = client.post(
        "/v1/progress/quiz-results",
        json={"student_id": str(student_id), "unit_id": first["id"], "passed": True},
        headers=auth(grader_token),
    )
    assert passed.json()["propagation"]["units_unlocked"] == 0

    url = f"/v1/units/{stray['id']}"
    resp = client.patch(
        url, json={"title": "Moved", "order": 1}, headers=auth(instructor_token)
    )
    assert resp.status_code == 200
    body = resp.json()
    assert (body["title"], body["order"]) == ("Moved", 1)
    assert body["propagation"]["units_unlocked"] == 1
    stored = progress_repo._store[(student_id, UUID(course_id))]
    assert stored.entry(UUID(stray["id"])).unlocked is True

    clash = client.patch(url, json={"order": 0}, headers=auth(instructor_token))
    assert clash.status_code == 400
    forbidden = client.patch(url, json={"title": "x"}, headers=auth(student_token))
    assert forbidden.status_code == 403
    missing = client.patch(
        f"/v1/units/{uuid4()}", json={"title": "x"}, headers=auth(instructor_token)
    )
    assert missing.status_code == 404


def test_attach_and_detach_unit_video(
    client: TestClient,
    instructor_token: str,
    student_id: UUID,
    student_token: str,
) -> None:
    course_id = _create_course(client, instructor_token)
    unit0 = _create_unit(client, instructor_token, course_id, order=0)
    unit1 = _create_unit(client, instructor_token, course_id, order=1)
    client.post(f"/v1/courses/{course_id}/enroll", headers=auth(student_token))
    video = client.post(
        f"/v1/courses/{course_id}/videos",
        json={"title": "Parked", "unit_id": unit1["id"]},
        headers=auth(instructor_token),
    ).json()
    assert video["propagation"]["videos_unlocked"] == 0

    attached = client.post(
        f"/v1/units/{unit0['id']}/videos",
        json={"video_id": video["id"]},
        headers=auth(instructor_token),
    )
    assert attached.status_code == 200
    assert attached.json()["video"]["unit_id"] == unit0["id"]
    assert attached.json()["propagation"]["videos_unlocked"] == 1
    stored = progress_repo._store[(student_id, UUID(course_id))]
    assert UUID(video["id"]) in stored.unlocked_videos

    detached = client.delete(
        f"/v1/units/{unit0['id']}/videos/{video['id']}",
        headers=auth(instructor_token),
    )
    assert detached.status_code == 200
    assert detached.json()["video"]["unit_id"] is None

    again = client.delete(
        f"/v1/units/{unit0['id']}/videos/{video['id']}",
        headers=auth(instructor_token),
    )
    assert again.status_code == 404
    unknown = client.post(
        f"/v1/units/{unit0['id']}/videos",
        json={"video_id": str(uuid4())},
        headers=auth(instructor_token),
    )
    assert unknown.status_code == 404


def test_deleting_unit_removes_its_videos_from_the_course(
    client: TestClient, instructor_token: str, student_token: str
) -> None:
    course_id = _create_course(client, instructor_token)
    unit = _create_unit(client, instructor_token, course_id)
    video = client.post(
        f"/v1/courses/{course_id}/videos",
        json={"title": "Gone", "unit_id": unit["id"]},
        headers=auth(instructor_token),
    ).json()
    client.post(f"/v1/courses/{course_id}/enroll", headers=auth(student_token))

    client.delete(f"/v1/units/{unit['id']}", headers=auth(instructor_token))

    (course,) = client.get("/v1/courses", headers=auth(student_token)).json()
    assert course["video_count"] == 0
    watch = client.post(
        f"/v1/progress/videos/{video['id']}/watch",
        json={"watch_time": 10, "completed": False},
        headers=auth(student_token),
    )
    assert watch.status_code == 404
    assert watch.json()["detail"] == "video not found"
