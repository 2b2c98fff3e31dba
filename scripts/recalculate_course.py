#!/usr/bin/env python3
"""Trigger a full unit-access recalculation for one course.

RUN:  COURSEFLOW_ADMIN_TOKEN=<jwt> python scripts/recalculate_course.py <course_id>

The token must carry the "admin" role.  Prints the counts returned by
POST /admin/courses/{course_id}/recalculate.  Safe to run repeatedly: a
second run with nothing new to unlock reports zero units unlocked.

Environment:
  COURSEFLOW_ADMIN_TOKEN  bearer token (required)
  COURSEFLOW_URL          base URL (default http://localhost:8000)
"""

from __future__ import annotations

import os
import sys
import uuid

import httpx

BASE_URL = os.environ.get("COURSEFLOW_URL", "http://localhost:8000")


def main() -> None:
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(2)
    course_id = sys.argv[1]
    token = os.environ.get("COURSEFLOW_ADMIN_TOKEN")
    if not token:
        print("COURSEFLOW_ADMIN_TOKEN is not set")
        sys.exit(2)

    request_id = str(uuid.uuid4())
    with httpx.Client(base_url=BASE_URL, timeout=300) as client:
        resp = client.post(
            f"/admin/courses/{course_id}/recalculate",
            headers={
                "Authorization": f"Bearer {token}",
                "X-Request-ID": request_id,
            },
        )

    if resp.status_code != 200:
        print(f"Recalculation failed: {resp.status_code} {resp.text}")
        print(f"request id: {request_id}")
        sys.exit(1)

    body = resp.json()
    print(f"Recalculated course {course_id}  (request id {request_id})")
    print("=" * 50)
    for key in (
        "total_students",
        "total_units",
        "students_updated",
        "units_unlocked",
        "videos_unlocked",
        "stale_entries_removed",
        "failures",
    ):
        print(f"  {key:<24}{body[key]}")
    if body["failures"]:
        print("\nSome students failed; check the service logs for this request id.")
        sys.exit(1)


if __name__ == "__main__":
    main()
