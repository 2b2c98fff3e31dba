from __future__ import annotations

import json
import logging

from courseflow.core.logging import (
    RequestIdFilter,
    _ContainerFormatter,
    _JsonFormatter,
    request_id_var,
    setup_logging,
)


def _record(level: int = logging.INFO, msg: str = "hello", lineno: int = 1):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=lineno,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_setup_logging_sets_root_level() -> None:
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG

    setup_logging("warning")
    assert logging.getLogger().level == logging.WARNING


def test_setup_logging_defaults_to_info_for_unknown_level() -> None:
    setup_logging("nonexistent")
    assert logging.getLogger().level == logging.INFO


def test_setup_logging_quiets_sqlalchemy_at_debug() -> None:
    setup_logging("debug")
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    assert logging.getLogger("uvicorn").level == logging.WARNING


def test_setup_logging_installs_request_id_filter() -> None:
    setup_logging("info")
    (handler,) = logging.getLogger().handlers
    assert any(isinstance(f, RequestIdFilter) for f in handler.filters)


def test_formatter_excludes_location_for_info() -> None:
    output = _ContainerFormatter().format(_record())
    assert "hello" in output
    assert "[test.py:" not in output


def test_formatter_includes_location_for_warning() -> None:
    output = _ContainerFormatter().format(
        _record(logging.WARNING, "bad thing", lineno=42)
    )
    assert "bad thing" in output
    assert "[test.py:42]" in output


def test_json_formatter_lifts_engine_context_fields() -> None:
    record = _record(msg="Propagation failed for one student, skipping")
    record.student_id = "s-1"  # type: ignore[attr-defined]
    record.course_id = "c-1"  # type: ignore[attr-defined]
    record.trigger = "unit_created"  # type: ignore[attr-defined]

    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["student_id"] == "s-1"
    assert parsed["course_id"] == "c-1"
    assert parsed["trigger"] == "unit_created"
    assert "unit_id" not in parsed


def test_json_formatter_includes_exception_info() -> None:
    formatter = _JsonFormatter()
    try:
        raise ValueError("store hiccup")
    except ValueError:
        import sys

        record = logging.LogRecord(
            name="test",
            level=logging.ERROR,
            pathname="test.py",
            lineno=1,
            msg="failed",
            args=(),
            exc_info=sys.exc_info(),
        )
    parsed = json.loads(formatter.format(record))
    assert "store hiccup" in parsed["exception"]


def test_request_id_filter_copies_context_var() -> None:
    token = request_id_var.set("req-42")
    try:
        record = _record()
        assert RequestIdFilter().filter(record) is True
        assert record.request_id == "req-42"  # type: ignore[attr-defined]
    finally:
        request_id_var.reset(token)


def test_request_id_filter_keeps_explicit_value() -> None:
    record = _record()
    record.request_id = "from-extra"  # type: ignore[attr-defined]
    RequestIdFilter().filter(record)
    assert record.request_id == "from-extra"  # type: ignore[attr-defined]
