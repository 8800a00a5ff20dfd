from __future__ import annotations

import json
import logging
import sys

import pytest
from fastapi.testclient import TestClient

from app.core.logging import _ContainerFormatter, _JsonFormatter, setup_logging
from tests.conftest import purchase_payload


def _record(level: int = logging.INFO, msg: str = "hello", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="purchases",
        level=level,
        pathname="svc.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )
    record.__dict__.update(extra)
    return record


# ---- setup_logging ----


@pytest.mark.parametrize(
    ("name", "level"),
    [("debug", logging.DEBUG), ("warning", logging.WARNING), ("nonexistent", logging.INFO)],
)
def test_setup_logging_sets_root_level(name: str, level: int) -> None:
    setup_logging(name)
    assert logging.getLogger().level == level


@pytest.mark.parametrize("noisy", ["uvicorn", "httpx", "sqlalchemy.engine"])
def test_third_party_loggers_stay_at_warning_or_above(noisy: str) -> None:
    setup_logging("debug")
    assert logging.getLogger(noisy).level == logging.WARNING

    setup_logging("error")
    assert logging.getLogger(noisy).level == logging.ERROR


def test_setup_logging_replaces_handlers() -> None:
    setup_logging("info")
    setup_logging("info", json_format=True)
    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0].formatter, _JsonFormatter)


# ---- human-readable format ----


@pytest.mark.parametrize(
    ("level", "has_location"),
    [(logging.INFO, False), (logging.WARNING, True), (logging.ERROR, True)],
)
def test_container_formatter_location_suffix(level: int, has_location: bool) -> None:
    output = _ContainerFormatter().format(_record(level, "ledger write"))
    assert "ledger write" in output
    assert ("[svc.py:42]" in output) is has_location


# ---- JSON format ----


def test_json_lines_carry_purchase_context() -> None:
    record = _record(
        msg="Purchase processed",
        dedup_key="T-1",
        course_id="intro-to-python",
        account_id="6f1c8f4e-0000-4000-8000-000000000001",
        enrollment_id="6f1c8f4e-0000-4000-8000-000000000002",
        outcome="created_and_enrolled",
    )
    line = json.loads(_JsonFormatter().format(record))

    assert line["message"] == "Purchase processed"
    assert line["level"] == "INFO"
    assert line["dedup_key"] == "T-1"
    assert line["course_id"] == "intro-to-python"
    assert line["account_id"].endswith("0001")
    assert line["enrollment_id"].endswith("0002")
    assert line["outcome"] == "created_and_enrolled"


def test_json_lines_omit_absent_context_and_keep_exceptions() -> None:
    try:
        raise RuntimeError("store down")
    except RuntimeError:
        record = _record(logging.ERROR, "Task failed", task_id="t-9", queue="welcome_email")
        record.exc_info = sys.exc_info()

    line = json.loads(_JsonFormatter().format(record))

    assert line["task_id"] == "t-9"
    assert line["queue"] == "welcome_email"
    assert "dedup_key" not in line
    assert "account_id" not in line
    assert "RuntimeError: store down" in line["exception"]


def test_processed_purchase_is_findable_by_dedup_key(
    client: TestClient,
    webhook_headers: dict[str, str],
    caplog: pytest.LogCaptureFixture,
) -> None:
    with caplog.at_level(logging.INFO, logger="app.services.purchase_service"):
        resp = client.post(
            "/v1/purchases",
            json=purchase_payload(transaction_id="T-LOG-1"),
            headers=webhook_headers,
        )
    assert resp.status_code == 201

    processed = [r for r in caplog.records if r.getMessage().startswith("Purchase processed")]
    assert len(processed) == 1
    line = json.loads(_JsonFormatter().format(processed[0]))

    assert line["dedup_key"] == "T-LOG-1"
    assert line["outcome"] == "created_and_enrolled"
    assert line["account_id"] == resp.json()["account"]["id"]
    assert "buyer@example.com" not in line["message"]
