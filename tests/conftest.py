from __future__ import annotations

import os
import sys
from pathlib import Path

# Settings are read once at import time; pin them before importing the app.
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")
os.environ.pop("DATABASE_URL", None)
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.api.dependencies import (  # noqa: E402
    account_repo,
    course_catalog,
    enrollment_repo,
    ledger_repo,
    seed_sample_course,
)
from app.main import app  # noqa: E402
from app.services.task_queue import task_queue  # noqa: E402

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

WEBHOOK_SECRET = os.environ["WEBHOOK_SECRET"]
SAMPLE_COURSE_ID = "intro-to-python"


@pytest.fixture(autouse=True)
def reset_stores() -> None:
    """Clear the in-memory repos between tests."""
    account_repo._by_email.clear()
    account_repo._by_id.clear()
    enrollment_repo._by_pair.clear()
    enrollment_repo._by_id.clear()
    ledger_repo._entries.clear()


@pytest.fixture(autouse=True)
def reset_catalog() -> None:
    course_catalog._courses.clear()
    seed_sample_course()


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    with TestClient(app) as c:
        yield c


@pytest.fixture
def webhook_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {WEBHOOK_SECRET}"}


def purchase_payload(**overrides: object) -> dict:
    """A valid webhook body for the seeded course."""
    payload: dict = {
        "email": "buyer@example.com",
        "full_name": "Ada Buyer",
        "phone": "+1 555 0100",
        "course_id": SAMPLE_COURSE_ID,
        "transaction_id": "T-1001",
        "purchase_date": "2026-10-01T12:00:00Z",
    }
    payload.update(overrides)
    return payload
