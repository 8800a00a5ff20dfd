from __future__ import annotations

import asyncio

from prometheus_client import REGISTRY

from app.models.account import Account
from app.services.notifications import (
    OutboxNotifier,
    QueuedWelcomeNotifier,
    drain_pending,
)
from app.services.task_queue import WELCOME_EMAIL_QUEUE, InMemoryTaskQueue


def _notifications(result: str) -> float:
    value = REGISTRY.get_sample_value("welcome_notifications_total", {"result": result})
    return value if value is not None else 0.0


def _account(email: str = "a@x.com") -> Account:
    return Account.new(email=email, display_name="Ada", credential_hash="h")


class BrokenQueue(InMemoryTaskQueue):
    async def enqueue(self, queue: str, payload: dict):
        raise ConnectionError("redis unreachable")


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[Account] = []

    def send_welcome(self, account: Account) -> None:
        self.sent.append(account)


def test_queued_notifier_enqueues_welcome_task() -> None:
    queue = InMemoryTaskQueue()
    account = _account()
    before = _notifications("queued")

    async def scenario():
        QueuedWelcomeNotifier(queue).send_welcome(account)
        await drain_pending()
        return await queue.dequeue(WELCOME_EMAIL_QUEUE)

    task = asyncio.run(scenario())
    assert task is not None
    assert task.payload == {
        "account_id": str(account.id),
        "email": "a@x.com",
        "display_name": "Ada",
    }
    assert _notifications("queued") - before == 1


def test_queued_notifier_payload_has_no_credential() -> None:
    queue = InMemoryTaskQueue()

    async def scenario():
        QueuedWelcomeNotifier(queue).send_welcome(_account())
        await drain_pending()
        return await queue.dequeue(WELCOME_EMAIL_QUEUE)

    payload = asyncio.run(scenario()).payload
    assert "credential_hash" not in payload
    assert "password" not in payload


def test_queue_failure_is_logged_not_raised(caplog) -> None:
    before = _notifications("failed")

    async def scenario():
        # send_welcome returns before the enqueue is attempted.
        QueuedWelcomeNotifier(BrokenQueue()).send_welcome(_account())
        await drain_pending()

    with caplog.at_level("WARNING", logger="app.services.notifications"):
        asyncio.run(scenario())

    assert _notifications("failed") - before == 1
    assert "Welcome notification failed" in caplog.text


def test_outbox_holds_until_release() -> None:
    inner = RecordingNotifier()
    outbox = OutboxNotifier(inner)
    first, second = _account("a@x.com"), _account("b@x.com")

    outbox.send_welcome(first)
    outbox.send_welcome(second)
    assert inner.sent == []

    outbox.release()
    assert inner.sent == [first, second]

    outbox.release()
    assert inner.sent == [first, second]


def test_outbox_discard_drops_held_notifications() -> None:
    inner = RecordingNotifier()
    outbox = OutboxNotifier(inner)
    outbox.send_welcome(_account())

    outbox.discard()
    outbox.release()

    assert inner.sent == []


def test_drain_pending_without_tasks_returns() -> None:
    asyncio.run(drain_pending())
