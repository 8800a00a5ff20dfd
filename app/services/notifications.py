"""Welcome notifications for newly provisioned accounts.

Delivery is advisory.  ``send_welcome`` returns immediately and never
raises: the queued notifier pushes onto the task queue from a detached
asyncio task, so neither the latency nor the failure of Redis can reach
the purchase that triggered it.  Failures are logged and counted.

The worker (app/worker.py) composes and sends the actual email.

OutboxNotifier holds notifications until the delivery's database
transaction has committed; an account that was rolled back must not get
a welcome email.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from app.core.errors import NotificationFailure
from app.core.metrics import WELCOME_NOTIFICATIONS
from app.models.account import Account
from app.services.task_queue import WELCOME_EMAIL_QUEUE, TaskQueue

logger = logging.getLogger(__name__)


class WelcomeNotifier(Protocol):
    def send_welcome(self, account: Account) -> None: ...


# Strong references to in-flight sends; the event loop only keeps weak ones.
_pending: set[asyncio.Task[None]] = set()


class QueuedWelcomeNotifier:
    """Hands the welcome email to the background worker, fire-and-forget."""

    def __init__(self, queue: TaskQueue) -> None:
        self._queue = queue

    def send_welcome(self, account: Account) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(account))
        _pending.add(task)
        task.add_done_callback(_pending.discard)

    async def _deliver(self, account: Account) -> None:
        try:
            await self._enqueue(account)
        except NotificationFailure:
            WELCOME_NOTIFICATIONS.labels(result="failed").inc()
            logger.warning(
                "Welcome notification failed  account_id=%s",
                account.id,
                exc_info=True,
                extra={"account_id": str(account.id)},
            )
            return
        WELCOME_NOTIFICATIONS.labels(result="queued").inc()

    async def _enqueue(self, account: Account) -> None:
        try:
            task = await self._queue.enqueue(
                WELCOME_EMAIL_QUEUE,
                {
                    "account_id": str(account.id),
                    "email": account.email,
                    "display_name": account.display_name,
                },
            )
        except Exception as exc:
            raise NotificationFailure(
                f"could not queue welcome email for account={account.id}"
            ) from exc
        logger.debug(
            "Welcome email queued  account_id=%s task_id=%s", account.id, task.id
        )


class OutboxNotifier:
    """Holds welcome notifications until ``release()`` is called."""

    def __init__(self, inner: WelcomeNotifier) -> None:
        self._inner = inner
        self._held: list[Account] = []

    def send_welcome(self, account: Account) -> None:
        self._held.append(account)

    def release(self) -> None:
        held, self._held = self._held, []
        for account in held:
            self._inner.send_welcome(account)

    def discard(self) -> None:
        if self._held:
            logger.info("Discarding %d unsent welcome notifications", len(self._held))
        self._held = []


async def drain_pending(timeout: float = 5.0) -> None:
    """Wait for in-flight notifications (shutdown, tests)."""
    loop = asyncio.get_running_loop()
    tasks = [t for t in _pending if t.get_loop() is loop]
    if not tasks:
        return
    _, not_done = await asyncio.wait(tasks, timeout=timeout)
    for task in not_done:
        task.cancel()
    if not_done:
        logger.warning("Dropped %d welcome notifications on drain", len(not_done))
