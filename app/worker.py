"""Background worker process.

RUN:  python -m app.worker

Same image as the API, different command:
  api:    uvicorn app.main:app --host 0.0.0.0 --port 8000
  worker: python -m app.worker

The loop polls every registered queue, dispatches each task to its
handler and logs the result.  A failing task is logged and dropped; the
loop keeps going.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from collections.abc import Callable, Coroutine
from email.message import EmailMessage
from typing import Any

from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.core.metrics import QUEUE_DEPTH, WELCOME_NOTIFICATIONS
from app.services.task_queue import WELCOME_EMAIL_QUEUE, InMemoryTaskQueue, task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("worker")


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


# ---------------------------------------------------------------------------
# Welcome email
# ---------------------------------------------------------------------------


def compose_welcome_email(payload: dict) -> EmailMessage:
    """Build the welcome message.

    It carries no credential: the account was provisioned with a random
    secret nobody knows, so the buyer sets a password through the reset
    flow linked from the login page.
    """
    name = payload.get("display_name") or payload["email"]
    login_url = f"{SETTINGS.app_url}/login"

    msg = EmailMessage()
    msg["Subject"] = "Welcome! Your course access is ready"
    msg["From"] = SETTINGS.mail_from
    msg["To"] = payload["email"]
    msg.set_content(
        f"Hi {name},\n\n"
        "Your account has been created and your course is waiting for you.\n\n"
        f"Sign in at {login_url} with this email address.  The first time,\n"
        'use "Forgot password" to choose your password.\n'
    )
    return msg


def _send_smtp(msg: EmailMessage, host: str, port: int) -> None:
    with smtplib.SMTP(host, port, timeout=10) as smtp:
        smtp.send_message(msg)


@register_handler(WELCOME_EMAIL_QUEUE)
async def handle_welcome_email(payload: dict) -> None:
    msg = compose_welcome_email(payload)

    host = SETTINGS.smtp_host
    if host is None:
        logger.info(
            "SMTP not configured, welcome email for account=%s not sent",
            payload.get("account_id"),
        )
        WELCOME_NOTIFICATIONS.labels(result="logged").inc()
        return

    # smtplib blocks; keep it off the event loop.
    await asyncio.to_thread(_send_smtp, msg, host, SETTINGS.smtp_port)
    WELCOME_NOTIFICATIONS.labels(result="sent").inc()
    logger.info("Welcome email sent  account_id=%s", payload.get("account_id"))


# ---------------------------------------------------------------------------
# Main worker loop
# ---------------------------------------------------------------------------


async def run_once(queue_name: str, timeout: int = 1) -> bool:
    """Process at most one task from ``queue_name``.  True if one was handled."""
    task = await task_queue.dequeue(queue_name, timeout=timeout)
    QUEUE_DEPTH.labels(queue_name=queue_name).set(
        await task_queue.queue_length(queue_name)
    )
    if task is None:
        return False

    handler = HANDLERS[queue_name]
    try:
        await handler(task.payload)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    except Exception:
        # Welcome emails are advisory; log and move on.
        logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return True


async def run_worker() -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)

    while True:
        for queue_name in queues:
            await run_once(queue_name)
        if isinstance(task_queue, InMemoryTaskQueue):
            # The in-memory queue never blocks; don't spin the CPU.
            await asyncio.sleep(1)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
