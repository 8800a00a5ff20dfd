from __future__ import annotations

import hmac
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import SETTINGS
from app.db.engine import async_session_factory, session_scope
from app.models.course import Course
from app.repos.account_repo import AccountRepo, InMemoryAccountRepo
from app.repos.course_repo import CourseCatalog, InMemoryCourseCatalog
from app.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from app.repos.ledger_repo import InMemoryLedgerRepo, LedgerRepo
from app.repos.pg_account_repo import PgAccountRepo
from app.repos.pg_course_repo import PgCourseCatalog
from app.repos.pg_enrollment_repo import PgEnrollmentRepo
from app.repos.pg_errors import translate_errors
from app.repos.pg_ledger_repo import PgLedgerRepo
from app.services.enrollment_resolver import EnrollmentResolver
from app.services.identity_resolver import IdentityResolver
from app.services.ledger import TransactionLedger
from app.services.notifications import QueuedWelcomeNotifier, WelcomeNotifier
from app.services.purchase_service import PurchaseOrchestrator
from app.services.task_queue import task_queue

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Webhook authentication
# ---------------------------------------------------------------------------

bearer_scheme = HTTPBearer(auto_error=False)


def require_webhook_secret(
    creds: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> None:
    """Shared-secret bearer auth for the purchase webhook sender."""
    expected = SETTINGS.webhook_secret
    if expected is None:
        logger.error("Webhook call rejected: WEBHOOK_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": "Webhook endpoint is not configured"},
        )
    if creds is None or not hmac.compare_digest(
        creds.credentials.encode(), expected.encode()
    ):
        logger.warning("Webhook call rejected: bad or missing bearer secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Unauthorized"},
            headers={"WWW-Authenticate": "Bearer"},
        )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


async def _no_commit() -> None:
    return None


@dataclass(frozen=True)
class Stores:
    """Everything one webhook delivery reads and writes.

    In PostgreSQL mode all four repos share one session, so a delivery is
    a single transaction that ``commit`` makes durable.
    """

    accounts: AccountRepo
    enrollments: EnrollmentRepo
    ledger: LedgerRepo
    courses: CourseCatalog
    commit: Callable[[], Awaitable[None]] = _no_commit


# Module-level singletons used when DATABASE_URL is not configured
# (same pattern as the in-memory task queue).
account_repo = InMemoryAccountRepo()
enrollment_repo = InMemoryEnrollmentRepo()
ledger_repo = InMemoryLedgerRepo()
course_catalog = InMemoryCourseCatalog()


def seed_sample_course() -> None:
    """Seed a published course for development/testing."""
    course_catalog.register(
        Course(id="intro-to-python", title="Introduction to Python", is_published=True)
    )


seed_sample_course()


async def get_stores() -> AsyncIterator[Stores]:
    if async_session_factory is None:
        yield Stores(
            accounts=account_repo,
            enrollments=enrollment_repo,
            ledger=ledger_repo,
            courses=course_catalog,
        )
        return

    async with session_scope() as session:

        async def commit() -> None:
            async with translate_errors("transaction", "commit"):
                await session.commit()

        yield Stores(
            accounts=PgAccountRepo(session),
            enrollments=PgEnrollmentRepo(session),
            ledger=PgLedgerRepo(session),
            courses=PgCourseCatalog(session),
            commit=commit,
        )


# ---------------------------------------------------------------------------
# Pipeline components
# ---------------------------------------------------------------------------


def get_notifier() -> WelcomeNotifier:
    return QueuedWelcomeNotifier(task_queue)


def build_orchestrator(
    stores: Stores, notifier: WelcomeNotifier
) -> PurchaseOrchestrator:
    return PurchaseOrchestrator(
        identities=IdentityResolver(stores.accounts, notifier),
        enrollments=EnrollmentResolver(stores.enrollments),
        ledger=TransactionLedger(stores.ledger),
        account_repo=stores.accounts,
        enrollment_repo=stores.enrollments,
    )


StoresDep = Annotated[Stores, Depends(get_stores)]
NotifierDep = Annotated[WelcomeNotifier, Depends(get_notifier)]

