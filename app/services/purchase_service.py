"""Purchase pipeline: one webhook delivery -> one account + one enrollment.

  validate -> ledger check -> resolve account -> resolve enrollment
           -> ledger commit -> outcome

Per dedup key the lifecycle is Unseen -> Processing -> Processed, and only
Processed is ever written down.  The ledger entry is the last write, so a
delivery that fails half-way leaves no marker and a redelivery starts over
as if it were the first; the resolvers make the rows it already created
reusable rather than duplicated.

``is_new_user`` / ``is_new_enrollment`` report whether the row was
provisioned by this purchase (its ``origin_key`` is this dedup key).
Comparing against a "did it exist before I started" snapshot would let two
concurrent copies of the same delivery both claim the account.
"""

from __future__ import annotations

import logging

from app.core.errors import StorageFailure
from app.core.metrics import PURCHASES_PROCESSED
from app.models.ledger import ProcessedTransaction
from app.models.purchase import PurchaseEvent, PurchaseOutcome
from app.repos.account_repo import AccountRepo
from app.repos.enrollment_repo import EnrollmentRepo
from app.services.enrollment_resolver import EnrollmentResolver
from app.services.identity_resolver import IdentityResolver
from app.services.ledger import TransactionLedger

logger = logging.getLogger(__name__)


class PurchaseOrchestrator:
    def __init__(
        self,
        *,
        identities: IdentityResolver,
        enrollments: EnrollmentResolver,
        ledger: TransactionLedger,
        account_repo: AccountRepo,
        enrollment_repo: EnrollmentRepo,
    ) -> None:
        self._identities = identities
        self._enrollments = enrollments
        self._ledger = ledger
        # Direct repo access is only for replaying recorded outcomes.
        self._account_repo = account_repo
        self._enrollment_repo = enrollment_repo

    async def process(self, event: PurchaseEvent) -> PurchaseOutcome:
        event = event.validated()

        key = self._ledger.derive_key(
            event.transaction_id, event.email, event.course_id
        )
        log_ctx = {"dedup_key": key, "course_id": event.course_id}

        recorded = await self._ledger.lookup(key)
        if recorded is not None:
            logger.info(
                "Purchase already processed  dedup_key=%s", key, extra=log_ctx
            )
            return await self._replay(recorded)

        account = await self._identities.resolve_or_create(
            event.email, event.full_name, event.phone, origin_key=key
        )
        enrollment = await self._enrollments.resolve_or_create(
            account.id,
            event.course_id,
            transaction_id=event.transaction_id,
            origin_key=key,
        )

        entry, recorded_now = await self._ledger.mark_processed(
            key, account.id, enrollment.id
        )
        if not recorded_now:
            logger.info(
                "Concurrent delivery recorded this purchase first  dedup_key=%s",
                key,
                extra=log_ctx,
            )
            return await self._replay(entry)

        outcome = PurchaseOutcome(
            account=account,
            enrollment=enrollment,
            is_new_user=account.origin_key == key,
            is_new_enrollment=enrollment.origin_key == key,
            already_processed=False,
            dedup_key=key,
        )
        PURCHASES_PROCESSED.labels(outcome=outcome.kind).inc()
        logger.info(
            "Purchase processed  dedup_key=%s outcome=%s account_id=%s",
            key,
            outcome.kind,
            account.id,
            extra={
                **log_ctx,
                "outcome": outcome.kind,
                "account_id": str(account.id),
                "enrollment_id": str(enrollment.id),
            },
        )
        return outcome

    async def _replay(self, entry: ProcessedTransaction) -> PurchaseOutcome:
        account = await self._account_repo.get_by_id(entry.account_id)
        enrollment = await self._enrollment_repo.get_by_id(entry.enrollment_id)
        if account is None or enrollment is None:
            raise StorageFailure(
                f"ledger entry {entry.dedup_key!r} references missing rows"
            )
        PURCHASES_PROCESSED.labels(outcome="already_processed").inc()
        return PurchaseOutcome(
            account=account,
            enrollment=enrollment,
            is_new_user=False,
            is_new_enrollment=False,
            already_processed=True,
            dedup_key=entry.dedup_key,
        )
