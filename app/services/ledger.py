"""Transaction ledger: which purchases have already been fully handled.

DEDUP KEYS
-----------
A purchase with a transaction id is keyed by that id, verbatim; the
payment provider guarantees it is unique per real purchase.

A purchase without one is keyed by a hash of (normalized email, course).
Two transaction-less purchases of the same course by the same buyer are
therefore indistinguishable and collapse into one.  A redelivery cannot be
told apart from a deliberate second purchase without an id, and granting
one enrollment is the safe side of that trade.

CHECK-AND-SET
--------------
``has_processed`` is a fast path.  The real guarantee is ``mark_processed``,
an insert against a unique key: of any number of concurrent writers,
exactly one records the entry and everyone else gets that entry back.
"""

from __future__ import annotations

import hashlib
import logging
from uuid import UUID

from app.core.errors import DuplicateKeyError, StorageFailure
from app.core.metrics import UNIQUE_VIOLATIONS_RECOVERED
from app.models.account import normalize_email
from app.models.ledger import ProcessedTransaction
from app.repos.ledger_repo import LedgerRepo

logger = logging.getLogger(__name__)

DERIVED_KEY_PREFIX = "derived:"


def derive_key(transaction_id: str | None, email: str, course_id: str) -> str:
    if transaction_id and transaction_id.strip():
        return transaction_id
    material = f"{normalize_email(email)}\n{course_id.strip()}".encode()
    return DERIVED_KEY_PREFIX + hashlib.sha256(material).hexdigest()


class TransactionLedger:
    def __init__(self, entries: LedgerRepo) -> None:
        self._entries = entries

    derive_key = staticmethod(derive_key)

    async def lookup(self, key: str) -> ProcessedTransaction | None:
        return await self._entries.get(key)

    async def has_processed(self, key: str) -> bool:
        return await self._entries.get(key) is not None

    async def mark_processed(
        self, key: str, account_id: UUID, enrollment_id: UUID
    ) -> tuple[ProcessedTransaction, bool]:
        """Record the purchase.  Returns (entry, recorded_by_this_call).

        A caller that loses the race gets the winner's entry and must not
        undo anything: the account and enrollment it resolved are the same
        rows the winner references.
        """
        entry = ProcessedTransaction.new(
            dedup_key=key, account_id=account_id, enrollment_id=enrollment_id
        )
        try:
            await self._entries.add(entry)
        except DuplicateKeyError:
            winner = await self._entries.get(key)
            if winner is None:
                raise StorageFailure(
                    "ledger insert reported a duplicate but no entry was found"
                ) from None
            UNIQUE_VIOLATIONS_RECOVERED.labels(record="ledger").inc()
            if (winner.account_id, winner.enrollment_id) != (account_id, enrollment_id):
                # Only possible when the provider reused a transaction id
                # for a different buyer or course.
                logger.error(
                    "Transaction id reused for a different purchase  dedup_key=%s",
                    key,
                    extra={"dedup_key": key},
                )
            return winner, False
        return entry, True
