from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class ProcessedTransaction:
    """Ledger entry: this dedup key already produced an account + enrollment.

    Written once, after both rows exist.  Its presence is what turns a
    redelivered webhook into a read-only replay.
    """

    dedup_key: str
    account_id: UUID
    enrollment_id: UUID
    recorded_at: datetime

    def __post_init__(self) -> None:
        if not self.dedup_key:
            raise ValueError("dedup_key must be non-empty")

    @staticmethod
    def new(
        *, dedup_key: str, account_id: UUID, enrollment_id: UUID
    ) -> ProcessedTransaction:
        return ProcessedTransaction(
            dedup_key=dedup_key,
            account_id=account_id,
            enrollment_id=enrollment_id,
            recorded_at=datetime.now(UTC),
        )
