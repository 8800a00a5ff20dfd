"""PostgreSQL implementation of LedgerRepo."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import ProcessedTransactionRow
from app.models.ledger import ProcessedTransaction
from app.repos.pg_errors import translate_errors


class PgLedgerRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, dedup_key: str) -> ProcessedTransaction | None:
        stmt = select(ProcessedTransactionRow).where(
            ProcessedTransactionRow.dedup_key == dedup_key
        )
        async with translate_errors("ledger", dedup_key):
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return ProcessedTransaction(
            dedup_key=row.dedup_key,
            account_id=row.account_id,
            enrollment_id=row.enrollment_id,
            recorded_at=row.recorded_at,
        )

    async def add(self, entry: ProcessedTransaction) -> None:
        row = ProcessedTransactionRow(
            dedup_key=entry.dedup_key,
            account_id=entry.account_id,
            enrollment_id=entry.enrollment_id,
            recorded_at=entry.recorded_at,
        )
        async with translate_errors("ledger", entry.dedup_key):
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()
