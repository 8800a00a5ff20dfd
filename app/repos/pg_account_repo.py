"""PostgreSQL implementation of AccountRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import AccountRow
from app.models.account import Account
from app.repos.pg_errors import translate_errors


class PgAccountRepo:
    """Satisfies the AccountRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, account_id: UUID) -> Account | None:
        stmt = select(AccountRow).where(AccountRow.id == account_id)
        async with translate_errors("account", str(account_id)):
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_account(row)

    async def get_by_email(self, email: str) -> Account | None:
        stmt = select(AccountRow).where(AccountRow.email == email)
        async with translate_errors("account", email):
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_account(row)

    async def add(self, account: Account) -> None:
        row = AccountRow(
            id=account.id,
            email=account.email,
            display_name=account.display_name,
            phone=account.phone,
            role=account.role,
            credential_hash=account.credential_hash,
            origin_key=account.origin_key,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )
        # SAVEPOINT: a unique violation must not poison the outer transaction,
        # the caller re-reads the winning row in the same session.
        async with translate_errors("account", account.email):
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()


def _row_to_account(row: AccountRow) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        display_name=row.display_name or "",
        credential_hash=row.credential_hash,
        created_at=row.created_at,
        updated_at=row.updated_at,
        phone=row.phone,
        role=row.role,  # type: ignore[arg-type]
        origin_key=row.origin_key,
    )
