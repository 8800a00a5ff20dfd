from __future__ import annotations

from typing import Protocol
from uuid import UUID

from app.core.errors import DuplicateKeyError
from app.models.account import Account


class AccountRepo(Protocol):
    async def get_by_id(self, account_id: UUID) -> Account | None: ...
    async def get_by_email(self, email: str) -> Account | None: ...
    async def add(self, account: Account) -> None: ...


class InMemoryAccountRepo:
    """Dict-backed AccountRepo.

    Each method completes without awaiting, so under asyncio ``add`` is an
    atomic check-and-insert, the same guarantee the UNIQUE index on
    accounts.email gives the PostgreSQL implementation.
    """

    def __init__(self) -> None:
        self._by_email: dict[str, Account] = {}
        self._by_id: dict[UUID, Account] = {}

    async def get_by_id(self, account_id: UUID) -> Account | None:
        return self._by_id.get(account_id)

    async def get_by_email(self, email: str) -> Account | None:
        return self._by_email.get(email)

    async def add(self, account: Account) -> None:
        if account.email in self._by_email:
            raise DuplicateKeyError("account", account.email)
        self._by_email[account.email] = account
        self._by_id[account.id] = account
