from __future__ import annotations

from typing import Protocol

from app.core.errors import DuplicateKeyError
from app.models.ledger import ProcessedTransaction


class LedgerRepo(Protocol):
    async def get(self, dedup_key: str) -> ProcessedTransaction | None: ...
    async def add(self, entry: ProcessedTransaction) -> None: ...


class InMemoryLedgerRepo:
    def __init__(self) -> None:
        self._entries: dict[str, ProcessedTransaction] = {}

    async def get(self, dedup_key: str) -> ProcessedTransaction | None:
        return self._entries.get(dedup_key)

    async def add(self, entry: ProcessedTransaction) -> None:
        if entry.dedup_key in self._entries:
            raise DuplicateKeyError("ledger", entry.dedup_key)
        self._entries[entry.dedup_key] = entry
