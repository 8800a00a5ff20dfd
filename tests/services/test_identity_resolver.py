from __future__ import annotations

import asyncio

import pytest
from prometheus_client import REGISTRY

from app.core.errors import DuplicateKeyError, StorageFailure
from app.models.account import Account
from app.repos.account_repo import InMemoryAccountRepo
from app.services import credentials
from app.services.identity_resolver import IdentityResolver


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[Account] = []

    def send_welcome(self, account: Account) -> None:
        self.sent.append(account)


class GhostDuplicateRepo(InMemoryAccountRepo):
    """Claims a duplicate on insert but never returns the winning row."""

    async def add(self, account: Account) -> None:
        raise DuplicateKeyError("account", account.email)


@pytest.fixture(autouse=True)
def fast_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(credentials, "new_credential_hash", lambda: "$argon2id$stub")


def test_creates_account_on_first_sighting() -> None:
    repo, notifier = InMemoryAccountRepo(), RecordingNotifier()
    resolver = IdentityResolver(repo, notifier)

    account = asyncio.run(
        resolver.resolve_or_create(" New@X.com ", "New Buyer", "+1 555", origin_key="T1")
    )

    assert account.email == "new@x.com"
    assert account.display_name == "New Buyer"
    assert account.phone == "+1 555"
    assert account.role == "learner"
    assert account.origin_key == "T1"
    assert repo._by_email == {"new@x.com": account}
    assert notifier.sent == [account]


def test_returns_existing_account_unchanged() -> None:
    repo, notifier = InMemoryAccountRepo(), RecordingNotifier()
    resolver = IdentityResolver(repo, notifier)

    async def scenario():
        first = await resolver.resolve_or_create("a@x.com", "Original")
        second = await resolver.resolve_or_create("A@X.COM", "Renamed", "+1 999")
        return first, second

    first, second = asyncio.run(scenario())
    assert second == first
    assert second.display_name == "Original"
    assert len(notifier.sent) == 1


def test_concurrent_creation_converges_on_one_account() -> None:
    repo, notifier = InMemoryAccountRepo(), RecordingNotifier()
    resolver = IdentityResolver(repo, notifier)
    before = REGISTRY.get_sample_value(
        "unique_violations_recovered_total", {"record": "account"}
    ) or 0.0

    async def scenario():
        return await asyncio.gather(
            *(resolver.resolve_or_create("a@x.com", f"Copy {i}") for i in range(5))
        )

    accounts = asyncio.run(scenario())
    assert len({a.id for a in accounts}) == 1
    assert len(repo._by_email) == 1
    assert len(notifier.sent) == 1
    after = REGISTRY.get_sample_value(
        "unique_violations_recovered_total", {"record": "account"}
    )
    assert after - before == 4


def test_duplicate_without_winner_is_storage_failure() -> None:
    resolver = IdentityResolver(GhostDuplicateRepo(), RecordingNotifier())
    with pytest.raises(StorageFailure):
        asyncio.run(resolver.resolve_or_create("a@x.com", "A"))


def test_stored_hash_is_not_the_email() -> None:
    resolver = IdentityResolver(InMemoryAccountRepo(), RecordingNotifier())
    account = asyncio.run(resolver.resolve_or_create("a@x.com", "A"))
    assert account.credential_hash == "$argon2id$stub"
