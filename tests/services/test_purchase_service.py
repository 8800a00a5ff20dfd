"""Purchase pipeline tests.

The pipeline runs against the in-memory repos.  Concurrency tests wrap
them so that every store call yields to the event loop first, which
interleaves concurrent deliveries at every step the way a real database
round-trip would.
"""

from __future__ import annotations

import asyncio

import pytest

from app.core.errors import StorageFailure, ValidationError
from app.models.account import Account
from app.models.purchase import PurchaseEvent
from app.repos.account_repo import InMemoryAccountRepo
from app.repos.enrollment_repo import InMemoryEnrollmentRepo
from app.repos.ledger_repo import InMemoryLedgerRepo
from app.services.enrollment_resolver import EnrollmentResolver
from app.services.identity_resolver import IdentityResolver
from app.services.ledger import TransactionLedger
from app.services.purchase_service import PurchaseOrchestrator


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[Account] = []

    def send_welcome(self, account: Account) -> None:
        self.sent.append(account)


class ExplodingNotifier:
    def send_welcome(self, account: Account) -> None:
        raise RuntimeError("smtp is down")


class _Yielding:
    """Proxy that yields to the event loop before every repo call."""

    def __init__(self, inner: object) -> None:
        self._inner = inner

    def __getattr__(self, name: str):
        method = getattr(self._inner, name)

        async def call(*args, **kwargs):
            await asyncio.sleep(0)
            return await method(*args, **kwargs)

        return call


class FailingEnrollmentRepo(InMemoryEnrollmentRepo):
    async def add(self, enrollment) -> None:
        raise StorageFailure("enrollments table unavailable")


class Pipeline:
    def __init__(
        self,
        *,
        notifier=None,
        accounts=None,
        enrollments=None,
        ledger=None,
        yielding: bool = False,
    ) -> None:
        self.accounts = accounts or InMemoryAccountRepo()
        self.enrollments = enrollments or InMemoryEnrollmentRepo()
        self.ledger = ledger or InMemoryLedgerRepo()
        self.notifier = notifier or RecordingNotifier()
        wrap = _Yielding if yielding else (lambda repo: repo)
        self.orchestrator = PurchaseOrchestrator(
            identities=IdentityResolver(wrap(self.accounts), self.notifier),
            enrollments=EnrollmentResolver(wrap(self.enrollments)),
            ledger=TransactionLedger(wrap(self.ledger)),
            account_repo=wrap(self.accounts),
            enrollment_repo=wrap(self.enrollments),
        )

    def process(self, event: PurchaseEvent):
        return asyncio.run(self.orchestrator.process(event))

    def counts(self) -> tuple[int, int, int]:
        return (
            len(self.accounts._by_email),
            len(self.enrollments._by_pair),
            len(self.ledger._entries),
        )


def _event(**overrides: object) -> PurchaseEvent:
    fields: dict = {
        "email": "a@x.com",
        "full_name": "A",
        "course_id": "C1",
        "transaction_id": "T1",
    }
    fields.update(overrides)
    return PurchaseEvent(**fields)


# ---- the worked example ----


def test_same_purchase_twice_is_recognized() -> None:
    pipeline = Pipeline()

    first = pipeline.process(_event())
    assert first.is_new_user is True
    assert first.is_new_enrollment is True
    assert first.already_processed is False
    assert first.kind == "created_and_enrolled"

    second = pipeline.process(_event())
    assert second.already_processed is True
    assert second.is_new_user is False
    assert second.is_new_enrollment is False
    assert second.account.id == first.account.id
    assert second.enrollment.id == first.enrollment.id
    assert pipeline.counts() == (1, 1, 1)


# ---- idempotence ----


def test_identical_transaction_id_processed_once() -> None:
    pipeline = Pipeline()
    pipeline.process(_event(full_name="First Name"))
    again = pipeline.process(_event(full_name="Other Name", phone="+1 555"))

    assert again.already_processed is True
    assert again.account.display_name == "First Name"
    assert pipeline.counts() == (1, 1, 1)


def test_derived_key_processed_once() -> None:
    pipeline = Pipeline()
    first = pipeline.process(_event(transaction_id=None))
    second = pipeline.process(_event(transaction_id=None, email=" A@X.COM "))

    assert first.dedup_key.startswith("derived:")
    assert second.already_processed is True
    assert second.dedup_key == first.dedup_key
    assert second.enrollment.id == first.enrollment.id
    assert pipeline.counts() == (1, 1, 1)


def test_replay_performs_no_writes() -> None:
    pipeline = Pipeline()
    pipeline.process(_event())
    before = (
        dict(pipeline.accounts._by_email),
        dict(pipeline.enrollments._by_pair),
        dict(pipeline.ledger._entries),
    )

    pipeline.process(_event())

    assert pipeline.accounts._by_email == before[0]
    assert pipeline.enrollments._by_pair == before[1]
    assert pipeline.ledger._entries == before[2]
    assert len(pipeline.notifier.sent) == 1


# ---- classification ----


def test_new_course_for_existing_user() -> None:
    pipeline = Pipeline()
    first = pipeline.process(_event())
    second = pipeline.process(_event(course_id="C2", transaction_id="T2"))

    assert second.is_new_user is False
    assert second.is_new_enrollment is True
    assert second.already_processed is False
    assert second.kind == "enrolled_existing_account"
    assert second.account.id == first.account.id
    assert pipeline.counts() == (1, 2, 2)


def test_same_course_new_transaction_is_already_enrolled() -> None:
    pipeline = Pipeline()
    first = pipeline.process(_event())
    second = pipeline.process(_event(transaction_id="T2"))

    assert second.kind == "already_enrolled"
    assert second.already_processed is False
    assert second.enrollment.id == first.enrollment.id
    # Both transactions are recorded against the one enrollment.
    assert pipeline.counts() == (1, 1, 2)


def test_enrollment_remembers_originating_transaction() -> None:
    outcome = Pipeline().process(_event(transaction_id="HP-42"))
    assert outcome.enrollment.transaction_id == "HP-42"
    assert outcome.enrollment.origin_key == "HP-42"
    assert outcome.account.origin_key == "HP-42"


# ---- validation ----


def test_malformed_email_rejected_without_writes() -> None:
    pipeline = Pipeline()
    with pytest.raises(ValidationError, match="invalid email address"):
        pipeline.process(_event(email="not-an-email"))
    assert pipeline.counts() == (0, 0, 0)
    assert pipeline.notifier.sent == []


def test_missing_fields_rejected_without_writes() -> None:
    pipeline = Pipeline()
    with pytest.raises(ValidationError) as exc_info:
        pipeline.process(_event(full_name=None, course_id=""))
    assert exc_info.value.missing_fields == ("full_name", "course_id")
    assert pipeline.counts() == (0, 0, 0)


# ---- notifications ----


def test_welcome_sent_once_for_new_account_only() -> None:
    pipeline = Pipeline()
    pipeline.process(_event())
    pipeline.process(_event(course_id="C2", transaction_id="T2"))

    assert [a.email for a in pipeline.notifier.sent] == ["a@x.com"]


def test_notifier_failure_does_not_fail_purchase() -> None:
    pipeline = Pipeline(notifier=ExplodingNotifier())
    outcome = pipeline.process(_event())
    assert outcome.kind == "created_and_enrolled"
    assert pipeline.counts() == (1, 1, 1)


# ---- storage failures ----


def test_storage_failure_leaves_no_ledger_entry() -> None:
    accounts = InMemoryAccountRepo()
    ledger = InMemoryLedgerRepo()
    broken = Pipeline(
        accounts=accounts, ledger=ledger, enrollments=FailingEnrollmentRepo()
    )
    with pytest.raises(StorageFailure):
        broken.process(_event())
    assert ledger._entries == {}

    # The redelivery starts over and reuses the account the first attempt made.
    healthy = Pipeline(accounts=accounts, ledger=ledger)
    outcome = healthy.process(_event())
    assert outcome.already_processed is False
    assert outcome.is_new_user is True
    assert outcome.is_new_enrollment is True
    assert healthy.counts() == (1, 1, 1)


def test_replay_with_missing_rows_is_a_storage_failure() -> None:
    pipeline = Pipeline()
    pipeline.process(_event())
    pipeline.enrollments._by_id.clear()

    with pytest.raises(StorageFailure, match="references missing rows"):
        pipeline.process(_event())


# ---- concurrency ----


async def _deliver_concurrently(pipeline: Pipeline, events: list[PurchaseEvent]):
    return await asyncio.gather(*(pipeline.orchestrator.process(e) for e in events))


@pytest.mark.parametrize("copies", [2, 5, 10])
def test_concurrent_duplicate_delivery(copies: int) -> None:
    pipeline = Pipeline(yielding=True)
    outcomes = asyncio.run(_deliver_concurrently(pipeline, [_event()] * copies))

    assert pipeline.counts() == (1, 1, 1)
    assert len({o.account.id for o in outcomes}) == 1
    assert len({o.enrollment.id for o in outcomes}) == 1

    fresh = [o for o in outcomes if o.is_new_user and o.is_new_enrollment]
    assert len(fresh) == 1
    assert fresh[0].already_processed is False
    assert sum(o.already_processed for o in outcomes) == copies - 1
    assert len(pipeline.notifier.sent) == 1


def test_concurrent_derived_key_delivery() -> None:
    pipeline = Pipeline(yielding=True)
    events = [_event(transaction_id=None, email=e) for e in ("a@x.com", "A@x.com ")]
    outcomes = asyncio.run(_deliver_concurrently(pipeline, events))

    assert pipeline.counts() == (1, 1, 1)
    assert sorted(o.already_processed for o in outcomes) == [False, True]


def test_concurrent_different_courses_share_one_account() -> None:
    pipeline = Pipeline(yielding=True)
    events = [
        _event(course_id=f"C{i}", transaction_id=f"T{i}") for i in range(1, 5)
    ]
    outcomes = asyncio.run(_deliver_concurrently(pipeline, events))

    assert pipeline.counts() == (1, 4, 4)
    assert len({o.account.id for o in outcomes}) == 1
    assert sum(o.is_new_user for o in outcomes) == 1
    assert all(o.is_new_enrollment for o in outcomes)
    assert not any(o.already_processed for o in outcomes)
    assert len(pipeline.notifier.sent) == 1
