from __future__ import annotations

import asyncio
import logging

from app.core.errors import DuplicateKeyError, StorageFailure
from app.core.metrics import UNIQUE_VIOLATIONS_RECOVERED
from app.models.account import Account, normalize_email
from app.repos.account_repo import AccountRepo
from app.services import credentials
from app.services.notifications import WelcomeNotifier

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Email -> Account, creating the account on first sighting.

    Never creates a second account for the same normalized email: when two
    deliveries race, the store's uniqueness check picks the winner and the
    loser adopts the winner's row.
    """

    def __init__(self, accounts: AccountRepo, notifier: WelcomeNotifier) -> None:
        self._accounts = accounts
        self._notifier = notifier

    async def resolve_or_create(
        self,
        email: str,
        display_name: str,
        phone: str | None = None,
        *,
        origin_key: str | None = None,
    ) -> Account:
        email = normalize_email(email)

        existing = await self._accounts.get_by_email(email)
        if existing is not None:
            return existing

        # argon2 is deliberately slow; keep it off the event loop.
        credential_hash = await asyncio.to_thread(credentials.new_credential_hash)
        account = Account.new(
            email=email,
            display_name=display_name,
            credential_hash=credential_hash,
            phone=phone,
            origin_key=origin_key,
        )

        try:
            await self._accounts.add(account)
        except DuplicateKeyError:
            winner = await self._accounts.get_by_email(email)
            if winner is None:
                raise StorageFailure(
                    "account insert reported a duplicate but no row was found"
                ) from None
            UNIQUE_VIOLATIONS_RECOVERED.labels(record="account").inc()
            logger.info(
                "Account creation lost a race, using existing  account_id=%s",
                winner.id,
            )
            return winner

        logger.info(
            "Account created  account_id=%s",
            account.id,
            extra={"account_id": str(account.id), "dedup_key": origin_key},
        )
        try:
            self._notifier.send_welcome(account)
        except Exception:
            logger.warning(
                "Welcome notification dispatch failed  account_id=%s",
                account.id,
                exc_info=True,
            )
        return account
