from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal
from uuid import UUID, uuid4

Role = Literal["learner", "instructor", "administrator"]

ROLES: tuple[Role, ...] = ("learner", "instructor", "administrator")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    return EMAIL_RE.match(email) is not None


@dataclass(frozen=True, slots=True)
class Account:
    id: UUID
    email: str
    display_name: str
    credential_hash: str
    created_at: datetime
    updated_at: datetime
    phone: str | None = None
    role: Role = "learner"
    # Dedup key of the purchase that provisioned this account (None when
    # created outside the webhook pipeline).
    origin_key: str | None = None

    def __post_init__(self) -> None:
        if self.email != normalize_email(self.email) or not is_valid_email(self.email):
            raise ValueError(f"account email must be normalized (got {self.email!r})")
        if self.role not in ROLES:
            raise ValueError(f"unknown role {self.role!r}")
        if not self.credential_hash:
            raise ValueError("credential_hash must be non-empty")

    @staticmethod
    def new(
        *,
        email: str,
        display_name: str,
        credential_hash: str,
        phone: str | None = None,
        role: Role = "learner",
        origin_key: str | None = None,
    ) -> Account:
        now = datetime.now(UTC)
        return Account(
            id=uuid4(),
            email=normalize_email(email),
            display_name=display_name.strip(),
            credential_hash=credential_hash,
            created_at=now,
            updated_at=now,
            phone=phone,
            role=role,
            origin_key=origin_key,
        )
