from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal

from app.core.errors import ValidationError
from app.models.account import Account, is_valid_email, normalize_email
from app.models.enrollment import Enrollment

OutcomeKind = Literal[
    "created_and_enrolled",
    "enrolled_existing_account",
    "already_enrolled",
    "already_processed",
]

_REQUIRED_FIELDS = ("email", "full_name", "course_id")

# Widths of the columns these fields end up in (app/db/tables.py).  A
# longer value can never be stored, so it is rejected as invalid input.
MAX_LENGTHS: dict[str, int] = {
    "email": 320,
    "full_name": 255,
    "phone": 64,
    "course_id": 64,
    "transaction_id": 255,
}

_MESSAGES: dict[str, str] = {
    "created_and_enrolled": "Account created and enrolled",
    "enrolled_existing_account": "Existing account enrolled",
    "already_enrolled": "Existing account was already enrolled; purchase recorded",
    "already_processed": "Purchase already processed",
}


def check_lengths(**fields: str | None) -> None:
    """Raise ValidationError naming every field longer than its column."""
    too_long = tuple(
        name
        for name, value in fields.items()
        if value is not None and len(value) > MAX_LENGTHS[name]
    )
    if too_long:
        raise ValidationError(f"fields too long: {', '.join(too_long)}")


@dataclass(frozen=True, slots=True)
class PurchaseEvent:
    """An inbound purchase notification, as delivered.

    Fields are kept as received; call ``validated()`` to get a normalized
    copy.  ``purchase_date`` is informational and plays no part in dedup.
    """

    email: str | None
    full_name: str | None
    course_id: str | None
    phone: str | None = None
    transaction_id: str | None = None
    purchase_date: str | None = None

    def validated(self) -> PurchaseEvent:
        missing = tuple(
            name for name in _REQUIRED_FIELDS if not (getattr(self, name) or "").strip()
        )
        if missing:
            raise ValidationError(
                f"missing required fields: {', '.join(missing)}",
                missing_fields=missing,
            )

        event = replace(
            self,
            email=normalize_email(self.email or ""),
            full_name=(self.full_name or "").strip(),
            course_id=(self.course_id or "").strip(),
            phone=(self.phone or "").strip() or None,
            transaction_id=(
                self.transaction_id if (self.transaction_id or "").strip() else None
            ),
        )
        check_lengths(
            email=event.email,
            full_name=event.full_name,
            phone=event.phone,
            course_id=event.course_id,
            transaction_id=event.transaction_id,
        )
        if not is_valid_email(event.email or ""):
            raise ValidationError("invalid email address")
        return event


@dataclass(frozen=True, slots=True)
class PurchaseOutcome:
    account: Account
    enrollment: Enrollment
    is_new_user: bool
    is_new_enrollment: bool
    already_processed: bool
    dedup_key: str

    @property
    def kind(self) -> OutcomeKind:
        if self.already_processed:
            return "already_processed"
        if self.is_new_user:
            return "created_and_enrolled"
        if self.is_new_enrollment:
            return "enrolled_existing_account"
        return "already_enrolled"

    @property
    def message(self) -> str:
        return _MESSAGES[self.kind]
