from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Enrollment:
    id: UUID
    account_id: UUID
    course_id: str
    enrolled_at: datetime
    progress_percentage: int = 0  # owned by the progress service
    last_accessed_at: datetime | None = None
    transaction_id: str | None = None
    origin_key: str | None = None

    def __post_init__(self) -> None:
        if not self.course_id:
            raise ValueError("course_id must be non-empty")
        if not 0 <= self.progress_percentage <= 100:
            raise ValueError(
                f"progress_percentage must be within 0..100 "
                f"(got {self.progress_percentage})"
            )

    @staticmethod
    def new(
        *,
        account_id: UUID,
        course_id: str,
        transaction_id: str | None = None,
        origin_key: str | None = None,
    ) -> Enrollment:
        return Enrollment(
            id=uuid4(),
            account_id=account_id,
            course_id=course_id,
            enrolled_at=datetime.now(UTC),
            transaction_id=transaction_id,
            origin_key=origin_key,
        )
