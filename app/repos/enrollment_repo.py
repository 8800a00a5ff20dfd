from __future__ import annotations

from typing import Protocol
from uuid import UUID

from app.core.errors import DuplicateKeyError
from app.models.enrollment import Enrollment


class EnrollmentRepo(Protocol):
    async def get_by_id(self, enrollment_id: UUID) -> Enrollment | None: ...
    async def get_for(self, account_id: UUID, course_id: str) -> Enrollment | None: ...
    async def add(self, enrollment: Enrollment) -> None: ...


class InMemoryEnrollmentRepo:
    def __init__(self) -> None:
        self._by_pair: dict[tuple[UUID, str], Enrollment] = {}
        self._by_id: dict[UUID, Enrollment] = {}

    async def get_by_id(self, enrollment_id: UUID) -> Enrollment | None:
        return self._by_id.get(enrollment_id)

    async def get_for(self, account_id: UUID, course_id: str) -> Enrollment | None:
        return self._by_pair.get((account_id, course_id))

    async def add(self, enrollment: Enrollment) -> None:
        pair = (enrollment.account_id, enrollment.course_id)
        if pair in self._by_pair:
            raise DuplicateKeyError("enrollment", f"{pair[0]}:{pair[1]}")
        self._by_pair[pair] = enrollment
        self._by_id[enrollment.id] = enrollment
