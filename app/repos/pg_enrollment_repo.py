"""PostgreSQL implementation of EnrollmentRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import EnrollmentRow
from app.models.enrollment import Enrollment
from app.repos.pg_errors import translate_errors


class PgEnrollmentRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, enrollment_id: UUID) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(EnrollmentRow.id == enrollment_id)
        async with translate_errors("enrollment", str(enrollment_id)):
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_enrollment(row)

    async def get_for(self, account_id: UUID, course_id: str) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(
            EnrollmentRow.account_id == account_id,
            EnrollmentRow.course_id == course_id,
        )
        async with translate_errors("enrollment", f"{account_id}:{course_id}"):
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_enrollment(row)

    async def add(self, enrollment: Enrollment) -> None:
        row = EnrollmentRow(
            id=enrollment.id,
            account_id=enrollment.account_id,
            course_id=enrollment.course_id,
            enrolled_at=enrollment.enrolled_at,
            progress_percentage=enrollment.progress_percentage,
            last_accessed_at=enrollment.last_accessed_at,
            transaction_id=enrollment.transaction_id,
            origin_key=enrollment.origin_key,
        )
        key = f"{enrollment.account_id}:{enrollment.course_id}"
        async with translate_errors("enrollment", key):
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()


def _row_to_enrollment(row: EnrollmentRow) -> Enrollment:
    return Enrollment(
        id=row.id,
        account_id=row.account_id,
        course_id=row.course_id,
        enrolled_at=row.enrolled_at,
        progress_percentage=row.progress_percentage,
        last_accessed_at=row.last_accessed_at,
        transaction_id=row.transaction_id,
        origin_key=row.origin_key,
    )
