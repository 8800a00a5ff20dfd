"""PostgreSQL implementation of CourseCatalog."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import CourseRow
from app.models.course import Course
from app.repos.pg_errors import translate_errors


class PgCourseCatalog:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_published(self, course_id: str) -> Course | None:
        stmt = select(CourseRow).where(
            CourseRow.id == course_id, CourseRow.is_published.is_(True)
        )
        async with translate_errors("course", course_id):
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return Course(id=row.id, title=row.title, is_published=row.is_published)
