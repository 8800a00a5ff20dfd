from __future__ import annotations

from typing import Protocol

from app.models.course import Course


class CourseCatalog(Protocol):
    async def get_published(self, course_id: str) -> Course | None: ...


class InMemoryCourseCatalog:
    def __init__(self) -> None:
        self._courses: dict[str, Course] = {}

    def register(self, course: Course) -> None:
        self._courses[course.id] = course

    async def get_published(self, course_id: str) -> Course | None:
        course = self._courses.get(course_id)
        if course is None or not course.is_published:
            return None
        return course
