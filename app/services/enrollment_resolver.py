from __future__ import annotations

import logging
from uuid import UUID

from app.core.errors import DuplicateKeyError, StorageFailure
from app.core.metrics import UNIQUE_VIOLATIONS_RECOVERED
from app.models.enrollment import Enrollment
from app.repos.enrollment_repo import EnrollmentRepo

logger = logging.getLogger(__name__)


class EnrollmentResolver:
    """(account, course) -> Enrollment.  Re-enrolling is a no-op.

    Course existence is checked by the caller; a missing course is not
    this component's concern.
    """

    def __init__(self, enrollments: EnrollmentRepo) -> None:
        self._enrollments = enrollments

    async def resolve_or_create(
        self,
        account_id: UUID,
        course_id: str,
        *,
        transaction_id: str | None = None,
        origin_key: str | None = None,
    ) -> Enrollment:
        existing = await self._enrollments.get_for(account_id, course_id)
        if existing is not None:
            return existing

        enrollment = Enrollment.new(
            account_id=account_id,
            course_id=course_id,
            transaction_id=transaction_id,
            origin_key=origin_key,
        )
        try:
            await self._enrollments.add(enrollment)
        except DuplicateKeyError:
            winner = await self._enrollments.get_for(account_id, course_id)
            if winner is None:
                raise StorageFailure(
                    "enrollment insert reported a duplicate but no row was found"
                ) from None
            UNIQUE_VIOLATIONS_RECOVERED.labels(record="enrollment").inc()
            return winner

        logger.info(
            "Enrollment created  enrollment_id=%s account_id=%s course_id=%s",
            enrollment.id,
            account_id,
            course_id,
            extra={
                "enrollment_id": str(enrollment.id),
                "account_id": str(account_id),
                "course_id": course_id,
            },
        )
        return enrollment
