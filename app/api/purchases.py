"""Purchase webhook endpoints.

  POST /v1/purchases              full pipeline (account + enrollment + ledger)
  POST /v1/purchases/accounts     provision an account only
  POST /v1/purchases/enrollments  enroll an existing account only
  GET  /v1/courses/{id}/validate  is the course published?

The webhook sender authenticates with a shared bearer secret.  Responses
tell it whether to redeliver: 2xx and 4xx are final, 503 means "nothing
was recorded, send it again".
"""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel

from app.api.dependencies import (
    NotifierDep,
    Stores,
    StoresDep,
    build_orchestrator,
    require_webhook_secret,
)
from app.core.errors import (
    DuplicateKeyError,
    NotFoundError,
    PurchaseError,
    StorageFailure,
    ValidationError,
)
from app.core.metrics import PURCHASE_FAILURES
from app.models.account import Account, is_valid_email, normalize_email
from app.models.course import Course
from app.models.enrollment import Enrollment
from app.models.purchase import PurchaseEvent, check_lengths
from app.services.enrollment_resolver import EnrollmentResolver
from app.services.identity_resolver import IdentityResolver
from app.services.notifications import OutboxNotifier

logger = logging.getLogger(__name__)

router = APIRouter(tags=["purchases"])

# Seconds the sender should wait before redelivering after a 503.
RETRY_AFTER_SECONDS = 30


# --- Request / Response schemas -------------------------------------------


class PurchaseIn(BaseModel):
    # Everything optional at the schema level so that missing fields are
    # reported together, by name, instead of as a generic 422.
    email: str | None = None
    full_name: str | None = None
    phone: str | None = None
    course_id: str | None = None
    transaction_id: str | None = None
    purchase_date: str | None = None


class AccountIn(BaseModel):
    email: str | None = None
    full_name: str | None = None
    phone: str | None = None


class EnrollmentIn(BaseModel):
    account_id: UUID
    course_id: str


class AccountOut(BaseModel):
    id: str
    email: str
    full_name: str
    role: str

    @classmethod
    def of(cls, account: Account) -> AccountOut:
        return cls(
            id=str(account.id),
            email=account.email,
            full_name=account.display_name,
            role=account.role,
        )


class EnrollmentOut(BaseModel):
    id: str
    account_id: str
    course_id: str
    enrolled_at: datetime
    progress_percentage: int
    transaction_id: str | None

    @classmethod
    def of(cls, enrollment: Enrollment) -> EnrollmentOut:
        return cls(
            id=str(enrollment.id),
            account_id=str(enrollment.account_id),
            course_id=enrollment.course_id,
            enrolled_at=enrollment.enrolled_at,
            progress_percentage=enrollment.progress_percentage,
            transaction_id=enrollment.transaction_id,
        )


class PurchaseOut(BaseModel):
    account: AccountOut
    enrollment: EnrollmentOut
    is_new_user: bool
    is_new_enrollment: bool
    already_processed: bool
    kind: str
    message: str


class CourseOut(BaseModel):
    id: str
    title: str
    is_published: bool


# --- Error mapping ----------------------------------------------------------


def _to_http(exc: PurchaseError) -> HTTPException:
    if isinstance(exc, ValidationError):
        PURCHASE_FAILURES.labels(error="validation").inc()
        detail: dict[str, object] = {"message": exc.message}
        if exc.missing_fields:
            detail["missing_fields"] = list(exc.missing_fields)
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail
        )
    if isinstance(exc, NotFoundError):
        PURCHASE_FAILURES.labels(error="not_found").inc()
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail={"message": str(exc)}
        )
    if isinstance(exc, (StorageFailure, DuplicateKeyError)):
        PURCHASE_FAILURES.labels(error="storage").inc()
        logger.error("Storage failure, asking sender to retry: %s", exc)
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": "Temporarily unable to record purchase, retry later"},
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )
    PURCHASE_FAILURES.labels(error="internal").inc()
    logger.error("Unhandled purchase error: %r", exc)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"message": "Internal error"},
    )


async def _require_published(stores: Stores, course_id: str) -> Course:
    course = await stores.courses.get_published(course_id)
    if course is None:
        raise NotFoundError(f"course {course_id!r} not found or not published")
    return course


# --- POST /v1/purchases ---------------------------------------------------


@router.post(
    "/v1/purchases",
    response_model=PurchaseOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_webhook_secret)],
)
async def process_purchase(
    payload: PurchaseIn,
    response: Response,
    stores: StoresDep,
    notifier: NotifierDep,
) -> PurchaseOut:
    outbox = OutboxNotifier(notifier)
    try:
        event = PurchaseEvent(**payload.model_dump()).validated()
        await _require_published(stores, event.course_id or "")
        outcome = await build_orchestrator(stores, outbox).process(event)
        await stores.commit()
    except PurchaseError as exc:
        outbox.discard()
        raise _to_http(exc) from None

    outbox.release()

    if outcome.already_processed:
        response.status_code = status.HTTP_200_OK

    return PurchaseOut(
        account=AccountOut.of(outcome.account),
        enrollment=EnrollmentOut.of(outcome.enrollment),
        is_new_user=outcome.is_new_user,
        is_new_enrollment=outcome.is_new_enrollment,
        already_processed=outcome.already_processed,
        kind=outcome.kind,
        message=outcome.message,
    )


# --- POST /v1/purchases/accounts ------------------------------------------


@router.post(
    "/v1/purchases/accounts",
    response_model=AccountOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_webhook_secret)],
)
async def create_account(
    payload: AccountIn,
    stores: StoresDep,
    notifier: NotifierDep,
) -> AccountOut:
    outbox = OutboxNotifier(notifier)
    try:
        email = normalize_email(payload.email or "")
        name = (payload.full_name or "").strip()
        missing = tuple(
            field for field, value in (("email", email), ("full_name", name)) if not value
        )
        if missing:
            raise ValidationError(
                f"missing required fields: {', '.join(missing)}",
                missing_fields=missing,
            )
        phone = (payload.phone or "").strip() or None
        check_lengths(email=email, full_name=name, phone=phone)
        if not is_valid_email(email):
            raise ValidationError("invalid email address")

        account = await IdentityResolver(stores.accounts, outbox).resolve_or_create(
            email, name, phone
        )
        await stores.commit()
    except PurchaseError as exc:
        outbox.discard()
        raise _to_http(exc) from None

    outbox.release()
    return AccountOut.of(account)


# --- POST /v1/purchases/enrollments ---------------------------------------


@router.post(
    "/v1/purchases/enrollments",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_webhook_secret)],
)
async def enroll_account(payload: EnrollmentIn, stores: StoresDep) -> EnrollmentOut:
    try:
        check_lengths(course_id=payload.course_id)
        if await stores.accounts.get_by_id(payload.account_id) is None:
            raise NotFoundError(f"account {payload.account_id} not found")
        await _require_published(stores, payload.course_id)
        enrollment = await EnrollmentResolver(stores.enrollments).resolve_or_create(
            payload.account_id, payload.course_id
        )
        await stores.commit()
    except PurchaseError as exc:
        raise _to_http(exc) from None

    return EnrollmentOut.of(enrollment)


# --- GET /v1/courses/{course_id}/validate ---------------------------------


@router.get("/v1/courses/{course_id}/validate", response_model=CourseOut)
async def validate_course(course_id: str, stores: StoresDep) -> CourseOut:
    try:
        course = await _require_published(stores, course_id)
    except PurchaseError as exc:
        raise _to_http(exc) from None
    return CourseOut(id=course.id, title=course.title, is_published=course.is_published)

