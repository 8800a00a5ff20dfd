"""Error taxonomy for the purchase pipeline.

The API layer maps these onto HTTP status codes:

  ValidationError     -> 422  (caller must fix the payload, do not retry)
  NotFoundError       -> 404  (unknown or unpublished course / account)
  StorageFailure      -> 503  (retryable: redelivery is safe)
  NotificationFailure -> never reaches the caller

DuplicateKeyError is raised by repositories when a uniqueness constraint
rejects an insert.  The resolvers and the ledger always translate it
("someone else won, re-fetch their row"), so it never escapes the service
layer.
"""

from __future__ import annotations


class PurchaseError(Exception):
    """Base class for everything the purchase pipeline raises on purpose."""

    retryable = False


class ValidationError(PurchaseError, ValueError):
    def __init__(self, message: str, *, missing_fields: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.missing_fields = missing_fields


class NotFoundError(PurchaseError, LookupError):
    pass


class StorageFailure(PurchaseError):
    """The store is unreachable or violated an invariant we could not repair."""

    retryable = True


class NotificationFailure(PurchaseError):
    pass


class DuplicateKeyError(PurchaseError, ValueError):
    def __init__(self, record: str, key: str) -> None:
        super().__init__(f"{record} already exists for key={key}")
        self.record = record
        self.key = key
