"""Error taxonomy for resource reconciliation.

Every failure a resource adapter can produce is classified into one of four
kinds, and the kind alone decides what the engine does next:

- NOT_FOUND: drives the create-vs-update decision, never surfaced to users
- SKIPPED: an adapter deliberately declined an operation, treated as success
- TRANSIENT: retried with backoff inside the mutation budget
- FATAL: aborts the current resource and propagates to the pipeline

Provider errors arrive as botocore ClientError. Classification lives here so
adapters never have to inspect HTTP status codes themselves.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from botocore.exceptions import ClientError

# HTTP statuses that mean "the resource is not there (yet)"
NOT_FOUND_HTTP_STATUSES = frozenset({404, 409})

# Provider error codes in the not-found family
NOT_FOUND_CODE_SUFFIXES = ("NotFoundException", "NotFound", "NoSuchEntity", "NoSuchBucket")


class ErrorKind(str, Enum):
    """How the engine reacts to a failure."""

    NOT_FOUND = "not_found"
    SKIPPED = "skipped"
    TRANSIENT = "transient"
    FATAL = "fatal"


class ReconcileError(Exception):
    """Base class for reconciliation errors."""

    pass


class NotFoundError(ReconcileError):
    """Raised by adapters when a read finds no resource."""

    pass


class SkippedAction(ReconcileError):
    """Raised by adapters that deliberately decline an operation.

    Example: a schedule update when the target function is not deployed yet.
    """

    pass


class FatalError(ReconcileError):
    """Unrecoverable failure for a single resource.

    Attributes:
        resource: Kind/label of the resource that failed.
    """

    def __init__(self, message: str, *, resource: str | None = None) -> None:
        self.resource = resource
        super().__init__(f"{resource}: {message}" if resource else message)


class ConvergenceError(FatalError):
    """Observed state never matched the desired subset within the retry budget."""

    def __init__(
        self,
        message: str,
        *,
        resource: str | None = None,
        differences: dict[str, Any] | None = None,
    ) -> None:
        self.differences = differences or {}
        fields = ", ".join(sorted(self.differences))
        if fields:
            message = f"{message} (mismatched: {fields})"
        super().__init__(message, resource=resource)


def _client_error_details(exc: ClientError) -> tuple[int | None, str]:
    response = getattr(exc, "response", None) or {}
    status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    code = response.get("Error", {}).get("Code", "") or ""
    return status, str(code)


def is_not_found(exc: BaseException, *, during_read: bool = True) -> bool:
    """Check whether an exception means the resource does not exist.

    A 409 only counts while reading; from a mutation it is a conflict with
    an operation still in flight and is retried instead.
    """
    if isinstance(exc, NotFoundError):
        return True
    if isinstance(exc, ClientError):
        status, code = _client_error_details(exc)
        statuses = NOT_FOUND_HTTP_STATUSES if during_read else NOT_FOUND_HTTP_STATUSES - {409}
        if status in statuses:
            return True
        return code.endswith(NOT_FOUND_CODE_SUFFIXES) or code == "404"
    return False


def classify_error(exc: BaseException, *, during_read: bool = False) -> ErrorKind:
    """Classify an exception raised by a descriptor callback.

    Args:
        exc: The raised exception.
        during_read: Whether it came from a read callback.

    Returns:
        The ErrorKind the engine should act on.
    """
    if isinstance(exc, SkippedAction):
        return ErrorKind.SKIPPED
    if isinstance(exc, FatalError):
        return ErrorKind.FATAL
    if is_not_found(exc, during_read=during_read):
        return ErrorKind.NOT_FOUND
    return ErrorKind.TRANSIENT


def describe_error(exc: BaseException) -> str:
    """Short human-readable description, including the provider error code."""
    if isinstance(exc, ClientError):
        status, code = _client_error_details(exc)
        message = exc.response.get("Error", {}).get("Message", "") if exc.response else ""
        return f"{code or 'ClientError'} ({status}): {message or exc}"
    return f"{type(exc).__name__}: {exc}"
