"""Classification of storage backend failures into client-facing responses."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from botocore.exceptions import ClientError

NOT_FOUND_MESSAGE = "The requested resource was not found"
FORBIDDEN_MESSAGE = "Access to the requested resource is forbidden"
BUCKET_MISSING_MESSAGE = "The requested source does not exist"
INTERNAL_ERROR_MESSAGE = "An error occurred while processing your request"
METHOD_NOT_ALLOWED_MESSAGE = "Method not allowed"


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    BUCKET_MISSING = "bucket_missing"
    INTERNAL = "internal"


@dataclass(frozen=True)
class BackendError:
    """An error the storage service answered with a code and message."""

    code: str
    message: str


@dataclass(frozen=True)
class OpaqueError:
    """Any failure that carries no storage error code (transport, SDK, bugs)."""

    exception: BaseException


@dataclass(frozen=True)
class Classification:
    kind: ErrorKind
    status_code: int
    message: str


_BY_CODE: dict[str, Classification] = {
    "NoSuchKey": Classification(ErrorKind.NOT_FOUND, 404, NOT_FOUND_MESSAGE),
    "AccessDenied": Classification(ErrorKind.FORBIDDEN, 403, FORBIDDEN_MESSAGE),
    "Forbidden": Classification(ErrorKind.FORBIDDEN, 403, FORBIDDEN_MESSAGE),
    "InvalidBucketName": Classification(
        ErrorKind.BUCKET_MISSING, 404, BUCKET_MISSING_MESSAGE
    ),
    "NoSuchBucket": Classification(
        ErrorKind.BUCKET_MISSING, 404, BUCKET_MISSING_MESSAGE
    ),
}

_INTERNAL = Classification(ErrorKind.INTERNAL, 500, INTERNAL_ERROR_MESSAGE)


def inspect_error(error: BaseException) -> BackendError | OpaqueError:
    """Extract the storage error code and message from ``error`` if it has one."""
    if isinstance(error, ClientError):
        details = error.response.get("Error", {})
        code = details.get("Code")
        if code:
            return BackendError(code=str(code), message=str(details.get("Message", "")))
    return OpaqueError(exception=error)


def classify(error: BackendError | OpaqueError) -> Classification:
    """Map an inspected error to the status code and generic message to send.

    Only the generic message ever reaches the client; the backend code and
    message stay on the inspected error for the operator log.
    """
    if isinstance(error, BackendError):
        return _BY_CODE.get(error.code, _INTERNAL)
    return _INTERNAL
