"""Error definitions for s3drive.

Every error that reaches the HTTP layer is a ``DriveError`` carrying one of a
closed set of ``ErrorKind`` values. The kind decides the HTTP status; the body
is always ``{"message": str(error)}``.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of error categories exposed over HTTP."""

    NOT_FOUND = "NotFound"
    BACKEND_ERROR = "BackendError"
    ABORTED = "Aborted"
    BAD_REQUEST = "BadRequest"


# Backend errors keep the historical 404 contract; clients cannot tell a
# missing key from a permissions failure.
_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.BACKEND_ERROR: 404,
    ErrorKind.ABORTED: 400,
    ErrorKind.BAD_REQUEST: 400,
}


class DriveError(Exception):
    """Base error with a kind and a human-readable message.

    Attributes:
        kind: The error category.
        message: Human-readable error description.
    """

    kind: ErrorKind = ErrorKind.BACKEND_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def http_status(self) -> int:
        """The HTTP status code for this error's kind."""
        return _STATUS_BY_KIND[self.kind]

    def to_body(self) -> dict[str, str]:
        """Serialize to the single-field JSON error body."""
        return {"message": self.message}


class StoreError(DriveError):
    """Any failure reported by the backing object store."""

    kind = ErrorKind.BACKEND_ERROR


class UserNotFoundError(DriveError):
    """The user prefix holds no objects at all."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, user_id: str = "") -> None:
        super().__init__("User not found")
        self.user_id = user_id


class AbortedError(DriveError):
    """The client went away or stalled before a multipart upload finished.

    Parts that completed before the abort remain in the store.
    """

    kind = ErrorKind.ABORTED

    def __init__(self, message: str = "Operation Aborted") -> None:
        super().__init__(message)


class BadRequestError(DriveError):
    """The request was malformed or named an invalid user or file."""

    kind = ErrorKind.BAD_REQUEST
