"""Name validation and key layout helpers for s3drive.

User ids and file names become path segments of object keys:

    user marker:  {user_id}/
    file:         {user_id}/{file_name}

Each function raises ``BadRequestError`` on invalid input.
"""

from s3drive.errors import BadRequestError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SEPARATOR = "/"

# Characters that would break the one-segment-per-name key layout
_FORBIDDEN_CHARS = ("/", "\\", "\x00")
_RESERVED_NAMES = (".", "..")

# S3 object keys are limited to 1024 bytes of UTF-8
_MAX_KEY_BYTES = 1024


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _validate_segment(value: str, what: str) -> None:
    if not value:
        raise BadRequestError(f"{what} must not be empty")
    if value in _RESERVED_NAMES:
        raise BadRequestError(f"{what} must not be '.' or '..'")
    for char in _FORBIDDEN_CHARS:
        if char in value:
            raise BadRequestError(f"{what} must not contain {char!r}")
    if any(ord(c) < 0x20 or c == "\x7f" for c in value):
        raise BadRequestError(f"{what} must not contain control characters")


def validate_user_id(user_id: str) -> None:
    """Validate a user id.

    Raises:
        BadRequestError: If the id is empty, reserved, contains a path
            separator or control character, or makes the marker key too long.
    """
    _validate_segment(user_id, "userId")
    if len(user_prefix(user_id).encode("utf-8")) > _MAX_KEY_BYTES:
        raise BadRequestError("userId is too long")


def validate_file_name(file_name: str) -> None:
    """Validate a file name (the key suffix after the user prefix).

    Raises:
        BadRequestError: If the name is empty, reserved, or contains a path
            separator or control character.
    """
    _validate_segment(file_name, "fileName")


def user_prefix(user_id: str) -> str:
    """Return the key prefix (and marker key) for ``user_id``."""
    return user_id + SEPARATOR


def file_key(user_id: str, file_name: str) -> str:
    """Validate both names and return the object key for a file.

    Raises:
        BadRequestError: If either name is invalid or the key is too long.
    """
    validate_user_id(user_id)
    validate_file_name(file_name)
    key = user_prefix(user_id) + file_name
    if len(key.encode("utf-8")) > _MAX_KEY_BYTES:
        raise BadRequestError("Object key is too long")
    return key
