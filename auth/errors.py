"""
auth/errors.py -- Closed error taxonomy for the auth core.

Every failure the core reports is an AuthError subclass tagged with an
ErrorKind. Callers branch on the class (or on .kind) rather than on message
text; the structured fields (entity, key) say what was being looked up.

  DuplicateKeyError        unique-constraint violation on create
  NotFoundError            lookup miss
  AlreadyExistsError       membership edge already present
  InvalidCredentialsError  authentication failure (deliberately undifferentiated)
  ForbiddenError           authorization gate denial
  StorageFailureError      any other persistence error; .cause is the original

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    DUPLICATE_KEY = "duplicate_key"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    INVALID_CREDENTIALS = "invalid_credentials"
    FORBIDDEN = "forbidden"
    STORAGE_FAILURE = "storage_failure"


class AuthError(Exception):
    """Base class for all auth core errors."""

    kind: ErrorKind

    def __init__(self, message: str, entity: str | None = None, key: str | None = None) -> None:
        super().__init__(message)
        self.entity = entity
        self.key = key


class DuplicateKeyError(AuthError):
    kind = ErrorKind.DUPLICATE_KEY

    def __init__(self, entity: str, key: str) -> None:
        super().__init__(f"{entity} {key!r} already exists", entity=entity, key=key)


class NotFoundError(AuthError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, key: str) -> None:
        super().__init__(f"{entity} {key!r} not found", entity=entity, key=key)


class AlreadyExistsError(AuthError):
    """A membership edge (user->group or group->permission) is already present.

    key is "<left>:<right>", e.g. "usera:groupa".
    """

    kind = ErrorKind.ALREADY_EXISTS

    def __init__(self, entity: str, left: str, right: str) -> None:
        super().__init__(f"{left!r} already assigned to {entity} {right!r}", entity="membership", key=f"{left}:{right}")
        self.left = left
        self.right = right


class InvalidCredentialsError(AuthError):
    """Authentication failed.

    The message never says whether the username was unknown, the account was
    disabled, or the password was wrong.
    """

    kind = ErrorKind.INVALID_CREDENTIALS

    def __init__(self) -> None:
        super().__init__("Invalid username or password.", entity="user")


class ForbiddenError(AuthError):
    """The authorization gate denied the request.

    reason is for internal logs only; it must not be sent to the client.
    """

    kind = ErrorKind.FORBIDDEN

    def __init__(self, permission: str | None = None, reason: str = "") -> None:
        super().__init__("Forbidden.", entity="permission", key=permission)
        self.reason = reason


class StorageFailureError(AuthError):
    kind = ErrorKind.STORAGE_FAILURE

    def __init__(self, cause: Exception, entity: str | None = None, key: str | None = None) -> None:
        super().__init__(f"storage failure: {cause}", entity=entity, key=key)
        self.cause = cause
