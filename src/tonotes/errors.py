from abc import ABC
from datetime import datetime
from typing import ClassVar


class UserError(ABC, Exception):
    """Base class for user-related errors.

    All errors that inherit from UserError will have their messages
    displayed to the user. These errors should not contain any
    sensitive information.
    """

    kind: ClassVar[str] = "BadRequest"
    status_code: ClassVar[int] = 400


class InvalidInputError(UserError):
    """Raised when user input fails validation."""

    kind = "InvalidInput"


class WeakPasswordError(InvalidInputError):
    """Raised when a password does not satisfy the password policy."""

    kind = "WeakPassword"


class TwoFactorAlreadyEnabledError(InvalidInputError):
    kind = "AlreadyEnabled"

    def __init__(self, message: str = "2FA is already enabled") -> None:
        super().__init__(message)


class TwoFactorNotEnabledError(InvalidInputError):
    kind = "NotEnabled"

    def __init__(self, message: str = "2FA is not enabled") -> None:
        super().__init__(message)


class InvalidCredentialsError(UserError):
    """Raised for an unknown username or a wrong password, indistinguishably."""

    kind = "InvalidCredentials"
    status_code = 401

    def __init__(self, message: str = "Invalid username or password") -> None:
        super().__init__(message)


class InvalidTwoFactorError(UserError):
    kind = "Invalid2FA"
    status_code = 401

    def __init__(self, message: str = "Invalid 2FA code") -> None:
        super().__init__(message)


class InvalidRecoveryCodeError(UserError):
    kind = "InvalidCode"
    status_code = 401

    def __init__(self, message: str = "Invalid recovery code") -> None:
        super().__init__(message)


class UnauthorizedError(UserError):
    """Raised when a request carries no usable credentials."""

    kind = "Unauthorized"
    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class TokenExpiredError(UnauthorizedError):
    kind = "Expired"

    def __init__(self, message: str = "Token has expired") -> None:
        super().__init__(message)


class MalformedTokenError(UnauthorizedError):
    kind = "Malformed"

    def __init__(self, message: str = "Invalid token") -> None:
        super().__init__(message)


class WrongTokenKindError(UnauthorizedError):
    kind = "WrongKind"

    def __init__(self, message: str = "Wrong token type") -> None:
        super().__init__(message)


class ForbiddenError(UserError):
    """Raised when a user tries to access a resource they do not own."""

    kind = "Forbidden"
    status_code = 403

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class NotFoundError(UserError):
    """Raised when a requested resource is not found."""

    kind = "NotFound"
    status_code = 404

    def __init__(self, message: str = "Document not found") -> None:
        super().__init__(message)


class ConflictError(UserError):
    kind = "Conflict"
    status_code = 409


class UsernameTakenError(ConflictError):
    kind = "UsernameTaken"

    def __init__(self, message: str = "Username already exists") -> None:
        super().__init__(message)


class RateLimitedError(UserError):
    """Raised when an operation is attempted before its cool-down has passed."""

    kind = "RateLimited"
    status_code = 429

    def __init__(self, message: str, next_allowed_change: datetime) -> None:
        super().__init__(message)
        self.next_allowed_change = next_allowed_change


class ServiceError(Exception):
    """Base class for server-side failures.

    Messages are logged but never shown to the user; the client receives a
    generic internal error instead.
    """

    kind: ClassVar[str] = "InternalError"
    status_code: ClassVar[int] = 500


class StorageFailedError(ServiceError):
    """Raised when the document store rejects or fails an operation."""

    kind = "StorageFailed"


class RevocationFailedError(ServiceError):
    """Raised when one or more tokens could not be written to the revocation list."""

    kind = "RevocationFailed"


class MalformedDigestError(ServiceError):
    """Raised when a stored password digest cannot be parsed."""

    kind = "MalformedDigest"


class InternalError(ServiceError):
    kind = "InternalError"
