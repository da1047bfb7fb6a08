"""
identity/errors.py -- Error taxonomy for the identity core.

ErrorKind is the closed set of failure categories. Each exception carries a
kind, a stable machine-readable code, a message, and structured context
(which field failed, which collaborator is missing). The API layer maps kind
to an HTTP status with a single exception handler, so adding an exception
here never requires a new handler.

Credentials errors are deliberately uniform: every login failure raises
InvalidCredentialsError and every verification failure raises
InvalidVerificationCodeError, each with a fixed message and no context.

Storage, hashing and token-signing failures are NOT wrapped. They propagate
as whatever the adapter raised (e.g. sqlalchemy.exc.SQLAlchemyError).
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from identity.models import User


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    CREDENTIALS = "credentials"
    NOT_FOUND = "not_found"
    INFRASTRUCTURE = "infrastructure"


class IdentityError(Exception):
    """Base class for every error raised by the identity core."""

    kind: ErrorKind = ErrorKind.INFRASTRUCTURE
    code: str = "identity_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def context(self) -> dict:
        """Structured details safe to show to the caller."""
        return {}


class ConfigurationError(IdentityError):
    """A required collaborator was not supplied. Raised only at construction."""

    kind = ErrorKind.CONFIGURATION
    code = "configuration_error"

    def __init__(self, collaborator: str, message: str | None = None) -> None:
        super().__init__(message or f"{collaborator} is not configured")
        self.collaborator = collaborator

    @property
    def context(self) -> dict:
        return {"collaborator": self.collaborator}


class ValidationError(IdentityError):
    kind = ErrorKind.VALIDATION
    code = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field

    @property
    def context(self) -> dict:
        return {"field": self.field}


class PasswordPolicyError(ValidationError):
    code = "weak_password"

    def __init__(self, message: str) -> None:
        super().__init__("password", message)


class EmailAlreadyRegisteredError(IdentityError):
    kind = ErrorKind.CONFLICT
    code = "email_already_registered"

    def __init__(self, email: str) -> None:
        super().__init__("email already registered")
        self.email = email

    @property
    def context(self) -> dict:
        return {"email": self.email}


class InvalidCredentialsError(IdentityError):
    """Login failed. Same message for unknown email, wrong password, blocked, unverified."""

    kind = ErrorKind.CREDENTIALS
    code = "invalid_credentials"

    def __init__(self) -> None:
        super().__init__("invalid credentials")


class InvalidVerificationCodeError(IdentityError):
    """Verification failed. Same message for missing, expired, and wrong codes."""

    kind = ErrorKind.CREDENTIALS
    code = "invalid_verification_code"

    def __init__(self) -> None:
        super().__init__("invalid verification code")


class UserNotFoundError(IdentityError):
    kind = ErrorKind.NOT_FOUND
    code = "user_not_found"

    def __init__(self, user_id: str) -> None:
        super().__init__("user not found")
        self.user_id = user_id

    @property
    def context(self) -> dict:
        return {"user_id": self.user_id}


class VerificationDispatchError(IdentityError):
    """The verification email could not be sent after one retry.

    The user and challenge are already committed; `user` is the created
    record so the caller can still report its id. Recovery is a later
    verify attempt, which regenerates and resends once the code expires.
    """

    kind = ErrorKind.INFRASTRUCTURE
    code = "verification_dispatch_failed"

    def __init__(self, user: User) -> None:
        super().__init__("verification code could not be delivered")
        self.user = user

    @property
    def context(self) -> dict:
        return {"user_id": self.user.id}
