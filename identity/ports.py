"""
identity/ports.py -- Collaborator contracts consumed by IdentityService.

One Protocol per collaborator. Each has its own failure mode and tests
substitute each one independently, so they are never merged into one
interface even though auth/store.py implements UserStore and RoleStore on
the same class.

Failure conventions:
  Lookups return None for "not found"; they never raise for absence.
  Mutations by id return False when no row matched.
  Everything else raises whatever the backend raises.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol

from identity.models import Role, TokenClaims, User, UserStatus, VerificationChallenge


class PasswordHasher(Protocol):
    def hash(self, plain: str) -> str:
        """Return a one-way hash of plain."""
        ...

    def compare(self, hashed: str, plain: str) -> bool:
        """Return True if plain matches hashed. Must run in constant time."""
        ...


class TokenIssuer(Protocol):
    ttl_seconds: int

    def issue(self, user_id: str, role: Role) -> str:
        """Return a signed token with subject=user_id and a role claim."""
        ...

    def validate(self, token: str) -> TokenClaims | None:
        """Return the claims of a valid, unexpired token, or None."""
        ...


class VerificationCodeGenerator(Protocol):
    def generate(self, user_id: str) -> str:
        """Return a short numeric one-time code."""
        ...


class VerificationSender(Protocol):
    def send(self, email: str, code: str) -> None:
        """Deliver code to email. Raises on failure."""
        ...


class UserStoreTransaction(Protocol):
    """Writes that must commit together. Obtained from UserStore.begin()."""

    def create_user(self, user: User) -> User: ...

    def save_verification_code(self, user_id: str, code: str, expires_at: datetime) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class UserStore(Protocol):
    def create_user(self, user: User) -> User:
        """Insert and return the stored user. Raises EmailAlreadyRegisteredError on duplicate email."""
        ...

    def get_by_email(self, email: str) -> User | None: ...

    def get_by_id(self, user_id: str) -> User | None: ...

    def mark_verified(self, user_id: str) -> bool:
        """Set is_verified and promote pending_verification to active."""
        ...

    def set_status(self, user_id: str, status: UserStatus) -> bool: ...

    def update_profile(self, user_id: str, full_name: str) -> User | None: ...

    def delete_user(self, user_id: str) -> bool:
        """Compensating action only. The identity core never calls this."""
        ...

    def begin(self) -> AbstractContextManager[UserStoreTransaction]:
        """Open a transaction scope. Leaving the scope without commit() rolls back."""
        ...

    def save_verification_code(self, user_id: str, code: str, expires_at: datetime) -> None:
        """Store the user's challenge, replacing any existing one."""
        ...

    def get_verification_code(self, user_id: str) -> VerificationChallenge | None: ...

    def delete_verification_code(self, user_id: str) -> None: ...


class RoleStore(Protocol):
    def ensure_role(self, role: Role) -> None: ...

    def assign_role(self, user_id: str, role: Role) -> bool: ...
