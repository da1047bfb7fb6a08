"""
identity/models.py -- Domain dataclasses and enums for identity entities.

Pattern: Data class (pure data container, zero logic beyond small predicates).
The service owns behavior; stores and routes map to and from these types.

Layer rule: stdlib only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Role(str, Enum):
    """The three flat roles. No hierarchy: admin does not imply user."""

    ADMIN = "admin"
    USER = "user"
    CLIENT = "client"


class UserStatus(str, Enum):
    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"
    BLOCKED = "blocked"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class User:
    """An end user of the catalog service.

    email is unique and compared case-sensitively, exactly as stored.

    password_hash is kept out of repr() so it never lands in a log line by
    accident. IdentityService blanks it on every User it returns.

    is_verified only ever goes from False to True. status moves
    pending_verification -> active on verification, or to blocked by an admin.
    """

    email: str
    full_name: str
    role: Role
    status: UserStatus = UserStatus.PENDING_VERIFICATION
    is_verified: bool = False
    password_hash: str = field(default="", repr=False)
    id: str | None = None  # UUID string, assigned by the store
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def can_login(self) -> bool:
        return self.status == UserStatus.ACTIVE and self.is_verified


@dataclass
class VerificationChallenge:
    """The single live one-time code for a user. expires_at is timezone-aware UTC."""

    user_id: str
    code: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class AuthToken:
    """Signed bearer credential returned by a successful login. Never persisted."""

    token: str
    token_type: str = "bearer"
    expires_in: int = 0  # seconds


@dataclass(frozen=True)
class TokenClaims:
    """Identity carried inside a validated token."""

    user_id: str
    role: Role


# ---------------------------------------------------------------------------
# Operation inputs
# ---------------------------------------------------------------------------


@dataclass
class RegisterUserInput:
    email: str
    password: str = field(repr=False)
    full_name: str


@dataclass
class VerifyUserInput:
    user_id: str
    code: str = field(repr=False)


@dataclass
class LoginInput:
    email: str
    password: str = field(repr=False)


@dataclass
class UpdateUserInput:
    user_id: str
    updater_id: str
    full_name: str = ""


@dataclass
class UpdateUserRoleInput:
    admin_id: str
    user_id: str
    role: Role | str


@dataclass
class BlockUserInput:
    admin_id: str
    user_id: str
    reason: str = ""


@dataclass
class AdminSeedInput:
    email: str = ""
    password: str = field(default="", repr=False)
    full_name: str = "Catalog Admin"
