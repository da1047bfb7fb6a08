"""
identity/passwords.py -- Minimum-strength password policy.

Checked before any write during registration and admin seeding. The 72-byte
ceiling is bcrypt's input limit: bytes past it are silently ignored, so two
passwords sharing a 72-byte prefix would hash the same.
"""

from __future__ import annotations

from dataclasses import dataclass

from identity.errors import PasswordPolicyError

_BCRYPT_MAX_BYTES = 72


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int = 8
    require_letter: bool = True
    require_digit: bool = True

    def check(self, password: str) -> None:
        """Raise PasswordPolicyError describing the first rule the password breaks."""
        if len(password) < self.min_length:
            raise PasswordPolicyError(f"password must be at least {self.min_length} characters")
        if len(password.encode("utf-8")) > _BCRYPT_MAX_BYTES:
            raise PasswordPolicyError(f"password must be at most {_BCRYPT_MAX_BYTES} bytes")
        if self.require_letter and not any(c.isalpha() for c in password):
            raise PasswordPolicyError("password must contain at least one letter")
        if self.require_digit and not any(c.isdigit() for c in password):
            raise PasswordPolicyError("password must contain at least one digit")
