"""
auth/otp.py -- One-time verification code generator.

secrets.randbelow draws from the OS CSPRNG without modulo bias. The result is
zero-padded so every code has exactly `length` digits.
"""

from __future__ import annotations

import secrets


class RandomDigitsGenerator:
    """identity.ports.VerificationCodeGenerator producing numeric codes."""

    def __init__(self, length: int = 6) -> None:
        if length <= 0:
            raise ValueError("code length must be positive")
        self.length = length

    def generate(self, user_id: str) -> str:
        # user_id is unused; codes are independent of the user.
        return f"{secrets.randbelow(10**self.length):0{self.length}d}"
