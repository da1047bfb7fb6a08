"""
auth/tokens.py -- Password hashing and JWT adapters for the identity core.

Security design decisions:
  Passwords: bcrypt, used directly (no passlib wrapper). passlib's internal
       wrap-bug detection feeds bcrypt a password longer than 72 bytes, which
       bcrypt 4.x rejects with an explicit error. The cost factor is tunable
       (BCRYPT_ROUNDS) and dominates login latency by design.

  Timing: BcryptPasswordHasher.compare() is the only comparison primitive.
       IdentityService builds its dummy hash with the same hasher instance,
       so a miss costs the same bcrypt work as a hit.

  JWT: python-jose with HS256. Tokens carry sub=user id, a role claim, iss,
       iat and exp. validate() returns None on any failure -- the API layer
       turns that into a 401.

Layer rule: no imports from api/. Implements the PasswordHasher and
TokenIssuer Protocols from identity/ports.py.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from identity.models import Role, TokenClaims

logger = logging.getLogger("catalog.auth")

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


class BcryptPasswordHasher:
    """bcrypt implementation of identity.ports.PasswordHasher."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        Passwords longer than 72 bytes are rejected earlier by PasswordPolicy,
        so bcrypt's silent truncation never applies.
        """
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def compare(self, hashed: str, plain: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash.

        A malformed stored hash counts as a mismatch rather than an error so
        a corrupt row cannot be told apart from a wrong password.
        """
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash is not a valid bcrypt hash")
            return False


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


class JwtTokenIssuer:
    """python-jose implementation of identity.ports.TokenIssuer."""

    def __init__(self, secret_key: str, issuer: str = "catalog-api", ttl_seconds: int = 900) -> None:
        if not secret_key:
            raise ValueError("JwtTokenIssuer requires a secret_key")
        self._secret_key = secret_key
        self.issuer = issuer
        self.ttl_seconds = ttl_seconds

    def issue(self, user_id: str, role: Role) -> str:
        """Encode a signed JWT for user_id with the role claim and the fixed TTL."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "role": Role(role).value,
            "iss": self.issuer,
            "iat": now,
            "exp": now + timedelta(seconds=self.ttl_seconds),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def validate(self, token: str) -> TokenClaims | None:
        """Decode and verify a JWT. Returns its claims, or None on any failure.

        Returning None (rather than raising) keeps the caller simple: any
        invalid token is treated as unauthenticated.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM], issuer=self.issuer)
        except JWTError:
            return None
        subject = payload.get("sub")
        try:
            role = Role(payload.get("role"))
        except ValueError:
            return None
        if not subject:
            return None
        return TokenClaims(user_id=subject, role=role)
