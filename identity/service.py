"""
identity/service.py -- IdentityService: registration, verification, login, roles.

The service owns no persistence or transport. Every collaborator is injected
at construction; missing mandatory ones fail there with ConfigurationError,
never mid-request. After construction the instance holds no mutable state,
so one service is shared by every request thread without locking.

Security design:
  Registration saga: the user row and its verification challenge commit in
      one UserStore transaction. The email goes out only after commit --
      a network call must never hold a transaction open. A failed send is
      retried once; if that fails too the caller gets VerificationDispatchError
      but the committed rows stay. A later verify attempt is the recovery path.

  Verification: missing, expired and wrong codes all raise the same
      InvalidVerificationCodeError, so the endpoint cannot be used to learn
      whether a code merely expired. Codes are compared with
      hmac.compare_digest.

  Login [timing]: the hasher's compare() runs exactly once on every path.
      Unknown emails compare against a dummy hash built at construction with
      the same hasher (same cost factor). Known users are compared BEFORE
      status/verification is inspected, so blocked and unverified accounts
      take as long as active ones. Every failure raises InvalidCredentialsError.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from identity.errors import (
    ConfigurationError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    InvalidVerificationCodeError,
    UserNotFoundError,
    ValidationError,
    VerificationDispatchError,
)
from identity.models import (
    AdminSeedInput,
    AuthToken,
    BlockUserInput,
    LoginInput,
    RegisterUserInput,
    Role,
    UpdateUserInput,
    UpdateUserRoleInput,
    User,
    UserStatus,
    VerifyUserInput,
)
from identity.passwords import PasswordPolicy
from identity.ports import (
    PasswordHasher,
    RoleStore,
    TokenIssuer,
    UserStore,
    VerificationCodeGenerator,
    VerificationSender,
)

logger = logging.getLogger("catalog.identity")
audit_logger = logging.getLogger("catalog.identity.audit")

DEFAULT_CODE_TTL = timedelta(minutes=15)

# Hashed once per service instance to equalize login timing for unknown emails.
_DUMMY_PASSWORD = "catalog_timing_dummy_0"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _redacted(user: User) -> User:
    return replace(user, password_hash="")


def _required(value: str | None, field: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(field, f"{field} is required")
    return cleaned


class IdentityService:
    """Identity use cases over injected collaborators.

    Usage:
        service = IdentityService(
            user_store=store,
            role_store=store,
            password_hasher=BcryptPasswordHasher(),
            token_issuer=JwtTokenIssuer(secret_key="..." * 8),
            code_generator=RandomDigitsGenerator(),
            verification_sender=LoggingVerificationSender(),
        )
        user = service.register_client(RegisterUserInput("a@b.c", "Secret123", "Test"))
    """

    def __init__(
        self,
        user_store: UserStore,
        role_store: RoleStore,
        password_hasher: PasswordHasher,
        token_issuer: TokenIssuer,
        code_generator: VerificationCodeGenerator | None = None,
        verification_sender: VerificationSender | None = None,
        password_policy: PasswordPolicy | None = None,
        code_ttl: timedelta = DEFAULT_CODE_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        required = {
            "user_store": user_store,
            "role_store": role_store,
            "password_hasher": password_hasher,
            "token_issuer": token_issuer,
        }
        for name, collaborator in required.items():
            if collaborator is None:
                raise ConfigurationError(name)
        if (code_generator is None) != (verification_sender is None):
            missing = "code_generator" if code_generator is None else "verification_sender"
            raise ConfigurationError(
                missing, "code_generator and verification_sender must be configured together"
            )
        if code_ttl <= timedelta(0):
            raise ConfigurationError("code_ttl", "code_ttl must be positive")

        self._users = user_store
        self._roles = role_store
        self._hasher = password_hasher
        self._tokens = token_issuer
        self._code_generator = code_generator
        self._sender = verification_sender
        self._password_policy = password_policy or PasswordPolicy()
        self._code_ttl = code_ttl
        self._now = clock
        self._dummy_hash = password_hasher.hash(_DUMMY_PASSWORD)

    @property
    def verification_enabled(self) -> bool:
        return self._code_generator is not None and self._sender is not None

    # ------------------------------------------------------------------
    # Registration saga
    # ------------------------------------------------------------------

    def register_client(self, data: RegisterUserInput) -> User:
        return self._register(data, Role.CLIENT)

    def register_standard_user(self, data: RegisterUserInput) -> User:
        return self._register(data, Role.USER)

    def _register(self, data: RegisterUserInput, role: Role) -> User:
        email = _required(data.email, "email")
        full_name = _required(data.full_name, "full_name")
        if not data.password:
            raise ValidationError("password", "password is required")
        self._password_policy.check(data.password)

        if self._users.get_by_email(email) is not None:
            raise EmailAlreadyRegisteredError(email)

        password_hash = self._hasher.hash(data.password)
        self._roles.ensure_role(role)

        code: str | None = None
        with self._users.begin() as tx:
            user = tx.create_user(
                User(
                    email=email,
                    full_name=full_name,
                    role=role,
                    status=UserStatus.PENDING_VERIFICATION,
                    is_verified=False,
                    password_hash=password_hash,
                )
            )
            if self.verification_enabled:
                code = self._code_generator.generate(user.id)
                tx.save_verification_code(user.id, code, self._now() + self._code_ttl)
            tx.commit()

        logger.info("Registered user %s (role=%s, verification=%s)", user.id, role.value, code is not None)

        if code is not None:
            self._dispatch_with_retry(user, code)
        return _redacted(user)

    def _dispatch_with_retry(self, user: User, code: str) -> None:
        """Send the code after commit: one try, one immediate retry, then give up."""
        try:
            self._sender.send(user.email, code)
            return
        except Exception as exc:
            logger.warning("Verification send failed for user %s, retrying once: %s", user.id, exc)
        try:
            self._sender.send(user.email, code)
        except Exception as exc:
            logger.error("Verification send failed twice for user %s; user remains pending", user.id)
            raise VerificationDispatchError(_redacted(user)) from exc

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_user(self, data: VerifyUserInput) -> None:
        """Consume the user's challenge if data.code matches and has not expired.

        Every rejection raises InvalidVerificationCodeError. An expired
        challenge is replaced by a fresh one that is emailed to the user.
        """
        challenge = self._users.get_verification_code(data.user_id)
        if challenge is None:
            raise InvalidVerificationCodeError()

        if challenge.is_expired(self._now()):
            if self.verification_enabled:
                self._reissue_code(data.user_id)
            else:
                self._users.delete_verification_code(data.user_id)
            raise InvalidVerificationCodeError()

        if not hmac.compare_digest(challenge.code.encode("utf-8"), (data.code or "").encode("utf-8")):
            raise InvalidVerificationCodeError()

        if not self._users.mark_verified(data.user_id):
            raise InvalidVerificationCodeError()
        self._users.delete_verification_code(data.user_id)
        logger.info("User %s verified", data.user_id)

    def _reissue_code(self, user_id: str) -> None:
        """Replace the expired challenge with a fresh code and email it. Delivery is best-effort.

        The old row is only overwritten once the new code exists, so a
        generator or store failure leaves the expired challenge in place and
        the next attempt regenerates again.
        """
        code = self._code_generator.generate(user_id)
        self._users.save_verification_code(user_id, code, self._now() + self._code_ttl)

        user = self._users.get_by_id(user_id)
        if user is None:
            logger.warning("Reissued verification code for unknown user %s; not sent", user_id)
            return
        try:
            self._sender.send(user.email, code)
        except Exception:
            logger.warning("Resend of verification code failed for user %s", user_id, exc_info=True)

    # ------------------------------------------------------------------
    # Authentication [timing]
    # ------------------------------------------------------------------

    def login(self, data: LoginInput) -> AuthToken:
        user = self._users.get_by_email((data.email or "").strip())
        if user is None:
            # Do NOT return before paying for a hash comparison.
            self._hasher.compare(self._dummy_hash, data.password)
            raise InvalidCredentialsError()

        password_ok = self._hasher.compare(user.password_hash, data.password)
        if not password_ok or not user.can_login:
            raise InvalidCredentialsError()

        token = self._tokens.issue(user.id, user.role)
        logger.info("User %s logged in", user.id)
        return AuthToken(token=token, expires_in=self._tokens.ttl_seconds)

    # ------------------------------------------------------------------
    # Role & profile management
    # ------------------------------------------------------------------

    def update_user(self, data: UpdateUserInput) -> User:
        """Apply profile changes. Never touches role -- see update_user_role()."""
        user = self._users.get_by_id(data.user_id)
        if user is None:
            raise UserNotFoundError(data.user_id)

        full_name = (data.full_name or "").strip()
        if full_name and full_name != user.full_name:
            updated = self._users.update_profile(user.id, full_name)
            if updated is None:
                raise UserNotFoundError(data.user_id)
            user = updated
        return _redacted(user)

    def update_user_role(self, data: UpdateUserRoleInput) -> User:
        """Assign a role. The caller must already be verified as an admin."""
        try:
            role = Role(data.role)
        except ValueError as exc:
            raise ValidationError("role", f"unknown role {data.role!r}") from exc

        self._roles.ensure_role(role)
        if not self._roles.assign_role(data.user_id, role):
            raise UserNotFoundError(data.user_id)
        user = self._users.get_by_id(data.user_id)
        if user is None:
            raise UserNotFoundError(data.user_id)

        audit_logger.info("Admin %s set role of user %s to %s", data.admin_id, data.user_id, role.value)
        return _redacted(user)

    def block_user(self, data: BlockUserInput) -> None:
        if not self._users.set_status(data.user_id, UserStatus.BLOCKED):
            raise UserNotFoundError(data.user_id)
        audit_logger.info("Admin %s blocked user %s (reason=%r)", data.admin_id, data.user_id, data.reason)

    # ------------------------------------------------------------------
    # Admin bootstrap
    # ------------------------------------------------------------------

    def seed_admin(self, seed: AdminSeedInput) -> User | None:
        """Create the configured admin if it does not exist yet. Safe on every startup.

        Returns the created admin, or None when seeding is not configured or
        the email is already taken.
        """
        email = (seed.email or "").strip()
        if not email or not seed.password:
            logger.info("Admin seed not configured; skipping")
            return None
        if self._users.get_by_email(email) is not None:
            logger.info("Admin seed skipped; %s already exists", email)
            return None

        self._password_policy.check(seed.password)
        password_hash = self._hasher.hash(seed.password)
        self._roles.ensure_role(Role.ADMIN)
        try:
            admin = self._users.create_user(
                User(
                    email=email,
                    full_name=(seed.full_name or "").strip() or "Catalog Admin",
                    role=Role.ADMIN,
                    status=UserStatus.ACTIVE,
                    is_verified=True,
                    password_hash=password_hash,
                )
            )
        except EmailAlreadyRegisteredError:
            # Another process seeded between our lookup and insert.
            logger.info("Admin seed skipped; %s created concurrently", email)
            return None

        audit_logger.info("Seeded admin user %s", admin.id)
        return _redacted(admin)
