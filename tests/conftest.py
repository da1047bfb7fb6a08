"""
tests/conftest.py -- Shared fixtures and collaborator fakes.

This module provides:
  - In-memory fakes for every IdentityService collaborator. Each one is a
    separate class so a test can swap exactly one (e.g. a failing sender)
    and keep the rest. The hasher counts compare() calls for the login
    timing tests.
  - make_service: factory fixture building IdentityService from the fakes
    with per-test overrides.
  - api_client: TestClient over the real FastAPI app with the lifespan
    patched to use an isolated SQLite store, real bcrypt/JWT adapters and a
    recording sender, plus a seeded admin and its bearer token.

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for api_client because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

DEBUG must be set before any api/core import so get_settings() can
auto-generate SECRET_KEY instead of raising. BCRYPT_ROUNDS=4 keeps bcrypt
fast in tests.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from identity.errors import EmailAlreadyRegisteredError
from identity.models import Role, TokenClaims, User, UserStatus, VerificationChallenge
from identity.service import IdentityService

# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Mutable clock injected as IdentityService(clock=...)."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class _MemoryTransaction:
    """Stages writes and applies them to the owning store only on commit()."""

    def __init__(self, store: InMemoryUserStore) -> None:
        self._store = store
        self._users: list[User] = []
        self._codes: list[VerificationChallenge] = []
        self.committed = False

    def create_user(self, user: User) -> User:
        if self._store.get_by_email(user.email) or any(u.email == user.email for u in self._users):
            raise EmailAlreadyRegisteredError(user.email)
        created = self._store._stamp(user)
        self._users.append(created)
        return replace(created)

    def save_verification_code(self, user_id: str, code: str, expires_at: datetime) -> None:
        self._codes.append(VerificationChallenge(user_id=user_id, code=code, expires_at=expires_at))

    def commit(self) -> None:
        for user in self._users:
            self._store.users[user.id] = user
        for challenge in self._codes:
            self._store.codes[challenge.user_id] = challenge
        self.committed = True
        self._store.commits += 1

    def rollback(self) -> None:
        self._users.clear()
        self._codes.clear()
        self._store.rollbacks += 1


class InMemoryUserStore:
    """Dict-backed UserStore + RoleStore."""

    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.codes: dict[str, VerificationChallenge] = {}
        self.roles: set[Role] = set()
        self.commits = 0
        self.rollbacks = 0

    def _stamp(self, user: User) -> User:
        now = datetime.now(timezone.utc).isoformat()
        return replace(user, id=str(uuid.uuid4()), created_at=now, updated_at=now)

    @contextmanager
    def begin(self) -> Iterator[_MemoryTransaction]:
        tx = _MemoryTransaction(self)
        try:
            yield tx
        finally:
            if not tx.committed:
                tx.rollback()

    def create_user(self, user: User) -> User:
        if self.get_by_email(user.email) is not None:
            raise EmailAlreadyRegisteredError(user.email)
        created = self._stamp(user)
        self.users[created.id] = created
        return replace(created)

    def get_by_email(self, email: str) -> User | None:
        for user in self.users.values():
            if user.email == email:
                return replace(user)
        return None

    def get_by_id(self, user_id: str) -> User | None:
        user = self.users.get(user_id)
        return replace(user) if user else None

    def mark_verified(self, user_id: str) -> bool:
        user = self.users.get(user_id)
        if user is None:
            return False
        status = UserStatus.ACTIVE if user.status == UserStatus.PENDING_VERIFICATION else user.status
        self.users[user_id] = replace(user, is_verified=True, status=status)
        return True

    def set_status(self, user_id: str, status: UserStatus) -> bool:
        if user_id not in self.users:
            return False
        self.users[user_id] = replace(self.users[user_id], status=status)
        return True

    def update_profile(self, user_id: str, full_name: str) -> User | None:
        if user_id not in self.users:
            return None
        self.users[user_id] = replace(self.users[user_id], full_name=full_name)
        return replace(self.users[user_id])

    def delete_user(self, user_id: str) -> bool:
        self.codes.pop(user_id, None)
        return self.users.pop(user_id, None) is not None

    def save_verification_code(self, user_id: str, code: str, expires_at: datetime) -> None:
        self.codes[user_id] = VerificationChallenge(user_id=user_id, code=code, expires_at=expires_at)

    def get_verification_code(self, user_id: str) -> VerificationChallenge | None:
        return self.codes.get(user_id)

    def delete_verification_code(self, user_id: str) -> None:
        self.codes.pop(user_id, None)

    def ensure_role(self, role: Role) -> None:
        self.roles.add(Role(role))

    def assign_role(self, user_id: str, role: Role) -> bool:
        if user_id not in self.users:
            return False
        self.users[user_id] = replace(self.users[user_id], role=Role(role))
        return True


class CountingHasher:
    """Reversible fake hasher that counts calls. compare() is what the timing tests watch."""

    def __init__(self) -> None:
        self.hash_calls = 0
        self.compare_calls = 0

    def hash(self, plain: str) -> str:
        self.hash_calls += 1
        return f"hashed::{plain}"

    def compare(self, hashed: str, plain: str) -> bool:
        self.compare_calls += 1
        return hashed == f"hashed::{plain}"


class StubTokenIssuer:
    ttl_seconds = 900

    def __init__(self) -> None:
        self.issued: list[tuple[str, Role]] = []

    def issue(self, user_id: str, role: Role) -> str:
        self.issued.append((user_id, role))
        return f"token:{user_id}:{Role(role).value}"

    def validate(self, token: str) -> TokenClaims | None:
        prefix, _, rest = token.partition(":")
        user_id, _, role = rest.rpartition(":")
        if prefix != "token" or not user_id:
            return None
        return TokenClaims(user_id=user_id, role=Role(role))


class SequenceCodeGenerator:
    """Returns 100001, 100002, ... so every generated code is distinct and predictable."""

    def __init__(self) -> None:
        self.generated: list[str] = []
        self.error: Exception | None = None

    def generate(self, user_id: str) -> str:
        if self.error is not None:
            raise self.error
        code = str(100001 + len(self.generated))
        self.generated.append(code)
        return code


class RecordingSender:
    """Records every (email, code) attempt. fail_times makes the first N sends raise."""

    def __init__(self, fail_times: int = 0) -> None:
        self.attempts: list[tuple[str, str]] = []
        self.fail_times = fail_times

    def send(self, email: str, code: str) -> None:
        self.attempts.append((email, code))
        if len(self.attempts) <= self.fail_times:
            raise ConnectionError("smtp unavailable")

    @property
    def last_code(self) -> str:
        return self.attempts[-1][1]


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def hasher() -> CountingHasher:
    return CountingHasher()


@pytest.fixture
def issuer() -> StubTokenIssuer:
    return StubTokenIssuer()


@pytest.fixture
def codes() -> SequenceCodeGenerator:
    return SequenceCodeGenerator()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_service(store, hasher, issuer, codes, sender, clock):
    """Return a factory: make_service(**overrides) -> IdentityService wired to the fakes."""

    def _make(**overrides) -> IdentityService:
        deps = {
            "user_store": store,
            "role_store": store,
            "password_hasher": hasher,
            "token_issuer": issuer,
            "code_generator": codes,
            "verification_sender": sender,
            "clock": clock,
        }
        deps.update(overrides)
        return IdentityService(**deps)

    return _make


@pytest.fixture
def service(make_service) -> IdentityService:
    return make_service()


# ---------------------------------------------------------------------------
# API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------

ADMIN_EMAIL = "admin@catalog.test"
ADMIN_PASSWORD = "AdminPass123"


@dataclass
class ApiHarness:
    client: TestClient
    admin_token: str
    admin_id: str
    admin_email: str
    admin_password: str
    sender: RecordingSender
    user_store: object


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness over the real app with isolated stores.

    The lifespan is replaced so routes see a per-module shared-memory
    SQLite DB. Rate limiting is disabled: every request comes from the same
    TestClient address and would trip the per-IP limits.
    """
    from api.limiter import limiter
    from api.main import app, build_identity_service
    from auth.store import SqlUserStore
    from auth.tokens import JwtTokenIssuer
    from core.config import get_settings
    from identity.models import AdminSeedInput

    settings = get_settings()
    db_url = f"sqlite:///file:test_identity_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = SqlUserStore(db_url=db_url)
    token_issuer = JwtTokenIssuer(secret_key=settings.secret_key, issuer=settings.jwt_issuer, ttl_seconds=3600)
    recorder = RecordingSender()
    identity_service = build_identity_service(settings, user_store, token_issuer, sender=recorder)
    admin = identity_service.seed_admin(AdminSeedInput(email=ADMIN_EMAIL, password=ADMIN_PASSWORD))
    admin_token = token_issuer.issue(admin.id, Role.ADMIN)

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.token_issuer = token_issuer
        app.state.identity_service = identity_service
        yield

    app.router.lifespan_context = test_lifespan
    limiter.enabled = False

    # localhost is in the TrustedHost allow-list; the default "testserver" is not.
    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield ApiHarness(
            client=client,
            admin_token=admin_token,
            admin_id=admin.id,
            admin_email=ADMIN_EMAIL,
            admin_password=ADMIN_PASSWORD,
            sender=recorder,
            user_store=user_store,
        )

    limiter.enabled = True
    user_store.close()
