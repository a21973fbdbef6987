"""
Shared fixtures: a controllable clock, fast bcrypt, a fresh in-memory store
per test and services wired around them.
"""
from datetime import datetime, timedelta, timezone

import pytest

from lendguard.core.config import Settings
from lendguard.repositories.memory import MemoryStore
from lendguard.schemas.identity import Role
from lendguard.services.audit_ledger import RequestContext
from lendguard.services.container import build_services

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
PASSWORD = "correct-horse-battery"


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        app_env="test",
        jwt_secret="test-secret",
        bcrypt_rounds=4,
        database_url="memory://",
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def services(settings, store, clock):
    return build_services(settings, store=store, clock=clock)


@pytest.fixture
def ctx():
    return RequestContext(ip_address="10.0.0.7", user_agent="pytest", session_id="sess-1")


@pytest.fixture
def make_identity(services):
    """Async factory: creates an identity (if new) and returns it as stored."""
    async def _make(email="officer@lendguard.test", password=PASSWORD, role=Role.LOAN_OFFICER):
        await services.accounts.ensure_identity(email, "Test User", password, role)
        async with services.store.unit_of_work() as uow:
            return await uow.identities.get_by_email(email)

    return _make
