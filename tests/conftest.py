# tests/conftest.py
"""
Pytest configuration and shared fixtures for lifecycle engine tests.

Every test gets a fresh SQLite file database, a pinned clock and fake
providers that record their calls.

Run:
    pytest tests -v
"""
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import models  # noqa: F401  (registers every mapped table)
from config import Config
from core.db import bind_engine
from lifecycle_system.errors import ExternalDependencyError
from lifecycle_system.services.side_effect_service import SideEffectService
from lifecycle_system.utils.time_machine import TimeMachine
from models import Base, Member, Role, MembershipStatus
from models.listeners import register_all_listeners

# =============================================================================
# CONSTANTS
# =============================================================================

CRON_SECRET = "test-cron-secret"

# Mid-month so trailing windows are unambiguous: 2024-05 .. 2024-10
NOW = datetime(2024, 11, 15, 12, 0, 0)


# =============================================================================
# CONFIG
# =============================================================================

@pytest.fixture(autouse=True)
def config():
    """Known configuration for every test."""
    Config.reset()
    Config.set(Config.CRON_SECRET, CRON_SECRET)
    Config.set(Config.MAX_SUSPENSION_MONTHS, 3)
    Config.set(Config.MINIMUM_COMMITMENT_MONTHS, 6)
    Config.set(Config.DELINQUENCY_GRACE_DAYS, 7)
    Config.set(Config.ELIGIBILITY_WINDOW_MONTHS, 6)
    Config.set(Config.ELIGIBILITY_TIMEOUT_SECONDS, 8.0)
    Config.set(Config.SIDE_EFFECT_MAX_ATTEMPTS, 5)
    yield Config
    Config.reset()


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_listeners():
    """Register listeners once at test session start."""
    register_all_listeners()


@pytest.fixture
def engine(tmp_path):
    """Fresh file database per test; shared with sessions opened by providers."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'lifecycle_test.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    bind_engine(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Create database session for each test."""
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def clock():
    return TimeMachine(NOW)


# =============================================================================
# FAKE PROVIDERS
# =============================================================================

class FakeBilling:
    def __init__(self):
        self.calls = []
        self.fail = False

    async def pause_billing(self, subscription_id, resume_at):
        self._record("pause_billing", subscription_id, resume_at)

    async def unpause_billing(self, subscription_id):
        self._record("unpause_billing", subscription_id)

    async def schedule_cancellation(self, subscription_id, at):
        self._record("schedule_cancellation", subscription_id, at)

    def _record(self, name, *args):
        if self.fail:
            raise ExternalDependencyError(f"billing {name} unavailable")
        self.calls.append((name,) + args)


class FakeIdentity:
    def __init__(self):
        self.calls = []
        self.fail = False

    async def update_role_metadata(self, user_id, role):
        if self.fail:
            raise ExternalDependencyError("identity provider unavailable")
        self.calls.append((user_id, role))


class FakeNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    async def notify(self, member_id, template_kind, context=None):
        if self.fail:
            raise ExternalDependencyError("notifier unavailable")
        self.sent.append((member_id, template_kind, context or {}))
        return len(self.sent)

    def kinds(self, member_id=None):
        return [kind for mid, kind, _ in self.sent if member_id is None or mid == member_id]


@pytest.fixture
def billing():
    return FakeBilling()


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def providers(billing, identity, notifier):
    return {"billing": billing, "identity": identity, "notifier": notifier}


@pytest.fixture
def side_effects(session, billing, identity, notifier, clock):
    return SideEffectService(session, billing=billing, identity=identity, notifier=notifier, clock=clock)


# =============================================================================
# MEMBER FACTORY
# =============================================================================

@pytest.fixture
def make_member(session, clock):
    """
    Create and commit a member.

    Defaults: BASE, ACTIVE, joined a year before the pinned clock,
    with a billing subscription.
    """
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        n = counter["n"]
        values = {
            "email": f"member{n}@example.com",
            "name": f"Member {n}",
            "externalID": f"ext-{n}",
            "role": Role.BASE,
            "membershipStatus": MembershipStatus.ACTIVE,
            "joinedAt": datetime(2023, 11, 1),
            "billingSubscriptionId": f"sub_{n}",
        }
        values.update(overrides)
        member = Member(**values)
        session.add(member)
        session.commit()
        return member

    return _make


@pytest.fixture
def money():
    def _money(value) -> Decimal:
        return Decimal(str(value))
    return _money
