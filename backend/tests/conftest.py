"""Shared fixtures: an in-memory store, the wired core services and a controllable clock."""

import os

# Fast hashing and no database file for anything that reads the settings
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from database import Store
from schemas.account import AccountCreate
from utils.audit import AccessAudit
from utils.consistency import ConsistencyEngine
from utils.hashing import CredentialVault
from utils.identity import IdentityManager
from utils.lockout import SecuritySessionGuard
from utils.members import MemberRegistry
from utils.services import Services

ADMIN_PASSWORD = "Root#Pass1"
MEMBER_PASSWORD = "Memb3r!Pass"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    store = Store.from_url("sqlite://")
    store.create_schema()
    yield store
    store.dispose()


@pytest.fixture
def services(store, clock):
    vault = CredentialVault(rounds=4)  # Low rounds for fast tests
    audit = AccessAudit(store)
    guard = SecuritySessionGuard(store, audit, max_attempts=5, lockout_minutes=15, clock=clock)
    engine = ConsistencyEngine(store, audit, clock=clock)
    identity = IdentityManager(store, vault, guard, audit, engine, reset_token_hours=24, clock=clock)
    members = MemberRegistry(store, audit, identity, engine)
    return Services(store=store, vault=vault, audit=audit, guard=guard, engine=engine,
                    identity=identity, members=members)


@pytest.fixture
def admin(services):
    """An admin account named ``root`` with a known password."""
    return services.identity.create_account(
        AccountCreate(username="root", name="Root Admin", email="root@example.org", role="admin",
                      password=ADMIN_PASSWORD)
    )


@pytest.fixture
def member_account(services):
    """A plain member-role account with a known password and no member profile."""
    return services.identity.create_account(
        AccountCreate(username="carol", name="Carol Diaz", email="carol@example.org", password=MEMBER_PASSWORD)
    )


@pytest.fixture
def client(store, services, admin):
    from main import create_app

    app = create_app(store)
    # Swap in the fast, clock-controlled services
    app.state.services = services
    with TestClient(app) as test_client:
        yield test_client


def login(client, identifier, password):
    response = client.post("/auth/login", json={"identifier": identifier, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
