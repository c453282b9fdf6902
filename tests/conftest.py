"""Pytest configuration and shared fixtures."""
import os

# Keep the application's own engine off the filesystem during tests
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mallpermit.database import Base
from mallpermit.models.domain import WorkPermit, ApprovalEntry, Inspection, Incident  # noqa: F401
from mallpermit.models.enums import Role, WorkPermitStatus
from mallpermit.services.state_machine import WorkPermitEngine
from mallpermit.services.store import PermitStore


class RecordingSink:
    """Notification sink that keeps every dispatch for inspection."""

    def __init__(self):
        self.events = []

    def dispatch(self, snapshot, event):
        self.events.append((snapshot, event))

    @property
    def tags(self):
        return [event.value for _, event in self.events]


@pytest.fixture
def db_engine():
    """A fresh in-memory database for each test, shareable across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    TestingSessionLocal = sessionmaker(bind=db_engine)
    session = TestingSessionLocal()

    yield session

    session.close()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def permit_engine(db_session, sink):
    return WorkPermitEngine(PermitStore(db_session), sink=sink)


@pytest.fixture
def permit_payload():
    """Build a valid create payload, with overrides."""
    def _payload(**overrides):
        start = datetime.utcnow() + timedelta(days=1)
        payload = {
            "mall_id": "mall_1",
            "tenant_id": "tenant_1",
            "type": "GENERAL",
            "category": "MAINTENANCE",
            "description": "Replace shopfront lighting",
            "location": "Level 2, Unit 14",
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=2)).isoformat(),
        }
        payload.update(overrides)
        return payload
    return _payload


@pytest.fixture
def make_permit(permit_engine, permit_payload):
    """Create a permit through the engine, as a tenant user by default."""
    def _make(actor_id="tenant_user_1", role=Role.TENANT_USER, **overrides):
        return permit_engine.create(permit_payload(**overrides), actor_id, role)
    return _make


@pytest.fixture
def drive_to(permit_engine):
    """Move a pending permit to the given status along the normal edges."""
    def _drive(permit, target):
        manager = ("manager_1", Role.MALL_MANAGER)
        if target == WorkPermitStatus.PENDING_APPROVAL:
            return permit
        if target == WorkPermitStatus.REJECTED:
            return permit_engine.reject(permit.id, *manager, reason="unsafe plan")
        if target == WorkPermitStatus.CANCELLED:
            return permit_engine.cancel(permit.id, *manager, reason="no longer needed")
        permit = permit_engine.approve(permit.id, *manager)
        if target == WorkPermitStatus.APPROVED:
            return permit
        permit = permit_engine.activate(permit.id, *manager)
        if target == WorkPermitStatus.ACTIVE:
            return permit
        return permit_engine.complete(permit.id, *manager, notes="done")
    return _drive
