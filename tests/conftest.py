"""
Pytest fixtures for the workhub test suite.

Provides:
- An in-memory SQLite engine (foreign keys on) per test
- Service-level sessions and an API client sharing that engine
- A FrozenClock that tests advance explicitly
- Local byte storage rooted in a tmp dir
"""
import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT"] = "100000/minute"
os.environ["JWT_SECRET"] = "test-secret"

import uuid
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from workhub.auth.security import create_access_token
from workhub.db import Base, build_engine, get_db
from workhub.main import app as workhub_app
from workhub.models.models import User, WorkOrder
from workhub.services.attachments import AttachmentVersionChain
from workhub.services.audit import AuditTrail
from workhub.services.clock import FrozenClock, get_clock
from workhub.services.time_tracking import TimeTrackingEngine
from workhub.storage.factory import get_storage
from workhub.storage.local_provider import LocalStorageProvider


class FailingStorage(LocalStorageProvider):
    """Local storage whose writes and/or deletes blow up on demand."""

    def __init__(self, base_dir: str, fail_put: bool = False, fail_delete: bool = False):
        super().__init__(base_dir)
        self.fail_put = fail_put
        self.fail_delete = fail_delete

    def put_bytes(self, key, data, content_type=None):
        if self.fail_put:
            raise RuntimeError("byte store unavailable")
        super().put_bytes(key, data, content_type)

    def delete(self, key):
        if self.fail_delete:
            raise OSError("byte store unavailable")
        super().delete(key)


@pytest.fixture
def engine():
    eng = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(str(tmp_path / "storage"))


@pytest.fixture
def audit(db, clock):
    return AuditTrail(db, clock)


@pytest.fixture
def chain(db, storage, audit, clock):
    return AttachmentVersionChain(db, storage, audit, clock)


@pytest.fixture
def tracking(db, clock):
    return TimeTrackingEngine(db, clock)


def _make_user(db, username: str, role: str = "user") -> User:
    user = User(username=username, first_name=username.capitalize(), last_name="Tester", role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db):
    return _make_user(db, "mario")


@pytest.fixture
def other_user(db):
    return _make_user(db, "luigi")


@pytest.fixture
def admin(db):
    return _make_user(db, "admin", role="admin")


@pytest.fixture
def make_work_order(db):
    def _make(title: str = "Office renovation", parent_id: Optional[uuid.UUID] = None) -> WorkOrder:
        wo = WorkOrder(title=title, parent_id=parent_id)
        db.add(wo)
        db.commit()
        db.refresh(wo)
        return wo

    return _make


@pytest.fixture
def work_order(make_work_order):
    return make_work_order()


@pytest.fixture
def client(session_factory, clock, storage):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    workhub_app.dependency_overrides[get_db] = _get_db
    workhub_app.dependency_overrides[get_clock] = lambda: clock
    workhub_app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(workhub_app)
    workhub_app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}
