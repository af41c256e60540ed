"""Pytest configuration and shared fixtures."""
import os

# Keep the app from creating a database file in the working directory
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import init_db
from app.services.document_store import DocumentStore
from app.services.storage import BinaryStorage, StorageError, StoredObject
from app.services.transition_processor import TransitionProcessor

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


class SteppingClock:
    """Returns T0, then one minute later on every call."""

    def __init__(self, start=T0, step=timedelta(minutes=1)):
        self.now = start
        self.step = step

    def __call__(self):
        current = self.now
        self.now = self.now + self.step
        return current


class MemoryStorage(BinaryStorage):
    """Binary storage that keeps files in a dict."""

    def __init__(self):
        self.files = {}

    def store(self, data, path, content_type):
        self.files[path] = data
        return StoredObject(url=f"memory://{path}", path=path, content_type=content_type, size=len(data))

    def delete(self, path):
        self.files.pop(path, None)


class FailingStorage(BinaryStorage):
    """Binary storage whose uploads always fail."""

    def __init__(self):
        self.attempts = 0

    def store(self, data, path, content_type):
        self.attempts += 1
        raise StorageError("bucket unavailable")

    def delete(self, path):
        pass


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    # StaticPool so the API tests' worker threads see the same in-memory database
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)

    TestingSessionLocal = sessionmaker(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(db_session):
    return DocumentStore(db_session)


@pytest.fixture
def processor(store, storage, clock):
    return TransitionProcessor(store, storage, clock=clock)


@pytest.fixture
def sample_application(processor):
    """A freshly submitted application in the first status."""
    return processor.create_application(
        user_id="user_123",
        name="Asha Verma",
        email="asha@example.com",
        destination={"id": "ca", "name": "Canada"},
        visa_type="Student",
        documents=[{"type": "Passport", "url": "https://files.example.com/passport.pdf"}],
    )
