import os

# Settings are read at import time, so the test environment must be in place
# before anything from the application is imported.
os.environ["ENV"] = "testing"
os.environ["JWT_SECRET"] = "test-jwt-secret-do-not-use-in-production"
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["KV_URL"] = "memory://"
os.environ["SETUP_SECRET_TOKEN"] = "test-setup-secret"
os.environ["COOKIE_SECURE"] = "true"
os.environ["LOG_DIR"] = "test_logs"
os.environ.pop("RATE_LIMIT_WINDOW_MS", None)
os.environ.pop("RATE_LIMIT_MAX_REQUESTS", None)

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator

from main import app
from core.database import Base
from core.exceptions import KVStoreError
from core.kv import KeyValueStore, MemoryKV
from models.users import User
from utils.deps import get_db
from utils.hashing import get_password_hash

# SYNC SQLite for testing (matches sync service layer)
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "AdminPassword123!"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False}
)

TestingSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)


class FailingKV(KeyValueStore):
    """Store whose every call fails, like an unreachable Redis."""

    def get(self, key):
        raise KVStoreError("store unavailable")

    def put(self, key, value, expiration_ttl=None):
        raise KVStoreError("store unavailable")

    def delete(self, key):
        raise KVStoreError("store unavailable")

    def ping(self):
        raise KVStoreError("store unavailable")


@pytest.fixture
def session() -> Generator[Session, None, None]:
    """
    Creates a fresh, empty database for each test.
    Uses SYNC SQLAlchemy to match the service layer.
    """
    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Create session
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

    # Drop all tables (cleanup)
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def kv() -> MemoryKV:
    """
    Fresh in-memory KV store installed on the app, so rate limit counters
    never leak between tests.
    """
    store = MemoryKV()
    app.state.kv = store
    return store


@pytest.fixture
def failing_kv() -> FailingKV:
    store = FailingKV()
    app.state.kv = store
    return store


@pytest.fixture
async def client(session: Session, kv: MemoryKV):
    """
    Yields an HTTP client that interacts with the app using the test database.
    The client is async (for FastAPI), but the DB session is sync.

    The base URL is https so the cookie jar sends back the Secure auth cookies.
    """
    # Override the get_db dependency to use our test session
    def override_get_db():
        try:
            yield session
        finally:
            pass  # Session cleanup handled by session fixture

    app.dependency_overrides[get_db] = override_get_db

    # Create async client for FastAPI
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="https://testserver"
    ) as ac:
        yield ac

    # Clean up
    app.dependency_overrides.clear()


@pytest.fixture
def admin_user(session: Session) -> User:
    """The single CMS user, as the setup flow would have created it."""
    user = User(
        username=ADMIN_USERNAME,
        password_hash=get_password_hash(ADMIN_PASSWORD)
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
async def logged_in_client(client: AsyncClient, admin_user: User) -> AsyncClient:
    """Client whose cookie jar holds a fresh access/refresh pair."""
    response = await client.post("/api/auth/login", json={
        "username": ADMIN_USERNAME,
        "password": ADMIN_PASSWORD
    })
    assert response.status_code == 200
    return client
