"""Pytest configuration and shared fixtures."""

import os
import uuid
from collections.abc import AsyncGenerator, Generator
from unittest.mock import patch

# Settings are read at import time; configure the test environment first
TEST_ENCRYPTION_KEY = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-with-at-least-32-bytes!!")
os.environ.setdefault("TOKEN_PEPPER", "test-token-pepper")
os.environ.setdefault("MFA_ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

import secondfactor.models  # noqa: F401  (register models on Base.metadata)
from secondfactor.core.config import Settings
from secondfactor.core.dependencies import get_mfa_service
from secondfactor.core.security import create_access_token
from secondfactor.db.base import Base
from secondfactor.db.engine import create_db_engine
from secondfactor.db.session import SessionLocal, get_db
from secondfactor.main import create_app
from secondfactor.mfa.secret_codec import LocalKeyProvider, SecretCodec
from secondfactor.mfa.service import MfaService
from tests.helpers.mfa import FakeClock

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)

TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"


@pytest.fixture
def test_settings() -> Settings:
    """Settings used by services under test."""
    return Settings(
        ENV="test",
        DATABASE_URL=TEST_DATABASE_URL,
        REDIS_ENABLED=False,
        JWT_SECRET=os.environ["JWT_SECRET"],
        TOKEN_PEPPER="test-token-pepper",
        MFA_BACKUP_CODE_PEPPER="test-backup-code-pepper",
        MFA_ENCRYPTION_KEY=TEST_ENCRYPTION_KEY,
    )


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory database per test."""
    engine = create_db_engine(TEST_DATABASE_URL)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def db(engine: Engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    session = SessionLocal(bind=engine)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def codec(test_settings: Settings) -> SecretCodec:
    return SecretCodec(LocalKeyProvider.from_settings(test_settings))


@pytest.fixture
def service(db: Session, test_settings: Settings, codec: SecretCodec) -> MfaService:
    """MfaService on the test database, without Redis."""
    return MfaService(db, test_settings, codec)


@pytest.fixture
def principal_id() -> str:
    return f"user-{uuid.uuid4()}"


@pytest.fixture
def clock() -> Generator[FakeClock, None, None]:
    """Freeze the TOTP clock at a known time."""
    fake = FakeClock(1_700_000_010.0)
    with patch("secondfactor.mfa.totp.time", fake):
        yield fake


def _build_test_app(engine: Engine, test_settings: Settings, codec: SecretCodec):
    test_app = create_app()

    def override_get_db():
        session = SessionLocal(bind=engine)
        try:
            yield session
        finally:
            session.close()

    def override_get_mfa_service(db: Session = Depends(get_db)) -> MfaService:
        return MfaService(db, test_settings, codec)

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_mfa_service] = override_get_mfa_service
    return test_app


@pytest.fixture
def client(engine: Engine, test_settings: Settings, codec: SecretCodec) -> Generator[TestClient, None, None]:
    """Create a FastAPI test client with database and service overrides."""
    test_app = _build_test_app(engine, test_settings, codec)
    try:
        yield TestClient(test_app)
    finally:
        test_app.dependency_overrides.clear()


@pytest.fixture
async def async_client(
    engine: Engine, test_settings: Settings, codec: SecretCodec
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async FastAPI test client with database and service overrides."""
    test_app = _build_test_app(engine, test_settings, codec)
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    test_app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(principal_id: str) -> dict[str, str]:
    """Bearer token for the test principal, as issued by the login flow."""
    token = create_access_token(principal_id)
    return {"Authorization": f"Bearer {token}"}
