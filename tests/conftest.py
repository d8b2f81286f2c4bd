import os

import pytest
from fastapi.testclient import TestClient

TEST_JWT_SECRET = "test-secret"


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)

    from app.core.settings import get_settings
    from app.db.session import reset_session_factory

    get_settings.cache_clear()
    reset_session_factory()

    from app.main import app

    with TestClient(app) as test_client:
        yield test_client

    reset_session_factory()
    get_settings.cache_clear()
    os.environ.pop("DATABASE_URL", None)
