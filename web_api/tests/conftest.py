# web_api/tests/conftest.py
"""Pytest fixtures for web API tests.

Routes open connections with get_connection()/get_transaction(); these
fixtures swap both for a mock connection so no database is needed.
"""

import uuid
from contextlib import ExitStack
from unittest.mock import AsyncMock, MagicMock, patch

import jwt
import pytest
from fastapi.testclient import TestClient

TEST_SECRET = "test-secret-with-at-least-32-bytes!!"
USER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000aa")

ROUTE_MODULES = (
    "web_api.routes.focus_groups",
    "web_api.routes.check_ins",
    "web_api.routes.messages",
    "web_api.routes.admin",
)


@pytest.fixture(autouse=True)
def _jwt_secret():
    """Ensure SUPABASE_JWT_SECRET is set so verify_jwt can decode test tokens."""
    with patch("web_api.auth.JWT_SECRET", TEST_SECRET):
        yield


def make_token(user_id=USER_ID, audience="authenticated", secret=TEST_SECRET) -> str:
    return jwt.encode(
        {"sub": str(user_id), "aud": audience, "role": "authenticated"},
        secret,
        algorithm="HS256",
    )


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    from main import app

    return TestClient(app)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def mock_conn():
    """Mock connection returned by every route's get_connection/get_transaction."""
    conn = AsyncMock()
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=conn)
    cm.__aexit__ = AsyncMock(return_value=False)

    with ExitStack() as stack:
        for module in ROUTE_MODULES:
            for name in ("get_connection", "get_transaction"):
                stack.enter_context(
                    patch(f"{module}.{name}", MagicMock(return_value=cm), create=True)
                )
        yield conn


@pytest.fixture
def token_factory():
    """Build signed access tokens with custom claims."""
    return make_token
