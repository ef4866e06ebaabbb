"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Skip MongoDB and scheduler startup when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest
from fastapi.testclient import TestClient
from server import app
from auth import create_access_token


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app)."""
    return TestClient(app)


def make_cursor(docs):
    """Motor-style cursor mock: find(...).sort(...).limit(...).to_list(n)."""
    cursor = MagicMock()
    cursor.to_list = AsyncMock(return_value=list(docs))
    cursor.sort = MagicMock(return_value=cursor)
    cursor.limit = MagicMock(return_value=cursor)
    return cursor


def auth_headers(account_id="acc-1", user_id="user-1", role="ROLE_MEMBER"):
    token = create_access_token({"user_id": user_id, "account_id": account_id, "role": role})
    return {"Authorization": f"Bearer {token}"}
