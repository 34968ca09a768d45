"""
Shared pytest fixtures for the calendar sync engine.

This file provides:
- Repo root on PYTHONPATH
- Time zone, clock and credential fixtures
- A mocked httpx.AsyncClient and helpers to build responses

Note: the event loop is managed by pytest-asyncio in auto mode.
See [tool.pytest.ini_options] in pyproject.toml.
"""

import sys
from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import httpx
import pytest

# ==========================================
# PYTHONPATH Setup
# ==========================================

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from enrollment.src.calendar_sync.auth import AuthContext  # noqa: E402
from enrollment.src.calendar_sync.backend import BackendClient  # noqa: E402
from enrollment.src.calendar_sync.sync_client import CalendarSyncClient  # noqa: E402

API_URL = "http://backend.test/api"


# ==========================================
# Mock Helpers for Unit Tests
# ==========================================


def make_response(status_code: int = 200, json_body=None, method: str = "GET") -> httpx.Response:
    """Build a real httpx.Response bound to a dummy request."""
    request = httpx.Request(method, API_URL)
    if json_body is None:
        return httpx.Response(status_code, request=request)
    return httpx.Response(status_code, json=json_body, request=request)


# ==========================================
# Fixtures
# ==========================================


@pytest.fixture
def manila():
    """Office time zone."""
    return ZoneInfo("Asia/Manila")


@pytest.fixture
def fixed_now(manila):
    """Wednesday 2024-05-15 10:30 in Manila."""
    return datetime(2024, 5, 15, 10, 30, tzinfo=manila)


@pytest.fixture
def auth():
    """Signed-in credential holder."""
    return AuthContext(token="test-token")


@pytest.fixture
def mock_http():
    """httpx.AsyncClient mock returning an empty event list by default."""
    client = AsyncMock(spec=httpx.AsyncClient)
    client.request = AsyncMock(return_value=make_response(200, {"events": []}))
    return client


@pytest.fixture
def backend(mock_http):
    return BackendClient(mock_http, API_URL)


@pytest.fixture
def sync_client(backend, auth):
    return CalendarSyncClient(backend, auth, calendar_id="primary", timezone_name="Asia/Manila")


@pytest.fixture
def respond():
    """Factory building httpx responses: respond(status, body)."""
    return make_response
