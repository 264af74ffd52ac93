"""
Test configuration and fixtures for the Culi client.

Provides HTTP clients pointed at a fake backend URL (mocked with respx in the
tests), a logged-in ``CuliClient``, and sample backend payloads.
"""

import os

# Keep a developer's .env from leaking into tests
os.environ.setdefault("CULI_API_TOKEN", "")

import httpx
import pytest
import pytest_asyncio

from culi.api_client import CuliClient
from culi.models import ConnectedApp, SupportedApp
from culi.notifications import Notifier
from culi.session import Session

BASE_URL = "http://culi.test/api/v1"
TEST_TOKEN = "test-token-123"
WORKSPACE_ID = 1


@pytest_asyncio.fixture
async def http_client():
    """Plain httpx client with the fake backend as base URL."""
    async with httpx.AsyncClient(base_url=BASE_URL) as client:
        yield client


@pytest.fixture
def session() -> Session:
    """Authenticated session."""
    return Session(TEST_TOKEN)


@pytest_asyncio.fixture
async def culi_client(http_client: httpx.AsyncClient, session: Session):
    """CuliClient sharing the test HTTP client and session."""
    client = CuliClient(http_client=http_client, session=session)
    yield client
    await client.close()


@pytest.fixture
def notifier() -> Notifier:  # noqa: D103
    return Notifier()


@pytest.fixture
def kiotviet_app() -> SupportedApp:
    """API-key style POS app that needs a retailer name."""
    return SupportedApp(
        id="kiotviet",
        name="KiotViet",
        category="POS_SIMPLE",
        connection_method="api",
        description="KiotViet POS",
        requires_retailer=True,
        auth_method="oauth2_client_credentials",
        required_fields=["client_id", "client_secret", "retailer"],
    )


@pytest.fixture
def misa_mcp_app() -> SupportedApp:
    """Accounting app reached through an MCP server."""
    return SupportedApp(
        id="misa",
        name="MISA",
        category="ACCOUNTING",
        connection_method="mcp",
        description="MISA accounting via MCP",
        requires_retailer=False,
        auth_method="mcp",
        required_fields=["mcp_server_url"],
    )


@pytest.fixture
def connected_kiotviet() -> ConnectedApp:  # noqa: D103
    return ConnectedApp(
        id=7,
        workspace_id=WORKSPACE_ID,
        name="KiotViet Connection",
        app_id="kiotviet",
        app_category="POS_SIMPLE",
        connection_method="api",
        retailer="cuahangphukien",
        status="pending",
        is_default=True,
    )


def connection_payload(**overrides: object) -> dict:
    """Backend JSON for a connection."""
    payload = {
        "id": 7,
        "workspace_id": WORKSPACE_ID,
        "name": "KiotViet Connection",
        "app_id": "kiotviet",
        "app_category": "POS_SIMPLE",
        "connection_method": "api",
        "retailer": "cuahangphukien",
        "status": "pending",
        "is_default": True,
    }
    payload.update(overrides)
    return payload
