"""Pytest configuration and fixtures for Konsul Bills tests.

The gateway runs against a throwaway SQLite file (aiosqlite) per test; the
upsert and repair code paths are dialect aware, so the same statements
exercise the Postgres shape of the queries.
"""

from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.auth.jwt import create_access_token
from app.config import DatabaseConfig
from app.main import app
from app.schemas.document import DocumentDraft, DocumentType, LineItem
from app.services.ai import AIClient
from app.services.documents import DocumentService, PendingSyncQueue
from app.services.gateway import PersistenceGateway

ACCOUNT_ID = "acct-7f3a9c21"
OTHER_ACCOUNT_ID = "acct-0b44e1d7"


# ── Database ─────────────────────────────────────────────────────

@pytest.fixture
def database_config(tmp_path) -> DatabaseConfig:
    return DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")


@pytest_asyncio.fixture
async def gateway(database_config) -> AsyncGenerator[PersistenceGateway, None]:
    """Gateway over a fresh database with the full schema."""
    gw = PersistenceGateway.init(database_config)
    await gw.create_schema()
    yield gw
    await gw.dispose()


@pytest_asyncio.fixture
async def bare_gateway(database_config) -> AsyncGenerator[PersistenceGateway, None]:
    """Gateway over an empty database (no tables yet)."""
    gw = PersistenceGateway.init(database_config)
    yield gw
    await gw.dispose()


@pytest_asyncio.fixture
async def offline_gateway(tmp_path) -> PersistenceGateway:
    """Gateway whose engine has been released: every call is unreachable."""
    gw = PersistenceGateway.init(
        DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'offline.db'}")
    )
    await gw.dispose()
    return gw


@pytest.fixture
def service(gateway) -> DocumentService:
    return DocumentService(gateway, queue=PendingSyncQueue())


# ── Builders ─────────────────────────────────────────────────────

@pytest.fixture
def invoice_draft() -> DocumentDraft:
    return DocumentDraft(
        type=DocumentType.INVOICE,
        client_name="Acme Corp",
        client_tax_id="8-123-456",
        client_email="billing@acme.test",
        items=[
            LineItem(description="Design", quantity=2, price=100, tax_rate=7),
            LineItem(description="Hosting", quantity=1, price=50, tax_rate=0),
        ],
        discount={"kind": "PERCENT", "value": 10},
        currency="USD",
    )


@pytest.fixture
def quote_draft(invoice_draft) -> DocumentDraft:
    return invoice_draft.model_copy(update={"type": DocumentType.QUOTE})


# ── HTTP client ──────────────────────────────────────────────────

@pytest.fixture
def ai_transport() -> httpx.MockTransport:
    """Default AI transport: every provider call fails."""
    return httpx.MockTransport(lambda request: httpx.Response(500, json={"error": "down"}))


@pytest_asyncio.fixture
async def client(gateway, ai_transport) -> AsyncGenerator[AsyncClient, None]:
    """ASGI client with app state wired the way the lifespan wires it."""
    app.state.gateway = gateway
    app.state.pending_sync = PendingSyncQueue()
    app.state.ai_client = AIClient(transport=ai_transport)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.state.gateway = None


@pytest.fixture
def account_id() -> str:
    return ACCOUNT_ID


@pytest.fixture
def other_account_id() -> str:
    return OTHER_ACCOUNT_ID


@pytest.fixture
def test_token() -> str:
    return create_access_token(ACCOUNT_ID)


@pytest.fixture
def auth_headers(test_token: str) -> dict:
    return {"Authorization": f"Bearer {test_token}"}


@pytest.fixture
def other_auth_headers() -> dict:
    return {"Authorization": f"Bearer {create_access_token(OTHER_ACCOUNT_ID)}"}


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "slow: Slow tests")
