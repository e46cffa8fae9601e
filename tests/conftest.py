"""Pytest fixtures for testing"""

import json
import pytest
from pathlib import Path
from typing import Any, Callable, Dict
from unittest.mock import AsyncMock
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from qbo_ingest.api.main import create_app
from qbo_ingest.domain.models import ConnectedAccount, TokenPair
from qbo_ingest.infrastructure.database.models import Base
from qbo_ingest.infrastructure.database.repositories import ConnectionRepository
from qbo_ingest.infrastructure.database.session import Database
from qbo_ingest.infrastructure.security.token_cipher import TokenCipher
from qbo_ingest.infrastructure.security.token_vault import TokenVault

STUB_DIR = Path(__file__).resolve().parents[1] / "mock" / "qbo_stub"


def load_stub(name: str) -> Dict[str, Any]:
    return json.loads((STUB_DIR / f"{name}.json").read_text())


@pytest.fixture
def stub() -> Callable[[str], Dict[str, Any]]:
    """Loader for the canned QuickBooks report payloads"""
    return load_stub


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(Fernet.generate_key())


@pytest.fixture
async def database(tmp_path):
    """File-backed SQLite database with all tables created"""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await db.create_all()
    try:
        yield db
    finally:
        await db.dispose()


@pytest.fixture
def make_connection(database: Database):
    """Factory that registers a connected account and returns it"""

    async def _make(realm_id: str = "9130355", company_name: str = "Sample Clinic") -> ConnectedAccount:
        async with database.session() as db:
            connection = await ConnectionRepository(db).create(realm_id=realm_id, company_name=company_name)
            await db.commit()
            return ConnectedAccount(id=str(connection.id), realm_id=connection.realm_id, company_name=company_name)

    return _make


@pytest.fixture
def oauth() -> AsyncMock:
    """OAuth client double handing out numbered token pairs"""
    client = AsyncMock()
    counter = iter(range(1, 1000))

    def next_pair(*args, **kwargs):
        n = next(counter)
        return TokenPair(access_token=f"access-{n}", refresh_token=f"refresh-{n}", expires_in=3600)

    client.refresh.side_effect = next_pair
    client.exchange_code.side_effect = next_pair
    return client


@pytest.fixture
def vault(database: Database, oauth: AsyncMock, cipher: TokenCipher) -> TokenVault:
    return TokenVault(database, oauth=oauth, cipher=cipher)


@pytest.fixture
def api_database(tmp_path) -> Database:
    """Database for TestClient runs; tables are created with a sync engine up front"""
    path = tmp_path / "api.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(bind=engine)
    engine.dispose()
    return Database(f"sqlite+aiosqlite:///{path}")


@pytest.fixture
def orchestrator() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def client(api_database: Database, orchestrator: AsyncMock, cipher: TokenCipher, oauth: AsyncMock):
    """Create FastAPI test client with test database and a mocked orchestrator"""
    vault = TokenVault(api_database, oauth=oauth, cipher=cipher)
    app = create_app(database=api_database, vault=vault, orchestrator=orchestrator)
    with TestClient(app) as test_client:
        yield test_client
