"""
Pytest configuration and fixtures for the document lifecycle tests.

I test sul service e sull'API usano un database SQLite in memoria
(aiosqlite) con lo schema creato da Base.metadata; i test del
calcolatore e della macchina a stati non toccano il database.
"""

import os

# Prima di importare app.*: l'engine di modulo non deve puntare a PostgreSQL
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "testing")

import uuid
from decimal import Decimal
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.config import Settings
from app.core.security import create_access_token
from app.models import Base
from app.schemas.document import DocumentCreate, LineCreate
from app.services.calculator import compute_line
from app.services.document_service import DocumentService
from app.services.numbering_service import NumberingService


# ============================================================
# Fixtures per Settings e Database
# ============================================================


@pytest.fixture
def test_settings() -> Settings:
    """Impostazioni di test con i prefissi di default."""
    return Settings(
        _env_file=None,
        app_env="testing",
        database_url="sqlite+aiosqlite:///:memory:",
    )


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Engine SQLite in memoria condiviso da tutte le sessioni del test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Sessione database reale (SQLite in memoria)."""
    async with session_factory() as session:
        yield session


# ============================================================
# Fixtures per i Service
# ============================================================


@pytest.fixture
def numbering(test_settings: Settings) -> NumberingService:
    return NumberingService(test_settings)


@pytest.fixture
def service(test_settings: Settings) -> DocumentService:
    return DocumentService(settings=test_settings)


@pytest.fixture
def quote_data() -> DocumentCreate:
    """Dati di un preventivo senza righe."""
    return DocumentCreate(
        client_reference="CLI-0001",
        project_reference="PRJ-0042",
        notes="Preventivo di prova",
    )


@pytest.fixture
def sample_line() -> LineCreate:
    """Riga dell'esempio di riferimento: 2 x 100.00, sconto 10%, IVA 21%."""
    return LineCreate(
        concept="Installazione impianto",
        quantity=Decimal("2"),
        unit_price=Decimal("100.00"),
        discount_percent=Decimal("10"),
        tax_rate=Decimal("21"),
    )


# ============================================================
# Fixtures per righe Mock (calcolatore)
# ============================================================


class MockLine:
    """Riga minima con gli attributi letti da aggregate()."""
    def __init__(self, **kwargs):
        self.id = kwargs.get('id', uuid.uuid4())
        self.quantity = Decimal(str(kwargs.get('quantity', "1")))
        self.unit_price = Decimal(str(kwargs.get('unit_price', "100.00")))
        self.discount_percent = Decimal(str(kwargs.get('discount_percent', "0")))
        self.tax_rate = Decimal(str(kwargs.get('tax_rate', "21")))
        amounts = compute_line(self.quantity, self.unit_price, self.discount_percent, self.tax_rate)
        self.subtotal = amounts.subtotal
        self.tax_amount = amounts.tax_amount
        self.total = amounts.total


@pytest.fixture
def make_line():
    """Factory di righe mock con importi calcolati."""
    return MockLine


# ============================================================
# Fixtures per l'API
# ============================================================


@pytest.fixture
def auth_headers() -> dict[str, str]:
    token = create_access_token("user-test-1", role="sales")
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Client HTTP sull'app FastAPI con get_db collegato al database di test."""
    from app.core.database import get_db
    from app.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
