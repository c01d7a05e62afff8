import httpx
import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from invoice_ledger.core.config import get_settings


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Tests patch env vars per case; a cached Settings instance would leak them.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite schema shared by every connection of one test."""
    from invoice_ledger.models.ledger import Base

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest_asyncio.fixture
async def client(session_factory):
    """In-process ASGI client with ``get_db`` bound to the test database."""
    from invoice_ledger.core.dependencies import get_db
    from invoice_ledger.main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
