import pytest
import pytest_asyncio

import db
from app.services.ai.router import AIRouter
from fakes import NOW, FakeTransport, make_adapters, make_registry


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def build_router():
    """Factory: ``build_router("openai", "gemini", primary=..., preferences=...)``."""

    def _build(*available, primary=None, preferences=db, adapters=None):
        return AIRouter(
            make_registry(*available),
            adapters or make_adapters(primary),
            preferences=preferences,
            default_engine="openai",
            default_model="gpt-5",
            clock=lambda: NOW,
        )

    return _build


@pytest_asyncio.fixture
async def database(tmp_path):
    db.configure(f"sqlite+aiosqlite:///{tmp_path / 'assistant.db'}")
    await db.create_all()
    yield db
    await db.dispose_engine()
