import os
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Optional, Sequence

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["OPENAI_API_KEY"] = ""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from semantic_graph.main import app
from semantic_graph.db.session import get_session
from semantic_graph.models import Item, ItemTag
from semantic_graph.services.vectors import encode_vector


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest_asyncio.fixture()
async def session() -> AsyncGenerator[AsyncSession, None]:
    engine: AsyncEngine = create_async_engine("sqlite+aiosqlite:///:memory:", connect_args={"check_same_thread": False})
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    async_session = AsyncSession(engine, expire_on_commit=False)
    try:
        yield async_session
    finally:
        await async_session.close()
        await engine.dispose()


@pytest_asyncio.fixture()
async def client(session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    async def _override_session():
        yield session

    app.dependency_overrides[get_session] = _override_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_item(session: AsyncSession):
    async def _make_item(
        owner_id: str,
        vector: Optional[Sequence[float]],
        *,
        title: str = "",
        summary: Optional[str] = None,
        domain: Optional[str] = None,
        tags: Sequence[str] = (),
        created_at: Optional[datetime] = None,
        position: Optional[tuple[float, float]] = None,
    ) -> Item:
        item = Item(
            owner_id=owner_id,
            title=title,
            summary=summary,
            domain=domain,
            embedding_dim=len(vector) if vector is not None else None,
            embedding_vector=encode_vector(vector) if vector is not None else None,
            created_at=created_at or datetime.now(timezone.utc),
        )
        if position is not None:
            item.graph_x, item.graph_y = position
            item.graph_method = "reduced"
            item.graph_positioned_at = datetime.now(timezone.utc)
        session.add(item)
        await session.flush()
        for tag in tags:
            session.add(ItemTag(item_id=item.id, tag=tag))
        await session.commit()
        return item

    return _make_item
