"""Database session management with connection pooling"""

from typing import AsyncIterator
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from qbo_ingest.config import settings
from qbo_ingest.infrastructure.database.models import Base


class Database:
    """Owns the async engine and session factory for one process"""

    def __init__(self, url: str | None = None, engine: AsyncEngine | None = None):
        self.url = url or settings.database_url
        self.engine = engine or self._create_engine(self.url)
        self.sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False, autoflush=False)

    @staticmethod
    def _create_engine(url: str) -> AsyncEngine:
        if url.startswith("sqlite") and (":memory:" in url or url.endswith("://")):
            # In-memory SQLite must share one connection across sessions
            return create_async_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        # Connection pool: recycle after 1 hour to avoid stale connections
        return create_async_engine(
            url,
            pool_pre_ping=True,  # Verify connections before using
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle_seconds,
        )

    def session(self) -> AsyncSession:
        return self.sessionmaker()

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Dependency injection for database sessions"""
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        await db.close()
