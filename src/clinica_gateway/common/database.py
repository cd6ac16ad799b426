"""Async database manager for the LibreClinica schema."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Iterable

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from clinica_gateway.common.config import GatewaySettings, get_settings
from clinica_gateway.common.models import Base

# Import all model modules so Base.metadata is complete for create_all().
import clinica_gateway.common.reference  # noqa: F401
import clinica_gateway.studies.models  # noqa: F401
import clinica_gateway.subjects.models  # noqa: F401
import clinica_gateway.forms.models  # noqa: F401
import clinica_gateway.audit.models  # noqa: F401


class DatabaseManager:
    """Manages a single pooled async engine.

    One ``get_session()`` block is one checked-out connection and one
    transaction: it commits when the block exits cleanly and rolls back
    when anything inside raises.
    """

    def __init__(self, settings: GatewaySettings | None = None):
        self._settings = settings or get_settings()
        self.engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        url = self._settings.db_url
        self.engine = create_async_engine(url, echo=False)
        self._session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False
        )

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not initialized: call init() first")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self, tables: Iterable[str] | None = None) -> None:
        """Create mapped tables, or only the named subset."""
        if self.engine is None:
            raise RuntimeError("DatabaseManager not initialized: call init() first")
        selected = None
        if tables is not None:
            wanted = set(tables)
            selected = [t for t in Base.metadata.sorted_tables if t.name in wanted]
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all, tables=selected)

    async def close(self) -> None:
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None
