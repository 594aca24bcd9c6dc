from collections.abc import AsyncGenerator

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ssdf_tracker.config import Settings

engine: AsyncEngine | None = None
async_session: async_sessionmaker[AsyncSession] | None = None


def configure_database(settings: Settings) -> async_sessionmaker[AsyncSession]:
    """Create the engine and session factory for the given settings."""
    global engine, async_session

    url = settings.DATABASE_URL
    is_sqlite = url.startswith("sqlite")
    kwargs: dict = {"echo": settings.DEBUG}
    if is_sqlite:
        if url.rstrip("/").endswith(":memory:") or url.endswith("://"):
            kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    else:
        kwargs.update(pool_pre_ping=True, pool_size=5, max_overflow=10)

    engine = create_async_engine(url, **kwargs)

    # WAL + busy timeout + foreign keys for SQLite
    if is_sqlite:
        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    async_session = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return async_session


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    if async_session is None:
        raise RuntimeError("Database is not configured; call configure_database() first")
    async with async_session() as session:
        yield session


async def check_db_connection() -> bool:
    """Test database connectivity. Returns True if OK."""
    if engine is None:
        return False
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True
