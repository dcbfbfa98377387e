"""Database engine creation and session management."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker


def create_engine(url: str, **kwargs) -> AsyncEngine:
    """Create async SQLAlchemy engine.

    SQLite picks its own pool class, so pool sizing is only passed for
    server databases.
    """
    options: dict = {"echo": kwargs.get("echo", False)}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=kwargs.get("pool_size", 10),
            max_overflow=kwargs.get("max_overflow", 5),
            pool_pre_ping=True,
        )
    return create_async_engine(url, **options)


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create session factory bound to engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
