from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from fleet_inventory.core.environment import get_database_url


Base = declarative_base()


def build_engine(database_url: str = None) -> AsyncEngine:
    url = database_url or get_database_url()
    kwargs = {"echo": False, "future": True}
    if url.startswith("sqlite") and ":memory:" in url:
        # one shared connection, otherwise every session sees an empty database
        kwargs["connect_args"] = {"check_same_thread": False}
        kwargs["poolclass"] = StaticPool
    return create_async_engine(url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)
