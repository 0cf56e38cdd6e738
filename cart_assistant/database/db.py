"""Database engine and session factory."""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from cart_assistant.utils.config import settings

Base = declarative_base()


def create_session_factory(database_url: str):
    """Build an engine and a bound ``sessionmaker`` for ``database_url``."""
    connect_args = {}
    engine_kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if ":memory:" in database_url or database_url == "sqlite://":
            # one shared connection, otherwise every session sees an empty db
            engine_kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, connect_args=connect_args, **engine_kwargs)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return engine, factory


engine, SessionLocal = create_session_factory(settings.database_url)


def init_db(bind=None):
    """Create all tables (no migrations)."""
    import cart_assistant.database.models  # noqa: F401  registers the tables

    Base.metadata.create_all(bind=bind or engine)

