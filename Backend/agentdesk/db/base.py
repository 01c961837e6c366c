from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from agentdesk.core.config import settings

def make_engine(database_url: str):
    if database_url.startswith("sqlite"):
        # check_same_thread=False is needed because sessions are used from the threadpool
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            # One shared connection, otherwise every thread sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)

def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

engine = make_engine(settings.DATABASE_URL)

# SessionLocal class
SessionLocal = make_session_factory(engine)

# Base class for models
Base = declarative_base()

def init_db(bind=None):
    """Create tables (idempotent). Runs on startup."""
    from agentdesk.db import models  # noqa: F401  (registers tables on Base)
    Base.metadata.create_all(bind=bind or engine)
