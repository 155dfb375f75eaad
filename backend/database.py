from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from config import DB_URL

Base = declarative_base()


def make_engine(url: str = DB_URL):
    connect_opts = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_opts)


def make_session_factory(url: str = DB_URL) -> sessionmaker:
    """Bind a session factory to ``url`` and make sure the cache-log table exists."""
    bound = make_engine(url)
    Base.metadata.create_all(bind=bound)
    return sessionmaker(bind=bound, expire_on_commit=False)


engine       = make_engine()
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
