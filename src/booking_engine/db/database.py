import os
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


def build_engine(url: str):
    """Creates an engine for the booking database; SQLite connections may be used from any thread."""
    if url == "sqlite:///:memory:":
        # Every session must see the same in-memory database
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


if os.environ.get("TESTING"):
    SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
else:
    from booking_engine.api.deps import get_settings
    SQLALCHEMY_DATABASE_URL = get_settings()["database_url"]

engine = build_engine(SQLALCHEMY_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Yields a session per request, closed once the response is sent."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
