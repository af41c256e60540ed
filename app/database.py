"""Engine, session factory and declarative base for the document store."""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import DATABASE_URL


def engine_options(url: str) -> dict:
    """Connection options for the given database URL."""
    if url.startswith("sqlite"):
        # Request handlers run in a thread pool
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}


engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db(bind=None) -> None:
    """Create the visa_applications and audit_events tables if missing."""
    # Registers the tables on Base.metadata
    from app.models import audit, domain  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def get_db():
    """Request-scoped session for FastAPI dependencies."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
