from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from bustrips.config import DATABASE_URL
from bustrips.models import Base

_engine = None


def get_engine():
    """
    Create (once) and return a SQLAlchemy engine for PostgreSQL

    Connection pooling is enabled for production performance:
    - pool_pre_ping: Verify connections before using (handle stale connections)
    - pool_size: Number of connections to maintain in pool
    - max_overflow: Additional connections allowed when pool is full
    - pool_recycle: Recycle connections after 1 hour
    """
    global _engine

    if _engine is None:
        if not DATABASE_URL:
            raise ValueError("DATABASE_URL not found in environment variables")
        _engine = create_engine(
            DATABASE_URL,
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
            pool_recycle=3600,
            echo=False,  # Set to True for SQL debugging
        )
    return _engine


def init_db(engine=None):
    """Initialize the database by creating all tables"""
    if engine is None:
        engine = get_engine()

    Base.metadata.create_all(bind=engine)
    print(f"Database initialized at: {engine.url.render_as_string(hide_password=True)}")


def get_session() -> Session:
    """Get a new database session"""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return SessionLocal()


def get_db():
    """FastAPI dependency yielding a session that is closed after the request"""
    db = get_session()
    try:
        yield db
    finally:
        db.close()
