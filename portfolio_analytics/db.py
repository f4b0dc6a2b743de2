import logging

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine, SQLModel, Session

from portfolio_analytics.models import *
from portfolio_analytics.config import settings

logger = logging.getLogger("AnalyticsAPI.DB")

# Get the DATABASE_URL from our centralized settings
DATABASE_URL = settings.DATABASE_URL
if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is not set")


def build_engine(url: str) -> Engine:
    """
    Create the SQLAlchemy engine.
    SQLite is shared across threads (sync endpoints and background tasks
    run in the threadpool), so it gets a single static connection.
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, pool_pre_ping=True)


engine = build_engine(DATABASE_URL)

def create_db_and_tables():
    logger.info("Creating database and tables...")
    SQLModel.metadata.create_all(engine)

def get_session():
    """
    FastAPI Dependency that provides a database session per request.
    """
    with Session(engine) as session:
        yield session
