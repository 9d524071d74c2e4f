"""Database session management."""
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session

from plansync.core.config import settings
from plansync.core.logging import get_logger

logger = get_logger(__name__)


def _connect_args(url: str) -> dict:
    # SQLite connections are shared across FastAPI's threadpool
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    echo=settings.DEBUG,
    connect_args=_connect_args(settings.database_url),
)

# Billing updates are committed one statement at a time; keep loaded users
# fresh by expiring them on every commit.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=True, bind=engine)


def get_db() -> Session:
    """Yield a session per request and close it afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_connection() -> bool:
    """Check if database connection is available."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
