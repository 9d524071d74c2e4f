"""Database base classes and models."""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


# Import models so Alembic can autogenerate migrations
import plansync.db.models.plan  # noqa: F401
import plansync.db.models.user  # noqa: F401
