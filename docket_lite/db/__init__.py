"""
Database package: SQLAlchemy models and session management.
"""

from .models import Base
from .session import get_db, get_db_session, init_db, reset_engine

__all__ = ["Base", "get_db", "get_db_session", "init_db", "reset_engine"]
