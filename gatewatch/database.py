# =======================================================================================
# gatewatch/database.py - Database Management
# =======================================================================================
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from contextlib import contextmanager
from typing import Callable, List, Optional
from .config import config
from .models.tables import metadata

# connection.info key holding the callbacks to run once the transaction commits
AFTER_COMMIT_KEY = "gatewatch.after_commit"

class DatabaseManager:
    """Manages database connections and transactions."""

    def __init__(self, url: Optional[str] = None):
        url = url or config.DB_URL
        if url.startswith("sqlite"):
            # single shared connection so in-memory databases survive across calls
            self.engine: Engine = create_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
                future=True,
            )
        else:
            self.engine: Engine = create_engine(
                url,
                poolclass=QueuePool,
                pool_size=config.DB_POOL_SIZE,
                max_overflow=config.DB_MAX_OVERFLOW,
                pool_pre_ping=True,
                isolation_level="READ COMMITTED",
                future=True,
            )

    def create_tables(self):
        """Create all tables that don't exist yet."""
        metadata.create_all(self.engine)

    @contextmanager
    def get_connection(self):
        """Get a database connection with automatic cleanup."""
        callbacks: List[Callable[[], None]] = []
        with self.engine.begin() as conn:
            conn.info[AFTER_COMMIT_KEY] = callbacks
            try:
                yield conn
            finally:
                conn.info.pop(AFTER_COMMIT_KEY, None)

        # only reached once the transaction committed
        for callback in callbacks:
            callback()

    def fetch_one(self, statement):
        """Fetch a single result."""
        with self.get_connection() as conn:
            result = conn.execute(statement)
            return result.mappings().first()


def after_commit(conn, callback: Callable[[], None]):
    """Run ``callback`` once ``conn``'s transaction commits; right away outside a managed transaction."""
    pending = conn.info.get(AFTER_COMMIT_KEY)
    if pending is None:
        callback()
    else:
        pending.append(callback)


# Global database instance
db_manager = DatabaseManager()
