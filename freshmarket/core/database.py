import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manage database connections and sessions"""

    def __init__(self, db_path="fresh_market.db", echo=False):
        self.db_path = db_path
        self.echo = echo
        self.engine = None
        self.Session = None

    def init_db(self):
        """Initialize database with tables"""
        if self.db_path == ":memory:":
            # One shared connection so every session sees the same in-memory database
            self.engine = create_engine(
                "sqlite://",
                echo=self.echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            db_url = f"sqlite:///{self.db_path}"
            self.engine = create_engine(db_url, echo=self.echo,
                                        connect_args={"check_same_thread": False})

        Base.metadata.create_all(self.engine)

        self.Session = scoped_session(sessionmaker(bind=self.engine))

        logger.info(f"Database initialized: {self.db_path}")
        return True

    def get_session(self):
        """Get a new database session"""
        if not self.Session:
            raise RuntimeError("Database not initialized. Call init_db() first.")
        return self.Session()

    def close(self):
        """Close database connections"""
        if self.Session:
            self.Session.remove()
        if self.engine:
            self.engine.dispose()


# Global database instance
db_manager = DatabaseManager()


def init_database(db_path=None, echo=False):
    """Initialize the database (call this at application start)"""
    if db_path is not None:
        db_manager.db_path = db_path
    db_manager.echo = echo
    return db_manager.init_db()


def get_db_session():
    """Get a database session"""
    return db_manager.get_session()
