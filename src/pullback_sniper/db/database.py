from contextlib import contextmanager
from typing import Iterator, Optional
import logging
import os
from dotenv import load_dotenv
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, declarative_base, scoped_session, sessionmaker

# Load environment variables
load_dotenv()

Base = declarative_base()


class DatabaseConnection:
    """Engine and session factory for DB_URL (or an explicit URL, e.g. sqlite for tests)"""

    def __init__(self, db_url: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.db_url = db_url or os.getenv('DB_URL')
        if not self.db_url:
            raise ValueError("DB_URL not found in environment variables")

        if self.db_url.startswith("sqlite"):
            # SQLite keeps its own single-connection pool; pool sizing does not apply
            self.engine = create_engine(self.db_url, echo=False)
        else:
            self.engine = create_engine(
                self.db_url,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                pool_recycle=1800,      # seconds
                echo=False,
            )
        self.Session = scoped_session(sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False))

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Session that commits on success, rolls back on error and is always closed"""
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def test_connection(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            self.logger.info(f"Connected to {self.engine.url.render_as_string(hide_password=True)}")
            return True
        except Exception as e:
            self.logger.error(f"Failed to connect to database: {str(e)}")
            return False

    def init_db(self):
        """Create the trades, alerts, backtest_results and positions tables if missing"""
        from . import models  # noqa: F401  registers the tables on Base
        Base.metadata.create_all(self.engine)
        self.logger.info("Database tables ready")
