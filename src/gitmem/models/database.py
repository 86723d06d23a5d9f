"""SQLite store for gitmem using SQLAlchemy.

This module re-exports all models from the sub-modules.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import StoreError

logger = logging.getLogger(__name__)

from .database_analytics_models import FileContributor, FileCoupling, FileStats  # noqa: E402
from .database_base import Base, utcnow_iso  # noqa: E402
from .database_batch_models import BatchJob, CheckBatchItem  # noqa: E402
from .database_commit_models import Commit, CommitFile, Metadata  # noqa: E402

__all__ = [
    "Base",
    "utcnow_iso",
    "Commit",
    "CommitFile",
    "Metadata",
    "FileStats",
    "FileContributor",
    "FileCoupling",
    "BatchJob",
    "CheckBatchItem",
    "Database",
]

_CREATE_FTS = """
CREATE VIRTUAL TABLE IF NOT EXISTS commits_fts USING fts5(
    hash UNINDEXED,
    message,
    classification,
    summary
)
"""


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.execute("PRAGMA synchronous = NORMAL")
    cursor.execute("PRAGMA temp_store = MEMORY")
    cursor.execute("PRAGMA busy_timeout = 5000")
    cursor.close()


class Database:
    """Connection manager for the gitmem index database."""

    # Columns added after the first release, applied to older stores on open.
    MIGRATION_COLUMNS: list[tuple[str, str, str]] = [
        ("commit_files", "lines_of_code", "INTEGER"),
        ("commit_files", "indent_complexity", "REAL"),
        ("commit_files", "max_indent", "INTEGER"),
        ("batch_jobs", "type", "TEXT NOT NULL DEFAULT 'index'"),
        ("file_stats", "current_loc", "INTEGER"),
        ("file_stats", "current_complexity", "REAL"),
        ("file_stats", "avg_complexity", "REAL"),
        ("file_stats", "max_complexity", "REAL"),
    ]

    def __init__(self, db_path: Union[Path, str]):
        """Open (or create) the database and ensure the schema exists.

        Args:
            db_path: Path to the SQLite database file

        Raises:
            StoreError: If the database cannot be opened
        """
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                connect_args={"timeout": 30, "check_same_thread": False},
            )
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
            self.SessionLocal = sessionmaker(bind=self.engine)
            self.init_db()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to open database at {self.db_path}: {e}")
            raise StoreError(f"Could not open index database at {self.db_path}") from e

        logger.debug(f"Database initialized at: {self.db_path}")

    def init_db(self) -> None:
        """Create tables, the full-text index and apply column migrations."""
        Base.metadata.create_all(self.engine)
        with self.engine.begin() as conn:
            conn.execute(text(_CREATE_FTS))
        self._apply_migrations()

    def _apply_migrations(self) -> None:
        """Add columns introduced after a store was created, without losing data."""
        with self.engine.begin() as conn:
            added: list[str] = []
            for table, column, ddl in self.MIGRATION_COLUMNS:
                result = conn.execute(text(f"PRAGMA table_info({table})"))
                existing = {row[1] for row in result}
                if column not in existing:
                    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
                    added.append(f"{table}.{column}")

        if added:
            logger.info("Applied schema migration: added columns %s", ", ".join(added))

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """Session context manager that commits on success and rolls back on error.

        SQLAlchemy errors are logged and re-raised as a generic StoreError.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error: {e}", exc_info=True)
            raise StoreError() from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def size_bytes(self) -> int:
        """Size of the database file plus its WAL, 0 if it does not exist."""
        total = 0
        for path in (self.db_path, self.db_path.with_name(self.db_path.name + "-wal")):
            if path.exists():
                total += path.stat().st_size
        return total

    def close(self) -> None:
        self.engine.dispose()
