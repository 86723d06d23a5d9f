"""Derived per-file analytics tables.

These are denormalized views over commits/commit_files, owned and rewritten
exclusively by the aggregate engine.
"""

from sqlalchemy import Column, Float, Integer, String

from .database_base import Base


class FileStats(Base):
    """Change counts per classification and a current size snapshot."""

    __tablename__ = "file_stats"

    file_path = Column(String, primary_key=True)
    total_changes = Column(Integer, nullable=False, default=0)
    bug_fix_count = Column(Integer, nullable=False, default=0)
    feature_count = Column(Integer, nullable=False, default=0)
    refactor_count = Column(Integer, nullable=False, default=0)
    docs_count = Column(Integer, nullable=False, default=0)
    chore_count = Column(Integer, nullable=False, default=0)
    perf_count = Column(Integer, nullable=False, default=0)
    test_count = Column(Integer, nullable=False, default=0)
    style_count = Column(Integer, nullable=False, default=0)
    first_seen = Column(String, nullable=False)
    last_changed = Column(String, nullable=False)
    total_additions = Column(Integer, nullable=False, default=0)
    total_deletions = Column(Integer, nullable=False, default=0)

    # Most recent non-zero measurement
    current_loc = Column(Integer)
    current_complexity = Column(Float)
    avg_complexity = Column(Float)
    max_complexity = Column(Float)


class FileContributor(Base):
    """Commit count per author per file."""

    __tablename__ = "file_contributors"

    file_path = Column(String, primary_key=True)
    author_email = Column(String, primary_key=True)
    author_name = Column(String, nullable=False)
    commit_count = Column(Integer, nullable=False, default=0)


class FileCoupling(Base):
    """Co-change count of an unordered file pair, stored with file_a < file_b."""

    __tablename__ = "file_coupling"

    file_a = Column(String, primary_key=True)
    file_b = Column(String, primary_key=True)
    co_change_count = Column(Integer, nullable=False, default=0)
