"""Commit-related database models for gitmem."""

from sqlalchemy import Column, Float, ForeignKey, Index, Integer, String, Text

from .database_base import Base


class Commit(Base):
    """A commit discovered from git, optionally enriched.

    Created without classification/summary at discovery and updated once when
    enrichment assigns them. Never deleted.
    """

    __tablename__ = "commits"

    hash = Column(String, primary_key=True)
    author_name = Column(String, nullable=False)
    author_email = Column(String, nullable=False)
    committed_at = Column(String, nullable=False)  # ISO-8601 UTC
    message = Column(Text, nullable=False)

    # Enrichment
    classification = Column(String)
    summary = Column(Text)
    enriched_at = Column(String)
    model_used = Column(String)

    __table_args__ = (Index("idx_commits_enriched_at", "enriched_at"),)


class CommitFile(Base):
    """A file touched by a commit, with optional complexity measurements."""

    __tablename__ = "commit_files"

    commit_hash = Column(String, ForeignKey("commits.hash"), primary_key=True)
    file_path = Column(String, primary_key=True)
    change_type = Column(String, nullable=False)
    additions = Column(Integer, default=0)
    deletions = Column(Integer, default=0)

    # Filled in by the measurer; NULL until measured
    lines_of_code = Column(Integer)
    indent_complexity = Column(Float)
    max_indent = Column(Integer)

    __table_args__ = (Index("idx_commit_files_file_path", "file_path"),)


class Metadata(Base):
    """Key/value bookkeeping such as last run time and model used."""

    __tablename__ = "metadata"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)
