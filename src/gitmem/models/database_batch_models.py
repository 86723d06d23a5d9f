"""Batch job bookkeeping models."""

from sqlalchemy import Column, ForeignKey, Integer, String, Text

from .database_base import Base


class BatchJob(Base):
    """A provider-side message batch submitted by gitmem.

    At most one job per ``type`` is in a non-terminal status at any time.
    """

    __tablename__ = "batch_jobs"

    batch_id = Column(String, primary_key=True)
    status = Column(String, nullable=False, default="submitted")
    request_count = Column(Integer, nullable=False, default=0)
    succeeded_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    submitted_at = Column(String, nullable=False)
    completed_at = Column(String)
    model_used = Column(String, nullable=False)
    type = Column(String, nullable=False, default="index")


class CheckBatchItem(Base):
    """Enrichment under evaluation for one commit in a quality-check batch."""

    __tablename__ = "check_batch_items"

    batch_id = Column(String, ForeignKey("batch_jobs.batch_id"), primary_key=True)
    hash = Column(String, primary_key=True)
    classification = Column(String, nullable=False)
    summary = Column(Text, nullable=False)
