"""Persistence for provider batch jobs and quality-check batch items."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, select

from ..constants import JobStatus, JobTypes
from ..models.database import BatchJob, CheckBatchItem, Database, utcnow_iso

logger = logging.getLogger(__name__)


@dataclass
class BatchJobRecord:
    """A batch job row."""

    batch_id: str
    status: str
    type: str
    request_count: int
    succeeded_count: int
    failed_count: int
    submitted_at: str
    completed_at: Optional[str]
    model_used: str

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL


@dataclass
class CheckItemRecord:
    """Enrichment context preserved for one commit of a quality-check batch."""

    batch_id: str
    hash: str
    classification: str
    summary: str


def _to_record(row: BatchJob) -> BatchJobRecord:
    return BatchJobRecord(
        batch_id=row.batch_id,
        status=row.status,
        type=row.type,
        request_count=row.request_count,
        succeeded_count=row.succeeded_count,
        failed_count=row.failed_count,
        submitted_at=row.submitted_at,
        completed_at=row.completed_at,
        model_used=row.model_used,
    )


class BatchJobRepository:
    """Read and write batch job state.

    The only cross-invocation mutual exclusion in gitmem: a new job of a type
    is submitted only when :meth:`get_pending` returns None for that type.
    """

    def __init__(self, db: Database):
        self.db = db

    def insert(
        self,
        batch_id: str,
        request_count: int,
        model: str,
        job_type: str = JobTypes.INDEX,
        check_items: Optional[list[CheckItemRecord]] = None,
    ) -> None:
        """Record a freshly submitted job, with its check items in the same transaction."""
        with self.db.get_session() as session:
            session.add(
                BatchJob(
                    batch_id=batch_id,
                    status=JobStatus.SUBMITTED,
                    request_count=request_count,
                    succeeded_count=0,
                    failed_count=0,
                    submitted_at=utcnow_iso(),
                    model_used=model,
                    type=job_type,
                )
            )
            session.flush()
            for item in check_items or []:
                session.add(
                    CheckBatchItem(
                        batch_id=batch_id,
                        hash=item.hash,
                        classification=item.classification,
                        summary=item.summary,
                    )
                )
        logger.info(f"Recorded {job_type} batch {batch_id} with {request_count} requests")

    def update_status(
        self, batch_id: str, status: str, succeeded: int, failed: int
    ) -> None:
        """Persist polled status and counts; ``ended`` also stamps completed_at."""
        with self.db.get_session() as session:
            job = session.get(BatchJob, batch_id)
            if job is None:
                logger.warning(f"Status update for unknown batch {batch_id}")
                return
            job.status = status
            job.succeeded_count = succeeded
            job.failed_count = failed
            job.completed_at = utcnow_iso() if status in JobStatus.TERMINAL else None

    def get(self, batch_id: str) -> Optional[BatchJobRecord]:
        with self.db.get_session() as session:
            row = session.get(BatchJob, batch_id)
            return _to_record(row) if row else None

    def get_all(self) -> list[BatchJobRecord]:
        with self.db.get_session() as session:
            rows = session.scalars(select(BatchJob).order_by(BatchJob.submitted_at.desc()))
            return [_to_record(row) for row in rows]

    def get_pending(self, job_type: str) -> Optional[BatchJobRecord]:
        """The most recent non-terminal job of ``job_type``, if any."""
        stmt = (
            select(BatchJob)
            .where(BatchJob.type == job_type)
            .where(BatchJob.status.notin_(JobStatus.TERMINAL))
            .order_by(BatchJob.submitted_at.desc())
            .limit(1)
        )
        with self.db.get_session() as session:
            row = session.scalars(stmt).first()
            return _to_record(row) if row else None

    def get_check_items(self, batch_id: str) -> list[CheckItemRecord]:
        with self.db.get_session() as session:
            rows = session.scalars(
                select(CheckBatchItem).where(CheckBatchItem.batch_id == batch_id)
            )
            return [
                CheckItemRecord(
                    batch_id=row.batch_id,
                    hash=row.hash,
                    classification=row.classification,
                    summary=row.summary,
                )
                for row in rows
            ]

    def delete_check_items(self, batch_id: str) -> None:
        with self.db.get_session() as session:
            session.execute(delete(CheckBatchItem).where(CheckBatchItem.batch_id == batch_id))
