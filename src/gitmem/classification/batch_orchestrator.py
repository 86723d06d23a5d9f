"""Resumable provider batch jobs shared by indexing and quality checks.

This module implements the submit -> poll -> import lifecycle of a provider
batch as a persisted state machine. Every call to :meth:`BatchOrchestrator.step`
performs at most one transition and returns:

- no job pending: gather work, submit the first chunk, record the job
- job pending and still running: persist the polled counts, nothing else
- job pending and ended: import its results, then persist it as ended

WHY: A batch can take hours to finish, so a single process never waits for
one. ``gitmem index --batch`` is re-run until the job has been harvested, and
each run must be safe to repeat or interrupt. The job id is stored as soon as
the provider accepts the batch, and the job is only marked ended after its
results are applied, so a crash during import simply causes a re-import on
the next run.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

from ..config import BatchConfig
from ..constants import JobStatus, Limits
from ..core.batch_jobs import BatchJobRecord, BatchJobRepository, CheckItemRecord
from ..qualitative.classifiers.llm.base import (
    BatchFailed,
    BatchOracle,
    BatchStatus,
    BatchSucceeded,
)

logger = logging.getLogger(__name__)

# Called with (phase, batch_id, batch_status); phase is submitting | polling | importing
BatchProgressCallback = Callable[[str, Optional[str], Optional[str]], None]


def request_size(request: dict[str, Any]) -> int:
    """Estimated bytes a request occupies in a batch upload."""
    return len(json.dumps(request).encode("utf-8")) + Limits.BATCH_ENVELOPE_BYTES


def chunk_requests(
    requests: list[dict[str, Any]], max_items: int, max_bytes: int
) -> list[list[dict[str, Any]]]:
    """Pack requests into chunks bounded by item count and estimated size.

    A chunk is closed when adding the next request would breach either bound.
    A single request larger than ``max_bytes`` still gets a chunk of its own.

    Args:
        requests: Fully built request bodies, in submission order
        max_items: Maximum requests per chunk
        max_bytes: Maximum estimated serialized bytes per chunk

    Returns:
        Chunks in order; empty when there are no requests
    """
    chunks: list[list[dict[str, Any]]] = []
    current: list[dict[str, Any]] = []
    current_bytes = 0

    for request in requests:
        size = request_size(request)
        if current and (len(current) + 1 > max_items or current_bytes + size > max_bytes):
            chunks.append(current)
            current, current_bytes = [], 0
        current.append(request)
        current_bytes += size

    if current:
        chunks.append(current)
    return chunks


@dataclass
class BatchStepResult:
    """What a single orchestrator step did.

    ``kind`` is one of ``empty`` (nothing to submit), ``submitted``,
    ``in_progress`` (polled, still running) or ``imported``.
    """

    kind: str
    batch_id: Optional[str] = None
    batch_status: Optional[str] = None
    submitted: int = 0
    remaining: int = 0
    imported: int = 0
    failed: int = 0
    job: Optional[BatchJobRecord] = None


class BatchWorkload:
    """One kind of batch work: how to gather requests and apply results.

    Subclasses implement :meth:`gather` and :meth:`apply`; the side-table and
    clean-up hooks default to doing nothing.
    """

    job_type: str = ""

    def gather(self) -> list[dict[str, Any]]:
        """Build requests for every item that still needs the provider.

        Local shortcuts are applied here, so only genuine provider work is
        returned.
        """
        raise NotImplementedError

    def side_items(self, requests: list[dict[str, Any]]) -> list[CheckItemRecord]:
        """Rows persisted with the job to interpret its results later."""
        return []

    def apply(self, job: BatchJobRecord, succeeded: list[BatchSucceeded]) -> int:
        """Apply successful outcomes and return how many were applied."""
        raise NotImplementedError

    def on_imported(self, job: BatchJobRecord) -> None:
        """Release per-job state once results have been applied."""


class BatchOrchestrator:
    """Drive one batch job type through its lifecycle, one step per call."""

    def __init__(
        self,
        jobs: BatchJobRepository,
        oracle: BatchOracle,
        batch_config: Optional[BatchConfig] = None,
    ):
        self.jobs = jobs
        self.oracle = oracle
        self.batch_config = batch_config or BatchConfig()

    def step(
        self, workload: BatchWorkload, progress: Optional[BatchProgressCallback] = None
    ) -> BatchStepResult:
        """Advance the job of ``workload.job_type`` by one transition.

        Never submits while a non-terminal job of the same type exists.
        """
        pending = self.jobs.get_pending(workload.job_type)
        if pending is not None:
            return self._advance(pending, workload, progress)
        return self._submit(workload, progress)

    def _emit(
        self,
        progress: Optional[BatchProgressCallback],
        phase: str,
        batch_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> None:
        if progress:
            progress(phase, batch_id, status)

    def _advance(
        self,
        job: BatchJobRecord,
        workload: BatchWorkload,
        progress: Optional[BatchProgressCallback],
    ) -> BatchStepResult:
        self._emit(progress, "polling", job.batch_id, job.status)
        status = self.oracle.status(job.batch_id)

        if not status.is_ended:
            self.jobs.update_status(
                job.batch_id, status.status, status.counts.succeeded, status.counts.failed
            )
            logger.info(
                f"Batch {job.batch_id} still {status.status}: "
                f"{status.counts.processing} processing, {status.counts.succeeded} succeeded"
            )
            return BatchStepResult(
                kind="in_progress",
                batch_id=job.batch_id,
                batch_status=status.status,
                job=self.jobs.get(job.batch_id),
            )

        return self._import(job, status, workload, progress)

    def _import(
        self,
        job: BatchJobRecord,
        status: BatchStatus,
        workload: BatchWorkload,
        progress: Optional[BatchProgressCallback],
    ) -> BatchStepResult:
        self._emit(progress, "importing", job.batch_id, status.status)

        succeeded: list[BatchSucceeded] = []
        failed = 0
        for outcome in self.oracle.results(job.batch_id):
            if isinstance(outcome, BatchSucceeded):
                succeeded.append(outcome)
            elif isinstance(outcome, BatchFailed):
                failed += 1
                logger.warning(f"Batch item {outcome.custom_id} {outcome.kind}: {outcome.reason}")
            else:
                raise TypeError(f"Unexpected batch outcome: {outcome!r}")

        imported = workload.apply(job, succeeded)

        # Marked ended only once results are stored; an interrupted import reruns
        self.jobs.update_status(
            job.batch_id, JobStatus.ENDED, status.counts.succeeded, status.counts.failed
        )
        workload.on_imported(job)
        logger.info(f"Imported {imported} results from batch {job.batch_id} ({failed} failed)")

        return BatchStepResult(
            kind="imported",
            batch_id=job.batch_id,
            batch_status=JobStatus.ENDED,
            imported=imported,
            failed=failed,
            job=self.jobs.get(job.batch_id),
        )

    def _submit(
        self, workload: BatchWorkload, progress: Optional[BatchProgressCallback]
    ) -> BatchStepResult:
        requests = workload.gather()
        if not requests:
            logger.info(f"No {workload.job_type} work to submit")
            return BatchStepResult(kind="empty")

        chunks = chunk_requests(
            requests, self.batch_config.max_requests, self.batch_config.max_bytes
        )
        first = chunks[0]
        self._emit(progress, "submitting")

        submission = self.oracle.submit(first)
        self.jobs.insert(
            submission.batch_id,
            submission.request_count,
            self.oracle.model,
            workload.job_type,
            check_items=workload.side_items(first),
        )

        remaining = len(requests) - len(first)
        if remaining:
            logger.info(f"{remaining} requests left for later batches")
        return BatchStepResult(
            kind="submitted",
            batch_id=submission.batch_id,
            batch_status=JobStatus.SUBMITTED,
            submitted=submission.request_count,
            remaining=remaining,
            job=self.jobs.get(submission.batch_id),
        )
