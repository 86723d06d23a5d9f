"""Indexing: discover commits, measure them, enrich them, refresh analytics.

A run moves through the phases discovering -> measuring -> enriching ->
aggregating -> indexing -> done, reporting each through an optional progress
callback. Synchronous enrichment calls the provider in fixed-size windows;
batch enrichment hands the work to :class:`BatchOrchestrator` and harvests it
on a later run.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any

from .classification.batch_orchestrator import BatchOrchestrator, BatchWorkload
from .config import GitmemConfig
from .constants import JobTypes
from .core.aggregates import AggregateRepository
from .core.batch_jobs import BatchJobRecord
from .core.commits import CommitRepository
from .core.git_service import GitService
from .core.measurer import ComplexityMeasurer
from .core.search import SearchService
from .models.database import Database, utcnow_iso
from .pipeline_types import IndexResult
from .qualitative.classifiers.llm.anthropic_client import EnrichmentBatchClient
from .qualitative.classifiers.llm.base import BatchSucceeded, EnrichmentOracle
from .types import EnrichmentResult, IndexProgress, StatusInfo, StoredCommit
from .utils.commit_utils import chunked, merge_commit_enrichment

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[IndexProgress], None]

LAST_RUN_KEY = "last_run"
MODEL_USED_KEY = "model_used"


class EnrichmentPipeline:
    """Incremental indexing of one repository into the local store."""

    def __init__(
        self,
        git: GitService,
        commits: CommitRepository,
        aggregates: AggregateRepository,
        search: SearchService,
        config: GitmemConfig,
        measurer: ComplexityMeasurer | None = None,
    ):
        self.git = git
        self.commits = commits
        self.aggregates = aggregates
        self.search = search
        self.config = config
        self.measurer = measurer

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def discover(self, progress: ProgressCallback | None = None) -> list[str]:
        """Insert commits on the default branch that are not stored yet.

        Returns:
            Hashes of the newly discovered commits, newest first
        """
        _emit(progress, IndexProgress(phase="discovering"))
        branch = self.git.default_branch()
        all_hashes = self.git.hashes(branch, since=self.config.index_start_date)
        indexed = self.commits.indexed_hashes()
        new_hashes = [h for h in all_hashes if h not in indexed]

        if new_hashes:
            logger.info(f"Discovered {len(new_hashes)} new commits on {branch}")
            self.commits.insert_new(self.git.info_batch(new_hashes))

        if self.measurer:
            self.measurer.measure(progress)
        return new_hashes

    def _pending_enrichment(self) -> list[StoredCommit]:
        if not self.config.ai_enabled:
            return []
        return self.commits.unenriched(since=self.config.ai_since)

    def refresh(self, hashes: list[str], progress: ProgressCallback | None = None) -> None:
        """Incrementally rebuild aggregates and the search index for ``hashes``."""
        if not hashes:
            return
        _emit(progress, IndexProgress(phase="aggregating", total=len(hashes)))
        self.aggregates.rebuild_incremental(hashes)
        _emit(progress, IndexProgress(phase="indexing", total=len(hashes)))
        self.search.index_commits(hashes)

    def _finish(
        self, result: IndexResult, model: str | None, progress: ProgressCallback | None
    ) -> IndexResult:
        self.commits.set_metadata(LAST_RUN_KEY, utcnow_iso())
        if model:
            self.commits.set_metadata(MODEL_USED_KEY, model)
        result.total_enriched = self.commits.enriched_count()
        result.total_commits = self.commits.total_count()
        _emit(
            progress,
            IndexProgress(phase="done", current=result.total_enriched, total=result.total_commits),
        )
        return result

    # ------------------------------------------------------------------
    # Synchronous enrichment
    # ------------------------------------------------------------------

    def run(
        self,
        oracle: EnrichmentOracle | None,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> IndexResult:
        """Index new commits and enrich pending ones synchronously.

        Provider calls run ``enrichment.concurrency`` at a time. Each window is
        awaited in full before the next starts, results are written from this
        thread, and ``cancel_event`` is honored only between windows.

        Args:
            oracle: Enrichment oracle, or None when AI enrichment is disabled
            progress: Optional progress callback
            cancel_event: Set to stop before the next window

        Returns:
            Counts for this run and for the store as a whole
        """
        new_hashes = self.discover(progress)
        result = IndexResult(discovered=len(new_hashes))

        pending = self._pending_enrichment() if oracle else []
        enriched_hashes: list[str] = []
        if pending:
            enriched_hashes = self._enrich_windows(oracle, pending, result, progress, cancel_event)

        self.refresh(_union(new_hashes, enriched_hashes), progress)
        return self._finish(result, oracle.model if oracle else None, progress)

    def _enrich_windows(
        self,
        oracle: EnrichmentOracle,
        pending: list[StoredCommit],
        result: IndexResult,
        progress: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> list[str]:
        total = len(pending)
        hashes = [c.hash for c in pending]
        logger.info(f"Enriching {total} commits with {oracle.model}")

        # One bulk fetch ahead of the windows
        diffs = self.git.diff_batch(hashes, self.config.enrichment.max_diff_chars)
        files = self.commits.files_by_hashes(hashes)

        enriched: list[str] = []
        width = self.config.enrichment.concurrency
        with ThreadPoolExecutor(max_workers=width, thread_name_prefix="gitmem-enrich") as executor:
            for offset, window in enumerate(chunked(pending, width)):
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Enrichment cancelled")
                    result.cancelled = True
                    break

                start = offset * width
                _emit(
                    progress,
                    IndexProgress(
                        phase="enriching",
                        current=start + 1,
                        total=total,
                        current_hash=window[0].hash,
                    ),
                )

                outcomes: dict[str, EnrichmentResult] = {}
                futures = {}
                for commit in window:
                    diff = diffs.get(commit.hash, "")
                    shortcut = merge_commit_enrichment(commit.message, diff)
                    if shortcut:
                        outcomes[commit.hash] = shortcut
                        continue
                    info = commit.to_info(files.get(commit.hash))
                    futures[executor.submit(oracle.enrich, info, diff)] = commit.hash

                wait(futures)
                for future, hash in futures.items():
                    error = future.exception()
                    if error is not None:
                        result.failed += 1
                        logger.warning(f"Failed to enrich commit {hash[:12]}: {error}")
                        continue
                    outcomes[hash] = future.result()

                enriched.extend(self.commits.mark_enriched_batch(outcomes, oracle.model))

        result.enriched = len(enriched)
        return enriched

    # ------------------------------------------------------------------
    # Batch enrichment
    # ------------------------------------------------------------------

    def run_batch(
        self,
        orchestrator: BatchOrchestrator,
        batch_oracle: EnrichmentBatchClient,
        progress: ProgressCallback | None = None,
    ) -> IndexResult:
        """Index new commits and advance the enrichment batch job by one step.

        Safe to call repeatedly: while a job is running this only polls it.
        """
        new_hashes = self.discover(progress)
        result = IndexResult(discovered=len(new_hashes))

        workload = EnrichmentWorkload(self, batch_oracle)
        if self.config.ai_enabled:

            def on_batch(phase: str, batch_id: str | None, status: str | None) -> None:
                _emit(
                    progress,
                    IndexProgress(phase="enriching", batch_id=batch_id, batch_status=status),
                )

            step = orchestrator.step(workload, on_batch)
            result.batch_id = step.batch_id
            result.batch_status = step.batch_status
            result.batch_submitted = step.submitted
            result.batch_remaining = step.remaining
            result.failed = step.failed

        result.enriched = len(workload.enriched_hashes)
        self.refresh(_union(new_hashes, workload.enriched_hashes), progress)
        return self._finish(result, batch_oracle.model if self.config.ai_enabled else None, progress)


class EnrichmentWorkload(BatchWorkload):
    """Batch workload for commit enrichment.

    Empty merge commits are enriched locally while gathering, so they never
    reach the provider. Their hashes are reported with the imported ones.
    """

    job_type = JobTypes.INDEX

    def __init__(self, pipeline: EnrichmentPipeline, oracle: EnrichmentBatchClient):
        self.pipeline = pipeline
        self.oracle = oracle
        self.enriched_hashes: list[str] = []

    def gather(self) -> list[dict[str, Any]]:
        pending = self.pipeline._pending_enrichment()
        if not pending:
            return []

        commits = self.pipeline.commits
        hashes = [c.hash for c in pending]
        diffs = self.pipeline.git.diff_batch(
            hashes, self.pipeline.config.enrichment.max_diff_chars
        )
        files = commits.files_by_hashes(hashes)

        shortcuts: dict[str, EnrichmentResult] = {}
        requests = []
        for commit in pending:
            diff = diffs.get(commit.hash, "")
            shortcut = merge_commit_enrichment(commit.message, diff)
            if shortcut:
                shortcuts[commit.hash] = shortcut
            else:
                info = commit.to_info(files.get(commit.hash))
                requests.append(self.oracle.build_request(info, diff))

        if shortcuts:
            logger.info(f"Enriched {len(shortcuts)} merge commits without the provider")
            self.enriched_hashes.extend(commits.mark_enriched_batch(shortcuts, self.oracle.model))
        return requests

    def apply(self, job: BatchJobRecord, succeeded: list[BatchSucceeded]) -> int:
        results = {outcome.custom_id: outcome.payload for outcome in succeeded}
        updated = self.pipeline.commits.mark_enriched_batch(results, job.model_used)
        self.enriched_hashes.extend(updated)
        return len(updated)


def collect_status(db: Database, commits: CommitRepository) -> StatusInfo:
    """Snapshot of the store for ``gitmem status``."""
    total = commits.total_count()
    return StatusInfo(
        total_commits=total,
        indexed_commits=total,
        enriched_commits=commits.enriched_count(),
        last_run=commits.get_metadata(LAST_RUN_KEY),
        model_used=commits.get_metadata(MODEL_USED_KEY),
        db_path=str(db.db_path),
        db_size=db.size_bytes(),
    )


def _union(first: list[str], second: list[str]) -> list[str]:
    return list(dict.fromkeys([*first, *second]))


def _emit(progress: ProgressCallback | None, event: IndexProgress) -> None:
    if progress:
        progress(event)
