"""Quality check: have a stronger model judge existing enrichments.

Commits are judged one at a time (``check_one``), as a random sample judged
synchronously (``check_sample``) or as a sample submitted through the batch
orchestrator (``check_sample_batch``). Empty merge commits are never sent to
the judge because indexing classified them from a template.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any

from .classification.batch_orchestrator import BatchOrchestrator, BatchWorkload
from .config import GitmemConfig
from .constants import MERGE_CHECK_REASONING, JobTypes
from .core.batch_jobs import BatchJobRecord, BatchJobRepository, CheckItemRecord
from .core.commits import CommitRepository
from .core.git_service import GitService
from .pipeline_types import CheckBatchResult
from .qualitative.classifiers.llm.anthropic_client import JudgeBatchClient
from .qualitative.classifiers.llm.base import BatchSucceeded, JudgeOracle
from .qualitative.classifiers.llm.response_parser import reconcile_verdicts
from .types import CheckProgress, EvalResult, EvalSummary, EvalVerdict, StoredCommit
from .utils.commit_utils import chunked, is_merge_with_empty_diff

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[CheckProgress], None]


class QualityCheckPipeline:
    """Evaluate enriched commits with a judge oracle."""

    def __init__(
        self,
        git: GitService,
        commits: CommitRepository,
        config: GitmemConfig,
        judge: JudgeOracle | None = None,
    ):
        self.git = git
        self.commits = commits
        self.config = config
        self.judge = judge

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def sample(self, size: int) -> tuple[list[StoredCommit], dict[str, str]]:
        """Randomly draw up to ``size`` judgeable commits, with their diffs.

        Empty merge commits are dropped and replaced by further draws until
        the sample is full or no enriched commits are left.
        """
        selected: list[StoredCommit] = []
        diffs: dict[str, str] = {}
        seen: set[str] = set()

        while len(selected) < size:
            draw = self.commits.random_enriched(size - len(selected), exclude=seen)
            if not draw:
                break
            seen.update(c.hash for c in draw)
            draw_diffs = self.git.diff_batch(
                [c.hash for c in draw], self.config.enrichment.max_diff_chars
            )
            for commit in draw:
                diff = draw_diffs.get(commit.hash, "")
                if is_merge_with_empty_diff(commit.message, diff):
                    continue
                diffs[commit.hash] = diff
                selected.append(commit)

        return selected[:size], diffs

    # ------------------------------------------------------------------
    # Synchronous evaluation
    # ------------------------------------------------------------------

    def _require_judge(self) -> JudgeOracle:
        if self.judge is None:
            raise ValueError("A judge oracle is required for synchronous checks")
        return self.judge

    def _evaluate(self, commit: StoredCommit, files: list, diff: str) -> EvalResult:
        judge = self._require_judge()
        verdicts = judge.evaluate(
            commit.to_info(files), diff, commit.classification, commit.summary
        )
        verdicts = reconcile_verdicts(verdicts, commit.classification)
        return EvalResult.from_verdicts(commit.hash, commit.classification, commit.summary, verdicts)

    def check_one(
        self, hash_or_prefix: str, progress: ProgressCallback | None = None
    ) -> EvalResult | None:
        """Judge a single commit given its hash or a unique prefix.

        Returns:
            The evaluation, or None if the commit is unknown or not enriched

        Raises:
            AmbiguousPrefixError: If the prefix matches several commits
        """
        commit = self.commits.resolve_by_hash_or_prefix(hash_or_prefix)
        if commit is None or not commit.classification or not commit.summary:
            return None

        _emit(progress, CheckProgress(phase="evaluating", total=1, current_hash=commit.hash))
        diff = self.git.diff(commit.hash, self.config.enrichment.max_diff_chars)

        if is_merge_with_empty_diff(commit.message, diff):
            verdict = EvalVerdict(passed=True, reasoning=MERGE_CHECK_REASONING)
            result = EvalResult(
                hash=commit.hash,
                classification=commit.classification,
                summary=commit.summary,
                classification_verdict=verdict,
                accuracy_verdict=EvalVerdict(passed=True, reasoning=MERGE_CHECK_REASONING),
                completeness_verdict=EvalVerdict(passed=True, reasoning=MERGE_CHECK_REASONING),
            )
        else:
            files = self.commits.files_by_hashes([commit.hash]).get(commit.hash, [])
            result = self._evaluate(commit, files, diff)

        _emit(progress, CheckProgress(phase="done", current=1, total=1))
        return result

    def check_sample(
        self, size: int | None = None, progress: ProgressCallback | None = None
    ) -> tuple[list[EvalResult], EvalSummary]:
        """Judge a random sample in windows of ``check.concurrency``.

        A failed evaluation is logged and left out of the results and summary.
        """
        size = size or self.config.check.sample_size
        sample, diffs = self.sample(size)
        total = len(sample)
        if not total:
            _emit(progress, CheckProgress(phase="done"))
            return [], EvalSummary()

        files = self.commits.files_by_hashes([c.hash for c in sample])
        width = self.config.check.concurrency
        results: list[EvalResult] = []

        with ThreadPoolExecutor(max_workers=width, thread_name_prefix="gitmem-check") as executor:
            for window in chunked(sample, width):
                _emit(
                    progress,
                    CheckProgress(
                        phase="evaluating",
                        current=len(results) + 1,
                        total=total,
                        current_hash=window[0].hash,
                    ),
                )
                futures = {
                    executor.submit(
                        self._evaluate, commit, files.get(commit.hash, []), diffs[commit.hash]
                    ): commit.hash
                    for commit in window
                }
                wait(futures)
                for future, hash in futures.items():
                    error = future.exception()
                    if error is not None:
                        logger.warning(f"Failed to evaluate commit {hash[:12]}: {error}")
                        continue
                    results.append(future.result())

        summary = EvalSummary.from_results(results)
        _emit(progress, CheckProgress(phase="done", current=len(results), total=total))
        return results, summary

    # ------------------------------------------------------------------
    # Batch evaluation
    # ------------------------------------------------------------------

    def check_sample_batch(
        self,
        orchestrator: BatchOrchestrator,
        batch_judge: JudgeBatchClient,
        output_path: Path | str,
        size: int | None = None,
        progress: ProgressCallback | None = None,
    ) -> CheckBatchResult:
        """Advance the quality-check batch job by one step.

        On completion the results are also written as JSON to ``output_path``.
        The file is written before the job is marked ended, so a failed write
        leaves the job pending and the next call imports it again.
        """
        workload = CheckWorkload(self, batch_judge, orchestrator.jobs, size, output_path)

        def on_batch(phase: str, batch_id: str | None, status: str | None) -> None:
            mapped = "evaluating" if phase == "polling" else phase
            _emit(progress, CheckProgress(phase=mapped, batch_id=batch_id, batch_status=status))

        step = orchestrator.step(workload, on_batch)

        if step.kind == "imported":
            results = workload.results
            _emit(progress, CheckProgress(phase="done", current=len(results), total=len(results)))
            return CheckBatchResult(
                kind="complete",
                batch_id=step.batch_id,
                batch_status=step.batch_status,
                results=results,
                summary=EvalSummary.from_results(results),
                failed=step.failed,
                output_path=str(workload.output_path),
            )

        if step.kind == "empty":
            _emit(progress, CheckProgress(phase="done"))
            return CheckBatchResult(kind="empty", summary=EvalSummary())

        return CheckBatchResult(
            kind=step.kind,
            batch_id=step.batch_id,
            batch_status=step.batch_status,
            submitted=step.submitted,
        )


class CheckWorkload(BatchWorkload):
    """Batch workload for quality checks.

    The judge only echoes back the commit hash, so the classification and
    summary under review are stored as check items alongside the job.
    Results are written to ``output_path`` while applying them; the check
    items are only deleted once that file exists.
    """

    job_type = JobTypes.CHECK

    def __init__(
        self,
        pipeline: QualityCheckPipeline,
        oracle: JudgeBatchClient,
        jobs: BatchJobRepository,
        size: int | None = None,
        output_path: Path | str | None = None,
    ):
        self.pipeline = pipeline
        self.oracle = oracle
        self.jobs = jobs
        self.size = size or pipeline.config.check.sample_size
        self.output_path = Path(output_path) if output_path else None
        self.results: list[EvalResult] = []
        self._sampled: dict[str, StoredCommit] = {}

    def gather(self) -> list[dict[str, Any]]:
        sample, diffs = self.pipeline.sample(self.size)
        if not sample:
            return []
        files = self.pipeline.commits.files_by_hashes([c.hash for c in sample])
        self._sampled = {c.hash: c for c in sample}
        return [
            self.oracle.build_request(
                c.to_info(files.get(c.hash, [])), diffs[c.hash], c.classification, c.summary
            )
            for c in sample
        ]

    def side_items(self, requests: list[dict[str, Any]]) -> list[CheckItemRecord]:
        items = []
        for request in requests:
            commit = self._sampled[request["custom_id"]]
            items.append(
                CheckItemRecord(
                    batch_id="",
                    hash=commit.hash,
                    classification=commit.classification,
                    summary=commit.summary,
                )
            )
        return items

    def apply(self, job: BatchJobRecord, succeeded: list[BatchSucceeded]) -> int:
        items = {item.hash: item for item in self.jobs.get_check_items(job.batch_id)}
        for outcome in succeeded:
            item = items.get(outcome.custom_id)
            if item is None:
                logger.warning(f"No check item for {outcome.custom_id} in batch {job.batch_id}")
                continue
            verdicts = reconcile_verdicts(outcome.payload, item.classification)
            self.results.append(
                EvalResult.from_verdicts(item.hash, item.classification, item.summary, verdicts)
            )
        if self.output_path is not None:
            self._write_results()
        return len(self.results)

    def _write_results(self) -> None:
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.output_path, "w") as f:
            json.dump([r.to_dict() for r in self.results], f, indent=2)
        logger.info(f"Wrote {len(self.results)} evaluations to {self.output_path}")

    def on_imported(self, job: BatchJobRecord) -> None:
        self.jobs.delete_check_items(job.batch_id)


def _emit(progress: ProgressCallback | None, event: CheckProgress) -> None:
    if progress:
        progress(event)
