"""
Tests for the indexing pipeline.

Git is mocked with canned commits and diffs; the store, aggregates and search
index are real so the end state of a run can be checked directly.
"""

import threading
from unittest.mock import MagicMock

from gitmem.classification.batch_orchestrator import BatchOrchestrator
from gitmem.config import GitmemConfig
from gitmem.constants import JobStatus, JobTypes
from gitmem.core.aggregates import AggregateRepository
from gitmem.core.batch_jobs import BatchJobRepository
from gitmem.core.search import SearchService
from gitmem.errors import OracleError
from gitmem.pipeline_index import (
    LAST_RUN_KEY,
    MODEL_USED_KEY,
    EnrichmentPipeline,
    collect_status,
)
from gitmem.qualitative.classifiers.llm.base import (
    BatchRequestCounts,
    BatchStatus,
    BatchSubmission,
    BatchSucceeded,
)
from gitmem.types import EnrichmentResult


def _mock_git(history, diffs):
    """GitService double serving ``history`` (newest first) and ``diffs``."""
    by_hash = {c.hash: c for c in history}
    git = MagicMock()
    git.default_branch.return_value = "main"
    git.hashes.side_effect = lambda branch, since=None: [
        c.hash for c in history if since is None or c.committed_at >= since
    ]
    git.info_batch.side_effect = lambda hashes: [by_hash[h] for h in hashes]
    git.diff_batch.side_effect = lambda hashes, max_chars=None: {
        h: diffs.get(h, "") for h in hashes
    }
    return git


def _oracle(model="model-x"):
    oracle = MagicMock()
    oracle.model = model
    oracle.enrich.side_effect = lambda commit, diff: EnrichmentResult(
        "feature", f"Changes {commit.files[0].file_path}"
    )
    return oracle


class TestEnrichmentPipeline:
    """Synchronous runs."""

    def setup_method(self):
        self.config = GitmemConfig()
        self.config.enrichment.concurrency = 2

    def _pipeline(self, db, commits, git, config=None):
        return EnrichmentPipeline(
            git, commits, AggregateRepository(db), SearchService(db), config or self.config
        )

    def _history(self, make_commit):
        return [
            make_commit("c" * 40, ["src/b.py"], "2024-03-01T00:00:00+00:00", "Add b"),
            make_commit("b" * 40, [], "2024-02-01T00:00:00+00:00", "Merge branch 'topic'"),
            make_commit("a" * 40, ["src/a.py"], "2024-01-01T00:00:00+00:00", "Add a"),
        ]

    def test_run_discovers_and_enriches(self, db, commits, make_commit):
        git = _mock_git(self._history(make_commit), {"a" * 40: "+a", "c" * 40: "+b"})
        oracle = _oracle()
        progress = MagicMock()

        result = self._pipeline(db, commits, git).run(oracle, progress)

        assert result.discovered == 3
        assert result.enriched == 3
        assert result.failed == 0
        assert result.total_enriched == result.total_commits == 3
        assert oracle.enrich.call_count == 2
        phases = [call.args[0].phase for call in progress.call_args_list]
        assert phases[0] == "discovering"
        assert "enriching" in phases
        assert phases[-1] == "done"

    def test_empty_merge_is_enriched_from_template(self, db, commits, make_commit):
        git = _mock_git(self._history(make_commit), {"a" * 40: "+a", "c" * 40: "+b"})
        oracle = _oracle()

        self._pipeline(db, commits, git).run(oracle)

        merge = commits.get_commit("b" * 40)
        assert merge.classification == "chore"
        assert merge.summary == "Merge commit: Merge branch 'topic'"
        assert merge.model_used == "model-x"
        enriched_hashes = {call.args[0].hash for call in oracle.enrich.call_args_list}
        assert "b" * 40 not in enriched_hashes

    def test_merge_with_diff_goes_to_oracle(self, db, commits, make_commit):
        history = [make_commit("b" * 40, ["x.py"], message="Merge branch 'fix'")]
        git = _mock_git(history, {"b" * 40: "+conflict resolution"})
        oracle = _oracle()

        self._pipeline(db, commits, git).run(oracle)

        oracle.enrich.assert_called_once()
        assert commits.get_commit("b" * 40).classification == "feature"

    def test_oracle_failure_leaves_commit_pending(self, db, commits, make_commit):
        git = _mock_git(self._history(make_commit), {"a" * 40: "+a", "c" * 40: "+b"})
        oracle = _oracle()

        def enrich(commit, diff):
            if commit.hash == "a" * 40:
                raise OracleError("rate limited")
            return EnrichmentResult("feature", "Adds b")

        oracle.enrich.side_effect = enrich

        result = self._pipeline(db, commits, git).run(oracle)

        assert result.failed == 1
        assert result.enriched == 2
        assert [c.hash for c in commits.unenriched()] == ["a" * 40]

    def test_failed_commit_is_retried_next_run(self, db, commits, make_commit):
        git = _mock_git(self._history(make_commit), {"a" * 40: "+a", "c" * 40: "+b"})
        failing = _oracle()
        failing.enrich.side_effect = OracleError("down")
        pipeline = self._pipeline(db, commits, git)
        pipeline.run(failing)

        result = pipeline.run(_oracle())

        assert result.discovered == 0
        assert result.enriched == 2
        assert commits.unenriched() == []

    def test_aggregates_and_search_are_refreshed(self, db, commits, make_commit):
        git = _mock_git(self._history(make_commit), {"a" * 40: "+a", "c" * 40: "+b"})

        self._pipeline(db, commits, git).run(_oracle())

        assert AggregateRepository(db).get_file_stats("src/a.py")["feature_count"] == 1
        assert [r["hash"] for r in SearchService(db).search("topic")] == ["b" * 40]

    def test_cancel_before_first_window(self, db, commits, make_commit):
        git = _mock_git(self._history(make_commit), {"a" * 40: "+a", "c" * 40: "+b"})
        oracle = _oracle()
        cancel = threading.Event()
        cancel.set()

        result = self._pipeline(db, commits, git).run(oracle, cancel_event=cancel)

        assert result.cancelled
        assert result.enriched == 0
        assert result.discovered == 3
        oracle.enrich.assert_not_called()

    def test_ai_disabled_only_indexes(self, db, commits, make_commit):
        git = _mock_git(self._history(make_commit), {})
        config = GitmemConfig(ai=False)

        result = self._pipeline(db, commits, git, config).run(None)

        assert result.discovered == 3
        assert result.enriched == 0
        assert commits.total_count() == 3
        assert commits.get_metadata(MODEL_USED_KEY) is None
        assert commits.get_metadata(LAST_RUN_KEY) is not None
        assert sorted(r["hash"] for r in SearchService(db).search("Add")) == ["a" * 40, "c" * 40]

    def test_ai_since_limits_enrichment(self, db, commits, make_commit):
        git = _mock_git(self._history(make_commit), {"a" * 40: "+a", "c" * 40: "+b"})
        config = GitmemConfig(ai="2024-02-15")
        oracle = _oracle()

        result = self._pipeline(db, commits, git, config).run(oracle)

        assert result.enriched == 1
        assert commits.get_commit("c" * 40).is_enriched
        assert not commits.get_commit("a" * 40).is_enriched

    def test_index_start_date_limits_discovery(self, db, commits, make_commit):
        git = _mock_git(self._history(make_commit), {})
        config = GitmemConfig(ai=False, index_start_date="2024-02-15")

        result = self._pipeline(db, commits, git, config).run(None)

        assert result.discovered == 1
        assert commits.indexed_hashes() == {"c" * 40}

    def test_measurer_runs_after_discovery(self, db, commits, make_commit):
        git = _mock_git(self._history(make_commit), {})
        measurer = MagicMock()
        pipeline = EnrichmentPipeline(
            git,
            commits,
            AggregateRepository(db),
            SearchService(db),
            GitmemConfig(ai=False),
            measurer=measurer,
        )

        pipeline.run(None)

        measurer.measure.assert_called_once()


class TestBatchEnrichment:
    """Batch runs advance one step per invocation."""

    def _setup(self, db, commits, make_commit):
        history = [
            make_commit("b" * 40, ["src/b.py"], message="Add b"),
            make_commit("m" * 40, [], message="Merge pull request #1"),
            make_commit("a" * 40, ["src/a.py"], message="Add a"),
        ]
        git = _mock_git(history, {"a" * 40: "+a", "b" * 40: "+b"})
        config = GitmemConfig()
        pipeline = EnrichmentPipeline(
            git, commits, AggregateRepository(db), SearchService(db), config
        )
        batch_oracle = MagicMock()
        batch_oracle.model = "batch-model"
        batch_oracle.build_request.side_effect = lambda commit, diff: {
            "custom_id": commit.hash,
            "params": {},
        }
        batch_oracle.submit.side_effect = lambda requests: BatchSubmission(
            "msgbatch_1", len(requests)
        )
        jobs = BatchJobRepository(db)
        orchestrator = BatchOrchestrator(jobs, batch_oracle, config.batch)
        return pipeline, batch_oracle, orchestrator, jobs

    def test_first_run_submits(self, db, commits, make_commit):
        pipeline, batch_oracle, orchestrator, jobs = self._setup(db, commits, make_commit)

        result = pipeline.run_batch(orchestrator, batch_oracle)

        assert result.discovered == 3
        assert result.batch_id == "msgbatch_1"
        assert result.batch_status == JobStatus.SUBMITTED
        assert result.batch_submitted == 2
        # The merge commit is enriched locally
        assert result.enriched == 1
        assert commits.get_commit("m" * 40).classification == "chore"
        assert jobs.get_pending(JobTypes.INDEX) is not None

    def test_second_run_polls(self, db, commits, make_commit):
        pipeline, batch_oracle, orchestrator, _ = self._setup(db, commits, make_commit)
        pipeline.run_batch(orchestrator, batch_oracle)
        batch_oracle.status.return_value = BatchStatus(
            JobStatus.IN_PROGRESS, BatchRequestCounts(processing=2)
        )

        result = pipeline.run_batch(orchestrator, batch_oracle)

        assert result.batch_status == JobStatus.IN_PROGRESS
        assert result.enriched == 0
        assert batch_oracle.submit.call_count == 1

    def test_ended_batch_is_imported(self, db, commits, make_commit):
        pipeline, batch_oracle, orchestrator, jobs = self._setup(db, commits, make_commit)
        pipeline.run_batch(orchestrator, batch_oracle)
        batch_oracle.status.return_value = BatchStatus(
            JobStatus.ENDED, BatchRequestCounts(succeeded=2)
        )
        batch_oracle.results.return_value = iter(
            [
                BatchSucceeded("a" * 40, EnrichmentResult("feature", "Adds a")),
                BatchSucceeded("b" * 40, EnrichmentResult("bug-fix", "Fixes b")),
            ]
        )

        result = pipeline.run_batch(orchestrator, batch_oracle)

        assert result.enriched == 2
        assert result.total_enriched == 3
        assert commits.get_commit("b" * 40).classification == "bug-fix"
        assert commits.get_commit("b" * 40).model_used == "batch-model"
        assert jobs.get("msgbatch_1").status == JobStatus.ENDED
        assert AggregateRepository(db).get_file_stats("src/b.py")["bug_fix_count"] == 1

    def test_unknown_hash_in_results_is_not_counted(self, db, commits, make_commit):
        pipeline, batch_oracle, orchestrator, _ = self._setup(db, commits, make_commit)
        pipeline.run_batch(orchestrator, batch_oracle)
        batch_oracle.status.return_value = BatchStatus(
            JobStatus.ENDED, BatchRequestCounts(succeeded=3)
        )
        batch_oracle.results.return_value = iter(
            [
                BatchSucceeded("a" * 40, EnrichmentResult("feature", "Adds a")),
                BatchSucceeded("b" * 40, EnrichmentResult("bug-fix", "Fixes b")),
                BatchSucceeded("f" * 40, EnrichmentResult("feature", "Not indexed")),
            ]
        )

        result = pipeline.run_batch(orchestrator, batch_oracle)

        assert result.enriched == 2
        assert result.total_enriched == 3
        assert commits.get_commit("f" * 40) is None

    def test_nothing_to_do(self, db, commits, make_commit):
        pipeline, batch_oracle, orchestrator, _ = self._setup(db, commits, make_commit)
        pipeline.run(_oracle())

        result = pipeline.run_batch(orchestrator, batch_oracle)

        assert result.batch_id is None
        batch_oracle.submit.assert_not_called()


class TestCollectStatus:
    def test_status_snapshot(self, db, commits, make_commit, store_enriched):
        store_enriched(commits, make_commit("a" * 40))
        commits.insert_new([make_commit("b" * 40)])
        commits.set_metadata(LAST_RUN_KEY, "2024-01-01T00:00:00+00:00")

        status = collect_status(db, commits)

        assert status.total_commits == 2
        assert status.enriched_commits == 1
        assert status.last_run == "2024-01-01T00:00:00+00:00"
        assert status.model_used is None
        assert status.db_path == str(db.db_path)
        assert status.db_size > 0
