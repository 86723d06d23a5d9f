"""
Tests for the commit store.

These tests cover idempotent inserts, enrichment updates, hash prefix
resolution and the sampling helpers used by quality checks.
"""

import pytest

from gitmem.errors import AmbiguousPrefixError
from gitmem.models.database import CommitFile
from gitmem.types import EnrichmentResult


class TestInsert:
    """Inserting discovered commits."""

    def test_insert_new_returns_inserted_count(self, commits, make_commit):
        inserted = commits.insert_new(
            [make_commit("a" * 40, ["src/a.py"]), make_commit("b" * 40, ["src/b.py"])]
        )

        assert inserted == 2
        assert commits.total_count() == 2

    def test_insert_is_idempotent(self, commits, make_commit):
        commit = make_commit("a" * 40, ["src/a.py", "src/b.py"])
        commits.insert_new([commit])

        assert commits.insert_new([commit]) == 0
        assert commits.total_count() == 1
        assert len(commits.files_by_hashes(["a" * 40])["a" * 40]) == 2

    def test_files_are_stored_with_counts(self, commits, make_commit):
        commits.insert_new([make_commit("a" * 40, ["x.py"], additions=7, deletions=3)])

        files = commits.files_by_hashes(["a" * 40])["a" * 40]

        assert files[0].file_path == "x.py"
        assert files[0].additions == 7
        assert files[0].deletions == 3

    def test_files_by_hashes_omits_unknown(self, commits):
        assert commits.files_by_hashes(["f" * 40]) == {}


class TestEnrichment:
    """Enrichment state transitions."""

    def test_new_commits_are_unenriched(self, commits, make_commit):
        commits.insert_new([make_commit("a" * 40)])

        pending = commits.unenriched()

        assert [c.hash for c in pending] == ["a" * 40]
        assert pending[0].classification is None
        assert not pending[0].is_enriched

    def test_mark_enriched_sets_fields(self, commits, make_commit):
        commits.insert_new([make_commit("a" * 40)])

        commits.mark_enriched("a" * 40, EnrichmentResult("bug-fix", "Fixes a crash"), "model-x")

        stored = commits.get_commit("a" * 40)
        assert stored.classification == "bug-fix"
        assert stored.summary == "Fixes a crash"
        assert stored.model_used == "model-x"
        assert stored.enriched_at is not None
        assert commits.unenriched() == []
        assert commits.enriched_count() == 1

    def test_mark_enriched_batch_returns_updated_hashes(self, commits, make_commit):
        commits.insert_new([make_commit("a" * 40)])

        updated = commits.mark_enriched_batch(
            {
                "a" * 40: EnrichmentResult("feature", "Adds a"),
                "f" * 40: EnrichmentResult("feature", "Unknown"),
            },
            "model-x",
        )

        assert updated == ["a" * 40]
        assert commits.total_count() == 1
        assert commits.mark_enriched_batch({}, "model-x") == []

    def test_unenriched_since_filters_by_date(self, commits, make_commit):
        commits.insert_new(
            [
                make_commit("a" * 40, committed_at="2023-06-01T00:00:00+00:00"),
                make_commit("b" * 40, committed_at="2024-06-01T00:00:00+00:00"),
            ]
        )

        pending = commits.unenriched(since="2024-01-01")

        assert [c.hash for c in pending] == ["b" * 40]

    def test_unenriched_is_newest_first(self, commits, make_commit):
        commits.insert_new(
            [
                make_commit("a" * 40, committed_at="2024-01-01T00:00:00+00:00"),
                make_commit("b" * 40, committed_at="2024-03-01T00:00:00+00:00"),
            ]
        )

        assert [c.hash for c in commits.unenriched()] == ["b" * 40, "a" * 40]


class TestPrefixResolution:
    """Resolving full hashes and prefixes."""

    def setup_method(self):
        self.first = "abc1234" + "a" * 33
        self.second = "abc1234" + "b" * 33

    def test_full_hash(self, commits, make_commit):
        commits.insert_new([make_commit(self.first)])

        assert commits.resolve_by_hash_or_prefix(self.first).hash == self.first

    def test_unique_prefix(self, commits, make_commit):
        commits.insert_new([make_commit(self.first), make_commit(self.second)])

        assert commits.resolve_by_hash_or_prefix("abc1234a").hash == self.first

    def test_ambiguous_prefix_raises(self, commits, make_commit):
        commits.insert_new([make_commit(self.first), make_commit(self.second)])

        with pytest.raises(AmbiguousPrefixError) as exc_info:
            commits.resolve_by_hash_or_prefix("abc1234")

        assert exc_info.value.matches == [self.first, self.second]

    def test_unknown_prefix_returns_none(self, commits, make_commit):
        commits.insert_new([make_commit(self.first)])

        assert commits.resolve_by_hash_or_prefix("fff") is None

    def test_prefix_is_not_a_wildcard(self, commits, make_commit):
        commits.insert_new([make_commit(self.first)])

        assert commits.resolve_by_hash_or_prefix("abc%") is None
        assert commits.resolve_by_hash_or_prefix("ABC1234") is None


class TestQueries:
    """Sampling, recent history and bookkeeping."""

    def test_random_enriched_excludes_hashes(self, commits, make_commit, store_enriched):
        for ch in "abc":
            store_enriched(commits, make_commit(ch * 40))
        commits.insert_new([make_commit("d" * 40)])

        drawn = commits.random_enriched(10, exclude={"a" * 40})

        assert sorted(c.hash for c in drawn) == ["b" * 40, "c" * 40]

    def test_random_enriched_respects_limit(self, commits, make_commit, store_enriched):
        for ch in "abcd":
            store_enriched(commits, make_commit(ch * 40))

        assert len(commits.random_enriched(2)) == 2

    def test_recent_for_file(self, commits, make_commit):
        commits.insert_new(
            [
                make_commit("a" * 40, ["x.py"], committed_at="2024-01-01T00:00:00+00:00"),
                make_commit("b" * 40, ["x.py"], committed_at="2024-02-01T00:00:00+00:00"),
                make_commit("c" * 40, ["y.py"], committed_at="2024-03-01T00:00:00+00:00"),
            ]
        )

        recent = commits.recent_for_file("x.py")

        assert [c.hash for c in recent] == ["b" * 40, "a" * 40]

    def test_unmeasured_files_and_update(self, db, commits, make_commit):
        commits.insert_new([make_commit("a" * 40, ["x.py", "y.py"])])
        assert len(commits.unmeasured_files()) == 2

        commits.update_complexity_batch({("a" * 40, "x.py"): (10, 4.0, 2)})

        assert commits.unmeasured_files() == [("a" * 40, "y.py", "M")]
        with db.get_session() as session:
            row = session.get(CommitFile, ("a" * 40, "x.py"))
            assert row.lines_of_code == 10
            assert row.indent_complexity == 4.0
            assert row.max_indent == 2

    def test_metadata_upsert(self, commits):
        assert commits.get_metadata("last_run") is None

        commits.set_metadata("last_run", "one")
        commits.set_metadata("last_run", "two")

        assert commits.get_metadata("last_run") == "two"
