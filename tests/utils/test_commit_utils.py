"""Tests for commit and date utility functions."""

from datetime import datetime, timedelta, timezone

from gitmem.utils.commit_utils import chunked, is_merge_with_empty_diff, merge_commit_enrichment
from gitmem.utils.date_utils import to_utc_iso


class TestChunked:
    """Tests for chunked function."""

    def test_even_split(self):
        assert list(chunked([1, 2, 3, 4], 2)) == [[1, 2], [3, 4]]

    def test_remainder(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert list(chunked([], 3)) == []

    def test_accepts_iterables(self):
        assert list(chunked(range(3), 5)) == [[0, 1, 2]]


class TestIsMergeWithEmptyDiff:
    """Tests for is_merge_with_empty_diff function."""

    def test_merge_without_changes(self):
        assert is_merge_with_empty_diff("Merge branch 'main'", "") is True

    def test_whitespace_diff_counts_as_empty(self):
        assert is_merge_with_empty_diff("Merge pull request #4", "\n  \n") is True

    def test_merge_with_conflict_resolution(self):
        """A merge that carries changes goes to the provider like any commit."""
        assert is_merge_with_empty_diff("Merge branch 'main'", "+resolved") is False

    def test_regular_commit_with_empty_diff(self):
        assert is_merge_with_empty_diff("Fix typo", "") is False

    def test_prefix_is_case_sensitive(self):
        assert is_merge_with_empty_diff("merge branch 'main'", "") is False


class TestMergeCommitEnrichment:
    def test_template_uses_first_line(self):
        result = merge_commit_enrichment("Merge branch 'topic'\n\nConflicts:\n\ta.py", "")

        assert result.classification == "chore"
        assert result.summary == "Merge commit: Merge branch 'topic'"

    def test_non_merge_returns_none(self):
        assert merge_commit_enrichment("Add feature", "") is None


class TestToUtcIso:
    """Tests for to_utc_iso function."""

    def test_offset_string_is_converted(self):
        assert to_utc_iso("2024-01-15T12:30:00+02:00") == "2024-01-15T10:30:00+00:00"

    def test_zulu_suffix(self):
        assert to_utc_iso("2024-01-15T10:00:00Z") == "2024-01-15T10:00:00+00:00"

    def test_aware_datetime(self):
        value = datetime(2024, 3, 1, 23, 0, tzinfo=timezone(timedelta(hours=-5)))

        assert to_utc_iso(value) == "2024-03-02T04:00:00+00:00"

    def test_naive_datetime_is_taken_as_utc(self):
        assert to_utc_iso(datetime(2024, 1, 1, 8, 0, 0, 123456)) == "2024-01-01T08:00:00+00:00"
