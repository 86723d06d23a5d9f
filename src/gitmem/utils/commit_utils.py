"""Utilities for working with commit messages and diffs."""

from collections.abc import Iterator, Sequence
from typing import Optional, TypeVar

from ..constants import MERGE_SUMMARY_PREFIX
from ..types import EnrichmentResult

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items.

    Examples:
        >>> list(chunked([1, 2, 3, 4, 5], 2))
        [[1, 2], [3, 4], [5]]
    """
    items = list(items)
    for start in range(0, len(items), size):
        yield items[start : start + size]


def is_merge_with_empty_diff(message: str, diff: str) -> bool:
    """Determine if a commit is a merge whose diff carries no changes.

    Such commits are never sent to the AI provider: they are classified by
    template during indexing and auto-passed during quality checks.

    Args:
        message: Full commit message
        diff: Unified diff text (possibly empty)

    Returns:
        True if the message starts with "Merge" and the diff is blank
    """
    return message.startswith("Merge") and diff.strip() == ""


def merge_commit_enrichment(message: str, diff: str) -> Optional[EnrichmentResult]:
    """Template enrichment for an empty merge commit, or None for anything else."""
    if not is_merge_with_empty_diff(message, diff):
        return None
    first_line = message.split("\n", 1)[0]
    return EnrichmentResult(classification="chore", summary=f"{MERGE_SUMMARY_PREFIX}{first_line}")
