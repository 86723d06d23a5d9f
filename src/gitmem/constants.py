"""Shared constants for gitmem."""

from __future__ import annotations

# Classification labels assigned during enrichment, in display order.
CLASSIFICATIONS: tuple[str, ...] = (
    "bug-fix",
    "feature",
    "refactor",
    "docs",
    "chore",
    "perf",
    "test",
    "style",
)


class BatchSizes:
    """Chunk sizes for bulk store and git operations."""

    # Bound parameters per IN (...) list; a statement may repeat one list.
    STORE_PARAMETERS = 500
    # Hashes per `git log --no-walk` invocation (ARG_MAX).
    GIT_HASHES = 500
    # commit_files rows measured per bulk content fetch.
    MEASURE_ROWS = 500


class Limits:
    """Tunable thresholds of the aggregate engine and enrichment pipeline."""

    # Commits touching more files than this are excluded from coupling.
    MAX_COUPLING_FILES_PER_COMMIT = 200
    # Pairs co-changed fewer times than this are not kept.
    MIN_CO_CHANGES = 2
    # Incremental coupling falls back to a full rebuild above this many paths.
    INCREMENTAL_COUPLING_MAX_PATHS = 5000

    DEFAULT_ENRICH_CONCURRENCY = 8
    DEFAULT_CHECK_CONCURRENCY = 4
    DEFAULT_MAX_DIFF_CHARS = 12000
    MAX_INPUT_TOKENS = 175_000
    CHARS_PER_TOKEN = 4

    # Message Batches API caps are 100k requests / 256 MB; keep headroom.
    BATCH_MAX_REQUESTS = 10_000
    BATCH_MAX_BYTES = 200 * 1024 * 1024
    # JSONL framing and custom_id overhead added to each request body.
    BATCH_ENVELOPE_BYTES = 128


class Models:
    """Default model identifiers."""

    INDEX = "claude-haiku-4-5-20251001"
    CHECK = "claude-sonnet-4-5-20250929"


class JobTypes:
    """Batch job types; at most one non-terminal job exists per type."""

    INDEX = "index"
    CHECK = "check"


class JobStatus:
    """Locally persisted batch job lifecycle states."""

    SUBMITTED = "submitted"
    IN_PROGRESS = "in_progress"
    ENDED = "ended"

    TERMINAL = frozenset({ENDED})


MERGE_SUMMARY_PREFIX = "Merge commit: "
MERGE_CHECK_REASONING = (
    "Merge commit with empty diff - template-enriched during indexing, skipped evaluation."
)
