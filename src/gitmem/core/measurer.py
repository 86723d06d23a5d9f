"""Fill in size/complexity measurements for newly discovered file changes."""

import logging
from typing import Callable, Optional

from ..constants import BatchSizes
from ..types import IndexProgress
from ..utils.commit_utils import chunked
from .commits import CommitRepository
from .complexity import ZERO, compute_complexity, is_binary, is_generated
from .git_service import GitService

logger = logging.getLogger(__name__)


class ComplexityMeasurer:
    """Measure every unmeasured commit_files row.

    Deleted, generated, binary and missing files are recorded as zeros so they
    are never picked up again.
    """

    def __init__(self, git: GitService, commits: CommitRepository):
        self.git = git
        self.commits = commits

    def measure(self, progress: Optional[Callable[[IndexProgress], None]] = None) -> int:
        """Measure pending rows in chunks, one bulk content fetch per chunk.

        Returns:
            Number of rows measured
        """
        pending = self.commits.unmeasured_files()
        total = len(pending)
        if not total:
            return 0

        logger.info(f"Measuring complexity for {total} file changes")
        processed = 0
        for chunk in chunked(pending, BatchSizes.MEASURE_ROWS):
            results = {}
            to_fetch = []
            for hash, path, change_type in chunk:
                if change_type == "D" or is_generated(path):
                    results[(hash, path)] = ZERO.as_tuple()
                else:
                    to_fetch.append((hash, path))

            contents = self.git.file_contents_batch(to_fetch) if to_fetch else {}
            for key in to_fetch:
                content = contents.get(key)
                if content is None or is_binary(content):
                    results[key] = ZERO.as_tuple()
                else:
                    text = content.decode("utf-8", errors="replace")
                    results[key] = compute_complexity(text).as_tuple()

            self.commits.update_complexity_batch(results)
            processed += len(chunk)
            if progress:
                progress(IndexProgress(phase="measuring", current=processed, total=total))

        return processed
