"""Git collaborator built on GitPython.

All bulk reads are issued as one git invocation per chunk of hashes so that a
phase costs a handful of round trips regardless of history size.
"""

import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Optional, Union

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from ..constants import BatchSizes, Limits
from ..errors import GitError
from ..types import CommitInfo, FileChange
from ..utils.commit_utils import chunked
from ..utils.date_utils import to_utc_iso

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n... [truncated]"

# ASCII record / unit separators delimit log records and their header.
_RS = "\x1e"
_US = "\x1f"

_DIFF_SECTION = re.compile(r"(?=^diff --git )", re.MULTILINE)


def truncate_diff(diff: str, max_chars: int) -> str:
    """Truncate a multi-file diff fairly across files.

    Files whose section fits in an equal share of the budget are kept whole;
    the remaining budget is split evenly between the oversized ones, each of
    which is cut and marked with ``... [truncated]``.

    Args:
        diff: Unified diff, possibly covering several files
        max_chars: Character budget for the result

    Returns:
        The diff unchanged if it fits, otherwise the truncated diff
    """
    if len(diff) <= max_chars:
        return diff

    sections = [s for s in _DIFF_SECTION.split(diff) if s]
    if len(sections) <= 1:
        return diff[:max_chars] + TRUNCATION_MARKER

    equal_share = max_chars // len(sections)
    remaining = max_chars
    fits = []
    for section in sections:
        fit = len(section) <= equal_share
        if fit:
            remaining -= len(section)
        fits.append(fit)

    oversized = fits.count(False)
    per_oversized = remaining // oversized if oversized else 0
    cut = max(0, per_oversized - len(TRUNCATION_MARKER))

    return "".join(
        section if fit else section[:cut] + TRUNCATION_MARKER
        for section, fit in zip(sections, fits)
    )


def _parse_count(value: str) -> int:
    # Binary files report "-"
    return 0 if value == "-" else int(value)


class GitService:
    """Narrow read-only interface over a git repository."""

    def __init__(self, repo_path: Union[Path, str]):
        """Open the repository containing ``repo_path``.

        Raises:
            GitError: If the path is not a git repository
        """
        self.repo_path = Path(repo_path)
        try:
            self.repo = Repo(self.repo_path, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise GitError(f"Not a git repository: {self.repo_path}") from e

    @staticmethod
    def is_repo(path: Union[Path, str]) -> bool:
        try:
            Repo(path, search_parent_directories=True)
            return True
        except (InvalidGitRepositoryError, NoSuchPathError):
            return False

    @property
    def repo_root(self) -> Path:
        return Path(self.repo.working_tree_dir)

    def _run(self, command: str, *args: str) -> str:
        try:
            return getattr(self.repo.git, command)(*args)
        except GitCommandError as e:
            logger.debug(f"git {command} failed: {e}")
            stderr = (e.stderr or "").strip()
            raise GitError(f"git {command.replace('_', '-')} failed: {stderr}") from e

    def default_branch(self) -> str:
        """origin's HEAD, else main or master, else whatever HEAD points to."""
        try:
            ref = self.repo.git.symbolic_ref("refs/remotes/origin/HEAD")
            return ref.strip().replace("refs/remotes/origin/", "")
        except GitCommandError:
            pass

        for branch in ("main", "master"):
            try:
                self.repo.git.rev_parse("--verify", "--quiet", branch)
                return branch
            except GitCommandError:
                continue

        return self._run("rev_parse", "--abbrev-ref", "HEAD").strip()

    def hashes(self, branch: str, since: Optional[str] = None) -> list[str]:
        """All commit hashes reachable from ``branch``, newest first.

        Args:
            branch: Branch or ref name
            since: Optional ISO date limiting history to commits after it
        """
        args = [branch, "--format=%H"]
        if since:
            args.append(f"--since={since}")
        output = self._run("log", *args)
        return [line for line in output.splitlines() if line]

    def total_commit_count(self, branch: str) -> int:
        return int(self._run("rev_list", "--count", branch).strip())

    def info_batch(self, hashes: list[str]) -> list[CommitInfo]:
        """Metadata and file changes for many commits, in input order.

        Renames are reported as a delete plus an add.
        """
        commits: dict[str, CommitInfo] = {}
        for chunk in chunked(hashes, BatchSizes.GIT_HASHES):
            output = self._run(
                "log",
                "--no-walk=unsorted",
                "--no-renames",
                "--numstat",
                f"--format={_RS}%H%n%an%n%ae%n%aI%n%B{_US}",
                *chunk,
            )
            for record in output.split(_RS):
                if not record.strip():
                    continue
                header, _, numstat = record.partition(_US)
                lines = header.split("\n")
                commit = CommitInfo(
                    hash=lines[0],
                    author_name=lines[1],
                    author_email=lines[2],
                    committed_at=to_utc_iso(lines[3]),
                    message="\n".join(lines[4:]).strip(),
                )
                for line in numstat.splitlines():
                    parts = line.split("\t")
                    if len(parts) != 3:
                        continue
                    commit.files.append(
                        FileChange(
                            file_path=parts[2],
                            change_type="M",
                            additions=_parse_count(parts[0]),
                            deletions=_parse_count(parts[1]),
                        )
                    )
                commits[commit.hash] = commit

            for hash, statuses in self._name_status(chunk).items():
                commit = commits.get(hash)
                if commit is None:
                    continue
                for change in commit.files:
                    change.change_type = statuses.get(change.file_path, "M")

        return [commits[h] for h in hashes if h in commits]

    def info(self, hash: str) -> CommitInfo:
        found = self.info_batch([hash])
        if not found:
            raise GitError(f"Unknown commit: {hash}")
        return found[0]

    def _name_status(self, hashes: Iterable[str]) -> dict[str, dict[str, str]]:
        output = self._run(
            "log",
            "--no-walk=unsorted",
            "--no-renames",
            "--name-status",
            f"--format={_RS}%H",
            *hashes,
        )
        result: dict[str, dict[str, str]] = {}
        for record in output.split(_RS):
            lines = [line for line in record.splitlines() if line]
            if not lines:
                continue
            statuses = result.setdefault(lines[0], {})
            for line in lines[1:]:
                status, _, path = line.partition("\t")
                if path:
                    statuses[path] = status[:1]
        return result

    def diff_batch(
        self, hashes: list[str], max_chars: int = Limits.DEFAULT_MAX_DIFF_CHARS
    ) -> dict[str, str]:
        """Truncated unified diffs keyed by hash; every requested hash is present.

        Merge commits yield an empty diff.
        """
        diffs = {h: "" for h in hashes}
        for chunk in chunked(hashes, BatchSizes.GIT_HASHES):
            output = self._run(
                "log", "--no-walk=unsorted", "--no-renames", "-p", f"--format={_RS}%H", *chunk
            )
            for record in output.split(_RS):
                if not record.strip():
                    continue
                hash, _, diff = record.partition("\n")
                diffs[hash.strip()] = truncate_diff(diff.strip("\n"), max_chars)
        return diffs

    def diff(self, hash: str, max_chars: int = Limits.DEFAULT_MAX_DIFF_CHARS) -> str:
        return self.diff_batch([hash], max_chars).get(hash, "")

    def file_contents_batch(
        self, entries: Iterable[tuple[str, str]]
    ) -> dict[tuple[str, str], bytes]:
        """Blob contents for (commit hash, path) pairs over one cat-file stream.

        Missing blobs are absent from the result.
        """
        contents: dict[tuple[str, str], bytes] = {}
        for hash, path in entries:
            try:
                _, obj_type, _, data = self.repo.git.get_object_data(f"{hash}:{path}")
            except ValueError:
                # cat-file reported the object missing
                continue
            if obj_type == "blob":
                contents[(hash, path)] = data
        return contents

    def tracked_files(self) -> list[str]:
        return [f for f in self._run("ls_files").splitlines() if f]


