"""Shared fixtures for the gitmem test suite."""

import tempfile
from pathlib import Path
from typing import Optional

import git
import pytest

from gitmem.core.commits import CommitRepository
from gitmem.models.database import Database
from gitmem.types import CommitInfo, EnrichmentResult, FileChange


@pytest.fixture
def temp_dir():
    """Temporary directory removed after the test."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


@pytest.fixture
def db(temp_dir):
    """Fresh index database."""
    database = Database(temp_dir / ".gitmem" / "index.db")
    yield database
    database.close()


@pytest.fixture
def commits(db):
    return CommitRepository(db)


def build_commit(
    hash: str,
    files: Optional[list[str]] = None,
    committed_at: str = "2024-01-15T10:00:00+00:00",
    message: str = "Update code",
    author: str = "Alice",
    additions: int = 1,
    deletions: int = 0,
) -> CommitInfo:
    """Build a CommitInfo touching ``files`` with uniform line counts."""
    return CommitInfo(
        hash=hash,
        author_name=author,
        author_email=f"{author.lower()}@example.com",
        committed_at=committed_at,
        message=message,
        files=[
            FileChange(file_path=f, change_type="M", additions=additions, deletions=deletions)
            for f in (files or [])
        ],
    )


def enrich_commit(
    commits: CommitRepository, commit: CommitInfo, classification: str = "feature"
) -> None:
    """Insert a commit and mark it enriched in one go."""
    commits.insert_new([commit])
    commits.mark_enriched(
        commit.hash, EnrichmentResult(classification, f"Summary of {commit.hash[:7]}"), "test-model"
    )


class GitRepoBuilder:
    """Creates commits with fixed dates in a throwaway repository."""

    def __init__(self, path: Path):
        self.path = path
        self.repo = git.Repo.init(path)
        self.repo.git.symbolic_ref("HEAD", "refs/heads/main")
        with self.repo.config_writer() as config:
            config.set_value("user", "name", "Test Author")
            config.set_value("user", "email", "author@example.com")
            config.set_value("commit", "gpgsign", "false")

    def commit(
        self,
        files: dict[str, Optional[str]],
        message: str,
        date: str = "2024-01-15T10:00:00+00:00",
    ) -> str:
        """Write (or delete, for a None value) files and commit them.

        Returns:
            The new commit's hash
        """
        for rel_path, content in files.items():
            full_path = self.path / rel_path
            if content is None:
                self.repo.git.rm(rel_path)
                continue
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_text(content)
            self.repo.git.add(rel_path)

        env = {"GIT_AUTHOR_DATE": date, "GIT_COMMITTER_DATE": date}
        self.repo.git.commit("-m", message, env=env)
        return self.repo.head.commit.hexsha


@pytest.fixture
def git_repo(temp_dir):
    """Empty git repository on branch main."""
    return GitRepoBuilder(temp_dir / "repo")


@pytest.fixture
def make_commit():
    return build_commit


@pytest.fixture
def store_enriched():
    return enrich_commit
