"""Commit store: durable record of commits, their files and enrichment state."""

import logging
from collections import defaultdict
from collections.abc import Iterable
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from ..constants import BatchSizes
from ..errors import AmbiguousPrefixError
from ..models.database import Commit, CommitFile, Database, Metadata, utcnow_iso
from ..types import CommitInfo, EnrichmentResult, FileChange, StoredCommit
from ..utils.commit_utils import chunked

logger = logging.getLogger(__name__)


def _to_stored(row: Commit) -> StoredCommit:
    return StoredCommit(
        hash=row.hash,
        author_name=row.author_name,
        author_email=row.author_email,
        committed_at=row.committed_at,
        message=row.message,
        classification=row.classification,
        summary=row.summary,
        enriched_at=row.enriched_at,
        model_used=row.model_used,
    )


class CommitRepository:
    """Read and write commit records.

    Commits are inserted once at discovery and updated once when enriched.
    Nothing here ever deletes a commit.
    """

    def __init__(self, db: Database):
        self.db = db

    def insert_new(self, commits: Iterable[CommitInfo]) -> int:
        """Insert commits and their file rows, skipping hashes already stored.

        Args:
            commits: Parsed commit metadata from git

        Returns:
            Number of commit rows actually inserted
        """
        inserted = 0
        with self.db.get_session() as session:
            for commit in commits:
                result = session.execute(
                    sqlite_insert(Commit)
                    .values(
                        hash=commit.hash,
                        author_name=commit.author_name,
                        author_email=commit.author_email,
                        committed_at=commit.committed_at,
                        message=commit.message,
                    )
                    .on_conflict_do_nothing(index_elements=["hash"])
                )
                inserted += result.rowcount or 0

                # Five bound parameters per file row
                for files in chunked(commit.files, BatchSizes.STORE_PARAMETERS // 5):
                    session.execute(
                        sqlite_insert(CommitFile)
                        .values(
                            [
                                {
                                    "commit_hash": commit.hash,
                                    "file_path": f.file_path,
                                    "change_type": f.change_type,
                                    "additions": f.additions,
                                    "deletions": f.deletions,
                                }
                                for f in files
                            ]
                        )
                        .on_conflict_do_nothing(index_elements=["commit_hash", "file_path"])
                    )

        logger.debug(f"Inserted {inserted} new commits")
        return inserted

    def unenriched(self, since: Optional[str] = None) -> list[StoredCommit]:
        """Commits without enrichment, newest first.

        Args:
            since: Optional ISO date; only commits committed on or after it
        """
        stmt = select(Commit).where(Commit.enriched_at.is_(None))
        if since:
            stmt = stmt.where(Commit.committed_at >= since)
        stmt = stmt.order_by(Commit.committed_at.desc())
        with self.db.get_session() as session:
            return [_to_stored(row) for row in session.scalars(stmt)]

    def mark_enriched(self, hash: str, result: EnrichmentResult, model: str) -> None:
        self.mark_enriched_batch({hash: result}, model)

    def mark_enriched_batch(
        self, results: dict[str, EnrichmentResult], model: str
    ) -> list[str]:
        """Store enrichment results for many commits in one transaction.

        Returns:
            Hashes whose commit row was updated; unknown hashes are skipped
        """
        if not results:
            return []
        enriched_at = utcnow_iso()
        updated: list[str] = []
        with self.db.get_session() as session:
            for hash, result in results.items():
                outcome = session.execute(
                    update(Commit)
                    .where(Commit.hash == hash)
                    .values(
                        classification=result.classification,
                        summary=result.summary,
                        enriched_at=enriched_at,
                        model_used=model,
                    )
                )
                if outcome.rowcount:
                    updated.append(hash)
        skipped = len(results) - len(updated)
        if skipped:
            logger.warning(f"Skipped {skipped} enrichment results for unknown commits")
        return updated

    def get_commit(self, hash: str) -> Optional[StoredCommit]:
        with self.db.get_session() as session:
            row = session.get(Commit, hash)
            return _to_stored(row) if row else None

    def resolve_by_hash_or_prefix(self, value: str) -> Optional[StoredCommit]:
        """Resolve a full hash or a unique prefix to a commit.

        Returns:
            The matching commit, or None when nothing matches

        Raises:
            AmbiguousPrefixError: If the prefix matches more than one commit
        """
        exact = self.get_commit(value)
        if exact:
            return exact

        # Exact prefix compare; LIKE folds case and honours wildcards
        stmt = (
            select(Commit)
            .where(func.substr(Commit.hash, 1, len(value)) == value)
            .order_by(Commit.hash)
        )
        with self.db.get_session() as session:
            matches = [_to_stored(row) for row in session.scalars(stmt)]

        if not matches:
            return None
        if len(matches) > 1:
            raise AmbiguousPrefixError(value, [m.hash for m in matches])
        return matches[0]

    def indexed_hashes(self) -> set[str]:
        with self.db.get_session() as session:
            return set(session.scalars(select(Commit.hash)))

    def total_count(self) -> int:
        with self.db.get_session() as session:
            return session.scalar(select(func.count()).select_from(Commit)) or 0

    def enriched_count(self) -> int:
        with self.db.get_session() as session:
            return (
                session.scalar(
                    select(func.count()).select_from(Commit).where(Commit.enriched_at.isnot(None))
                )
                or 0
            )

    def files_by_hashes(self, hashes: list[str]) -> dict[str, list[FileChange]]:
        """File changes for each requested commit, looked up in bounded chunks."""
        files: dict[str, list[FileChange]] = defaultdict(list)
        with self.db.get_session() as session:
            for chunk in chunked(hashes, BatchSizes.STORE_PARAMETERS):
                rows = session.scalars(
                    select(CommitFile)
                    .where(CommitFile.commit_hash.in_(chunk))
                    .order_by(CommitFile.commit_hash, CommitFile.file_path)
                )
                for row in rows:
                    files[row.commit_hash].append(
                        FileChange(
                            file_path=row.file_path,
                            change_type=row.change_type,
                            additions=row.additions or 0,
                            deletions=row.deletions or 0,
                        )
                    )
        return dict(files)

    def random_enriched(self, limit: int, exclude: Optional[set[str]] = None) -> list[StoredCommit]:
        """Random enriched commits, skipping hashes in ``exclude``."""
        exclude = exclude or set()
        stmt = (
            select(Commit)
            .where(Commit.enriched_at.isnot(None))
            .where(Commit.classification.isnot(None))
            .where(Commit.summary.isnot(None))
            .order_by(func.random())
            .limit(limit + len(exclude))
        )
        with self.db.get_session() as session:
            rows = [_to_stored(row) for row in session.scalars(stmt) if row.hash not in exclude]
        return rows[:limit]

    def recent_for_file(self, file_path: str, limit: int = 5) -> list[StoredCommit]:
        """Most recent commits touching ``file_path``."""
        stmt = (
            select(Commit)
            .join(CommitFile, CommitFile.commit_hash == Commit.hash)
            .where(CommitFile.file_path == file_path)
            .order_by(Commit.committed_at.desc())
            .limit(limit)
        )
        with self.db.get_session() as session:
            return [_to_stored(row) for row in session.scalars(stmt)]

    def unmeasured_files(self) -> list[tuple[str, str, str]]:
        """(commit hash, file path, change type) for rows not yet measured."""
        stmt = (
            select(CommitFile.commit_hash, CommitFile.file_path, CommitFile.change_type)
            .where(CommitFile.lines_of_code.is_(None))
            .order_by(CommitFile.commit_hash, CommitFile.file_path)
        )
        with self.db.get_session() as session:
            return [tuple(row) for row in session.execute(stmt)]

    def update_complexity_batch(
        self, measurements: dict[tuple[str, str], tuple[int, float, int]]
    ) -> None:
        """Store (lines_of_code, indent_complexity, max_indent) per (hash, path)."""
        if not measurements:
            return
        with self.db.get_session() as session:
            for (hash, path), (loc, complexity, max_indent) in measurements.items():
                session.execute(
                    update(CommitFile)
                    .where(CommitFile.commit_hash == hash)
                    .where(CommitFile.file_path == path)
                    .values(
                        lines_of_code=loc,
                        indent_complexity=complexity,
                        max_indent=max_indent,
                    )
                )

    def get_metadata(self, key: str) -> Optional[str]:
        with self.db.get_session() as session:
            row = session.get(Metadata, key)
            return row.value if row else None

    def set_metadata(self, key: str, value: str) -> None:
        with self.db.get_session() as session:
            session.execute(
                sqlite_insert(Metadata)
                .values(key=key, value=value)
                .on_conflict_do_update(index_elements=["key"], set_={"value": value})
            )
