"""Full-text search over commit messages, classifications and summaries.

``commits_fts`` is a derived SQLite FTS5 table; it can always be rebuilt from
``commits``.
"""

import logging
from typing import Any, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.exc import OperationalError

from ..constants import BatchSizes
from ..errors import InvalidQueryError
from ..models.database import Database
from ..utils.commit_utils import chunked

logger = logging.getLogger(__name__)


class SearchService:
    """Maintain and query the commits_fts index."""

    def __init__(self, db: Database):
        self.db = db

    def index_commits(self, hashes: list[str]) -> int:
        """Replace index rows for ``hashes``, enriched or not.

        Unenriched commits are indexed by message alone so they are searchable
        before enrichment.

        Returns:
            Number of rows written
        """
        if not hashes:
            return 0
        delete = text("DELETE FROM commits_fts WHERE hash IN :hashes").bindparams(
            bindparam("hashes", expanding=True)
        )
        insert = text(
            "INSERT INTO commits_fts (hash, message, classification, summary) "
            "SELECT hash, message, classification, summary FROM commits WHERE hash IN :hashes"
        ).bindparams(bindparam("hashes", expanding=True))

        written = 0
        with self.db.get_session() as session:
            for chunk in chunked(hashes, BatchSizes.STORE_PARAMETERS):
                params = {"hashes": list(chunk)}
                session.execute(delete, params)
                written += session.execute(insert, params).rowcount or 0
        logger.debug(f"Indexed {written} commits for search")
        return written

    def rebuild(self) -> int:
        """Rebuild the whole index from the commits table."""
        with self.db.get_session() as session:
            session.execute(text("DELETE FROM commits_fts"))
            result = session.execute(
                text(
                    "INSERT INTO commits_fts (hash, message, classification, summary) "
                    "SELECT hash, message, classification, summary FROM commits"
                )
            )
            count = result.rowcount or 0
        logger.info(f"Rebuilt search index with {count} commits")
        return count

    def search(
        self, query: str, limit: int = 20, classification: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """Commits matching an FTS5 expression, best match first.

        Raises:
            InvalidQueryError: If the expression cannot be parsed
        """
        sql = (
            "SELECT f.hash, f.message, f.classification, f.summary, f.rank, "
            "c.committed_at, c.author_name "
            "FROM commits_fts f JOIN commits c ON c.hash = f.hash "
            "WHERE commits_fts MATCH :query"
        )
        params: dict[str, Any] = {"query": query, "limit": limit}
        if classification:
            sql += " AND f.classification = :classification"
            params["classification"] = classification
        sql += " ORDER BY f.rank LIMIT :limit"

        with self.db.get_session() as session:
            try:
                rows = session.execute(text(sql), params).fetchall()
            except OperationalError as e:
                logger.debug(f"FTS query failed: {e}")
                raise InvalidQueryError(query) from e
            return [dict(row._mapping) for row in rows]
