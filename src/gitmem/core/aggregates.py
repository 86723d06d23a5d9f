"""Aggregate engine: derived per-file analytics over the commit store.

The three derived tables (``file_stats``, ``file_contributors`` and
``file_coupling``) are only ever written here. Each can be rebuilt from
scratch or incrementally for the files touched by a set of commits; an
incremental rebuild leaves exactly the rows a full rebuild would produce for
those files.
"""

import logging
from typing import Any, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from ..constants import CLASSIFICATIONS, BatchSizes, Limits
from ..models.database import Database
from ..types import TrendPeriod, TrendSummary
from ..utils.commit_utils import chunked

logger = logging.getLogger(__name__)


def _count_column(classification: str) -> str:
    return classification.replace("-", "_") + "_count"


def _starts_with(column: str, param: str = "prefix") -> str:
    """Case-sensitive prefix test; LIKE folds case and treats _ and % as wildcards."""
    return f"substr({column}, 1, length(:{param})) = :{param}"


# "total" plus one column per classification, plus current complexity.
SORT_COLUMNS: dict[str, str] = {
    "total": "total_changes",
    **{c: _count_column(c) for c in CLASSIFICATIONS},
    "complexity": "current_complexity",
}
SORT_FIELDS: tuple[str, ...] = (*SORT_COLUMNS, "combined")

WINDOW_FORMATS: dict[str, str] = {
    "weekly": "strftime('%Y-W%W', c.committed_at)",
    "monthly": "strftime('%Y-%m', c.committed_at)",
    "quarterly": (
        "strftime('%Y', c.committed_at) || '-Q' || "
        "((CAST(strftime('%m', c.committed_at) AS INTEGER) - 1) / 3 + 1)"
    ),
}

_CLASSIFICATION_COUNTS = ",\n".join(
    f"COUNT(DISTINCT CASE WHEN c.classification = '{c}' THEN cf.commit_hash END) "
    f"AS {_count_column(c)}"
    for c in CLASSIFICATIONS
)
_CLASSIFICATION_COLUMNS = ", ".join(_count_column(c) for c in CLASSIFICATIONS)

_FILE_STATS_SQL = f"""
WITH latest_loc AS (
    SELECT cf2.file_path, cf2.lines_of_code,
        ROW_NUMBER() OVER (PARTITION BY cf2.file_path ORDER BY c2.committed_at DESC) AS rn
    FROM commit_files cf2
    JOIN commits c2 ON c2.hash = cf2.commit_hash
    WHERE cf2.lines_of_code > 0 {{cte_filter}}
),
latest_complexity AS (
    SELECT cf2.file_path, cf2.indent_complexity,
        ROW_NUMBER() OVER (PARTITION BY cf2.file_path ORDER BY c2.committed_at DESC) AS rn
    FROM commit_files cf2
    JOIN commits c2 ON c2.hash = cf2.commit_hash
    WHERE cf2.indent_complexity > 0 {{cte_filter}}
)
INSERT INTO file_stats (
    file_path, total_changes, {_CLASSIFICATION_COLUMNS},
    first_seen, last_changed, total_additions, total_deletions,
    current_loc, current_complexity, avg_complexity, max_complexity
)
SELECT
    cf.file_path,
    COUNT(DISTINCT cf.commit_hash) AS total_changes,
    {_CLASSIFICATION_COUNTS},
    MIN(c.committed_at) AS first_seen,
    MAX(c.committed_at) AS last_changed,
    COALESCE(SUM(cf.additions), 0) AS total_additions,
    COALESCE(SUM(cf.deletions), 0) AS total_deletions,
    ll.lines_of_code AS current_loc,
    lc.indent_complexity AS current_complexity,
    AVG(CASE WHEN cf.indent_complexity > 0 THEN cf.indent_complexity END) AS avg_complexity,
    MAX(CASE WHEN cf.indent_complexity > 0 THEN cf.indent_complexity END) AS max_complexity
FROM commit_files cf
JOIN commits c ON c.hash = cf.commit_hash
LEFT JOIN latest_loc ll ON ll.file_path = cf.file_path AND ll.rn = 1
LEFT JOIN latest_complexity lc ON lc.file_path = cf.file_path AND lc.rn = 1
WHERE c.enriched_at IS NOT NULL {{main_filter}}
GROUP BY cf.file_path
"""

_FILE_CONTRIBUTORS_SQL = """
INSERT INTO file_contributors (file_path, author_name, author_email, commit_count)
SELECT cf.file_path, c.author_name, c.author_email, COUNT(DISTINCT cf.commit_hash)
FROM commit_files cf
JOIN commits c ON c.hash = cf.commit_hash
{where}
GROUP BY cf.file_path, c.author_email
"""

_FILE_COUPLING_SQL = """
INSERT INTO file_coupling (file_a, file_b, co_change_count)
SELECT a.file_path, b.file_path, COUNT(DISTINCT a.commit_hash) AS co_change_count
FROM commit_files a
JOIN commit_files b ON a.commit_hash = b.commit_hash AND a.file_path < b.file_path
LEFT JOIN _excluded_coupling_commits ec ON a.commit_hash = ec.commit_hash
WHERE ec.commit_hash IS NULL {filter}
GROUP BY a.file_path, b.file_path
HAVING co_change_count >= :min_co_changes
"""

_TRENDS_SQL = f"""
SELECT
    {{window}} AS period,
    COUNT(DISTINCT cf.commit_hash) AS total_changes,
    {_CLASSIFICATION_COUNTS},
    COALESCE(SUM(cf.additions), 0) AS additions,
    COALESCE(SUM(cf.deletions), 0) AS deletions,
    AVG(CASE WHEN cf.indent_complexity > 0 THEN cf.indent_complexity END) AS avg_complexity,
    MAX(CASE WHEN cf.indent_complexity > 0 THEN cf.indent_complexity END) AS max_complexity,
    AVG(CASE WHEN cf.lines_of_code > 0 THEN cf.lines_of_code END) AS avg_loc
FROM commit_files cf
JOIN commits c ON c.hash = cf.commit_hash
WHERE c.enriched_at IS NOT NULL AND {{filter}}
GROUP BY period
ORDER BY period DESC
LIMIT :limit
"""


def _direction(recent: float, historical: float) -> str:
    if historical == 0:
        return "increasing" if recent > 0 else "stable"
    ratio = recent / historical
    if ratio > 1.2:
        return "increasing"
    if ratio < 0.8:
        return "decreasing"
    return "stable"


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def compute_trend(periods: list[TrendPeriod]) -> Optional[TrendSummary]:
    """Summarize the direction of change over periods ordered most recent first.

    The most recent 3 periods (or half of them when fewer than 6 exist) are
    compared against the rest. A ratio above 1.2 is increasing, below 0.8
    decreasing, anything else stable.

    Returns:
        Trend summary, or None when fewer than 2 periods are given
    """
    if len(periods) < 2:
        return None

    recent_count = 3 if len(periods) >= 6 else len(periods) // 2
    recent = periods[:recent_count]
    historical = periods[recent_count:]

    recent_avg = _mean([p.total_changes for p in recent])
    historical_avg = _mean([p.total_changes for p in historical])
    recent_bug = _mean([p.bug_fix_count for p in recent])
    historical_bug = _mean([p.bug_fix_count for p in historical])
    recent_complexity = _mean([p.avg_complexity for p in recent if p.avg_complexity is not None])
    historical_complexity = _mean(
        [p.avg_complexity for p in historical if p.avg_complexity is not None]
    )

    return TrendSummary(
        direction=_direction(recent_avg, historical_avg),
        recent_avg=round(recent_avg, 1),
        historical_avg=round(historical_avg, 1),
        bug_fix_trend=_direction(recent_bug, historical_bug),
        complexity_trend=_direction(recent_complexity, historical_complexity),
    )


class AggregateRepository:
    """Compute and query the derived file analytics tables."""

    def __init__(self, db: Database):
        self.db = db

    # ------------------------------------------------------------------
    # Rebuilds
    # ------------------------------------------------------------------

    def rebuild_all(self) -> None:
        """Recompute file stats, contributors and coupling from scratch."""
        with self.db.get_session() as session:
            session.execute(text("DELETE FROM file_stats"))
            session.execute(text(_FILE_STATS_SQL.format(cte_filter="", main_filter="")))

            session.execute(text("DELETE FROM file_contributors"))
            session.execute(text(_FILE_CONTRIBUTORS_SQL.format(where="")))

            self._rebuild_coupling_full(session)
        logger.info("Rebuilt all aggregates")

    def rebuild_incremental(self, commit_hashes: list[str]) -> int:
        """Recompute derived rows for the files touched by ``commit_hashes``.

        Returns:
            Number of affected file paths
        """
        with self.db.get_session() as session:
            paths = self._affected_paths(session, commit_hashes)
            if not paths:
                return 0

            for chunk in chunked(paths, BatchSizes.STORE_PARAMETERS):
                params = {"paths": list(chunk)}
                session.execute(
                    text("DELETE FROM file_stats WHERE file_path IN :paths").bindparams(
                        bindparam("paths", expanding=True)
                    ),
                    params,
                )
                session.execute(
                    text(
                        _FILE_STATS_SQL.format(
                            cte_filter="AND cf2.file_path IN :paths",
                            main_filter="AND cf.file_path IN :paths",
                        )
                    ).bindparams(bindparam("paths", expanding=True)),
                    params,
                )

                session.execute(
                    text("DELETE FROM file_contributors WHERE file_path IN :paths").bindparams(
                        bindparam("paths", expanding=True)
                    ),
                    params,
                )
                session.execute(
                    text(
                        _FILE_CONTRIBUTORS_SQL.format(where="WHERE cf.file_path IN :paths")
                    ).bindparams(bindparam("paths", expanding=True)),
                    params,
                )

            if len(paths) > Limits.INCREMENTAL_COUPLING_MAX_PATHS:
                logger.debug(f"{len(paths)} affected paths, rebuilding coupling in full")
                self._rebuild_coupling_full(session)
            else:
                self._rebuild_coupling_for_paths(session, paths)

        logger.info(f"Rebuilt aggregates for {len(paths)} files")
        return len(paths)

    def _affected_paths(self, session: Session, commit_hashes: list[str]) -> list[str]:
        paths: set[str] = set()
        stmt = text(
            "SELECT DISTINCT file_path FROM commit_files WHERE commit_hash IN :hashes"
        ).bindparams(bindparam("hashes", expanding=True))
        for chunk in chunked(commit_hashes, BatchSizes.STORE_PARAMETERS):
            paths.update(row[0] for row in session.execute(stmt, {"hashes": list(chunk)}))
        return sorted(paths)

    def _create_excluded_coupling_commits(self, session: Session) -> None:
        session.execute(text("DROP TABLE IF EXISTS _excluded_coupling_commits"))
        session.execute(
            text(
                "CREATE TEMP TABLE _excluded_coupling_commits AS "
                "SELECT commit_hash FROM commit_files GROUP BY commit_hash "
                "HAVING COUNT(*) > :cap"
            ),
            {"cap": Limits.MAX_COUPLING_FILES_PER_COMMIT},
        )

    def _drop_excluded_coupling_commits(self, session: Session) -> None:
        session.execute(text("DROP TABLE IF EXISTS _excluded_coupling_commits"))

    def _rebuild_coupling_full(self, session: Session) -> None:
        session.execute(text("DELETE FROM file_coupling"))
        self._create_excluded_coupling_commits(session)
        try:
            session.execute(
                text(_FILE_COUPLING_SQL.format(filter="")),
                {"min_co_changes": Limits.MIN_CO_CHANGES},
            )
        finally:
            self._drop_excluded_coupling_commits(session)

    def _rebuild_coupling_for_paths(self, session: Session, paths: list[str]) -> None:
        delete = text(
            "DELETE FROM file_coupling WHERE file_a IN :paths OR file_b IN :paths"
        ).bindparams(bindparam("paths", expanding=True))
        # A pair whose files fall in different chunks is produced twice with
        # the same count, hence OR REPLACE.
        insert = text(
            _FILE_COUPLING_SQL.replace("INSERT INTO", "INSERT OR REPLACE INTO").format(
                filter="AND (a.file_path IN :paths OR b.file_path IN :paths)"
            )
        ).bindparams(bindparam("paths", expanding=True))

        for chunk in chunked(paths, BatchSizes.STORE_PARAMETERS):
            session.execute(delete, {"paths": list(chunk)})

        self._create_excluded_coupling_commits(session)
        try:
            for chunk in chunked(paths, BatchSizes.STORE_PARAMETERS):
                session.execute(
                    insert, {"paths": list(chunk), "min_co_changes": Limits.MIN_CO_CHANGES}
                )
        finally:
            self._drop_excluded_coupling_commits(session)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _fetch_all(self, sql: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        with self.db.get_session() as session:
            return [dict(row._mapping) for row in session.execute(text(sql), params)]

    def _fetch_one(self, sql: str, params: dict[str, Any]) -> Optional[dict[str, Any]]:
        rows = self._fetch_all(sql, params)
        return rows[0] if rows else None

    @staticmethod
    def _prefix_params(path_prefix: Optional[str], **params: Any) -> dict[str, Any]:
        if path_prefix:
            params["prefix"] = path_prefix
        return params

    def get_hotspots(
        self, limit: int = 10, sort: str = "total", path_prefix: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """Files ranked by the chosen metric, highest first.

        Args:
            limit: Maximum number of files
            sort: "total", a classification, "complexity" or "combined"
            path_prefix: Only files whose path starts with this prefix

        Raises:
            ValueError: If ``sort`` is not a known field
        """
        if sort == "combined":
            return self._get_hotspots_combined(limit, path_prefix)

        column = SORT_COLUMNS.get(sort)
        if not column:
            raise ValueError(
                f'Invalid sort field "{sort}". Valid values: {", ".join(SORT_FIELDS)}'
            )

        where = f"WHERE {_starts_with('file_path')}" if path_prefix else ""
        return self._fetch_all(
            f"SELECT * FROM file_stats {where} ORDER BY {column} DESC, file_path LIMIT :limit",
            self._prefix_params(path_prefix, limit=limit),
        )

    def _get_hotspots_combined(
        self, limit: int, path_prefix: Optional[str]
    ) -> list[dict[str, Any]]:
        """Normalized change count times normalized complexity; 0 without complexity."""
        where = f"WHERE {_starts_with('file_path')}" if path_prefix else ""
        fs_where = f"WHERE {_starts_with('fs.file_path')}" if path_prefix else ""
        return self._fetch_all(
            f"""
            WITH maxvals AS (
                SELECT MAX(total_changes) AS max_changes,
                       MAX(current_complexity) AS max_complexity
                FROM file_stats {where}
            )
            SELECT fs.*,
                CASE
                    WHEN m.max_changes > 0 AND m.max_complexity > 0
                         AND fs.current_complexity IS NOT NULL
                    THEN ROUND(
                        (CAST(fs.total_changes AS REAL) / m.max_changes) *
                        (fs.current_complexity / m.max_complexity),
                        4
                    )
                    ELSE 0.0
                END AS combined_score
            FROM file_stats fs, maxvals m
            {fs_where}
            ORDER BY combined_score DESC, fs.file_path
            LIMIT :limit
            """,
            self._prefix_params(path_prefix, limit=limit),
        )

    def get_file_stats(self, file_path: str) -> Optional[dict[str, Any]]:
        return self._fetch_one(
            "SELECT * FROM file_stats WHERE file_path = :path", {"path": file_path}
        )

    def get_top_contributors(self, file_path: str, limit: int = 5) -> list[dict[str, Any]]:
        return self._fetch_all(
            "SELECT * FROM file_contributors WHERE file_path = :path "
            "ORDER BY commit_count DESC, author_email LIMIT :limit",
            {"path": file_path, "limit": limit},
        )

    def get_coupling(self, file_a: str, file_b: str) -> int:
        """Co-change count of two files in either order, 0 when not retained."""
        a, b = sorted((file_a, file_b))
        row = self._fetch_one(
            "SELECT co_change_count FROM file_coupling WHERE file_a = :a AND file_b = :b",
            {"a": a, "b": b},
        )
        return row["co_change_count"] if row else 0

    def get_coupled_files(self, file_path: str, limit: int = 10) -> list[dict[str, Any]]:
        """Files co-changed with ``file_path``, with the ratio to its total changes."""
        return self._fetch_all(
            """
            SELECT
                CASE WHEN fc.file_a = :path THEN fc.file_b ELSE fc.file_a END AS file,
                fc.co_change_count,
                ROUND(CAST(fc.co_change_count AS REAL) / fs.total_changes, 2) AS coupling_ratio
            FROM file_coupling fc
            JOIN file_stats fs ON fs.file_path = :path
            WHERE fc.file_a = :path OR fc.file_b = :path
            ORDER BY fc.co_change_count DESC, file
            LIMIT :limit
            """,
            {"path": file_path, "limit": limit},
        )

    def get_top_coupled_pairs(self, limit: int = 10) -> list[dict[str, Any]]:
        return self._fetch_all(
            "SELECT file_a, file_b, co_change_count FROM file_coupling "
            "ORDER BY co_change_count DESC, file_a, file_b LIMIT :limit",
            {"limit": limit},
        )

    def get_directory_stats(self, prefix: str) -> Optional[dict[str, Any]]:
        """Stats summed (counts), averaged (complexity) and bounded over a prefix."""
        sums = ",\n".join(
            f"COALESCE(SUM({_count_column(c)}), 0) AS {_count_column(c)}" for c in CLASSIFICATIONS
        )
        row = self._fetch_one(
            f"""
            SELECT
                :prefix AS file_path,
                COALESCE(SUM(total_changes), 0) AS total_changes,
                {sums},
                MIN(first_seen) AS first_seen,
                MAX(last_changed) AS last_changed,
                COALESCE(SUM(total_additions), 0) AS total_additions,
                COALESCE(SUM(total_deletions), 0) AS total_deletions,
                COALESCE(SUM(current_loc), 0) AS current_loc,
                AVG(current_complexity) AS current_complexity,
                AVG(avg_complexity) AS avg_complexity,
                MAX(max_complexity) AS max_complexity,
                COUNT(*) AS file_count
            FROM file_stats
            WHERE substr(file_path, 1, length(:prefix)) = :prefix
            """,
            {"prefix": prefix},
        )
        if not row or row["first_seen"] is None:
            return None
        return row

    def get_directory_contributors(self, prefix: str, limit: int = 5) -> list[dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT :prefix AS file_path, author_name, author_email,
                   SUM(commit_count) AS commit_count
            FROM file_contributors
            WHERE substr(file_path, 1, length(:prefix)) = :prefix
            GROUP BY author_email
            ORDER BY commit_count DESC, author_email
            LIMIT :limit
            """,
            {"prefix": prefix, "limit": limit},
        )

    def get_directory_coupled_files(self, prefix: str, limit: int = 10) -> list[dict[str, Any]]:
        """Files outside ``prefix`` co-changed with files inside it."""
        return self._fetch_all(
            """
            SELECT
                CASE WHEN substr(fc.file_a, 1, length(:prefix)) = :prefix
                     THEN fc.file_b ELSE fc.file_a END AS file,
                SUM(fc.co_change_count) AS co_change_count,
                ROUND(CAST(SUM(fc.co_change_count) AS REAL) / ds.total_changes, 2)
                    AS coupling_ratio
            FROM file_coupling fc
            JOIN (
                SELECT COALESCE(SUM(total_changes), 0) AS total_changes
                FROM file_stats WHERE substr(file_path, 1, length(:prefix)) = :prefix
            ) ds
            WHERE (substr(fc.file_a, 1, length(:prefix)) = :prefix
                   AND substr(fc.file_b, 1, length(:prefix)) != :prefix)
               OR (substr(fc.file_b, 1, length(:prefix)) = :prefix
                   AND substr(fc.file_a, 1, length(:prefix)) != :prefix)
            GROUP BY file
            ORDER BY co_change_count DESC, file
            LIMIT :limit
            """,
            {"prefix": prefix, "limit": limit},
        )

    def get_trends(
        self, path: str, window: str = "monthly", limit: int = 12, directory: bool = False
    ) -> list[TrendPeriod]:
        """Change activity per time bucket for a file or a directory prefix.

        Returns:
            Periods ordered most recent first

        Raises:
            ValueError: If ``window`` is not weekly, monthly or quarterly
        """
        window_sql = WINDOW_FORMATS.get(window)
        if not window_sql:
            raise ValueError(
                f'Invalid window "{window}". Valid values: {", ".join(WINDOW_FORMATS)}'
            )
        condition = _starts_with("cf.file_path", "path") if directory else "cf.file_path = :path"
        rows = self._fetch_all(
            _TRENDS_SQL.format(window=window_sql, filter=condition),
            {"path": path, "limit": limit},
        )
        return [TrendPeriod(**row) for row in rows]
