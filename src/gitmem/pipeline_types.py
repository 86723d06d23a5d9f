"""Shared result dataclasses for the gitmem pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field

from .types import EvalResult, EvalSummary


@dataclass
class IndexResult:
    """Outcome of one ``gitmem index`` run."""

    discovered: int = 0
    enriched: int = 0
    failed: int = 0
    total_enriched: int = 0
    total_commits: int = 0
    cancelled: bool = False
    batch_id: str | None = None
    batch_status: str | None = None
    batch_submitted: int = 0
    batch_remaining: int = 0

    def to_dict(self) -> dict:
        data = {
            "discoveredThisRun": self.discovered,
            "enrichedThisRun": self.enriched,
            "failedThisRun": self.failed,
            "totalEnriched": self.total_enriched,
            "totalCommits": self.total_commits,
        }
        if self.cancelled:
            data["cancelled"] = True
        if self.batch_id:
            data["batchId"] = self.batch_id
            data["batchStatus"] = self.batch_status
        if self.batch_submitted:
            data["batchSubmitted"] = self.batch_submitted
            data["batchRemaining"] = self.batch_remaining
        return data


@dataclass
class CheckBatchResult:
    """Outcome of one ``gitmem check --batch`` step.

    ``kind`` is ``complete`` (results imported), ``empty`` (nothing to
    evaluate), ``submitted`` (a new job was sent) or ``in_progress``.
    """

    kind: str
    batch_id: str | None = None
    batch_status: str | None = None
    submitted: int = 0
    results: list[EvalResult] = field(default_factory=list)
    summary: EvalSummary | None = None
    failed: int = 0
    output_path: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"status": self.kind}
        if self.batch_id:
            data["batchId"] = self.batch_id
            data["batchStatus"] = self.batch_status
        if self.kind == "submitted":
            data["submitted"] = self.submitted
        if self.kind == "complete":
            data["summary"] = self.summary.to_dict() if self.summary else None
            data["results"] = [r.to_dict() for r in self.results]
            data["failed"] = self.failed
            if self.output_path:
                data["outputPath"] = self.output_path
        return data
