"""Core data types shared by the store, the oracles and the pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class FileChange:
    """A single file changed within a commit."""

    file_path: str
    change_type: str
    additions: int = 0
    deletions: int = 0


@dataclass
class CommitInfo:
    """Commit metadata as read from git, with its file changes."""

    hash: str
    author_name: str
    author_email: str
    committed_at: str  # ISO 8601, UTC
    message: str
    files: list[FileChange] = field(default_factory=list)

    @property
    def subject(self) -> str:
        return self.message.split("\n", 1)[0]


@dataclass
class StoredCommit:
    """A commit row as held in the store."""

    hash: str
    author_name: str
    author_email: str
    committed_at: str
    message: str
    classification: Optional[str] = None
    summary: Optional[str] = None
    enriched_at: Optional[str] = None
    model_used: Optional[str] = None

    @property
    def is_enriched(self) -> bool:
        return self.enriched_at is not None

    def to_info(self, files: Optional[list[FileChange]] = None) -> CommitInfo:
        return CommitInfo(
            hash=self.hash,
            author_name=self.author_name,
            author_email=self.author_email,
            committed_at=self.committed_at,
            message=self.message,
            files=list(files or []),
        )

    def to_dict(self) -> dict:
        return {
            "hash": self.hash,
            "authorName": self.author_name,
            "authorEmail": self.author_email,
            "committedAt": self.committed_at,
            "message": self.message,
            "classification": self.classification,
            "summary": self.summary,
            "enrichedAt": self.enriched_at,
            "modelUsed": self.model_used,
        }


@dataclass
class EnrichmentResult:
    """Classification label and summary assigned to a commit."""

    classification: str
    summary: str


@dataclass
class EvalVerdict:
    """Pass/fail verdict with reasoning for one evaluation dimension."""

    passed: bool
    reasoning: str
    suggested_classification: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"pass": self.passed, "reasoning": self.reasoning}
        if self.suggested_classification:
            data["suggestedClassification"] = self.suggested_classification
        return data


@dataclass
class EvaluationVerdicts:
    """The three independent verdicts returned by the judge."""

    classification: EvalVerdict
    accuracy: EvalVerdict
    completeness: EvalVerdict


@dataclass
class EvalResult:
    """Evaluation of one enriched commit."""

    hash: str
    classification: str
    summary: str
    classification_verdict: EvalVerdict
    accuracy_verdict: EvalVerdict
    completeness_verdict: EvalVerdict

    @classmethod
    def from_verdicts(
        cls, hash: str, classification: str, summary: str, verdicts: EvaluationVerdicts
    ) -> EvalResult:
        return cls(
            hash=hash,
            classification=classification,
            summary=summary,
            classification_verdict=verdicts.classification,
            accuracy_verdict=verdicts.accuracy,
            completeness_verdict=verdicts.completeness,
        )

    def to_dict(self) -> dict:
        return {
            "hash": self.hash,
            "classification": self.classification,
            "summary": self.summary,
            "classificationVerdict": self.classification_verdict.to_dict(),
            "accuracyVerdict": self.accuracy_verdict.to_dict(),
            "completenessVerdict": self.completeness_verdict.to_dict(),
        }


@dataclass
class EvalSummary:
    """Counts of commits passing each evaluation dimension."""

    total: int = 0
    classification_correct: int = 0
    summary_accurate: int = 0
    summary_complete: int = 0

    @classmethod
    def from_results(cls, results: list[EvalResult]) -> EvalSummary:
        return cls(
            total=len(results),
            classification_correct=sum(1 for r in results if r.classification_verdict.passed),
            summary_accurate=sum(1 for r in results if r.accuracy_verdict.passed),
            summary_complete=sum(1 for r in results if r.completeness_verdict.passed),
        )

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "classificationCorrect": self.classification_correct,
            "summaryAccurate": self.summary_accurate,
            "summaryComplete": self.summary_complete,
        }


@dataclass
class IndexProgress:
    """Progress event emitted by the enrichment pipeline."""

    phase: str  # discovering | measuring | enriching | aggregating | indexing | done
    current: int = 0
    total: int = 0
    current_hash: Optional[str] = None
    batch_id: Optional[str] = None
    batch_status: Optional[str] = None


@dataclass
class CheckProgress:
    """Progress event emitted by the quality-check pipeline."""

    phase: str  # evaluating | submitting | importing | done
    current: int = 0
    total: int = 0
    current_hash: Optional[str] = None
    batch_id: Optional[str] = None
    batch_status: Optional[str] = None


@dataclass
class TrendPeriod:
    """Change activity of one time bucket."""

    period: str
    total_changes: int = 0
    bug_fix_count: int = 0
    feature_count: int = 0
    refactor_count: int = 0
    docs_count: int = 0
    chore_count: int = 0
    perf_count: int = 0
    test_count: int = 0
    style_count: int = 0
    additions: int = 0
    deletions: int = 0
    avg_complexity: Optional[float] = None
    max_complexity: Optional[float] = None
    avg_loc: Optional[float] = None


@dataclass
class TrendSummary:
    """Direction of activity, bug-fix rate and complexity over time."""

    direction: str
    recent_avg: float
    historical_avg: float
    bug_fix_trend: str
    complexity_trend: str


@dataclass
class StatusInfo:
    """Snapshot of the index state."""

    total_commits: int
    indexed_commits: int
    enriched_commits: int
    last_run: Optional[str]
    model_used: Optional[str]
    db_path: str
    db_size: int
