"""Oracle interfaces and the result types shared by sync and batch clients.

WHY: The pipelines and the batch orchestrator depend only on these protocols,
never on a concrete provider. Tests substitute MagicMock objects that satisfy
them, and a second provider would only need to implement the same methods.

DESIGN DECISIONS:
- Sync and batch shapes are separate protocols: a sync oracle answers one
  commit at a time, a batch oracle accepts prebuilt request bodies so the
  orchestrator can size chunks before anything is sent.
- Batch results are a tagged union (BatchSucceeded | BatchFailed) matched
  exhaustively at the import boundary.
"""

from dataclasses import dataclass
from typing import Any, Iterator, Protocol, Union

from ....constants import JobStatus
from ....types import CommitInfo, EnrichmentResult, EvaluationVerdicts


@dataclass
class BatchRequestCounts:
    """Per-item counters reported by the provider for a batch."""

    succeeded: int = 0
    errored: int = 0
    canceled: int = 0
    expired: int = 0
    processing: int = 0

    @property
    def failed(self) -> int:
        return self.errored + self.canceled + self.expired


@dataclass
class BatchStatus:
    """Provider batch state mapped onto the local job lifecycle."""

    status: str
    counts: BatchRequestCounts

    @property
    def is_ended(self) -> bool:
        return self.status in JobStatus.TERMINAL


@dataclass
class BatchSubmission:
    """Identifier and size of a freshly created provider batch."""

    batch_id: str
    request_count: int


@dataclass(frozen=True)
class BatchSucceeded:
    """A batch item that returned a parsed payload."""

    custom_id: str
    payload: Any


@dataclass(frozen=True)
class BatchFailed:
    """A batch item that produced nothing usable.

    ``kind`` is the provider result type (errored, canceled, expired) or
    ``malformed`` when the response could not be parsed.
    """

    custom_id: str
    kind: str
    reason: str


BatchOutcome = Union[BatchSucceeded, BatchFailed]


class EnrichmentOracle(Protocol):
    """Classifies and summarizes one commit."""

    model: str

    def enrich(self, commit: CommitInfo, diff: str) -> EnrichmentResult: ...


class JudgeOracle(Protocol):
    """Evaluates an existing enrichment of one commit."""

    model: str

    def evaluate(
        self, commit: CommitInfo, diff: str, classification: str, summary: str
    ) -> EvaluationVerdicts: ...


class BatchOracle(Protocol):
    """Provider batch API: submit prebuilt requests, poll, stream results."""

    model: str

    def submit(self, requests: list[dict[str, Any]]) -> BatchSubmission: ...

    def status(self, batch_id: str) -> BatchStatus: ...

    def results(self, batch_id: str) -> Iterator[BatchOutcome]: ...
