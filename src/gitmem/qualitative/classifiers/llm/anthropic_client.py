"""Anthropic Messages and Message Batches clients for enrichment and judging.

WHY: One module owns every call to the provider so that request shape, error
translation and response parsing stay consistent between the synchronous
path (one request per commit, bounded concurrency in the pipeline) and the
batch path (one provider batch per invocation, harvested later).

DESIGN DECISIONS:
- SDK retries are disabled (``max_retries=0``). A failed call leaves the
  commit unenriched and the next ``gitmem index`` run picks it up again; an
  SDK retry loop inside a concurrency window would stall the whole window.
- Provider exceptions are translated to OracleError at this boundary so the
  pipelines never import the SDK.
- Batch request bodies are built here but submitted by the orchestrator,
  which needs the serialized size of each request to pack chunks.
"""

import logging
from collections.abc import Callable
from typing import Any, Iterator, Optional

import anthropic

from ....constants import JobStatus, Limits, Models
from ....errors import MalformedResponseError, OracleError
from ....types import CommitInfo, EnrichmentResult, EvaluationVerdicts
from .base import (
    BatchFailed,
    BatchOutcome,
    BatchRequestCounts,
    BatchStatus,
    BatchSubmission,
    BatchSucceeded,
)
from .prompts import JUDGE_SYSTEM_PROMPT, SYSTEM_PROMPT, build_judge_message, build_user_message
from .response_parser import parse_enrichment_response, parse_judge_response

logger = logging.getLogger(__name__)

ENRICHMENT_MAX_TOKENS = 512
JUDGE_MAX_TOKENS = 1024

# Provider processing_status -> local job status
_STATUS_MAP = {
    "in_progress": JobStatus.IN_PROGRESS,
    "canceling": JobStatus.IN_PROGRESS,
    "ended": JobStatus.ENDED,
}


def _message_text(message: Any) -> str:
    """Text of the first text block of a Messages API response."""
    for block in message.content or []:
        if getattr(block, "type", None) == "text":
            return block.text
    return ""


class _AnthropicClient:
    """Shared construction for the sync and batch clients."""

    def __init__(self, api_key: str, model: str, client: Optional[anthropic.Anthropic] = None):
        self.model = model
        self._client = client or anthropic.Anthropic(api_key=api_key, max_retries=0)

    def _create(self, system: str, user_message: str, max_tokens: int) -> str:
        logger.debug(f"Calling {self.model} (max_tokens={max_tokens})")
        try:
            response = self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                system=system,
                messages=[{"role": "user", "content": user_message}],
            )
        except anthropic.APIError as e:
            raise OracleError(f"Anthropic request failed: {e}") from e
        return _message_text(response)

    def _params(self, system: str, user_message: str, max_tokens: int) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": max_tokens,
            "system": system,
            "messages": [{"role": "user", "content": user_message}],
        }


class AnthropicEnricher(_AnthropicClient):
    """Synchronous enrichment oracle."""

    def __init__(
        self,
        api_key: str,
        model: str = Models.INDEX,
        max_input_tokens: int = Limits.MAX_INPUT_TOKENS,
        client: Optional[anthropic.Anthropic] = None,
    ):
        super().__init__(api_key, model, client)
        self.max_input_tokens = max_input_tokens

    def enrich(self, commit: CommitInfo, diff: str) -> EnrichmentResult:
        """Classify and summarize one commit.

        Raises:
            OracleError: On provider failure or an unparsable response
        """
        text = self._create(
            SYSTEM_PROMPT,
            build_user_message(commit, diff, self.max_input_tokens),
            ENRICHMENT_MAX_TOKENS,
        )
        return parse_enrichment_response(text)


class AnthropicJudge(_AnthropicClient):
    """Synchronous judge oracle."""

    def __init__(
        self, api_key: str, model: str = Models.CHECK, client: Optional[anthropic.Anthropic] = None
    ):
        super().__init__(api_key, model, client)

    def evaluate(
        self, commit: CommitInfo, diff: str, classification: str, summary: str
    ) -> EvaluationVerdicts:
        text = self._create(
            JUDGE_SYSTEM_PROMPT,
            build_judge_message(commit, diff, classification, summary),
            JUDGE_MAX_TOKENS,
        )
        return parse_judge_response(text)


class AnthropicBatchClient(_AnthropicClient):
    """Message Batches API wrapper parameterized by a response parser.

    Each request's ``custom_id`` is the commit hash, which is the only thing
    the provider echoes back with a result.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        parse: Callable[[str], Any],
        client: Optional[anthropic.Anthropic] = None,
    ):
        super().__init__(api_key, model, client)
        self._parse = parse

    def submit(self, requests: list[dict[str, Any]]) -> BatchSubmission:
        """Create a provider batch from prebuilt request bodies.

        Raises:
            OracleError: If the batch could not be created
        """
        try:
            batch = self._client.messages.batches.create(requests=requests)
        except anthropic.APIError as e:
            raise OracleError(f"Batch submission failed: {e}") from e
        logger.info(f"Submitted batch {batch.id} with {len(requests)} requests")
        return BatchSubmission(batch_id=batch.id, request_count=len(requests))

    def status(self, batch_id: str) -> BatchStatus:
        try:
            batch = self._client.messages.batches.retrieve(batch_id)
        except anthropic.APIError as e:
            raise OracleError(f"Could not retrieve batch {batch_id}: {e}") from e

        counts = batch.request_counts
        status = _STATUS_MAP.get(batch.processing_status, JobStatus.IN_PROGRESS)
        logger.debug(f"Batch {batch_id} is {batch.processing_status}")
        return BatchStatus(
            status=status,
            counts=BatchRequestCounts(
                succeeded=counts.succeeded,
                errored=counts.errored,
                canceled=counts.canceled,
                expired=counts.expired,
                processing=counts.processing,
            ),
        )

    def results(self, batch_id: str) -> Iterator[BatchOutcome]:
        """Stream per-item outcomes of an ended batch.

        Unparsable successful responses are reported as ``malformed`` failures.
        """
        try:
            stream = self._client.messages.batches.results(batch_id)
        except anthropic.APIError as e:
            raise OracleError(f"Could not fetch results of batch {batch_id}: {e}") from e

        for item in stream:
            result = item.result
            if result.type != "succeeded":
                yield BatchFailed(item.custom_id, result.type, f"Batch item {result.type}")
                continue

            text = _message_text(result.message)
            try:
                payload = self._parse(text)
            except MalformedResponseError as e:
                yield BatchFailed(item.custom_id, "malformed", e.message)
                continue
            yield BatchSucceeded(item.custom_id, payload)


class EnrichmentBatchClient(AnthropicBatchClient):
    """Batch enrichment oracle."""

    def __init__(
        self,
        api_key: str,
        model: str = Models.INDEX,
        max_input_tokens: int = Limits.MAX_INPUT_TOKENS,
        client: Optional[anthropic.Anthropic] = None,
    ):
        super().__init__(api_key, model, parse_enrichment_response, client)
        self.max_input_tokens = max_input_tokens

    def build_request(self, commit: CommitInfo, diff: str) -> dict[str, Any]:
        return {
            "custom_id": commit.hash,
            "params": self._params(
                SYSTEM_PROMPT,
                build_user_message(commit, diff, self.max_input_tokens),
                ENRICHMENT_MAX_TOKENS,
            ),
        }


class JudgeBatchClient(AnthropicBatchClient):
    """Batch judge oracle."""

    def __init__(
        self, api_key: str, model: str = Models.CHECK, client: Optional[anthropic.Anthropic] = None
    ):
        super().__init__(api_key, model, parse_judge_response, client)

    def build_request(
        self, commit: CommitInfo, diff: str, classification: str, summary: str
    ) -> dict[str, Any]:
        return {
            "custom_id": commit.hash,
            "params": self._params(
                JUDGE_SYSTEM_PROMPT,
                build_judge_message(commit, diff, classification, summary),
                JUDGE_MAX_TOKENS,
            ),
        }
