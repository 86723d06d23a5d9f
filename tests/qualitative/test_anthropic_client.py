"""Unit tests for the Anthropic enrichment, judge and batch clients.

These tests inject a MagicMock in place of ``anthropic.Anthropic`` so no API
key or network access is required. They exercise:

- Request shape of synchronous enrichment and judging
- Translation of SDK errors to OracleError
- Batch status mapping and per-item result classification
"""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import anthropic
import pytest

from gitmem.constants import JobStatus
from gitmem.errors import OracleError
from gitmem.qualitative.classifiers.llm.anthropic_client import (
    ENRICHMENT_MAX_TOKENS,
    JUDGE_MAX_TOKENS,
    AnthropicEnricher,
    AnthropicJudge,
    EnrichmentBatchClient,
    JudgeBatchClient,
)
from gitmem.qualitative.classifiers.llm.base import BatchFailed, BatchSucceeded
from gitmem.qualitative.classifiers.llm.prompts import JUDGE_SYSTEM_PROMPT, SYSTEM_PROMPT
from gitmem.types import CommitInfo, FileChange

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _message(text: str) -> SimpleNamespace:
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


def _commit() -> CommitInfo:
    return CommitInfo(
        hash="a" * 40,
        author_name="Alice",
        author_email="alice@example.com",
        committed_at="2024-01-15T10:00:00+00:00",
        message="Fix crash",
        files=[FileChange("src/app.py", "M", 2, 1)],
    )


def _api_error() -> anthropic.APIError:
    return anthropic.APIConnectionError(request=MagicMock())


def _batch_item(custom_id: str, result_type: str, text: str = "") -> SimpleNamespace:
    message = _message(text) if result_type == "succeeded" else None
    return SimpleNamespace(
        custom_id=custom_id, result=SimpleNamespace(type=result_type, message=message)
    )


# ---------------------------------------------------------------------------
# Synchronous clients
# ---------------------------------------------------------------------------


class TestAnthropicEnricher:
    def setup_method(self) -> None:
        self.client = MagicMock()
        self.enricher = AnthropicEnricher("sk-test", "model-x", client=self.client)

    def test_enrich_parses_response(self) -> None:
        self.client.messages.create.return_value = _message(
            '{"classification": "bug-fix", "summary": "Guards against None."}'
        )

        result = self.enricher.enrich(_commit(), "+x")

        assert result.classification == "bug-fix"
        kwargs = self.client.messages.create.call_args.kwargs
        assert kwargs["model"] == "model-x"
        assert kwargs["max_tokens"] == ENRICHMENT_MAX_TOKENS
        assert kwargs["system"] == SYSTEM_PROMPT
        assert kwargs["messages"][0]["role"] == "user"
        assert "Commit message: Fix crash" in kwargs["messages"][0]["content"]

    def test_api_error_becomes_oracle_error(self) -> None:
        self.client.messages.create.side_effect = _api_error()

        with pytest.raises(OracleError, match="Anthropic request failed"):
            self.enricher.enrich(_commit(), "+x")

    def test_malformed_response_is_an_oracle_error(self) -> None:
        self.client.messages.create.return_value = _message("not json")

        with pytest.raises(OracleError):
            self.enricher.enrich(_commit(), "+x")

    def test_sdk_retries_are_disabled(self) -> None:
        with patch(
            "gitmem.qualitative.classifiers.llm.anthropic_client.anthropic.Anthropic"
        ) as mock_cls:
            AnthropicEnricher("sk-test")

        mock_cls.assert_called_once_with(api_key="sk-test", max_retries=0)


class TestAnthropicJudge:
    def test_evaluate(self) -> None:
        client = MagicMock()
        client.messages.create.return_value = _message(
            json.dumps(
                {
                    "classification": {"pass": True, "reasoning": "Correct"},
                    "accuracy": {"pass": False, "reasoning": "Overclaims"},
                    "completeness": {"pass": True, "reasoning": "Complete"},
                }
            )
        )
        judge = AnthropicJudge("sk-test", "judge-model", client=client)

        verdicts = judge.evaluate(_commit(), "+x", "bug-fix", "Fixes it")

        assert verdicts.classification.passed
        assert not verdicts.accuracy.passed
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == JUDGE_SYSTEM_PROMPT
        assert kwargs["max_tokens"] == JUDGE_MAX_TOKENS
        assert "Classification: bug-fix" in kwargs["messages"][0]["content"]


# ---------------------------------------------------------------------------
# Batch clients
# ---------------------------------------------------------------------------


class TestBatchClients:
    def setup_method(self) -> None:
        self.client = MagicMock()
        self.batch = EnrichmentBatchClient("sk-test", "model-x", client=self.client)

    def test_build_request(self) -> None:
        request = self.batch.build_request(_commit(), "+x")

        assert request["custom_id"] == "a" * 40
        assert request["params"]["model"] == "model-x"
        assert request["params"]["max_tokens"] == ENRICHMENT_MAX_TOKENS

    def test_judge_build_request(self) -> None:
        judge = JudgeBatchClient("sk-test", "judge-model", client=self.client)

        request = judge.build_request(_commit(), "+x", "feature", "Adds it")

        assert request["params"]["system"] == JUDGE_SYSTEM_PROMPT
        assert "Summary: Adds it" in request["params"]["messages"][0]["content"]

    def test_submit(self) -> None:
        self.client.messages.batches.create.return_value = SimpleNamespace(id="msgbatch_1")
        requests = [self.batch.build_request(_commit(), "+x")]

        submission = self.batch.submit(requests)

        assert submission.batch_id == "msgbatch_1"
        assert submission.request_count == 1
        self.client.messages.batches.create.assert_called_once_with(requests=requests)

    def test_submit_error(self) -> None:
        self.client.messages.batches.create.side_effect = _api_error()

        with pytest.raises(OracleError, match="Batch submission failed"):
            self.batch.submit([])

    @pytest.mark.parametrize(
        "provider_status, expected",
        [
            ("in_progress", JobStatus.IN_PROGRESS),
            ("canceling", JobStatus.IN_PROGRESS),
            ("ended", JobStatus.ENDED),
        ],
    )
    def test_status_mapping(self, provider_status: str, expected: str) -> None:
        self.client.messages.batches.retrieve.return_value = SimpleNamespace(
            processing_status=provider_status,
            request_counts=SimpleNamespace(
                succeeded=3, errored=1, canceled=0, expired=1, processing=2
            ),
        )

        status = self.batch.status("msgbatch_1")

        assert status.status == expected
        assert status.is_ended == (expected == JobStatus.ENDED)
        assert status.counts.succeeded == 3
        assert status.counts.failed == 2

    def test_results_classify_items(self) -> None:
        self.client.messages.batches.results.return_value = iter(
            [
                _batch_item("h1", "succeeded", '{"classification": "docs", "summary": "Docs."}'),
                _batch_item("h2", "errored"),
                _batch_item("h3", "succeeded", "garbage"),
                _batch_item("h4", "expired"),
            ]
        )

        outcomes = list(self.batch.results("msgbatch_1"))

        assert isinstance(outcomes[0], BatchSucceeded)
        assert outcomes[0].payload.classification == "docs"
        assert outcomes[1] == BatchFailed("h2", "errored", "Batch item errored")
        assert isinstance(outcomes[2], BatchFailed)
        assert outcomes[2].kind == "malformed"
        assert outcomes[3].kind == "expired"

    def test_judge_results_are_lenient(self) -> None:
        judge = JudgeBatchClient("sk-test", "judge-model", client=self.client)
        self.client.messages.batches.results.return_value = iter(
            [_batch_item("h1", "succeeded", "not json at all")]
        )

        outcomes = list(judge.results("msgbatch_1"))

        assert isinstance(outcomes[0], BatchSucceeded)
        assert outcomes[0].payload.classification.passed
