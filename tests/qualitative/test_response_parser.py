"""Tests for parsing enrichment and judge responses."""

import json

import pytest

from gitmem.errors import MalformedResponseError
from gitmem.qualitative.classifiers.llm.response_parser import (
    NO_REASONING,
    parse_enrichment_response,
    parse_judge_response,
    reconcile_verdicts,
    strip_code_fence,
)
from gitmem.types import EvalVerdict, EvaluationVerdicts


class TestStripCodeFence:
    def test_json_fence(self):
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self):
        assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self):
        assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'


class TestParseEnrichmentResponse:
    """Strict parsing of enrichment payloads."""

    def test_valid(self):
        result = parse_enrichment_response(
            '{"classification": "bug-fix", "summary": "  Guards against None.  "}'
        )

        assert result.classification == "bug-fix"
        assert result.summary == "Guards against None."

    def test_fenced(self):
        text = '```json\n{"classification": "docs", "summary": "Updates README."}\n```'

        assert parse_enrichment_response(text).classification == "docs"

    def test_wrapped_in_prose(self):
        text = 'Here you go: {"classification": "perf", "summary": "Caches lookups."} Thanks'

        assert parse_enrichment_response(text).classification == "perf"

    def test_not_json(self):
        with pytest.raises(MalformedResponseError, match="Failed to parse response"):
            parse_enrichment_response("I cannot classify this commit")

    def test_unknown_classification(self):
        with pytest.raises(MalformedResponseError, match="Unknown classification"):
            parse_enrichment_response('{"classification": "bugfix", "summary": "x"}')

    @pytest.mark.parametrize("summary", ["", "   ", None, 3])
    def test_missing_summary(self, summary):
        with pytest.raises(MalformedResponseError, match="missing a summary"):
            parse_enrichment_response(
                json.dumps({"classification": "feature", "summary": summary})
            )

    def test_array_is_rejected(self):
        with pytest.raises(MalformedResponseError):
            parse_enrichment_response('[{"classification": "feature", "summary": "x"}]')


class TestParseJudgeResponse:
    """Lenient parsing of judge verdicts."""

    def test_full_response(self):
        text = json.dumps(
            {
                "classification": {
                    "pass": False,
                    "reasoning": "Only moves code",
                    "suggestedClassification": "refactor",
                },
                "accuracy": {"pass": True, "reasoning": "Matches the diff"},
                "completeness": {"pass": False, "reasoning": "Misses the test changes"},
            }
        )

        verdicts = parse_judge_response(text)

        assert not verdicts.classification.passed
        assert verdicts.classification.suggested_classification == "refactor"
        assert verdicts.accuracy.passed
        assert verdicts.completeness.reasoning == "Misses the test changes"

    def test_garbage_defaults_to_pass(self):
        verdicts = parse_judge_response("no idea")

        for verdict in (verdicts.classification, verdicts.accuracy, verdicts.completeness):
            assert verdict.passed
            assert verdict.reasoning == NO_REASONING

    def test_invalid_fields_are_defaulted(self):
        text = json.dumps(
            {
                "classification": {"pass": "no", "reasoning": 5, "suggestedClassification": "x"},
                "accuracy": "fine",
            }
        )

        verdicts = parse_judge_response(text)

        assert verdicts.classification.passed
        assert verdicts.classification.reasoning == NO_REASONING
        assert verdicts.classification.suggested_classification is None
        assert verdicts.accuracy.passed
        assert verdicts.completeness.passed

    def test_suggestion_only_on_classification(self):
        text = json.dumps({"accuracy": {"pass": False, "suggestedClassification": "docs"}})

        assert parse_judge_response(text).accuracy.suggested_classification is None


class TestReconcileVerdicts:
    def _verdicts(self, passed, suggested):
        return EvaluationVerdicts(
            classification=EvalVerdict(passed, "because", suggested),
            accuracy=EvalVerdict(True, "ok"),
            completeness=EvalVerdict(True, "ok"),
        )

    def test_self_contradiction_flips_to_pass(self):
        verdicts = reconcile_verdicts(self._verdicts(False, "feature"), "feature")

        assert verdicts.classification.passed
        assert verdicts.classification.suggested_classification is None
        assert verdicts.classification.reasoning == "because"

    def test_genuine_failure_is_kept(self):
        verdicts = reconcile_verdicts(self._verdicts(False, "refactor"), "feature")

        assert not verdicts.classification.passed
        assert verdicts.classification.suggested_classification == "refactor"

    def test_pass_is_untouched(self):
        verdicts = reconcile_verdicts(self._verdicts(True, None), "feature")

        assert verdicts.classification.passed
