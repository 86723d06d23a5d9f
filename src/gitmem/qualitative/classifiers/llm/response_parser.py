"""Parsing of provider responses into enrichment results and judge verdicts.

Enrichment parsing is strict: anything that is not a JSON object with a known
classification and a summary raises MalformedResponseError, which callers
treat exactly like a provider failure. Judge parsing is lenient because a
verdict with a missing field is still worth reporting.
"""

import json
import logging
import re
from typing import Any, Optional

from ....constants import CLASSIFICATIONS
from ....errors import MalformedResponseError
from ....types import EnrichmentResult, EvalVerdict, EvaluationVerdicts

logger = logging.getLogger(__name__)

NO_REASONING = "No reasoning provided"

_FENCE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```$", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence, with or without a language tag."""
    text = text.strip()
    match = _FENCE.match(text)
    return match.group(1).strip() if match else text


def _load_object(text: str) -> Optional[dict[str, Any]]:
    cleaned = strip_code_fence(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        # Some responses wrap the object in prose
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            data = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None


def parse_enrichment_response(text: str) -> EnrichmentResult:
    """Parse an enrichment response.

    Raises:
        MalformedResponseError: If the payload is not a valid enrichment
    """
    data = _load_object(text)
    if data is None:
        raise MalformedResponseError(f"Failed to parse response: {text[:200]}")

    classification = data.get("classification")
    summary = data.get("summary")
    if classification not in CLASSIFICATIONS:
        raise MalformedResponseError(f"Unknown classification in response: {classification!r}")
    if not isinstance(summary, str) or not summary.strip():
        raise MalformedResponseError("Response is missing a summary")

    return EnrichmentResult(classification=classification, summary=summary.strip())


def _parse_verdict(value: Any, allow_suggestion: bool = False) -> EvalVerdict:
    if not isinstance(value, dict):
        return EvalVerdict(passed=True, reasoning=NO_REASONING)

    passed = value.get("pass")
    reasoning = value.get("reasoning")
    verdict = EvalVerdict(
        passed=passed if isinstance(passed, bool) else True,
        reasoning=reasoning if isinstance(reasoning, str) else NO_REASONING,
    )
    if allow_suggestion:
        suggested = value.get("suggestedClassification")
        if suggested in CLASSIFICATIONS:
            verdict.suggested_classification = suggested
    return verdict


def parse_judge_response(text: str) -> EvaluationVerdicts:
    """Parse a judge response, defaulting missing or invalid parts to pass.

    WHY: The judge occasionally omits a field or returns prose. Failing the
    whole evaluation for that would hide the verdicts that did come back.
    """
    data = _load_object(text)
    if data is None:
        logger.debug(f"Unparsable judge response, defaulting to pass: {text[:200]}")
        data = {}

    return EvaluationVerdicts(
        classification=_parse_verdict(data.get("classification"), allow_suggestion=True),
        accuracy=_parse_verdict(data.get("accuracy")),
        completeness=_parse_verdict(data.get("completeness")),
    )


def reconcile_verdicts(verdicts: EvaluationVerdicts, classification: str) -> EvaluationVerdicts:
    """Flip a failing classification verdict that suggests the label already assigned.

    A judge that fails a classification and then proposes the same label has
    contradicted itself; the classification is counted as correct.
    """
    verdict = verdicts.classification
    if not verdict.passed and verdict.suggested_classification == classification:
        logger.debug(f"Judge suggested the assigned label '{classification}', counting as pass")
        verdicts.classification = EvalVerdict(passed=True, reasoning=verdict.reasoning)
    return verdicts
