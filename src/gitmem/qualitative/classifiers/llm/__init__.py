"""Anthropic-backed enrichment and judge oracles."""

from .anthropic_client import (
    AnthropicEnricher,
    AnthropicJudge,
    EnrichmentBatchClient,
    JudgeBatchClient,
)
from .base import (
    BatchFailed,
    BatchOracle,
    BatchOutcome,
    BatchStatus,
    BatchSubmission,
    BatchSucceeded,
    EnrichmentOracle,
    JudgeOracle,
)

__all__ = [
    "AnthropicEnricher",
    "AnthropicJudge",
    "EnrichmentBatchClient",
    "JudgeBatchClient",
    "BatchFailed",
    "BatchOracle",
    "BatchOutcome",
    "BatchStatus",
    "BatchSubmission",
    "BatchSucceeded",
    "EnrichmentOracle",
    "JudgeOracle",
]
