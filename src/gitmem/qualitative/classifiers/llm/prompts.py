"""Prompt construction for commit enrichment and quality-check judging.

WHY: Keeping prompt text apart from the client means the batch and sync paths
send byte-identical requests, and the token budgeting below can be tested
without a provider.
"""

import math

from ....constants import CLASSIFICATIONS, Limits
from ....types import CommitInfo

DIFF_TRUNCATED_SUFFIX = "\n[diff truncated]"
DIFF_OMITTED_PLACEHOLDER = "[diff omitted: message too large]"
FILE_SEPARATOR = "\n  "

SYSTEM_PROMPT = f"""You are a git commit analyzer. Given a commit message, the list of changed files and the diff, classify the commit and write a short summary.

The classification must be exactly one of: {", ".join(CLASSIFICATIONS)}

Classification guidelines:
- bug-fix: corrects broken behavior or restores intended functionality
- feature: adds user-facing functionality that did not exist before
- refactor: restructures code without changing external behavior
- docs: changes documentation written for people to read (README, guides, API docs)
- chore: maintenance such as dependency updates, CI, version bumps, merge commits, build tooling, changelogs, release notes and repository infrastructure
- perf: reduces time or resource usage, including small changes such as hoisting work out of a loop
- test: adds or changes tests without touching production code
- style: formatting, whitespace, naming or lint fixes with no behavioral effect

Edge cases:
- Commits whose message starts with "Merge" are "chore".
- When a commit spans several categories, classify by its most significant change.
- Trust the diff over the commit message. If the message says "fix" but the diff only restructures code, the answer is "refactor".
- Improving existing behavior without new user-facing capability is "refactor", not "feature".
- Rewording existing user-facing text or error messages is "style".
- CHANGELOG and release note updates are "chore", not "docs".
- Adding or configuring linters, git hooks, formatters or CI is "chore".
- Removing deprecated code or making breaking API changes is "chore".
- Adding a translation for an existing feature is "chore"; changing existing translated text is "style".
- Regenerating fixtures or snapshots without changing test logic is "chore".
- Fixing a broken link, build or config is "bug-fix" whatever the file type.
- Classify by the purpose of the change, not by the type of file it touches.

Summary guidelines:
- Base the summary on the diff, not only on the message.
- If the diff is empty or missing, say so instead of guessing.
- Mention the most important files or components.
- Describe what changed, not why. Do not infer motivation or impact the diff does not show.
- Never claim something was fixed, improved or optimized unless the diff supports it.

Respond with only a JSON object of the form:
{{"classification": "<one of the labels above>", "summary": "<one or two sentences>"}}"""

JUDGE_SYSTEM_PROMPT = f"""You are reviewing the output of an automated git commit analyzer. You are given a commit (message, changed files, diff) together with the classification and summary the analyzer produced. Judge the analysis on three independent dimensions:

1. Classification correctness: is the classification the right one of {", ".join(CLASSIFICATIONS)}? Follow the same rules the analyzer uses: trust the diff over the message, classify by primary purpose, merge commits are "chore", changelogs and dev tooling are "chore", cosmetic rewording is "style".
2. Summary accuracy: does every statement in the summary match what the diff shows? Claims the diff does not support are a failure.
3. Summary completeness: does the summary mention the most significant changes? It does not need to list every file.

If the classification fails, give the classification you believe is correct.

Respond with only a JSON object of the form:
{{"classification": {{"pass": true, "reasoning": "...", "suggestedClassification": "<label, only when pass is false>"}},
 "accuracy": {{"pass": true, "reasoning": "..."}},
 "completeness": {{"pass": true, "reasoning": "..."}}}}"""


def estimate_tokens(text: str) -> int:
    """Approximate token count at four characters per token."""
    return math.ceil(len(text) / Limits.CHARS_PER_TOKEN)


def _format_message(message: str, file_list: str, diff: str) -> str:
    return f"Commit message: {message}\n\nFiles changed:\n  {file_list}\n\nDiff:\n{diff}"


def build_user_message(
    commit: CommitInfo, diff: str, max_input_tokens: int = Limits.MAX_INPUT_TOKENS
) -> str:
    """Build the enrichment request text, degraded to fit the token budget.

    The full message is used when it fits. Otherwise the diff is cut to the
    room left after the system prompt and file list, and marked. If the file
    list alone is over budget, the diff is replaced by a placeholder and the
    list is cut to as many entries as fit, followed by a count of the rest.

    Args:
        commit: Commit metadata and file changes
        diff: Unified diff text
        max_input_tokens: Budget for system prompt plus user message

    Returns:
        The user message to send
    """
    entries = [
        f"{f.change_type} {f.file_path} (+{f.additions} -{f.deletions})" for f in commit.files
    ]
    file_list = FILE_SEPARATOR.join(entries)
    message = commit.message

    def over_budget(fl: str, d: str) -> bool:
        return estimate_tokens(SYSTEM_PROMPT + _format_message(message, fl, d)) > max_input_tokens

    if not over_budget(file_list, diff):
        return _format_message(message, file_list, diff)

    overhead = estimate_tokens(
        SYSTEM_PROMPT + _format_message(message, file_list, DIFF_TRUNCATED_SUFFIX)
    )
    max_diff_chars = max(0, max_input_tokens - overhead) * Limits.CHARS_PER_TOKEN
    truncated_diff = diff
    if len(diff) > max_diff_chars:
        truncated_diff = diff[:max_diff_chars] + DIFF_TRUNCATED_SUFFIX

    if over_budget(file_list, ""):
        truncated_diff = DIFF_OMITTED_PLACEHOLDER
        overhead = estimate_tokens(SYSTEM_PROMPT + _format_message(message, "", truncated_diff))
        max_file_chars = max(0, max_input_tokens - overhead) * Limits.CHARS_PER_TOKEN

        kept: list[str] = []
        length = 0
        for entry in entries:
            added = len(entry) + (len(FILE_SEPARATOR) if kept else 0)
            if length + added > max_file_chars:
                break
            kept.append(entry)
            length += added

        file_list = FILE_SEPARATOR.join(kept)
        omitted = len(entries) - len(kept)
        if omitted:
            file_list += f"{FILE_SEPARATOR}... and {omitted} more files"

    return _format_message(message, file_list, truncated_diff)


def build_judge_message(commit: CommitInfo, diff: str, classification: str, summary: str) -> str:
    """Build the judge request text for one enriched commit."""
    files = ", ".join(f.file_path for f in commit.files)
    return (
        f"Commit message: {commit.message}\n\n"
        f"Files changed: {files}\n\n"
        f"Diff:\n{diff}\n\n"
        f"Analysis to evaluate:\n"
        f"Classification: {classification}\n"
        f"Summary: {summary}"
    )
