"""Tests for prompt construction and token budgeting."""

from gitmem.qualitative.classifiers.llm.prompts import (
    DIFF_OMITTED_PLACEHOLDER,
    DIFF_TRUNCATED_SUFFIX,
    JUDGE_SYSTEM_PROMPT,
    SYSTEM_PROMPT,
    build_judge_message,
    build_user_message,
    estimate_tokens,
)
from gitmem.types import CommitInfo, FileChange


def _commit(files=None, message="Fix the parser"):
    return CommitInfo(
        hash="a" * 40,
        author_name="Alice",
        author_email="alice@example.com",
        committed_at="2024-01-15T10:00:00+00:00",
        message=message,
        files=files if files is not None else [FileChange("src/parser.py", "M", 3, 1)],
    )


class TestEstimateTokens:
    def test_rounds_up(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2


class TestSystemPrompts:
    def test_lists_every_classification(self):
        for label in ("bug-fix", "feature", "refactor", "docs", "chore", "perf", "test", "style"):
            assert label in SYSTEM_PROMPT

    def test_judge_dimensions(self):
        assert "Classification correctness" in JUDGE_SYSTEM_PROMPT
        assert "Summary accuracy" in JUDGE_SYSTEM_PROMPT
        assert "Summary completeness" in JUDGE_SYSTEM_PROMPT


class TestBuildUserMessage:
    """Degradation under the input token budget."""

    def test_fits_unchanged(self):
        message = build_user_message(_commit(), "diff --git a/x b/x\n+line")

        assert message == (
            "Commit message: Fix the parser\n\n"
            "Files changed:\n  M src/parser.py (+3 -1)\n\n"
            "Diff:\ndiff --git a/x b/x\n+line"
        )

    def test_long_diff_is_truncated_within_budget(self):
        budget = estimate_tokens(SYSTEM_PROMPT) + 200
        diff = "+" + "x" * 10_000

        message = build_user_message(_commit(), diff, max_input_tokens=budget)

        assert message.endswith(DIFF_TRUNCATED_SUFFIX)
        assert "M src/parser.py (+3 -1)" in message
        assert estimate_tokens(SYSTEM_PROMPT + message) <= budget

    def test_huge_file_list_drops_diff(self):
        files = [FileChange(f"generated/module_{i:04d}.py", "A", 10, 0) for i in range(500)]
        budget = estimate_tokens(SYSTEM_PROMPT) + 300

        message = build_user_message(_commit(files), "+x" * 1000, max_input_tokens=budget)

        assert message.endswith(f"Diff:\n{DIFF_OMITTED_PLACEHOLDER}")
        assert "A generated/module_0000.py (+10 -0)" in message
        assert "A generated/module_0499.py" not in message
        assert "more files" in message

    def test_omitted_count_matches(self):
        files = [FileChange(f"f{i:03d}.txt", "M", 1, 1) for i in range(300)]
        budget = estimate_tokens(SYSTEM_PROMPT) + 100

        message = build_user_message(_commit(files), "", max_input_tokens=budget)

        kept = message.count(" (+1 -1)")
        assert f"... and {300 - kept} more files" in message


class TestBuildJudgeMessage:
    def test_contains_analysis(self):
        files = [FileChange("a.py", "M"), FileChange("b.py", "A")]

        message = build_judge_message(_commit(files), "+x", "bug-fix", "Fixes a crash")

        assert "Files changed: a.py, b.py" in message
        assert message.endswith(
            "Analysis to evaluate:\nClassification: bug-fix\nSummary: Fixes a crash"
        )
