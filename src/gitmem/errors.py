"""Exception hierarchy for gitmem.

Every error the CLI knows how to report derives from :class:`GitmemError` and
carries a short machine-readable ``code`` plus the process exit code to use.
Anything that does not derive from it is treated as an internal failure.
"""

from pathlib import Path
from typing import Optional, Union


class GitmemError(Exception):
    """Base class for all gitmem errors."""

    code = "error"
    exit_code = 1

    def __init__(self, message: str, suggestion: Optional[str] = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message}\n\n💡 {self.suggestion}"
        return self.message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ConfigurationError(GitmemError):
    """Invalid or unreadable configuration."""

    code = "configuration_error"
    exit_code = 2

    def __init__(
        self,
        message: str,
        config_path: Optional[Union[Path, str]] = None,
        suggestion: Optional[str] = None,
    ):
        self.config_path = Path(config_path) if config_path else None
        if self.config_path:
            message = f"{message} ({self.config_path})"
        super().__init__(message, suggestion)


class NotInitializedError(GitmemError):
    """The repository has no .gitmem directory yet."""

    code = "not_initialized"
    exit_code = 2

    def __init__(self, repo_path: Union[Path, str]):
        super().__init__(
            f"gitmem is not initialized in {repo_path}",
            suggestion="Run 'gitmem init' first.",
        )


class GitError(GitmemError):
    """A git command failed or the path is not a repository."""

    code = "git_error"


class ApiKeyError(GitmemError):
    """ANTHROPIC_API_KEY is required but not set."""

    code = "api_key_missing"
    exit_code = 2

    def __init__(self) -> None:
        super().__init__(
            "ANTHROPIC_API_KEY is not set",
            suggestion="Export ANTHROPIC_API_KEY or add it to a .env file in the repository.",
        )


class AmbiguousPrefixError(GitmemError):
    """A hash prefix matches more than one stored commit."""

    code = "ambiguous_prefix"

    def __init__(self, prefix: str, matches: list[str]):
        self.prefix = prefix
        self.matches = list(matches)
        listed = ", ".join(m[:12] for m in self.matches)
        super().__init__(
            f"Ambiguous commit prefix '{prefix}' matches {len(self.matches)} commits: {listed}",
            suggestion="Use a longer prefix.",
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["matches"] = self.matches
        return data


class InvalidQueryError(GitmemError):
    """A full-text search expression could not be parsed."""

    code = "invalid_query"

    def __init__(self, query: str):
        self.query = query
        super().__init__(f"Invalid search query: {query!r}")


class OracleError(GitmemError):
    """The AI provider call failed for one item."""

    code = "oracle_error"


class MalformedResponseError(OracleError):
    """The AI provider answered with a payload that could not be parsed."""

    code = "malformed_response"


class StoreError(GitmemError):
    """The local store could not be read or written.

    The message stays generic. The underlying exception is logged where this
    is raised.
    """

    code = "store_error"

    def __init__(self, message: str = "Internal storage error"):
        super().__init__(message)


class LockError(GitmemError):
    """Another gitmem process holds the index lock."""

    code = "lock_error"
    exit_code = 6

    def __init__(self, lock_path: Union[Path, str]):
        self.lock_path = Path(lock_path)
        super().__init__(
            f"Another gitmem process is running (lock file exists: {self.lock_path})",
            suggestion="If no other process is running, delete the lock file.",
        )
