"""Configuration for gitmem stored in ``.gitmem/config.yaml``.

The file is small and hand-editable. Missing keys fall back to the defaults
below in memory only; the file is never rewritten on load.
"""

import logging
import os
import re
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from dotenv import load_dotenv

from .constants import Limits, Models
from .errors import ApiKeyError, ConfigurationError, NotInitializedError

logger = logging.getLogger(__name__)

GITMEM_DIR = ".gitmem"
CONFIG_FILE = "config.yaml"
DB_FILE = "index.db"

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass
class EnrichmentConfig:
    """Synchronous enrichment settings."""

    concurrency: int = Limits.DEFAULT_ENRICH_CONCURRENCY
    max_diff_chars: int = Limits.DEFAULT_MAX_DIFF_CHARS
    max_input_tokens: int = Limits.MAX_INPUT_TOKENS


@dataclass
class CheckConfig:
    """Quality-check settings."""

    concurrency: int = Limits.DEFAULT_CHECK_CONCURRENCY
    sample_size: int = 20


@dataclass
class BatchConfig:
    """Limits applied when packing requests into a provider batch."""

    max_requests: int = Limits.BATCH_MAX_REQUESTS
    max_bytes: int = Limits.BATCH_MAX_BYTES


@dataclass
class GitmemConfig:
    """Top-level configuration.

    ``ai`` is ``False`` (no enrichment), ``True`` (all commits) or an ISO date
    string meaning "only commits committed on or after this date".
    """

    ai: Union[bool, str] = True
    index_start_date: Optional[str] = None
    index_model: str = Models.INDEX
    check_model: str = Models.CHECK
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    check: CheckConfig = field(default_factory=CheckConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)

    @property
    def ai_enabled(self) -> bool:
        return self.ai is not False

    @property
    def ai_since(self) -> Optional[str]:
        """Date filter for enrichment, or None for all commits."""
        return self.ai if isinstance(self.ai, str) else None

    def ai_coverage(self, enriched: int, total: int) -> dict[str, Any]:
        """Describe how much of the history carries AI enrichment."""
        if self.ai is False:
            return {"status": "disabled"}
        if total == 0 or enriched >= total:
            return {"status": "full"}
        return {"status": "partial", "enriched": enriched, "total": total, "ai": self.ai}

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def gitmem_dir(repo_path: Union[Path, str]) -> Path:
    return Path(repo_path) / GITMEM_DIR


def config_path(repo_path: Union[Path, str]) -> Path:
    return gitmem_dir(repo_path) / CONFIG_FILE


def db_path(repo_path: Union[Path, str]) -> Path:
    return gitmem_dir(repo_path) / DB_FILE


def get_api_key(required: bool = True) -> Optional[str]:
    """Return ANTHROPIC_API_KEY from the environment.

    Raises:
        ApiKeyError: If the key is required and missing
    """
    key = os.environ.get("ANTHROPIC_API_KEY")
    if not key and required:
        raise ApiKeyError()
    return key or None


class ConfigLoader:
    """Load, validate and create gitmem configuration files."""

    @classmethod
    def load(cls, path: Union[Path, str]) -> GitmemConfig:
        """Load configuration from a YAML file.

        Args:
            path: Path to ``config.yaml``

        Returns:
            Validated configuration with defaults backfilled

        Raises:
            NotInitializedError: If the file does not exist
            ConfigurationError: If the file is unreadable or holds invalid values
        """
        path = Path(path)
        if not path.exists():
            raise NotInitializedError(path.parent.parent)

        cls._load_environment(path)
        data = cls._load_yaml(path)
        data = cls._expand_env(data)
        return cls._build(data, path)

    @classmethod
    def create(
        cls, path: Union[Path, str], overrides: Optional[dict[str, Any]] = None
    ) -> GitmemConfig:
        """Write a fresh configuration file with optional overrides.

        Raises:
            ConfigurationError: If the file already exists or an override is invalid
        """
        path = Path(path)
        if path.exists():
            raise ConfigurationError(
                "Already initialized",
                path,
                suggestion=f"Edit {path} to change settings.",
            )

        config = cls._build(dict(overrides or {}), path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(config.to_dict(), f, sort_keys=False)
        logger.info(f"Created configuration at {path}")
        return config

    @classmethod
    def _load_environment(cls, path: Path) -> None:
        """Load .env files from the repository root, local overrides last."""
        repo_root = path.parent.parent
        for env_file in (repo_root / ".env", repo_root / ".env.local"):
            if env_file.exists():
                load_dotenv(env_file, override=True)
                logger.debug(f"Loaded environment variables from {env_file}")

    @classmethod
    def _load_yaml(cls, path: Path) -> dict[str, Any]:
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML: {e}", path) from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file: {e}", path) from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a mapping", path)
        return data

    @classmethod
    def _expand_env(cls, value: Any) -> Any:
        """Recursively expand ``${VAR}`` references in string values."""
        if isinstance(value, str):
            return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)
        if isinstance(value, dict):
            return {k: cls._expand_env(v) for k, v in value.items()}
        if isinstance(value, list):
            return [cls._expand_env(v) for v in value]
        return value

    @classmethod
    def _build(cls, data: dict[str, Any], path: Path) -> GitmemConfig:
        config = GitmemConfig()

        if "ai" in data:
            config.ai = cls._parse_ai(data["ai"], path)
        if "index_start_date" in data:
            value = data["index_start_date"]
            if value is not None:
                value = cls._parse_date(value, "index_start_date", "null or", path)
            config.index_start_date = value
        for key in ("index_model", "check_model"):
            if key in data:
                value = data[key]
                if not isinstance(value, str) or not value:
                    raise ConfigurationError(f'"{key}" must be a non-empty string', path)
                setattr(config, key, value)

        config.enrichment = EnrichmentConfig(
            **cls._int_section(data, "enrichment", EnrichmentConfig(), path)
        )
        config.check = CheckConfig(**cls._int_section(data, "check", CheckConfig(), path))
        config.batch = BatchConfig(**cls._int_section(data, "batch", BatchConfig(), path))
        return config

    @classmethod
    def _parse_ai(cls, value: Any, path: Path) -> Union[bool, str]:
        if isinstance(value, bool):
            return value
        return cls._parse_date(value, "ai", "true, false, or", path)

    @staticmethod
    def _parse_date(value: Any, key: str, allowed: str, path: Path) -> str:
        # PyYAML turns unquoted ISO dates into date objects
        if isinstance(value, datetime):
            value = value.date()
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, str):
            try:
                return date.fromisoformat(value).isoformat()
            except ValueError:
                pass
        raise ConfigurationError(
            f'"{key}" must be {allowed} a valid "YYYY-MM-DD" date string, got {value!r}', path
        )

    @staticmethod
    def _int_section(
        data: dict[str, Any], name: str, defaults: Any, path: Path
    ) -> dict[str, int]:
        section = data.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f'"{name}" must be a mapping', path)

        values = asdict(defaults)
        for key, value in section.items():
            if key not in values:
                logger.debug(f"Ignoring unknown configuration key {name}.{key}")
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigurationError(f'"{name}.{key}" must be a positive integer', path)
            values[key] = value
        return values
