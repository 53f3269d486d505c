"""Catalog configuration.

Every knob the discovery engine consumes lives here so the host (CLI, tests,
an embedding server) can inject it instead of relying on hard-coded values.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

DEFAULT_OWNER = "n8n-io"
DEFAULT_REPO = "n8n"
DEFAULT_BRANCH = "master"
DEFAULT_API_URL = "https://api.github.com"

DEFAULT_NODE_PATHS = (
    "packages/nodes-base/nodes",
    "packages/@n8n/n8n-nodes-langchain/nodes",
)
DEFAULT_CREDENTIAL_PATHS = (
    "packages/nodes-base/credentials",
    "packages/@n8n/n8n-nodes-langchain/credentials",
)

NODE_SUFFIX = ".node.ts"
CREDENTIAL_SUFFIX = ".credentials.ts"

BATCH_SIZE = 10
BATCH_DELAY = 0.1  # seconds between batches
REQUEST_TIMEOUT = 30.0  # per HTTP request
FETCH_TIMEOUT = 60.0  # total budget for one blob fetch
MAX_RETRIES = 3
MAX_SOURCE_CHARS = 10_000

ENV_PREFIX = "NODE_CATALOG_"


class ConfigError(ValueError):
    """Raised when configuration values are missing or malformed."""


@dataclass(frozen=True)
class CatalogConfig:
    """Settings for the remote repository and the discovery engine."""

    owner: str = DEFAULT_OWNER
    repo: str = DEFAULT_REPO
    branch: str = DEFAULT_BRANCH
    node_paths: tuple[str, ...] = DEFAULT_NODE_PATHS
    credential_paths: tuple[str, ...] = DEFAULT_CREDENTIAL_PATHS
    node_suffix: str = NODE_SUFFIX
    credential_suffix: str = CREDENTIAL_SUFFIX
    batch_size: int = BATCH_SIZE
    batch_delay: float = BATCH_DELAY
    request_timeout: float = REQUEST_TIMEOUT
    fetch_timeout: float = FETCH_TIMEOUT
    max_retries: int = MAX_RETRIES
    max_source_chars: int = MAX_SOURCE_CHARS
    api_url: str = DEFAULT_API_URL
    token: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.owner or not self.repo:
            raise ConfigError("Repository owner and name are required")
        if not self.branch:
            raise ConfigError("Branch name is required")
        if self.batch_size < 1:
            raise ConfigError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.batch_delay < 0:
            raise ConfigError(f"batch_delay cannot be negative, got {self.batch_delay}")
        if self.request_timeout <= 0 or self.fetch_timeout <= 0:
            raise ConfigError("Timeouts must be positive")
        if self.max_retries < 0:
            raise ConfigError(f"max_retries cannot be negative, got {self.max_retries}")
        if self.max_source_chars < 1:
            raise ConfigError("max_source_chars must be positive")
        # Accept any iterable of paths but store tuples so the config stays hashable.
        object.__setattr__(self, "node_paths", tuple(self.node_paths))
        object.__setattr__(self, "credential_paths", tuple(self.credential_paths))

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    def with_overrides(self, **changes: Any) -> CatalogConfig:
        """Return a copy with the non-None values in ``changes`` applied."""
        applied = {k: v for k, v in changes.items() if v is not None}
        if "repository" in applied:
            owner, repo = parse_repository(applied.pop("repository"))
            applied["owner"], applied["repo"] = owner, repo
        return replace(self, **applied)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> CatalogConfig:
        """Build a config from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        token = env.get("GITHUB_TOKEN") or env.get(f"{ENV_PREFIX}TOKEN")
        if token:
            values["token"] = token

        repository = env.get(f"{ENV_PREFIX}REPOSITORY")
        if repository:
            values["owner"], values["repo"] = parse_repository(repository)

        if env.get(f"{ENV_PREFIX}BRANCH"):
            values["branch"] = env[f"{ENV_PREFIX}BRANCH"].strip()
        if env.get(f"{ENV_PREFIX}API_URL"):
            values["api_url"] = env[f"{ENV_PREFIX}API_URL"].strip()

        node_paths = _split_paths(env.get(f"{ENV_PREFIX}NODE_PATHS"))
        if node_paths:
            values["node_paths"] = node_paths
        credential_paths = _split_paths(env.get(f"{ENV_PREFIX}CREDENTIAL_PATHS"))
        if credential_paths:
            values["credential_paths"] = credential_paths

        if env.get(f"{ENV_PREFIX}BATCH_SIZE"):
            values["batch_size"] = _as_int(f"{ENV_PREFIX}BATCH_SIZE", env[f"{ENV_PREFIX}BATCH_SIZE"])
        if env.get(f"{ENV_PREFIX}BATCH_DELAY"):
            values["batch_delay"] = _as_float(f"{ENV_PREFIX}BATCH_DELAY", env[f"{ENV_PREFIX}BATCH_DELAY"])
        if env.get(f"{ENV_PREFIX}TIMEOUT"):
            values["request_timeout"] = _as_float(f"{ENV_PREFIX}TIMEOUT", env[f"{ENV_PREFIX}TIMEOUT"])

        return cls(**values)


def parse_repository(value: str) -> tuple[str, str]:
    """Split an ``owner/repo`` slug, tolerating a github.com URL prefix."""
    slug = value.strip().rstrip("/")
    for prefix in ("https://github.com/", "http://github.com/", "github.com/"):
        if slug.startswith(prefix):
            slug = slug[len(prefix):]
    if slug.endswith(".git"):
        slug = slug[: -len(".git")]
    parts = slug.split("/")
    if len(parts) != 2 or not all(parts):
        raise ConfigError(f"Repository must look like 'owner/repo', got {value!r}")
    return parts[0], parts[1]


def _split_paths(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(p.strip().strip("/") for p in value.split(",") if p.strip())


def _as_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None


def _as_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}") from None


__all__ = ["CatalogConfig", "ConfigError", "parse_repository"]
