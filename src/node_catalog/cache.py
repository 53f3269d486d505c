"""In-memory metadata cache keyed by the branch head revision.

The cache holds one immutable ``CacheGeneration`` at a time. Loading a new
generation never mutates the current one; the finished generation replaces
it with a single attribute assignment, so readers see either the old or the
new state and never a mix. Concurrent callers that need a load share a single
in-flight task.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from .config import CatalogConfig
from .discovery import BatchCoordinator, DiscoveryFailure, RemoteFile
from .github import GitHubClient, RepositoryError
from .logging import get_logger
from .parser import ParsedMetadata, parse_remote_file

logger = get_logger(__name__)


class DiscoveryError(Exception):
    """Raised when a cache load cannot produce a usable generation."""

    def __init__(self, message: str, failures: list[DiscoveryFailure] | None = None):
        super().__init__(message)
        self.failures = failures or []


@dataclass(frozen=True)
class CatalogEntry:
    """A fetched node file with its parse result (None when it has no descriptor)."""

    file: RemoteFile
    metadata: ParsedMetadata | None

    @property
    def parsed(self) -> bool:
        return self.metadata is not None


@dataclass(frozen=True)
class CacheGeneration:
    node_entries: tuple[CatalogEntry, ...]
    credential_files: tuple[RemoteFile, ...]
    revision: str
    initialized_at: datetime
    failures: tuple[DiscoveryFailure, ...] = field(default_factory=tuple)

    @property
    def parsed_entries(self) -> list[CatalogEntry]:
        return [entry for entry in self.node_entries if entry.parsed]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CatalogCache:
    """Single-flight cache of discovered node and credential files."""

    def __init__(
        self,
        source: GitHubClient,
        config: CatalogConfig | None = None,
        coordinator: BatchCoordinator | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.source = source
        self.config = config or CatalogConfig()
        self.coordinator = coordinator or BatchCoordinator(
            source,
            batch_size=self.config.batch_size,
            batch_delay=self.config.batch_delay,
            fetch_timeout=self.config.fetch_timeout,
        )
        self._clock = clock or _utcnow
        self._generation: CacheGeneration | None = None
        self._inflight: asyncio.Task[CacheGeneration] | None = None

    @property
    def initialized(self) -> bool:
        return self._generation is not None

    @property
    def generation(self) -> CacheGeneration | None:
        return self._generation

    async def ensure_initialized(self) -> CacheGeneration:
        """Return the current generation, loading it first if there is none."""
        generation = self._generation
        if generation is not None:
            return generation
        return await self._join_load()

    async def force_refresh(self) -> CacheGeneration:
        """Load a fresh generation; readers keep the previous one until it is ready."""
        logger.info("Refreshing catalog cache")
        return await self._join_load()

    async def _join_load(self) -> CacheGeneration:
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._load())
        # Shield so a cancelled caller does not cancel the load other callers share
        return await asyncio.shield(self._inflight)

    async def _load(self) -> CacheGeneration:
        config = self.config
        try:
            try:
                revision = await self.source.get_branch_head()
            except RepositoryError as e:
                raise DiscoveryError(
                    f"Cannot resolve head of {config.repository}@{config.branch}: {e}"
                ) from e

            nodes = await self.coordinator.discover(config.node_paths, config.node_suffix)
            if nodes.all_roots_failed:
                raise DiscoveryError(
                    "Every node path root failed: " + ", ".join(nodes.failed_roots),
                    failures=nodes.failures,
                )
            if not nodes.files and nodes.failures:
                raise DiscoveryError(
                    f"No node files could be fetched ({len(nodes.failures)} failures)",
                    failures=nodes.failures,
                )
            credentials = await self.coordinator.discover(
                config.credential_paths, config.credential_suffix
            )

            entries = tuple(
                CatalogEntry(file=f, metadata=parse_remote_file(f)) for f in nodes.files
            )
            generation = CacheGeneration(
                node_entries=entries,
                credential_files=tuple(credentials.files),
                revision=revision,
                initialized_at=self._clock(),
                failures=tuple(nodes.failures + credentials.failures),
            )
            self._generation = generation
            logger.info(
                "Cached %d node files (%d parsed) and %d credential files at %s",
                len(entries),
                len(generation.parsed_entries),
                len(generation.credential_files),
                revision[:12],
            )
            return generation
        finally:
            self._inflight = None

    def stats(self) -> dict[str, Any]:
        """Diagnostic counts for the current generation. Never triggers a load."""
        generation = self._generation
        if generation is None:
            return {
                "initialized": False,
                "total_nodes": 0,
                "total_credentials": 0,
                "total_files": 0,
                "parsed_nodes": 0,
                "nodes_by_package": {},
                "nodes_by_category": {},
                "credentials_by_package": {},
                "revision": None,
                "initialized_at": None,
                "failures": [],
            }

        parsed = generation.parsed_entries
        return {
            "initialized": True,
            "total_nodes": len(generation.node_entries),
            "total_credentials": len(generation.credential_files),
            "total_files": len(generation.node_entries) + len(generation.credential_files),
            "parsed_nodes": len(parsed),
            "nodes_by_package": dict(Counter(e.file.package_name for e in generation.node_entries)),
            "nodes_by_category": dict(Counter(e.metadata.category for e in parsed)),
            "credentials_by_package": dict(
                Counter(f.package_name for f in generation.credential_files)
            ),
            "revision": generation.revision,
            "initialized_at": generation.initialized_at.isoformat(),
            "failures": [f.to_dict() for f in generation.failures],
        }


__all__ = ["CacheGeneration", "CatalogCache", "CatalogEntry", "DiscoveryError"]
