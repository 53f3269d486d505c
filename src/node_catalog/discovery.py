"""Batch coordinator - turns configured path roots into fetched source files.

One tree listing per root, local suffix filtering, then blob fetches in
fixed-size concurrent batches with a pause between batches. A root whose
listing fails is skipped; a file whose fetch fails is dropped. Both are
recorded as failures for diagnostics.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable

from .config import BATCH_DELAY, BATCH_SIZE, FETCH_TIMEOUT
from .github import GitHubClient, RepositoryError, RepositoryTimeoutError, TreeEntry
from .logging import get_logger

logger = get_logger(__name__)

# Known monorepo packages -> published package name
PACKAGE_NAMES = {
    "nodes-base": "n8n-nodes-base",
    "@n8n/n8n-nodes-langchain": "@n8n/n8n-nodes-langchain",
}


@dataclass(frozen=True)
class RemoteFile:
    """One fetched source file."""

    path: str
    name: str
    content: str
    revision_key: str
    package_name: str


@dataclass(frozen=True)
class DiscoveryFailure:
    """A root or file that could not be fetched."""

    path: str
    scope: str  # "root" | "file"
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "scope": self.scope, "reason": self.reason}


@dataclass
class DiscoveryResult:
    """Files fetched across all roots, in tree-listing order."""

    files: list[RemoteFile] = field(default_factory=list)
    failures: list[DiscoveryFailure] = field(default_factory=list)
    roots: list[str] = field(default_factory=list)

    @property
    def failed_roots(self) -> list[str]:
        return [f.path for f in self.failures if f.scope == "root"]

    @property
    def all_roots_failed(self) -> bool:
        return bool(self.roots) and len(self.failed_roots) == len(self.roots)


def derive_name(path: str, suffix: str) -> str:
    """File stem before ``suffix``, e.g. ``.../Slack/Slack.node.ts`` -> ``Slack``."""
    filename = path.rsplit("/", 1)[-1]
    if suffix and filename.endswith(suffix):
        return filename[: -len(suffix)]
    return filename.split(".", 1)[0]


def package_name_for(path_root: str) -> str:
    """Map a repository path root to the package its files belong to."""
    match = re.match(r"^packages/((?:@[^/]+/)?[^/]+)", path_root.strip("/"))
    if not match:
        return "unknown"
    package_dir = match.group(1)
    return PACKAGE_NAMES.get(package_dir, package_dir)


class BatchCoordinator:
    """Fetches matching files under a set of path roots."""

    def __init__(
        self,
        source: GitHubClient,
        batch_size: int = BATCH_SIZE,
        batch_delay: float = BATCH_DELAY,
        fetch_timeout: float = FETCH_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.source = source
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.fetch_timeout = fetch_timeout
        self._sleep = sleep

    async def discover(self, path_roots: Iterable[str], suffix: str) -> DiscoveryResult:
        """Fetch every blob ending in ``suffix`` under each root."""
        result = DiscoveryResult()
        for root in path_roots:
            result.roots.append(root)
            logger.info("Scanning %s for *%s", root, suffix)
            try:
                entries = await self.source.get_tree(root)
            except RepositoryError as e:
                logger.warning("Failed to list %s: %s", root, e)
                result.failures.append(DiscoveryFailure(path=root, scope="root", reason=str(e)))
                continue

            matched = [e for e in entries if e.is_blob and e.path.endswith(suffix)]
            logger.info("Found %d %s files in %s", len(matched), suffix, root)
            files = await self._fetch_all(matched, suffix, package_name_for(root), result)
            result.files.extend(files)
            logger.info("Fetched %d/%d files from %s", len(files), len(matched), root)
        return result

    async def _fetch_all(
        self,
        entries: list[TreeEntry],
        suffix: str,
        package_name: str,
        result: DiscoveryResult,
    ) -> list[RemoteFile]:
        files: list[RemoteFile] = []
        for start in range(0, len(entries), self.batch_size):
            batch = entries[start : start + self.batch_size]
            outcomes = await asyncio.gather(
                *(self._fetch_one(entry) for entry in batch),
                return_exceptions=True,
            )
            # gather keeps input order, so results line up with the listing
            for entry, outcome in zip(batch, outcomes):
                if isinstance(outcome, RepositoryError):
                    logger.warning("Failed to fetch %s: %s", entry.path, outcome)
                    result.failures.append(
                        DiscoveryFailure(path=entry.path, scope="file", reason=str(outcome))
                    )
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome
                files.append(
                    RemoteFile(
                        path=entry.path,
                        name=derive_name(entry.path, suffix),
                        content=outcome,
                        revision_key=entry.revision_key,
                        package_name=package_name,
                    )
                )
                logger.debug("Fetched %s", entry.path)

            if start + self.batch_size < len(entries) and self.batch_delay > 0:
                await self._sleep(self.batch_delay)
        return files

    async def _fetch_one(self, entry: TreeEntry) -> str:
        try:
            return await asyncio.wait_for(
                self.source.get_blob(entry.revision_key), timeout=self.fetch_timeout
            )
        except asyncio.TimeoutError:
            raise RepositoryTimeoutError(
                f"Fetching {entry.path} exceeded {self.fetch_timeout}s"
            ) from None


__all__ = [
    "BatchCoordinator",
    "DiscoveryFailure",
    "DiscoveryResult",
    "RemoteFile",
    "derive_name",
    "package_name_for",
]
