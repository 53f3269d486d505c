"""Query layer - read-only lookups over the metadata cache."""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

from .cache import CatalogCache, CatalogEntry
from .config import MAX_SOURCE_CHARS, CatalogConfig
from .discovery import RemoteFile
from .github import GitHubClient
from .logging import get_logger
from .parser import ParsedMetadata

if TYPE_CHECKING:
    from types import TracebackType

logger = get_logger(__name__)

TRUNCATION_MARKER = "...[truncated]"


@dataclass
class NodeSummary:
    name: str
    display_name: str
    description: str | None
    category: str
    package: str
    node_type: str
    is_trigger: bool
    is_webhook: bool
    is_ai_tool: bool
    version: str

    @classmethod
    def from_entry(cls, entry: CatalogEntry) -> NodeSummary:
        meta = entry.metadata
        return cls(
            name=entry.file.name,
            display_name=meta.display_name,
            description=meta.description,
            category=meta.category,
            package=entry.file.package_name,
            node_type=meta.node_type,
            is_trigger=meta.is_trigger,
            is_webhook=meta.is_webhook,
            is_ai_tool=meta.is_ai_tool,
            version=meta.version,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RelatedCredential:
    name: str
    package: str
    path: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass
class NodeDetails:
    summary: NodeSummary
    path: str
    metadata: ParsedMetadata
    related_credentials: list[RelatedCredential] = field(default_factory=list)
    source: str = ""
    source_truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.summary.to_dict(),
            "path": self.path,
            "metadata": self.metadata.to_dict(),
            "related_credentials": [c.to_dict() for c in self.related_credentials],
            "source": self.source,
            "source_truncated": self.source_truncated,
        }


def truncate_source(content: str, limit: int) -> tuple[str, bool]:
    if len(content) <= limit:
        return content, False
    return content[:limit] + TRUNCATION_MARKER, True


def is_related_credential(node_name: str, credential_name: str) -> bool:
    """Name-overlap heuristic: either name contains the other, ignoring case."""
    node = node_name.lower()
    cred = credential_name.lower()
    return node in cred or cred in node


class NodeCatalog:
    """Search, filter and detail lookups over discovered nodes.

    Every query first makes sure the cache holds a generation. ``has_changed``
    is the exception: it only asks the repository for its current head.
    """

    def __init__(
        self,
        cache: CatalogCache,
        source: GitHubClient | None = None,
        max_source_chars: int = MAX_SOURCE_CHARS,
    ):
        self.cache = cache
        self.source = source or cache.source
        self.max_source_chars = max_source_chars
        self._owned_client: GitHubClient | None = None

    @classmethod
    def from_config(cls, config: CatalogConfig | None = None) -> NodeCatalog:
        config = config or CatalogConfig.from_env()
        client = GitHubClient(config)
        catalog = cls(CatalogCache(client, config), client, config.max_source_chars)
        catalog._owned_client = client
        return catalog

    async def close(self) -> None:
        if self._owned_client is not None:
            await self._owned_client.close()

    async def __aenter__(self) -> NodeCatalog:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _parsed(self) -> list[CatalogEntry]:
        generation = await self.cache.ensure_initialized()
        return generation.parsed_entries

    async def search(self, query: str) -> list[NodeSummary]:
        """Case-insensitive substring match over name, display name, description and category."""
        needle = query.strip().lower()
        results = []
        for entry in await self._parsed():
            meta = entry.metadata
            haystack = (entry.file.name, meta.display_name, meta.description or "", meta.category)
            if not needle or any(needle in value.lower() for value in haystack):
                results.append(NodeSummary.from_entry(entry))
        logger.debug("search %r matched %d nodes", query, len(results))
        return results

    async def get_by_category(self, category: str) -> list[NodeSummary]:
        """Nodes whose category equals ``category`` exactly, ignoring case."""
        wanted = category.strip().lower()
        return [
            NodeSummary.from_entry(entry)
            for entry in await self._parsed()
            if entry.metadata.category.strip().lower() == wanted
        ]

    async def list_all(self) -> list[NodeSummary]:
        return [NodeSummary.from_entry(entry) for entry in await self._parsed()]

    async def categories(self) -> list[tuple[str, int]]:
        """Distinct categories of parsed nodes with their node counts, sorted by name."""
        counts = Counter(entry.metadata.category for entry in await self._parsed())
        return sorted(counts.items(), key=lambda item: item[0].lower())

    async def get_details(self, name: str) -> NodeDetails | None:
        """Full metadata for one node, or None when it is unknown or has no descriptor."""
        generation = await self.cache.ensure_initialized()
        wanted = name.strip().lower()
        entry = next((e for e in generation.node_entries if e.file.name.lower() == wanted), None)
        if entry is None or entry.metadata is None:
            return None

        related = [
            _related(cred)
            for cred in generation.credential_files
            if is_related_credential(entry.file.name, cred.name)
        ]
        source, truncated = truncate_source(entry.file.content, self.max_source_chars)
        return NodeDetails(
            summary=NodeSummary.from_entry(entry),
            path=entry.file.path,
            metadata=entry.metadata,
            related_credentials=related,
            source=source,
            source_truncated=truncated,
        )

    async def has_changed(self, last_known_revision: str | None = None) -> bool:
        """Compare ``last_known_revision`` with the branch head; True when none is given."""
        if not last_known_revision:
            return True
        current = await self.source.get_branch_head()
        return current != last_known_revision

    async def stats(self) -> dict[str, Any]:
        await self.cache.ensure_initialized()
        return self.cache.stats()

    async def refresh(self) -> dict[str, Any]:
        await self.cache.force_refresh()
        return self.cache.stats()


def _related(cred: RemoteFile) -> RelatedCredential:
    return RelatedCredential(name=cred.name, package=cred.package_name, path=cred.path)


__all__ = [
    "NodeCatalog",
    "NodeDetails",
    "NodeSummary",
    "RelatedCredential",
    "TRUNCATION_MARKER",
    "is_related_credential",
    "truncate_source",
]
