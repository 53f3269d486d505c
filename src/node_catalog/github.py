"""GitHub REST client - tree listing, blob content and branch head lookups.

The three calls the discovery engine needs, each a single request:

- branch head: current commit SHA of the configured branch
- recursive tree: every entry of the branch in one listing, filtered locally
- blob: decoded text of one file by its content SHA
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from . import __version__
from .config import CatalogConfig
from .logging import get_logger

if TYPE_CHECKING:
    from types import TracebackType

logger = get_logger(__name__)

GITHUB_API_VERSION = "2022-11-28"


class RepositoryError(Exception):
    """Error talking to the remote repository host."""


class RepositoryConnectionError(RepositoryError):
    """The repository host could not be reached."""


class RepositoryTimeoutError(RepositoryError):
    """A request to the repository host timed out."""


class RepositoryNotFoundError(RepositoryError):
    """The repository, branch, tree or blob does not exist."""


class RateLimitError(RepositoryError):
    """The API rate limit is exhausted."""

    def __init__(self, message: str, reset_at: int | None = None):
        super().__init__(message)
        self.reset_at = reset_at


@dataclass(frozen=True)
class TreeEntry:
    """One entry of a recursive tree listing."""

    path: str
    mode: str
    type: str  # "blob" | "tree" | "commit"
    revision_key: str
    size: int | None = None

    @property
    def is_blob(self) -> bool:
        return self.type == "blob"


class GitHubClient:
    """Async client for the GitHub git data API.

    Owns a pooled ``httpx.AsyncClient`` unless one is injected, in which case
    the caller keeps responsibility for closing it.
    """

    def __init__(
        self,
        config: CatalogConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or CatalogConfig()
        self.base_url = self.config.api_url.rstrip("/")
        self._client = client
        self._owns_client = client is None

    @property
    def repo_url(self) -> str:
        return f"{self.base_url}/repos/{self.config.owner}/{self.config.repo}"

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": f"node-catalog/{__version__}",
        }
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    async def connect(self) -> None:
        """Open the connection pool. Safe to call multiple times."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            headers=self._headers(),
            timeout=httpx.Timeout(self.config.request_timeout),
            transport=httpx.AsyncHTTPTransport(retries=self.config.max_retries),
            follow_redirects=True,
        )
        self._owns_client = True
        logger.debug("GitHub client connected to %s", self.repo_url)

    async def close(self) -> None:
        """Close the connection pool if this client created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.debug("GitHub client closed")

    async def __aenter__(self) -> GitHubClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def get_branch_head(self) -> str:
        """Return the commit SHA the configured branch currently points at."""
        data = await self._get_json(f"/branches/{self.config.branch}")
        try:
            return data["commit"]["sha"]
        except (KeyError, TypeError):
            raise RepositoryError(
                f"Branch response for {self.config.branch!r} has no commit SHA"
            ) from None

    async def get_tree(self, path_prefix: str) -> list[TreeEntry]:
        """List every entry under ``path_prefix`` with one recursive tree request."""
        data = await self._get_json(
            f"/git/trees/{self.config.branch}", params={"recursive": "1"}
        )
        if not isinstance(data, dict) or not isinstance(data.get("tree"), list):
            raise RepositoryError(f"Malformed tree response for {self.config.branch!r}")
        if data.get("truncated"):
            logger.warning(
                "Tree listing for %s@%s was truncated by GitHub; some files under %s may be missing",
                self.config.repository,
                self.config.branch,
                path_prefix,
            )

        prefix = path_prefix.strip("/")
        entries: list[TreeEntry] = []
        for item in data["tree"]:
            if not isinstance(item, dict):
                continue
            path = item.get("path") or ""
            if prefix and not (path == prefix or path.startswith(f"{prefix}/")):
                continue
            entries.append(
                TreeEntry(
                    path=path,
                    mode=item.get("mode", ""),
                    type=item.get("type", ""),
                    revision_key=item.get("sha", ""),
                    size=item.get("size"),
                )
            )
        if prefix and not entries:
            raise RepositoryNotFoundError(f"No entries under {prefix} on {self.config.branch}")
        return entries

    async def get_blob(self, revision_key: str) -> str:
        """Return the decoded text of the blob with SHA ``revision_key``."""
        data = await self._get_json(f"/git/blobs/{revision_key}")
        if not isinstance(data, dict) or "content" not in data:
            raise RepositoryError(f"Malformed blob response for {revision_key}")
        content = data["content"] or ""
        encoding = data.get("encoding", "base64")
        if encoding == "base64":
            try:
                raw = base64.b64decode(content)
            except (binascii.Error, ValueError) as e:
                raise RepositoryError(f"Blob {revision_key} is not valid base64: {e}") from e
            return raw.decode("utf-8", errors="replace")
        return content

    async def _get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        if self._client is None:
            await self.connect()
        url = f"{self.repo_url}{path}"
        try:
            resp = await self._client.get(url, params=params, headers=self._headers())
        except httpx.TimeoutException as e:
            raise RepositoryTimeoutError(f"Request to {url} timed out: {e}") from e
        except httpx.TransportError as e:
            raise RepositoryConnectionError(f"Cannot reach {url}: {e}") from e
        except httpx.RequestError as e:
            raise RepositoryError(f"Request to {url} failed: {e}") from e

        if resp.status_code == 404:
            raise RepositoryNotFoundError(f"Not found: {url}")
        if resp.status_code in (403, 429) and _rate_limited(resp):
            reset = resp.headers.get("x-ratelimit-reset")
            raise RateLimitError(
                f"GitHub rate limit exceeded for {self.config.repository}"
                + (f" (resets at {reset})" if reset else ""),
                reset_at=int(reset) if reset and reset.isdigit() else None,
            )
        if resp.status_code >= 400:
            raise RepositoryError(
                f"GitHub returned {resp.status_code} for {url}: {resp.text[:200]}"
            )
        try:
            return resp.json()
        except ValueError as e:
            raise RepositoryError(f"Invalid JSON from {url}: {e}") from e


def _rate_limited(resp: httpx.Response) -> bool:
    if resp.status_code == 429:
        return True
    return resp.headers.get("x-ratelimit-remaining") == "0" or "rate limit" in resp.text.lower()


__all__ = [
    "GitHubClient",
    "RateLimitError",
    "RepositoryConnectionError",
    "RepositoryError",
    "RepositoryNotFoundError",
    "RepositoryTimeoutError",
    "TreeEntry",
]
