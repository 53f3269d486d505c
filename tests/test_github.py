"""Tests for the GitHub REST client."""

import base64
from unittest.mock import patch

import httpx
import pytest

from node_catalog.config import CatalogConfig
from node_catalog.github import (
    GitHubClient,
    RateLimitError,
    RepositoryConnectionError,
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryTimeoutError,
)

TREE = {
    "sha": "abc",
    "truncated": False,
    "tree": [
        {"path": "packages", "mode": "040000", "type": "tree", "sha": "t1"},
        {"path": "packages/nodes-base/nodes/Slack", "mode": "040000", "type": "tree", "sha": "t2"},
        {"path": "packages/nodes-base/nodes/Slack/Slack.node.ts", "mode": "100644", "type": "blob", "sha": "b1", "size": 120},
        {"path": "packages/nodes-base/nodes-other/X.node.ts", "mode": "100644", "type": "blob", "sha": "b2"},
        {"path": "packages/nodes-base/nodes/Set/Set.node.ts", "mode": "100644", "type": "blob", "sha": "b3"},
        {"path": "packages/cli/src/index.ts", "mode": "100644", "type": "blob", "sha": "b4"},
    ],
}


def make_client(handler, **config_kwargs):
    config = CatalogConfig(**config_kwargs)
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GitHubClient(config, client=http), http


class TestGetTree:
    @pytest.mark.asyncio
    async def test_single_recursive_request(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=TREE)

        client, _ = make_client(handler)
        entries = await client.get_tree("packages/nodes-base/nodes")

        assert len(requests) == 1
        assert requests[0].url.path == "/repos/n8n-io/n8n/git/trees/master"
        assert requests[0].url.params["recursive"] == "1"
        assert [e.path for e in entries] == [
            "packages/nodes-base/nodes/Slack",
            "packages/nodes-base/nodes/Slack/Slack.node.ts",
            "packages/nodes-base/nodes/Set/Set.node.ts",
        ]
        assert [e.is_blob for e in entries] == [False, True, True]
        assert entries[1].revision_key == "b1"
        assert entries[1].size == 120

    @pytest.mark.asyncio
    async def test_prefix_does_not_match_sibling_directory(self):
        client, _ = make_client(lambda request: httpx.Response(200, json=TREE))
        entries = await client.get_tree("packages/nodes-base/nodes/")
        assert all(not e.path.startswith("packages/nodes-base/nodes-other") for e in entries)

    @pytest.mark.asyncio
    async def test_truncated_listing_logs_warning(self):
        payload = {**TREE, "truncated": True}
        client, _ = make_client(lambda request: httpx.Response(200, json=payload))
        with patch("node_catalog.github.logger") as mock_logger:
            await client.get_tree("packages/nodes-base/nodes")
        mock_logger.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_prefix_raises_not_found(self):
        client, _ = make_client(lambda request: httpx.Response(200, json=TREE))
        with pytest.raises(RepositoryNotFoundError, match="packages/nodes-langchain/nodes"):
            await client.get_tree("packages/nodes-langchain/nodes")

    @pytest.mark.asyncio
    async def test_whole_tree_without_prefix(self):
        client, _ = make_client(lambda request: httpx.Response(200, json=TREE))
        assert len(await client.get_tree("")) == len(TREE["tree"])

    @pytest.mark.asyncio
    async def test_non_object_items_skipped(self):
        payload = {**TREE, "tree": ["garbage", None, *TREE["tree"]]}
        client, _ = make_client(lambda request: httpx.Response(200, json=payload))
        entries = await client.get_tree("packages/nodes-base/nodes")
        assert len(entries) == 3

    @pytest.mark.asyncio
    async def test_malformed_tree(self):
        client, _ = make_client(lambda request: httpx.Response(200, json={"sha": "abc"}))
        with pytest.raises(RepositoryError, match="Malformed"):
            await client.get_tree("packages")


class TestGetBlob:
    @pytest.mark.asyncio
    async def test_decodes_base64_with_line_breaks(self):
        text = "export class Slack {}\n// naïve\n"
        encoded = base64.b64encode(text.encode("utf-8")).decode()
        wrapped = "\n".join(encoded[i : i + 20] for i in range(0, len(encoded), 20))

        def handler(request):
            assert request.url.path == "/repos/n8n-io/n8n/git/blobs/b1"
            return httpx.Response(200, json={"sha": "b1", "content": wrapped, "encoding": "base64"})

        client, _ = make_client(handler)
        assert await client.get_blob("b1") == text

    @pytest.mark.asyncio
    async def test_invalid_utf8_is_replaced(self):
        encoded = base64.b64encode(b"abc\xff").decode()
        client, _ = make_client(
            lambda request: httpx.Response(200, json={"content": encoded, "encoding": "base64"})
        )
        assert await client.get_blob("b1") == "abc�"

    @pytest.mark.asyncio
    async def test_plain_utf8_content(self):
        client, _ = make_client(
            lambda request: httpx.Response(200, json={"content": "hello", "encoding": "utf-8"})
        )
        assert await client.get_blob("b1") == "hello"


class TestBranchHead:
    @pytest.mark.asyncio
    async def test_returns_commit_sha(self):
        def handler(request):
            assert request.url.path == "/repos/acme/flows/branches/main"
            return httpx.Response(200, json={"name": "main", "commit": {"sha": "deadbeef"}})

        client, _ = make_client(handler, owner="acme", repo="flows", branch="main")
        assert await client.get_branch_head() == "deadbeef"

    @pytest.mark.asyncio
    async def test_missing_sha(self):
        client, _ = make_client(lambda request: httpx.Response(200, json={"name": "master"}))
        with pytest.raises(RepositoryError):
            await client.get_branch_head()


class TestHeaders:
    @pytest.mark.asyncio
    async def test_token_sent_as_bearer(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json={"commit": {"sha": "x"}})

        client, _ = make_client(handler, token="ghp_test")
        await client.get_branch_head()
        assert seen["authorization"] == "Bearer ghp_test"
        assert seen["accept"] == "application/vnd.github+json"
        assert seen["user-agent"].startswith("node-catalog/")

    @pytest.mark.asyncio
    async def test_no_token_no_auth_header(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json={"commit": {"sha": "x"}})

        client, _ = make_client(handler)
        await client.get_branch_head()
        assert "authorization" not in seen


class TestErrors:
    @pytest.mark.asyncio
    async def test_not_found(self):
        client, _ = make_client(lambda request: httpx.Response(404, json={"message": "Not Found"}))
        with pytest.raises(RepositoryNotFoundError):
            await client.get_blob("missing")

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        def handler(request):
            return httpx.Response(
                403,
                headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1700000000"},
                json={"message": "API rate limit exceeded"},
            )

        client, _ = make_client(handler)
        with pytest.raises(RateLimitError) as exc_info:
            await client.get_tree("packages")
        assert exc_info.value.reset_at == 1700000000

    @pytest.mark.asyncio
    async def test_forbidden_without_rate_limit(self):
        client, _ = make_client(lambda request: httpx.Response(403, json={"message": "Forbidden"}))
        with pytest.raises(RepositoryError) as exc_info:
            await client.get_tree("packages")
        assert not isinstance(exc_info.value, RateLimitError)

    @pytest.mark.asyncio
    async def test_server_error(self):
        client, _ = make_client(lambda request: httpx.Response(502, text="Bad gateway"))
        with pytest.raises(RepositoryError, match="502"):
            await client.get_branch_head()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = make_client(handler)
        with pytest.raises(RepositoryConnectionError):
            await client.get_tree("packages")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        client, _ = make_client(handler)
        with pytest.raises(RepositoryTimeoutError):
            await client.get_blob("b1")

    @pytest.mark.asyncio
    async def test_too_many_redirects(self):
        def handler(request):
            raise httpx.TooManyRedirects("redirect loop", request=request)

        client, _ = make_client(handler)
        with pytest.raises(RepositoryError, match="failed"):
            await client.get_blob("b1")

    @pytest.mark.asyncio
    async def test_decoding_error(self):
        def handler(request):
            raise httpx.DecodingError("bad gzip", request=request)

        client, _ = make_client(handler)
        with pytest.raises(RepositoryError):
            await client.get_branch_head()

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        client, _ = make_client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(RepositoryError, match="Invalid JSON"):
            await client.get_branch_head()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self):
        client, http = make_client(lambda request: httpx.Response(200, json={}))
        await client.close()
        assert not http.is_closed
        await http.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_opened_and_closed(self):
        async with GitHubClient(CatalogConfig()) as client:
            assert client._client is not None
            await client.connect()
        assert client._client is None

    def test_repo_url(self):
        client = GitHubClient(CatalogConfig(api_url="https://ghe.example.com/api/v3/"))
        assert client.repo_url == "https://ghe.example.com/api/v3/repos/n8n-io/n8n"
