"""Shared fixtures."""

from __future__ import annotations

import pytest

from node_catalog.config import CatalogConfig
from tests._fixtures.repository import (
    HELPER_SOURCE,
    LANGCHAIN,
    LANGCHAIN_CREDS,
    NODES_BASE,
    NODES_BASE_CREDS,
    FakeRepository,
    credential_source,
    node_source,
)


@pytest.fixture
def repo() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def config() -> CatalogConfig:
    return CatalogConfig(batch_delay=0)


@pytest.fixture
def populated_repo(repo) -> FakeRepository:
    """Two packages, one unparseable node file, and a few credentials."""
    repo.add_file(NODES_BASE, "Slack/Slack.node.ts", node_source("Slack", group="output", description="Consume Slack API"))
    repo.add_file(NODES_BASE, "Slack/GenericFunctions.ts", HELPER_SOURCE)
    repo.add_file(NODES_BASE, "Set/Set.node.ts", node_source("Set", "Edit Fields (Set)", group="input"))
    repo.add_file(NODES_BASE, "Helper/Helper.node.ts", HELPER_SOURCE)
    repo.add_dir(NODES_BASE, "Slack")
    repo.add_file(LANGCHAIN, "agents/Agent/Agent.node.ts", node_source("Agent", "AI Agent", group="transform"))
    repo.add_file(LANGCHAIN, "llms/OpenAi/OpenAi.node.ts", node_source("OpenAi", "OpenAI", group="transform"))
    repo.add_file(NODES_BASE_CREDS, "SlackOAuth2Api.credentials.ts", credential_source("SlackOAuth2Api"))
    repo.add_file(NODES_BASE_CREDS, "SlackApi.credentials.ts", credential_source("SlackApi"))
    repo.add_file(NODES_BASE_CREDS, "HttpBasicAuth.credentials.ts", credential_source("HttpBasicAuth"))
    repo.add_file(LANGCHAIN_CREDS, "OpenAiApi.credentials.ts", credential_source("OpenAiApi"))
    return repo
