"""Tests for the web search and deployment collaborators (respx-mocked)."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from infra.deploy import DeploymentClient
from infra.search import SEARCH_UNAVAILABLE, WebSearch

DDG = "https://api.duckduckgo.com/"
BRAVE = "https://api.search.brave.com/res/v1/web/search"
SERPAPI = "https://serpapi.com/search.json"
DEPLOY = "http://deployer.test/api/deploy"


@respx.mock(assert_all_called=False)
class TestWebSearch:
    @pytest.mark.asyncio
    async def test_duckduckgo_answer(self):
        respx.get(DDG).mock(return_value=httpx.Response(200, json={
            "AbstractText": "Next.js is a React framework.",
            "RelatedTopics": [{"Text": "App Router"}, {"Name": "group"}, {"Text": "Pages Router"}],
            "Answer": "",
        }))
        result = await WebSearch().search("what is next.js")
        assert result == (
            "Abstract: Next.js is a React framework.\n"
            "Related Information:\n"
            "1. App Router\n"
            "2. Pages Router"
        )

    @pytest.mark.asyncio
    async def test_falls_back_to_brave(self):
        respx.get(DDG).mock(return_value=httpx.Response(200, json={"AbstractText": "", "RelatedTopics": []}))
        brave = respx.get(BRAVE).mock(return_value=httpx.Response(200, json={"web": {"results": [
            {"title": "Vercel limits", "description": "Function size", "url": "https://vercel.com/docs/limits"},
        ]}}))

        result = await WebSearch(brave_api_key="brave-key").search("vercel limits")

        assert result.startswith("Search Results:\n1. Vercel limits\nFunction size\nURL: https://vercel.com/docs/limits")
        assert brave.calls.last.request.headers["X-Subscription-Token"] == "brave-key"

    @pytest.mark.asyncio
    async def test_falls_back_to_serpapi_after_errors(self):
        respx.get(DDG).mock(side_effect=httpx.ConnectError("down"))
        respx.get(BRAVE).mock(return_value=httpx.Response(500))
        respx.get(SERPAPI).mock(return_value=httpx.Response(200, json={"organic_results": [
            {"title": "Netlify", "snippet": "Build settings", "link": "https://docs.netlify.com"},
        ]}))

        result = await WebSearch(brave_api_key="b", serpapi_key="s").search("netlify build")

        assert "1. Netlify\nBuild settings\nURL: https://docs.netlify.com" in result

    @pytest.mark.asyncio
    async def test_all_providers_failing(self):
        respx.get(DDG).mock(return_value=httpx.Response(503))
        assert await WebSearch().search("anything") == SEARCH_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_keyless_providers_are_skipped(self):
        respx.get(DDG).mock(return_value=httpx.Response(200, json={}))
        brave = respx.get(BRAVE)
        assert await WebSearch().search("x") == SEARCH_UNAVAILABLE
        assert not brave.called

    @pytest.mark.asyncio
    async def test_empty_query(self):
        assert await WebSearch().search("   ") == SEARCH_UNAVAILABLE


@respx.mock(assert_all_called=False)
class TestDeploymentClient:
    @pytest.mark.asyncio
    async def test_success(self):
        route = respx.post(DEPLOY).mock(return_value=httpx.Response(200, json={
            "success": True, "deploymentUrl": "https://shop.vercel.app", "deploymentId": "dpl_1",
        }))

        result = await DeploymentClient(DEPLOY).deploy("acme/shop", "Vercel")

        assert result.success is True
        assert result.url == "https://shop.vercel.app"
        assert result.deployment_id == "dpl_1"
        assert json.loads(route.calls.last.request.content) == {"projectId": "acme/shop", "platform": "vercel"}

    @pytest.mark.asyncio
    async def test_platform_failure(self):
        respx.post(DEPLOY).mock(return_value=httpx.Response(200, json={"success": False, "error": "Build failed"}))
        result = await DeploymentClient(DEPLOY).deploy("acme/shop", "netlify")
        assert result.success is False
        assert result.error == "Build failed"

    @pytest.mark.asyncio
    async def test_http_error_without_body(self):
        respx.post(DEPLOY).mock(return_value=httpx.Response(502, text="Bad gateway"))
        result = await DeploymentClient(DEPLOY).deploy("acme/shop", "cloudflare")
        assert result.error == "HTTP 502"

    @pytest.mark.asyncio
    async def test_network_failure_never_raises(self):
        respx.post(DEPLOY).mock(side_effect=httpx.ConnectError("refused"))
        result = await DeploymentClient(DEPLOY).deploy("acme/shop", "vercel")
        assert result.success is False
        assert "unavailable" in result.error

    @pytest.mark.asyncio
    async def test_unsupported_platform(self):
        route = respx.post(DEPLOY)
        result = await DeploymentClient(DEPLOY).deploy("acme/shop", "heroku")
        assert result.success is False
        assert "Unsupported" in result.error
        assert not route.called
