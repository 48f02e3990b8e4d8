"""Tests for the default HTTP probe analysis function."""

from __future__ import annotations

import httpx
import pytest

from sitegrade.core.classifier import ErrorClassifier
from sitegrade.probe import HttpProbe, score_response


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/old":
        return httpx.Response(301, headers={"Location": "https://site.test/new"})
    if request.url.path == "/missing":
        return httpx.Response(404, text="not here")
    return httpx.Response(200, text="<html><title>ok</title></html>")


@pytest.fixture
def probe() -> HttpProbe:
    return HttpProbe(timeout=5.0, transport=httpx.MockTransport(_handler))


class TestScoreResponse:
    def test_penalty(self):
        assert score_response(0) == 100
        assert score_response(2) == 80
        assert score_response(20) == 0


class TestHttpProbe:
    @pytest.mark.asyncio
    async def test_success(self, probe):
        """Test a 200 response yields technical details and a full score."""
        result = await probe("https://site.test/", None)
        assert result["url"] == "https://site.test/"
        assert result["status_code"] == 200
        assert result["redirects"] == 0
        assert result["overall_score"] == 100
        assert result["page_size"] == len("<html><title>ok</title></html>")
        assert result["load_time_ms"] >= 0

    @pytest.mark.asyncio
    async def test_redirect_penalty(self, probe):
        result = await probe("https://site.test/old")
        assert result["redirects"] == 1
        assert result["overall_score"] == 90

    @pytest.mark.asyncio
    async def test_http_error_is_classifiable(self, probe):
        """Test a 404 raises an error the classifier maps to HTTP_404."""
        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await probe("https://site.test/missing")
        classified = ErrorClassifier().classify(exc_info.value, "https://site.test/missing")
        assert classified.code == "HTTP_404"

    @pytest.mark.asyncio
    async def test_config_headers(self):
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("X-Token", ""))
            return httpx.Response(200, text="")

        probe = HttpProbe(transport=httpx.MockTransport(handler))
        await probe("https://site.test/", {"headers": {"X-Token": "abc"}})
        assert seen == ["abc"]

    def test_default_user_agent(self):
        assert HttpProbe().headers["User-Agent"].startswith("sitegrade/")
