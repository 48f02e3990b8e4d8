"""HTTP probe: the default analysis function.

Fetches a URL and reports basic technical details.  Real scoring pipelines
plug into the scheduler the same way; this one keeps the CLI useful on its
own.

Result shape::

    {
        "url": "https://example.com/",
        "timestamp": "2026-01-01T00:00:00+00:00",
        "status_code": 200,
        "load_time_ms": 123,
        "page_size": 1256,
        "redirects": 0,
        "overall_score": 100,
    }

The score starts at 100 and loses 10 points per redirect (floor 0).  HTTP
statuses >= 400 raise ``httpx.HTTPStatusError`` so the job runner can
classify, retry and degrade them.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Any

import httpx

from sitegrade import __version__
from sitegrade.core.errors import utcnow
from sitegrade.core.logging import get_logger

logger = get_logger(__name__)

REDIRECT_PENALTY = 10
DEFAULT_HEADERS = {"User-Agent": f"sitegrade/{__version__}"}


def score_response(redirects: int) -> int:
    return max(0, 100 - REDIRECT_PENALTY * redirects)


class HttpProbe:
    """Callable analysis function backed by ``httpx.AsyncClient``.

    Args:
        timeout: Client-side timeout in seconds (the scheduler's per-target
            deadline still applies on top)
        transport: Optional transport, e.g. ``httpx.MockTransport`` in tests
        headers: Extra request headers
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: Mapping[str, str] | None = None,
    ):
        self.timeout = timeout
        self.transport = transport
        self.headers = {**DEFAULT_HEADERS, **(headers or {})}

    async def __call__(self, target: str, config: Any = None) -> dict[str, Any]:
        headers = dict(self.headers)
        if isinstance(config, Mapping) and isinstance(config.get("headers"), Mapping):
            headers.update(config["headers"])

        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            follow_redirects=True,
            headers=headers,
        ) as client:
            started = time.perf_counter()
            response = await client.get(target)
            load_time_ms = round((time.perf_counter() - started) * 1000)
            response.raise_for_status()

        redirects = len(response.history)
        logger.debug(
            "probe.fetched",
            url=target,
            status_code=response.status_code,
            redirects=redirects,
            load_time_ms=load_time_ms,
        )
        return {
            "url": target,
            "timestamp": utcnow().isoformat(),
            "status_code": response.status_code,
            "load_time_ms": load_time_ms,
            "page_size": len(response.content),
            "redirects": redirects,
            "overall_score": score_response(redirects),
        }


async def http_probe(target: str, config: Any = None) -> dict[str, Any]:
    """Probe ``target`` with a default :class:`HttpProbe`."""
    return await HttpProbe()(target, config)


__all__ = ["HttpProbe", "http_probe", "score_response"]
