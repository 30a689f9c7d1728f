# =============================================================================
# Search Gateway — Bing Web Search v7
# =============================================================================
#
# Thin wrapper around the web-search provider. Given a query and a result
# limit, returns an ordered list of (title, snippet) pairs exactly as the
# provider ranked them.
#
# CONTRACT:
#   call(SearchRequest) → list[SearchResult]
#   raises GatewayTimeoutError | GatewayAuthError | UpstreamError
#
# The gateway never swallows failures itself. Deciding that grounding is
# optional is the chat orchestrator's job, and it needs to see the error
# to log it.
#
# DESIGN DECISION: httpx.AsyncClient injected through the constructor.
# Production code lets the gateway own a client with a short timeout;
# tests pass a client backed by httpx.MockTransport.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from app.config import settings
from app.errors import (
    GatewayAuthError,
    GatewayTimeoutError,
    UpstreamError,
    UpstreamMalformedResponseError,
)

logger = logging.getLogger(__name__)

_GATEWAY = "search"


@dataclass(frozen=True)
class SearchRequest:
    query: str
    result_limit: int = 5


@dataclass(frozen=True)
class SearchResult:
    """One web result used as grounding. Never persisted."""

    title: str
    snippet: str


class SearchGateway(Protocol):
    async def call(self, request: SearchRequest) -> list[SearchResult]:
        ...


class BingSearchGateway:
    """
    Bing Web Search v7 client.

    Bing omits the `webPages` section entirely when nothing matches, so a
    missing section is zero results, not a malformed payload.
    """

    def __init__(
        self,
        api_key: str | None = None,
        endpoint: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.bing_api_key
        self._endpoint = endpoint or settings.bing_search_endpoint
        self._client = client or httpx.AsyncClient(
            timeout=settings.search_timeout_seconds,
        )

    async def call(self, request: SearchRequest) -> list[SearchResult]:
        if not self._api_key:
            raise GatewayAuthError(_GATEWAY, "no Bing API key configured")

        try:
            response = await self._client.get(
                self._endpoint,
                headers={"Ocp-Apim-Subscription-Key": self._api_key},
                params={
                    "q": request.query,
                    "count": request.result_limit,
                    "responseFilter": "Webpages",
                },
            )
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(_GATEWAY, "request timed out") from e
        except httpx.HTTPError as e:
            raise UpstreamError(_GATEWAY, f"transport error: {e}") from e

        if response.status_code in (401, 403):
            raise GatewayAuthError(
                _GATEWAY, f"rejected credentials ({response.status_code})",
            )
        if response.is_error:
            raise UpstreamError(_GATEWAY, f"HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamMalformedResponseError(_GATEWAY, "body is not JSON") from e

        results = _parse_web_pages(payload)[: request.result_limit]
        logger.debug(
            "Search returned %d results for query='%s'",
            len(results), request.query[:80],
        )
        return results


def _parse_web_pages(payload: object) -> list[SearchResult]:
    if not isinstance(payload, dict):
        raise UpstreamMalformedResponseError(_GATEWAY, "body is not an object")

    web_pages = payload.get("webPages")
    if web_pages is None:
        return []

    values = web_pages.get("value") if isinstance(web_pages, dict) else None
    if not isinstance(values, list):
        raise UpstreamMalformedResponseError(_GATEWAY, "webPages.value missing")

    results = []
    for item in values:
        if not isinstance(item, dict):
            raise UpstreamMalformedResponseError(_GATEWAY, "result is not an object")
        name = item.get("name")
        snippet = item.get("snippet", "")
        if not isinstance(name, str) or not isinstance(snippet, str):
            raise UpstreamMalformedResponseError(_GATEWAY, "result missing name/snippet")
        results.append(SearchResult(title=name, snippet=snippet))
    return results


def build_site_filter(domains: list[str]) -> str:
    """
    Restrict a Bing query to the given web properties.

    >>> build_site_filter(["furia.gg", "twitter.com/furia"])
    'site:furia.gg OR site:twitter.com/furia'
    """
    return " OR ".join(f"site:{domain}" for domain in domains)
