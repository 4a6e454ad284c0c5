"""Valyu answer proxy — forwards a tariff question and re-streams the SSE reply."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

import httpx

from tariffs.config import config
from tariffs.errors import MalformedRequest, UpstreamFailure
from tariffs.search_tool import SEC_FILINGS_SOURCE

logger = logging.getLogger(__name__)

_SYSTEM_INSTRUCTIONS = (
    "You are a tariff and trade policy analyst. Focus on tariff exposure, import duties, "
    "trade restrictions, supply chain risks, and regulatory impacts. Cite specific sections "
    "and quotes from SEC filings when available. Be precise and data-driven."
)


def _make_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=config.valyu_base_url,
        timeout=httpx.Timeout(config.search_timeout_seconds, read=None),
    )


def build_answer_request(query: str, ticker: str | None) -> dict:
    """Scope the question to a company's filings when a ticker is known."""
    if ticker:
        search_query = f"{query} for {ticker} based on SEC filings 10-K 10-Q"
    else:
        search_query = f"{query} tariff trade policy SEC filings"
    body = {
        "query": search_query,
        "search_type": "all",
        "data_max_price": 1,
        "system_instructions": _SYSTEM_INSTRUCTIONS,
    }
    if ticker:
        body["included_sources"] = [SEC_FILINGS_SOURCE]
    return body


async def stream_answer(query: str | None, ticker: str | None = None) -> AsyncIterator[str]:
    """Open the upstream answer stream and return an iterator over its text.

    A non-success upstream status is raised before any byte is forwarded.
    """
    query = (query or "").strip()
    if not query:
        raise MalformedRequest("Query is required")
    api_key = config.require_valyu_key()

    client = _make_client()
    request = client.build_request(
        "POST",
        "/answer",
        json=build_answer_request(query, ticker),
        headers={"x-api-key": api_key},
    )
    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as e:
        await client.aclose()
        raise UpstreamFailure(f"Answer API failed: {e}") from e

    if response.status_code >= 400:
        detail = (await response.aread()).decode("utf-8", errors="replace")
        await response.aclose()
        await client.aclose()
        raise UpstreamFailure(f"Answer API failed: {detail}", upstream_status=response.status_code)

    logger.info("Answer stream opened for '%s' (ticker=%s)", query[:80], ticker)
    return _relay(client, response)


async def _relay(client: httpx.AsyncClient, response: httpx.Response) -> AsyncIterator[str]:
    try:
        async for text in response.aiter_text():
            yield text
    finally:
        await response.aclose()
        await client.aclose()
