"""Valyu search tool — SEC filing excerpts and tariff news.

Ticker lookups issue two concurrent searches (annual 10-K and quarterly
10-Q), merge them and de-duplicate by provider id.  Results are restricted
to the last two years; when that yields nothing the search is repeated
without a date filter.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import date, timedelta
from typing import Any

import httpx

from tariffs.config import config
from tariffs.errors import MalformedRequest, UpstreamFailure
from tariffs.models import SourceExcerpt

logger = logging.getLogger(__name__)

SEC_FILINGS_SOURCE = "valyu/valyu-sec-filings"
DEFAULT_MAX_RESULTS = 10
MAX_RESULTS_CAP = 20

# Share of a ticker search spent on annual vs quarterly filings
_ANNUAL_SHARE = 0.6
_QUARTERLY_SHARE = 0.4


def _make_client() -> httpx.AsyncClient:
    """Build the HTTP client for one request (patched in tests)."""
    return httpx.AsyncClient(
        base_url=config.valyu_base_url,
        timeout=config.search_timeout_seconds,
    )


def clamp_max_results(raw: Any, default: int = DEFAULT_MAX_RESULTS, cap: int = MAX_RESULTS_CAP) -> int:
    """Coerce a caller-supplied bound into ``[1, cap]``; junk or zero means *default*."""
    try:
        value = int(float(raw))
    except (TypeError, ValueError):
        value = 0
    if value == 0:
        value = default
    return min(max(1, value), cap)


def _years_ago(today: date, years: int) -> date:
    try:
        return today.replace(year=today.year - years)
    except ValueError:  # Feb 29
        return today.replace(year=today.year - years, day=28)


async def _search(
    client: httpx.AsyncClient,
    api_key: str,
    query: str,
    **options: Any,
) -> list[SourceExcerpt]:
    """POST one search and return its results as excerpts."""
    body = {"query": query, **{k: v for k, v in options.items() if v is not None}}
    try:
        response = await client.post("/deepsearch", json=body, headers={"x-api-key": api_key})
    except httpx.HTTPError as e:
        raise UpstreamFailure(f"Search request failed: {e}") from e

    try:
        data = response.json()
    except ValueError as e:
        raise UpstreamFailure(
            f"Search API returned a malformed body (HTTP {response.status_code})",
            upstream_status=response.status_code,
        ) from e

    if response.status_code >= 400 or data.get("success") is False:
        message = data.get("error") or f"Search API returned HTTP {response.status_code}"
        raise UpstreamFailure(message, upstream_status=response.status_code)

    results = [SourceExcerpt.from_provider(r) for r in data.get("results") or []]
    logger.info("Search '%s' → %d results", query[:80], len(results))
    return results


def merge_unique(*result_sets: list[SourceExcerpt]) -> list[SourceExcerpt]:
    """Concatenate result sets, keeping the first excerpt per identity key."""
    seen: set[str] = set()
    merged: list[SourceExcerpt] = []
    for results in result_sets:
        for r in results:
            if r.identity not in seen:
                seen.add(r.identity)
                merged.append(r)
    return merged


def sort_by_recency(results: list[SourceExcerpt]) -> list[SourceExcerpt]:
    """Newest filing first, then by relevance."""
    return sorted(
        results,
        key=lambda r: (r.metadata.get("date") or "", r.relevance_score or 0.0),
        reverse=True,
    )


async def search_filings(
    query: str | None = None,
    ticker: str | None = None,
    max_results: Any = DEFAULT_MAX_RESULTS,
    today: date | None = None,
) -> list[SourceExcerpt]:
    """Search SEC filing excerpts by free-text query or by ticker.

    Parameters
    ----------
    query:
        Free-text query, used as-is when given.
    ticker:
        Company ticker; triggers the parallel 10-K / 10-Q search when no
        query is given.
    max_results:
        Upper bound on returned excerpts, clamped to ``[1, 20]``.

    Returns
    -------
    list[SourceExcerpt]
        Ordered by filing date (descending), then relevance.
    """
    query = (query or "").strip()
    ticker = (ticker or "").strip()
    if not query and not ticker:
        raise MalformedRequest("Query or ticker is required")

    api_key = config.require_valyu_key()
    limit = clamp_max_results(max_results)
    start_date = _years_ago(today or date.today(), 2).isoformat()
    options = {
        "search_type": "proprietary",
        "included_sources": [SEC_FILINGS_SOURCE],
        "response_length": "large",
    }

    async with _make_client() as client:
        if query:
            results = await _search(
                client, api_key, query,
                max_num_results=limit, start_date=start_date, **options,
            )
        else:
            annual, quarterly = await asyncio.gather(
                _search(
                    client, api_key, f"{ticker} tariff risks latest annual 10-K filing",
                    max_num_results=math.ceil(limit * _ANNUAL_SHARE), start_date=start_date, **options,
                ),
                _search(
                    client, api_key, f"{ticker} tariff risks latest quarterly 10-Q filing",
                    max_num_results=math.ceil(limit * _QUARTERLY_SHARE), start_date=start_date, **options,
                ),
            )
            results = merge_unique(annual, quarterly)

        if not results:
            fallback_query = query or f"{ticker} tariff risks latest 10-K 10-Q filing"
            logger.info("No recent filings for '%s' — retrying without date filter", fallback_query[:80])
            results = await _search(client, api_key, fallback_query, max_num_results=limit, **options)

    return sort_by_recency(results)[:limit]


async def search_news(
    query: str = "US tariff policy trade war import duties",
    max_results: Any = 8,
    today: date | None = None,
) -> list[SourceExcerpt]:
    """Search US news from the last seven days."""
    api_key = config.require_valyu_key()
    since = ((today or date.today()) - timedelta(days=7)).isoformat()
    async with _make_client() as client:
        return await _search(
            client, api_key, query or "US tariff policy trade war import duties",
            search_type="news",
            max_num_results=clamp_max_results(max_results, default=8),
            response_length="medium",
            country_code="US",
            start_date=since,
        )
