"""Tests for the Valyu filing / news search tool."""

from __future__ import annotations

import json
from datetime import date

import httpx
import pytest

from conftest import make_result
from tariffs import search_tool
from tariffs.errors import MalformedRequest, MissingConfiguration, UpstreamFailure
from tariffs.models import SourceExcerpt
from tariffs.search_tool import clamp_max_results, merge_unique, search_filings, search_news, sort_by_recency


@pytest.fixture
def provider(monkeypatch):
    """Route search requests to a scripted handler and record request bodies."""
    state = {"bodies": [], "responses": []}

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        state["bodies"].append(body)
        assert request.headers["x-api-key"] == "test-valyu-key"
        respond = state["responses"].pop(0) if state["responses"] else {"success": True, "results": []}
        if callable(respond):
            return respond(body)
        if isinstance(respond, httpx.Response):
            return respond
        return httpx.Response(200, json=respond)

    def make_client():
        return httpx.AsyncClient(
            base_url="https://valyu.test/v1",
            transport=httpx.MockTransport(handler),
        )

    monkeypatch.setattr(search_tool, "_make_client", make_client)
    return state


def _excerpt(n: int, date_: str | None = "2025-01-01", score: float = 0.5, **kw) -> SourceExcerpt:
    meta = {"date": date_} if date_ else {}
    return SourceExcerpt(title=f"t{n}", url=f"u{n}", content="c", relevance_score=score, metadata=meta, **kw)


# -----------------------------------------------------------------------
# Pure helpers
# -----------------------------------------------------------------------


class TestClampMaxResults:
    @pytest.mark.parametrize(
        "raw,expected",
        [(10, 10), (50, 20), (-3, 1), (0, 10), ("7", 7), (None, 10), ("lots", 10), (3.9, 3)],
    )
    def test_clamp(self, raw, expected) -> None:
        assert clamp_max_results(raw) == expected

    def test_custom_default(self) -> None:
        assert clamp_max_results(None, default=8) == 8


class TestMergeAndSort:
    def test_merge_keeps_first_occurrence_per_identity(self) -> None:
        a = [_excerpt(1, id="x"), _excerpt(2, id="y")]
        b = [_excerpt(3, id="y"), _excerpt(4, id="z")]
        merged = merge_unique(a, b)
        assert [r.title for r in merged] == ["t1", "t2", "t4"]

    def test_identity_falls_back_to_url(self) -> None:
        merged = merge_unique([_excerpt(1)], [_excerpt(1)])
        assert len(merged) == 1

    def test_sort_newest_first_then_relevance(self) -> None:
        results = [
            _excerpt(1, "2024-05-01", 0.9),
            _excerpt(2, "2025-02-01", 0.1),
            _excerpt(3, "2025-02-01", 0.8),
            _excerpt(4, None, 1.0),
        ]
        assert [r.title for r in sort_by_recency(results)] == ["t3", "t2", "t1", "t4"]


# -----------------------------------------------------------------------
# search_filings
# -----------------------------------------------------------------------


class TestSearchFilings:
    @pytest.mark.asyncio
    async def test_requires_query_or_ticker(self, provider) -> None:
        with pytest.raises(MalformedRequest):
            await search_filings("  ", None)
        assert provider["bodies"] == []

    @pytest.mark.asyncio
    async def test_missing_key(self, provider, without_keys) -> None:
        with pytest.raises(MissingConfiguration):
            await search_filings("tariffs", None)
        assert provider["bodies"] == []

    @pytest.mark.asyncio
    async def test_query_search_is_single_call_with_date_filter(self, provider) -> None:
        provider["responses"].append({"success": True, "results": [make_result(1), make_result(2)]})

        results = await search_filings("steel tariffs", max_results=5, today=date(2025, 6, 1))

        assert len(provider["bodies"]) == 1
        body = provider["bodies"][0]
        assert body["query"] == "steel tariffs"
        assert body["max_num_results"] == 5
        assert body["start_date"] == "2023-06-01"
        assert body["included_sources"] == ["valyu/valyu-sec-filings"]
        assert [r.title for r in results] == ["Filing 1", "Filing 2"]

    @pytest.mark.asyncio
    async def test_ticker_search_merges_annual_and_quarterly(self, provider) -> None:
        def respond(body):
            if "10-K" in body["query"]:
                return httpx.Response(200, json={"success": True, "results": [
                    make_result(1, date="2024-02-01"), make_result(2, date="2024-02-01"),
                ]})
            return httpx.Response(200, json={"success": True, "results": [
                make_result(2, date="2024-02-01"), make_result(3, date="2025-01-10"),
            ]})

        provider["responses"].extend([respond, respond])

        results = await search_filings(ticker="NKE", max_results=10)

        limits = sorted(b["max_num_results"] for b in provider["bodies"])
        assert limits == [4, 6]
        assert [r.id for r in results] == ["doc-3", "doc-1", "doc-2"]

    @pytest.mark.asyncio
    async def test_falls_back_to_undated_search(self, provider) -> None:
        provider["responses"].extend([
            {"success": True, "results": []},
            {"success": True, "results": [make_result(1, date="2019-03-01")]},
        ])

        results = await search_filings("old tariffs")

        assert len(provider["bodies"]) == 2
        assert "start_date" in provider["bodies"][0]
        assert "start_date" not in provider["bodies"][1]
        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_results_capped(self, provider) -> None:
        provider["responses"].append({"success": True, "results": [make_result(i) for i in range(1, 8)]})
        results = await search_filings("tariffs", max_results=3)
        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_upstream_error_status(self, provider) -> None:
        provider["responses"].append(httpx.Response(429, json={"success": False, "error": "rate limited"}))
        with pytest.raises(UpstreamFailure) as exc:
            await search_filings("tariffs")
        assert exc.value.message == "rate limited"
        assert exc.value.upstream_status == 429

    @pytest.mark.asyncio
    async def test_malformed_body(self, provider) -> None:
        provider["responses"].append(httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(UpstreamFailure):
            await search_filings("tariffs")

    @pytest.mark.asyncio
    async def test_non_string_content_is_serialized(self, provider) -> None:
        provider["responses"].append({"success": True, "results": [make_result(1, content={"rows": [1, 2]})]})
        results = await search_filings("tariffs")
        assert json.loads(results[0].content) == {"rows": [1, 2]}


class TestSearchNews:
    @pytest.mark.asyncio
    async def test_news_window_and_defaults(self, provider) -> None:
        provider["responses"].append({"success": True, "results": [make_result(1)]})

        results = await search_news(None, today=date(2025, 4, 10))

        body = provider["bodies"][0]
        assert body["search_type"] == "news"
        assert body["country_code"] == "US"
        assert body["start_date"] == "2025-04-03"
        assert body["max_num_results"] == 8
        assert len(results) == 1
