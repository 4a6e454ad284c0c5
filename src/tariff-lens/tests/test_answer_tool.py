"""Tests for the answer proxy."""

from __future__ import annotations

import json

import httpx
import pytest

from tariffs import answer_tool
from tariffs.answer_tool import build_answer_request, stream_answer
from tariffs.errors import MalformedRequest, MissingConfiguration, UpstreamFailure


@pytest.fixture
def upstream(monkeypatch):
    state = {"response": httpx.Response(200, text='data: {"content": "hi"}\n\n'), "bodies": []}

    def handler(request: httpx.Request) -> httpx.Response:
        state["bodies"].append(json.loads(request.content))
        return state["response"]

    monkeypatch.setattr(
        answer_tool,
        "_make_client",
        lambda: httpx.AsyncClient(base_url="https://valyu.test/v1", transport=httpx.MockTransport(handler)),
    )
    return state


class TestBuildAnswerRequest:
    def test_ticker_scopes_to_filings(self) -> None:
        body = build_answer_request("How exposed is it?", "AAPL")
        assert body["query"] == "How exposed is it? for AAPL based on SEC filings 10-K 10-Q"
        assert body["included_sources"] == ["valyu/valyu-sec-filings"]

    def test_without_ticker(self) -> None:
        body = build_answer_request("Steel duties", None)
        assert body["query"].endswith("tariff trade policy SEC filings")
        assert "included_sources" not in body


class TestStreamAnswer:
    @pytest.mark.asyncio
    async def test_query_required(self, upstream) -> None:
        with pytest.raises(MalformedRequest):
            await stream_answer("   ")
        assert upstream["bodies"] == []

    @pytest.mark.asyncio
    async def test_missing_key(self, upstream, without_keys) -> None:
        with pytest.raises(MissingConfiguration):
            await stream_answer("tariffs?")

    @pytest.mark.asyncio
    async def test_relays_upstream_bytes(self, upstream) -> None:
        chunks = await stream_answer("tariffs?", "NKE")
        text = "".join([c async for c in chunks])
        assert text == 'data: {"content": "hi"}\n\n'
        assert upstream["bodies"][0]["included_sources"] == ["valyu/valyu-sec-filings"]

    @pytest.mark.asyncio
    async def test_upstream_error_raised_before_streaming(self, upstream) -> None:
        upstream["response"] = httpx.Response(403, text="forbidden")
        with pytest.raises(UpstreamFailure) as exc:
            await stream_answer("tariffs?")
        assert exc.value.upstream_status == 403
        assert exc.value.message == "Answer API failed: forbidden"
