"""Consumer side of the citation stream.

``SummaryClient`` posts excerpts to ``/api/summarize`` and reads the SSE reply
into a ``SummaryView``.  While text is arriving the view only exposes the
marker-free buffer; once the terminal sentinel arrives the complete text is
re-parsed into the annotated document.  Visible updates are coalesced by
``UpdateBuffer`` so the view is not re-rendered on every fragment.
"""

from __future__ import annotations

import asyncio
import html
import json
import logging
from collections.abc import Callable
from typing import Any

import httpx

from tariffs.citations import strip_markers
from tariffs.errors import (
    MalformedRequest,
    StreamInterrupted,
    StreamTimeout,
    TariffLensError,
    UpstreamFailure,
    error_from_payload,
)
from tariffs.models import SourceExcerpt, SourceSummary
from tariffs.renderer import ExpansionState, PreviewController, render_document, render_streaming
from tariffs.sse import SSEDecoder, StreamEvent

logger = logging.getLogger(__name__)

SUMMARY_READ_TIMEOUT = 90.0
BATCH_WINDOW = 0.2


class UpdateBuffer:
    """Accumulates streamed fragments and flushes the cumulative text.

    The first fragment is flushed right away.  Later fragments schedule one
    flush ``window`` seconds out; anything appended meanwhile rides along.
    Each flush carries the whole text so far, so a later flush always
    supersedes an earlier one.
    """

    def __init__(self, on_flush: Callable[[str], None], window: float = BATCH_WINDOW) -> None:
        self._on_flush = on_flush
        self._window = window
        self._text = ""
        self._handle: asyncio.TimerHandle | None = None
        self._flushed = False

    @property
    def text(self) -> str:
        return self._text

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def append(self, fragment: str) -> None:
        self._text += fragment
        if not self._flushed:
            self.flush()
        elif self._handle is None:
            self._handle = asyncio.get_running_loop().call_later(self._window, self.flush)

    def flush(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._flushed = True
        self._on_flush(self._text)

    def reset(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._text = ""
        self._flushed = False


class SummaryView:
    """State of one summary panel: sources, text, error, disclosure state."""

    def __init__(
        self,
        on_update: Callable[[SummaryView], None] | None = None,
        batch_window: float = BATCH_WINDOW,
    ) -> None:
        self.on_update = on_update
        self.buffer = UpdateBuffer(self._show, batch_window)
        self.expansion = ExpansionState(bound=())
        self.preview = PreviewController()
        self.request: dict[str, Any] | None = None
        self.reset()

    def reset(self) -> None:
        self.buffer.reset()
        self.expansion.set_bound(())
        self.expansion.reset()
        self.preview.set_bound(())
        self.preview.close()
        self.sources: list[SourceSummary] = []
        self.visible_text = ""
        self.streaming = False
        self.complete = False
        self.error: str | None = None
        self.error_code: str | None = None

    # -- stream events -------------------------------------------------------

    def begin(self, ticker: str, company_name: str | None, results: list[dict[str, Any]]) -> None:
        self.reset()
        self.request = {"ticker": ticker, "companyName": company_name, "results": results}
        self.streaming = True

    def set_sources(self, manifest: list[dict[str, Any]]) -> None:
        """Bind the manifest; later manifests in the same stream are ignored."""
        if self.sources:
            return
        results = (self.request or {}).get("results") or []
        sources = []
        for raw in manifest:
            source = SourceSummary.from_manifest(raw)
            # The manifest omits excerpt text; it comes from the search results by position
            pos = source.index - 1
            if 0 <= pos < len(results) and isinstance(results[pos], dict):
                source.content = SourceExcerpt.from_provider(results[pos]).content
            sources.append(source)
        self.sources = sources
        bound = [s.index for s in sources]
        self.expansion.set_bound(bound)
        self.preview.set_bound(bound)

    def append(self, fragment: str) -> None:
        self.buffer.append(fragment)

    def fail(self, error: TariffLensError) -> None:
        logger.warning("Summary failed (%s): %s", error.code, error.message)
        self.error = error.message
        self.error_code = error.code

    def finish(self, complete: bool) -> None:
        if self.buffer.pending:
            self.buffer.flush()
        self.streaming = False
        self.complete = complete
        self._notify()

    def _show(self, text: str) -> None:
        self.visible_text = strip_markers(text)
        self._notify()

    def _notify(self) -> None:
        if self.on_update is not None:
            self.on_update(self)

    # -- interaction ---------------------------------------------------------

    @property
    def raw_text(self) -> str:
        return self.buffer.text

    def toggle(self, index: int) -> bool:
        expanded = self.expansion.toggle(index)
        self._notify()
        return expanded

    @property
    def html(self) -> str:
        if self.streaming:
            body = render_streaming(self.raw_text)
        else:
            body = render_document(self.raw_text, self.sources, self.expansion)
        if self.error:
            body += (
                f'\n<div class="summary-error" role="alert" data-code="{self.error_code}">'
                f"{html.escape(self.error)}"
                f'<button type="button" data-action="retry">Try again</button></div>'
            )
        return body


class SummaryClient:
    """Reads ``/api/summarize`` into a ``SummaryView`` under a wall-clock budget."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        read_timeout: float = SUMMARY_READ_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.read_timeout = read_timeout
        self._transport = transport

    def _make_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            transport=self._transport,
            timeout=httpx.Timeout(30.0, read=None),
        )

    async def summarize(
        self,
        view: SummaryView,
        ticker: str,
        company_name: str | None,
        results: list[dict[str, Any]],
    ) -> SummaryView:
        view.begin(ticker, company_name, results)
        complete = False
        try:
            async with asyncio.timeout(self.read_timeout):
                complete = await self._consume(view)
        except TimeoutError:
            view.fail(StreamTimeout())
        except TariffLensError as e:
            view.fail(e)
        except httpx.HTTPError as e:
            view.fail(UpstreamFailure(f"Summary request failed: {e}"))
        finally:
            view.finish(complete and view.error is None)
        return view

    async def retry(self, view: SummaryView) -> SummaryView:
        """Discard everything shown so far and run the stored request again."""
        if view.request is None:
            raise MalformedRequest("Nothing to retry")
        request = view.request
        return await self.summarize(view, request["ticker"], request["companyName"], request["results"])

    async def _consume(self, view: SummaryView) -> bool:
        async with self._make_client() as client:
            async with client.stream("POST", "/api/summarize", json=view.request) as response:
                if response.status_code != 200:
                    body = await response.aread()
                    try:
                        data = json.loads(body)
                    except ValueError:
                        data = None
                    raise error_from_payload(response.status_code, data)

                decoder = SSEDecoder()
                async for chunk in response.aiter_text():
                    if self._apply(decoder.feed(chunk), view):
                        return True
                if self._apply(decoder.flush(), view):
                    return True
        if view.error is None:
            raise StreamInterrupted("The summary stream ended unexpectedly.")
        return False

    @staticmethod
    def _apply(events: list[StreamEvent], view: SummaryView) -> bool:
        """Apply decoded events to the view; True once the terminal sentinel is seen."""
        for event in events:
            if event.kind == "done":
                return True
            if event.kind == "sources" and isinstance(event.data, list):
                view.set_sources(event.data)
            elif event.kind == "content" and isinstance(event.data, str):
                view.append(event.data)
            elif event.kind == "error":
                view.fail(StreamInterrupted(str(event.data)))
        return False
