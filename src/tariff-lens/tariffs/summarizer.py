"""Tariff exposure summarizer — streams a cited narrative as server-sent events.

The model is told to wrap every substantiated clause in
``{{cite:N}}…{{/cite}}`` where *N* is the 1-based position of the excerpt
in the numbered context block.  The event stream is:

1. one ``{"sources": [...]}`` manifest, indexed like the markers
2. zero or more ``{"content": "..."}`` deltas
3. at most one ``{"error": "..."}`` if generation breaks mid-stream
4. the ``[DONE]`` sentinel, always
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import openai
from openai import AsyncOpenAI, AsyncStream

from tariffs.config import config
from tariffs.errors import MalformedRequest, UpstreamFailure
from tariffs.models import SourceExcerpt, SourceSummary
from tariffs.sse import encode_done, encode_event

logger = logging.getLogger(__name__)

SUMMARY_MAX_SOURCES = 4
SUMMARY_MAX_CONTENT_CHARS = 4000
TRUNCATION_INDICATOR = "\n[...truncated]"

_SYSTEM_PROMPT = """\
You are a senior tariff and trade policy analyst. You analyze SEC filing \
excerpts and produce clear, structured summaries of a company's tariff exposure.

CITATION FORMAT (CRITICAL - follow this exactly):
When referencing information from a source, wrap the cited text in these markers:
{{cite:N}}the quoted or paraphrased text from the source{{/cite}}

Where N is the source number (1-based). The markers must wrap meaningful \
phrases or sentences - not single words. Keep each citation within a single paragraph.

EXAMPLE:
The company has {{cite:1}}significant exposure to tariffs on Chinese imports, \
with approximately 40% of components sourced from affected regions{{/cite}}. \
Management has acknowledged this as a {{cite:2}}material risk to operating \
margins in the near term{{/cite}}.

RULES:
- Every factual claim MUST be wrapped in {{cite:N}}...{{/cite}} markers
- Do NOT put paragraph breaks inside citation markers
- Do NOT nest citation markers
- Structure your response with ## headings
- Be precise - use exact language from filings when impactful
- Highlight severity: is this existential risk or manageable cost?
- Call out mitigation strategies the company has disclosed
- Note trends across filings if visible (getting better/worse)
- Aim for 500-800 words
- Bold key terms: **tariffs**, **duties**, **trade war**, **supply chain**, **import**, **export**, etc.

STRUCTURE:
## Overview
Brief 2-3 sentence executive summary of tariff exposure level.

## Key Exposures
Specific tariff risks with cited text from filing sections.

## Financial Impact
Any quantified impacts, cost estimates, or margin effects mentioned.

## Mitigation Strategies
What the company is doing about it (reshoring, diversification, pricing).

## Outlook
Forward-looking statements and trend direction.
"""


def truncate_content(content: str, limit: int = SUMMARY_MAX_CONTENT_CHARS) -> str:
    """Cut *content* to *limit* characters, marking the cut explicitly."""
    if len(content) <= limit:
        return content
    return content[:limit] + TRUNCATION_INDICATOR


def build_context(excerpts: list[SourceExcerpt], company: str) -> str:
    """Format excerpts into the numbered context block the markers refer to."""
    blocks = []
    for i, r in enumerate(excerpts, 1):
        blocks.append(
            f"[Source {i}]\n"
            f"Title: {r.title}\n"
            f"URL: {r.url}\n"
            f"Filing Type: {r.form_type}\n"
            f"Date: {r.date or 'Unknown date'}\n"
            f"Company: {r.metadata.get('name') or company}\n"
            f"\n"
            f"Content:\n"
            f"{truncate_content(r.content)}"
        )
    return "\n\n---\n\n".join(blocks)


def build_messages(excerpts: list[SourceExcerpt], ticker: str, company_name: str | None) -> list[dict]:
    company = company_name or ticker
    n = len(excerpts)
    user = (
        f"Analyze the tariff exposure for **{company}** ({ticker}) based on these "
        f"{n} SEC filing excerpts.\n\n"
        f"IMPORTANT: Cite by wrapping text in {{{{cite:N}}}}...{{{{/cite}}}} where N is "
        f"the source number (1-{n}).\n\n"
        f"---\n\n"
        f"{build_context(excerpts, company)}"
    )
    return [
        {"role": "system", "content": _SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]


def build_manifest(excerpts: list[SourceExcerpt]) -> list[dict[str, Any]]:
    return [SourceSummary.from_excerpt(i, r).to_manifest() for i, r in enumerate(excerpts, 1)]


def _make_client() -> AsyncOpenAI:
    """Create the OpenAI client with the upstream's own maximum duration."""
    return AsyncOpenAI(
        api_key=config.require_openai_key(),
        timeout=config.openai_timeout_seconds,
    )


async def stream_summary(
    ticker: str,
    company_name: str | None,
    results: Any,
) -> AsyncIterator[str]:
    """Start a summary and return its SSE event iterator.

    Everything that can fail before the first byte (bad input, missing key,
    the completion call being refused) raises here, so no stream is opened.
    """
    if not results or not isinstance(results, list):
        raise MalformedRequest("Search results required")
    try:
        excerpts = [SourceExcerpt.from_provider(r) for r in results[:SUMMARY_MAX_SOURCES]]
    except (AttributeError, TypeError) as e:
        raise MalformedRequest("Search results must be objects") from e

    client = _make_client()
    messages = build_messages(excerpts, ticker or "", company_name)

    logger.info(
        "Starting summary for %s with %d sources (model=%s)",
        ticker, len(excerpts), config.openai_model,
    )
    try:
        completion = await client.chat.completions.create(
            model=config.openai_model,
            stream=True,
            max_completion_tokens=config.summary_max_completion_tokens,
            messages=messages,
        )
    except openai.APIError as e:
        await client.close()
        status = e.status_code if isinstance(e, openai.APIStatusError) else None
        raise UpstreamFailure(e.message, upstream_status=status) from e

    return _emit(build_manifest(excerpts), completion, client)


async def _emit(
    manifest: list[dict[str, Any]],
    completion: AsyncStream[Any],
    client: AsyncOpenAI,
) -> AsyncIterator[str]:
    """Yield the manifest, the content deltas, then the sentinel (even on error).

    The completion stream and its client are closed when the generator ends,
    including when the caller stops reading early.
    """
    chunks = 0
    try:
        yield encode_event({"sources": manifest})
        try:
            async for chunk in completion:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    chunks += 1
                    yield encode_event({"content": content})
        except Exception as e:
            logger.error("Summary stream interrupted after %d chunks: %s", chunks, e)
            yield encode_event({"error": str(e) or "Stream error"})
        else:
            logger.info("Summary stream finished (%d chunks)", chunks)
        yield encode_done()
    finally:
        await completion.close()
        await client.close()
