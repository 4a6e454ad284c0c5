"""Deep research adapter — create report tasks and read their status.

The provider has exposed the task id, progress and report under several
field names across versions.  ``normalize_task`` maps every variant to
``ResearchTask`` right here so nothing downstream sees the raw shape.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from tariffs.config import config
from tariffs.errors import MalformedRequest, UpstreamFailure
from tariffs.search_tool import SEC_FILINGS_SOURCE

logger = logging.getLogger(__name__)

RESEARCH_SOURCES = [SEC_FILINGS_SOURCE, "valyu/valyu-fred", "valyu/valyu-bls"]

TERMINAL_STATUSES = {"completed", "failed", "cancelled"}

_TASK_ID_FIELDS = ("deepresearch_id", "task_id", "taskId", "id")

_RESEARCH_PROMPT = """\
Comprehensive tariff exposure analysis for {company} ({ticker}).

Analyze the following aspects based on SEC filings (10-K, 10-Q), news, and economic data:

1. **Direct Tariff Exposure**: What specific tariffs affect this company? Which products or components are subject to import duties?
2. **Supply Chain Risk**: How dependent is the company on imports from countries facing tariff actions (China, EU, Mexico, Canada)? What percentage of COGS is affected?
3. **Risk Factor Disclosures**: What exact language does the company use in SEC filings about tariff risk? Quote directly from Risk Factors and MD&A sections.
4. **Financial Impact**: Any quantified estimates of tariff costs? Has the company disclosed pricing actions or margin impacts?
5. **Mitigation Strategies**: Is the company reshoring, nearshoring, or diversifying suppliers? Any specific actions mentioned?
6. **Competitive Position**: How does this company's tariff exposure compare to peers in the same sector?
7. **Trend Analysis**: Has the company's tariff-related language changed over recent filings? More cautious or less?
8. **Forward-Looking Statements**: What does the company say about future tariff impacts?

Provide specific quotes, section references, and filing dates wherever possible."""


@dataclass
class ResearchProgress:
    current_step: int
    total_steps: int

    @property
    def percent(self) -> int:
        if self.total_steps <= 0:
            return 0
        return round(self.current_step / self.total_steps * 100)


@dataclass
class ResearchTask:
    """Canonical view of one deep research task."""

    task_id: str
    status: str
    progress: ResearchProgress | None = None
    output: str | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["taskId"] = data.pop("task_id")
        return {k: v for k, v in data.items() if v is not None}


def _first(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) not in (None, ""):
            return raw[key]
    return None


def _normalize_progress(raw: dict[str, Any]) -> ResearchProgress | None:
    source = raw.get("progress") if isinstance(raw.get("progress"), dict) else raw
    current = _first(source, "current_step", "currentStep")
    total = _first(source, "total_steps", "totalSteps")
    if current is None or total is None:
        return None
    try:
        return ResearchProgress(current_step=int(current), total_steps=int(total))
    except (TypeError, ValueError):
        logger.warning("Ignoring unreadable research progress: %r of %r", current, total)
        return None


def _normalize_output(raw: dict[str, Any]) -> str | None:
    output = _first(raw, "output", "report", "result")
    if isinstance(output, dict):
        output = _first(output, "markdown", "content", "text")
    if isinstance(output, list):
        output = "\n\n".join(str(o) for o in output)
    return output


def normalize_task(raw: dict[str, Any], task_id: str | None = None) -> ResearchTask:
    """Map any provider response variant to a ``ResearchTask``."""
    found_id = _first(raw, *_TASK_ID_FIELDS) or task_id
    if not found_id:
        raise UpstreamFailure("Deep research response did not include a task id")
    error = raw.get("error")
    if isinstance(error, dict):
        error = error.get("message")
    return ResearchTask(
        task_id=str(found_id),
        status=str(raw.get("status") or "queued").lower(),
        progress=_normalize_progress(raw),
        output=_normalize_output(raw),
        error=error or None,
    )


def build_research_query(ticker: str | None, company_name: str | None) -> str:
    return _RESEARCH_PROMPT.format(company=company_name or ticker, ticker=ticker)


def _make_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=config.valyu_base_url,
        timeout=config.search_timeout_seconds,
    )


async def _call(method: str, path: str, api_key: str, **kwargs: Any) -> dict[str, Any]:
    async with _make_client() as client:
        try:
            response = await client.request(method, path, headers={"x-api-key": api_key}, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Deep research request failed: {e}") from e
    try:
        data = response.json()
    except ValueError as e:
        raise UpstreamFailure(
            f"Deep research API returned a malformed body (HTTP {response.status_code})",
            upstream_status=response.status_code,
        ) from e
    if response.status_code >= 400 or data.get("success") is False:
        message = data.get("error") or f"Deep research API returned HTTP {response.status_code}"
        if isinstance(message, dict):
            message = message.get("message", str(message))
        raise UpstreamFailure(message, upstream_status=response.status_code)
    return data


async def create_research(
    query: str | None = None,
    ticker: str | None = None,
    company_name: str | None = None,
) -> ResearchTask:
    """Start a deep research report; returns the task id and initial status."""
    if not query and not ticker:
        raise MalformedRequest("Query or ticker required")
    api_key = config.require_valyu_key()

    body = {
        "query": query or build_research_query(ticker, company_name),
        "mode": "fast",
        "output_formats": ["markdown"],
        "search": {"search_type": "all", "included_sources": RESEARCH_SOURCES},
    }
    data = await _call("POST", "/deepresearch/tasks", api_key, json=body)
    task = normalize_task(data)
    logger.info("Deep research task %s created (status=%s)", task.task_id, task.status)
    return task


async def get_research_status(task_id: str | None) -> ResearchTask:
    """Read the current status of a research task."""
    if not task_id:
        raise MalformedRequest("taskId required")
    api_key = config.require_valyu_key()
    data = await _call("GET", f"/deepresearch/tasks/{task_id}/status", api_key)
    return normalize_task(data, task_id=task_id)
