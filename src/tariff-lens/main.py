"""Tariff Lens — FastAPI server for SEC filing tariff-exposure analysis.

Searches filing excerpts, streams citation-annotated summaries over
Server-Sent Events and runs long deep-research reports.

Endpoints
---------
- ``GET  /health``                  — health check
- ``POST /api/search``              — filing excerpts by query or ticker
- ``POST /api/summarize``           — citation summary stream (SSE)
- ``POST /api/answer``              — provider answer stream, re-streamed
- ``POST /api/news``                — recent US tariff news
- ``POST /api/research/create``     — start a deep research report
- ``GET  /api/research/status``     — poll a deep research report
- ``GET  /api/research/history``    — reports started from this server
- ``POST /api/compare``             — two companies' excerpts side by side
- ``GET  /api/companies``           — featured company lookup
- ``GET  /api/company/{identifier}`` — one company's profile and filings
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from tariffs import companies
from tariffs.answer_tool import stream_answer
from tariffs.config import config
from tariffs.errors import MalformedRequest, TariffLensError, UpstreamFailure
from tariffs.history import JsonFileStore, MemoryStore, ReportHistory, ReportRecord
from tariffs.research import create_research, get_research_status
from tariffs.search_tool import search_filings, search_news
from tariffs.sse import SSE_HEADERS
from tariffs.summarizer import stream_summary

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
for _name in ("httpx", "httpcore", "openai"):
    logging.getLogger(_name).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Global state
# ---------------------------------------------------------------------------

def _make_history() -> ReportHistory:
    if config.report_history_path:
        return ReportHistory(JsonFileStore(config.report_history_path))
    return ReportHistory(MemoryStore())


history = _make_history()


# ---------------------------------------------------------------------------
# FastAPI lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("[TARIFF-API] Server starting up (mode=%s)...", config.app_mode)
    if not config.valyu_api_key:
        logger.warning("[TARIFF-API] VALYU_API_KEY is not set — search routes will fail")
    if not config.openai_api_key:
        logger.warning("[TARIFF-API] OPENAI_API_KEY is not set — summaries will fail")

    yield

    logger.info("[TARIFF-API] Server shutting down...")


app = FastAPI(
    title="Tariff Lens",
    description="Tariff exposure analysis over SEC filings with cited summaries",
    version="0.1.0",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------

@app.exception_handler(TariffLensError)
async def tariff_error_handler(request: Request, exc: TariffLensError):
    logger.warning("[TARIFF-API] %s %s failed (%s): %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning("[TARIFF-API] Invalid body for %s: %s", request.url.path, exc.errors())
    return JSONResponse(MalformedRequest("Invalid JSON body").to_dict(), status_code=400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("[TARIFF-API] Unhandled error on %s: %s", request.url.path, exc)
    return JSONResponse({"error": str(exc) or "Internal error", "code": "internal_error"}, status_code=500)


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SearchRequest(_Body):
    query: str | None = None
    ticker: str | None = None
    max_results: Any = Field(default=10, alias="maxResults")


class SummarizeRequest(_Body):
    ticker: str | None = None
    company_name: str | None = Field(default=None, alias="companyName")
    results: Any = None


class AnswerRequest(_Body):
    query: str | None = None
    ticker: str | None = None


class NewsRequest(_Body):
    query: str | None = None
    max_results: Any = Field(default=8, alias="maxResults")


class ResearchRequest(_Body):
    query: str | None = None
    ticker: str | None = None
    company_name: str | None = Field(default=None, alias="companyName")


class CompareRequest(_Body):
    a: str
    b: str
    max_results: Any = Field(default=10, alias="maxResults")


class HealthResponse(BaseModel):
    status: str
    search_configured: bool
    llm_configured: bool
    mode: str


def _company_dict(company: companies.Company) -> dict[str, Any]:
    return {
        "ticker": company.ticker,
        "name": company.name,
        "sector": company.sector,
        "exposure": company.exposure,
        "domain": company.domain,
    }


# ---------------------------------------------------------------------------
# API Endpoints
# ---------------------------------------------------------------------------

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        search_configured=bool(config.valyu_api_key),
        llm_configured=bool(config.openai_api_key),
        mode=config.app_mode,
    )


@app.post("/api/search")
async def search(request: SearchRequest):
    """Filing excerpts, newest first, for a free-text query or a ticker."""
    logger.info("[TARIFF-API] Search (query=%s, ticker=%s)", (request.query or "")[:80], request.ticker)
    results = await search_filings(request.query, request.ticker, request.max_results)
    return {
        "success": True,
        "results": [r.to_dict() for r in results],
        "total_results": len(results),
    }


@app.post("/api/summarize")
async def summarize(request: SummarizeRequest):
    """Stream a cited summary of the given excerpts.

    Bad input or a refused completion call is answered with a JSON error
    before any event is sent.  Failures after that arrive as an ``error``
    event followed by ``[DONE]``.
    """
    events = await stream_summary(request.ticker or "", request.company_name, request.results)
    return StreamingResponse(events, media_type="text/event-stream", headers=SSE_HEADERS)


@app.post("/api/answer")
async def answer(request: AnswerRequest):
    """Re-stream the provider's answer for a tariff question."""
    try:
        chunks = await stream_answer(request.query, request.ticker)
    except UpstreamFailure as e:
        logger.warning("[TARIFF-API] Answer API failed: %s", e.message)
        return JSONResponse(e.to_dict(), status_code=e.upstream_status or e.status_code)
    return StreamingResponse(chunks, media_type="text/event-stream", headers=SSE_HEADERS)


@app.post("/api/news")
async def news(request: NewsRequest):
    results = await search_news(request.query, request.max_results)
    return {
        "success": True,
        "results": [r.to_dict() for r in results],
        "total_results": len(results),
    }


@app.post("/api/research/create")
async def research_create(request: ResearchRequest):
    """Start a deep research report and remember it in the history."""
    task = await create_research(request.query, request.ticker, request.company_name)
    history.record(
        ReportRecord(
            task_id=task.task_id,
            ticker=request.ticker.upper() if request.ticker else None,
            company_name=request.company_name,
            status=task.status,
        )
    )
    return {"success": True, "taskId": task.task_id, "status": task.status}


@app.get("/api/research/status")
async def research_status(task_id: str | None = Query(default=None, alias="taskId")):
    task = await get_research_status(task_id)
    history.update_status(task.task_id, task.status)
    body = task.to_dict()
    if task.progress is not None:
        body["progress"] = {
            "current_step": task.progress.current_step,
            "total_steps": task.progress.total_steps,
            "percent": task.progress.percent,
        }
    return {"success": True, **body}


@app.get("/api/research/history")
async def research_history(ticker: str | None = None):
    return {"success": True, "reports": [r.to_dict() for r in history.list(ticker)]}


@app.post("/api/compare")
async def compare(request: CompareRequest):
    """Fetch two companies' filing excerpts concurrently.

    One side failing does not fail the other; its error is reported in place.
    """
    tickers = [request.a.strip().upper(), request.b.strip().upper()]
    if not all(tickers):
        raise MalformedRequest("Two tickers are required")
    outcomes = await asyncio.gather(
        *(search_filings(ticker=t, max_results=request.max_results) for t in tickers),
        return_exceptions=True,
    )
    sides = []
    for ticker, outcome in zip(tickers, outcomes):
        if isinstance(outcome, TariffLensError):
            sides.append({"ticker": ticker, "success": False, **outcome.to_dict()})
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            meta = outcome[0].metadata if outcome else None
            sides.append({
                "ticker": ticker,
                "success": True,
                "company": _company_dict(companies.identify(ticker, meta)),
                "results": [r.to_dict() for r in outcome],
                "total_results": len(outcome),
            })
    return {"success": any(s["success"] for s in sides), "a": sides[0], "b": sides[1]}


@app.get("/api/companies")
async def list_companies(q: str | None = None, limit: int | None = None):
    found = companies.search(q, limit) if q else companies.FEATURED_COMPANIES[:limit]
    return {"success": True, "companies": [_company_dict(c) for c in found]}


@app.get("/api/company/{identifier}")
async def company_profile(identifier: str):
    """Resolve a ticker or name and return its recent filing excerpts."""
    featured = companies.resolve(identifier)
    ticker = featured.ticker if featured else identifier.strip().upper()
    results = await search_filings(ticker=ticker, max_results=15)
    meta = results[0].metadata if results else None
    return {
        "success": True,
        "company": _company_dict(companies.identify(ticker, meta)),
        "featured": featured is not None,
        "results": [r.to_dict() for r in results],
        "total_results": len(results),
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Launch the Tariff Lens API server."""
    port = config.port

    logger.info("[TARIFF-API] Starting server on port %d", port)
    logger.info("[TARIFF-API] Health:    http://localhost:%d/health", port)
    logger.info("[TARIFF-API] Summaries: http://localhost:%d/api/summarize", port)

    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")


if __name__ == "__main__":
    main()
