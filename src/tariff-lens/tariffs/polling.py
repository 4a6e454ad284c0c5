"""Deep research polling as an explicit state machine.

``ResearchPoller.tick`` drives the transitions: one status request, then
idle → running → completed / failed.  ``start`` drives ``tick`` on a fixed
interval from an asyncio task, and ``cancel`` is the disposer the consuming
view calls when it goes away.  An unexpected error inside that loop also
ends in failed, so a stopped poller never reads as running.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import httpx

from tariffs.errors import MissingConfiguration, TariffLensError, UpstreamFailure, error_from_payload
from tariffs.research import ResearchTask, normalize_task

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 3.0


class PollState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ResearchPoller:
    """Observes one research task until it reaches a terminal status.

    Failed status requests are logged and polling continues on the next
    tick, except a missing credential which fails the poller outright.
    """

    def __init__(
        self,
        fetch_status: Callable[[str], Awaitable[ResearchTask]],
        interval: float = POLL_INTERVAL_SECONDS,
        on_update: Callable[[ResearchPoller], None] | None = None,
    ) -> None:
        self._fetch_status = fetch_status
        self.interval = interval
        self.on_update = on_update
        self.state = PollState.IDLE
        self.task_id: str | None = None
        self.task: ResearchTask | None = None
        self.error: str | None = None
        self._runner: asyncio.Task | None = None

    def begin(self, task_id: str) -> None:
        self.task_id = task_id
        self.task = None
        self.error = None
        self.state = PollState.RUNNING

    async def tick(self) -> PollState:
        if self.state is not PollState.RUNNING:
            return self.state
        try:
            task = await self._fetch_status(self.task_id)
        except MissingConfiguration as e:
            self.error = e.message
            self.state = PollState.FAILED
            self._notify()
            return self.state
        except TariffLensError as e:
            logger.warning("Status check for %s failed, will retry: %s", self.task_id, e.message)
            return self.state

        self.task = task
        if task.status == "completed":
            self.state = PollState.COMPLETED
        elif task.is_terminal:
            self.state = PollState.FAILED
            self.error = task.error or f"Research {task.status}"
        self._notify()
        return self.state

    def start(self, task_id: str) -> asyncio.Task:
        self.cancel()
        self.begin(task_id)
        self._runner = asyncio.create_task(self._run())
        return self._runner

    async def _run(self) -> None:
        try:
            while self.state is PollState.RUNNING:
                await asyncio.sleep(self.interval)
                await self.tick()
        except Exception as e:
            logger.error("Polling research %s stopped: %s", self.task_id, e, exc_info=True)
            self.error = str(e) or type(e).__name__
            self.state = PollState.FAILED
            self._notify()
            return
        logger.info("Research %s finished polling: %s", self.task_id, self.state.value)

    def cancel(self) -> None:
        if self._runner is not None and not self._runner.done():
            self._runner.cancel()
        self._runner = None
        if self.state is PollState.RUNNING:
            self.state = PollState.IDLE

    def _notify(self) -> None:
        if self.on_update is not None:
            self.on_update(self)


class ResearchClient:
    """Calls the service's research routes and normalizes their responses."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url
        self._transport = transport
        self._timeout = timeout

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.base_url, transport=self._transport, timeout=self._timeout
        ) as client:
            try:
                response = await client.request(method, path, **kwargs)
            except httpx.HTTPError as e:
                raise UpstreamFailure(f"Research request failed: {e}") from e
        try:
            data = response.json()
        except ValueError:
            data = None
        if response.status_code != 200 or not isinstance(data, dict):
            raise error_from_payload(response.status_code, data)
        return data

    async def create(
        self,
        query: str | None = None,
        ticker: str | None = None,
        company_name: str | None = None,
    ) -> ResearchTask:
        body = {"query": query, "ticker": ticker, "companyName": company_name}
        data = await self._request("POST", "/api/research/create", json=body)
        return normalize_task(data)

    async def status(self, task_id: str) -> ResearchTask:
        data = await self._request("GET", "/api/research/status", params={"taskId": task_id})
        return normalize_task(data, task_id=task_id)
