"""Shared test fixtures for Tariff Lens tests.

Environment variables MUST be set at module level (before any ``tariffs``
modules are imported) because ``tariffs.config`` evaluates ``_load_config()``
at import time.  pytest processes conftest.py before collecting test
modules, so ``os.environ.setdefault(...)`` here runs early enough.
"""

import os

# Set required env vars before any tariffs code is imported
os.environ.setdefault("VALYU_API_KEY", "test-valyu-key")
os.environ.setdefault("VALYU_BASE_URL", "https://valyu.test/v1")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("REPORT_HISTORY_PATH", "")

import dataclasses  # noqa: E402
from types import SimpleNamespace  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402

# Modules that bind ``config`` at import time
_CONFIG_USERS = (
    "tariffs.search_tool",
    "tariffs.summarizer",
    "tariffs.answer_tool",
    "tariffs.research",
    "main",
)


@pytest.fixture
def without_keys(monkeypatch):
    """Blank out both API keys everywhere ``config`` is imported."""
    import importlib

    from tariffs.config import config

    blank = dataclasses.replace(config, valyu_api_key="", openai_api_key="")
    for name in _CONFIG_USERS:
        monkeypatch.setattr(importlib.import_module(name), "config", blank)
    return blank


def make_result(n: int, date: str = "2025-01-15", **overrides) -> dict:
    """A provider-shaped search result."""
    result = {
        "id": f"doc-{n}",
        "title": f"Filing {n}",
        "url": f"https://sec.example/filing-{n}",
        "content": f"Excerpt {n} discusses tariffs on imported components.",
        "relevance_score": 0.9 - n * 0.05,
        "source": "valyu/valyu-sec-filings",
        "metadata": {"form_type": "10-K", "date": date, "name": "NIKE, INC.", "ticker": "NKE"},
    }
    result.update(overrides)
    return result


def delta(text: str | None) -> SimpleNamespace:
    """A chat completion chunk carrying one content delta."""
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


class FakeCompletion:
    """Async-iterable completion stream with ``close()``, like ``openai.AsyncStream``."""

    def __init__(self, *chunks, error: Exception | None = None) -> None:
        self.chunks = [delta(c) if isinstance(c, str) else c for c in chunks]
        self.error = error
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def close(self) -> None:
        self.closed = True


def mock_openai_client(completion: FakeCompletion | None = None, error: Exception | None = None) -> MagicMock:
    """An ``AsyncOpenAI`` stand-in whose ``create`` returns ``completion`` (or raises ``error``)."""
    client = MagicMock()
    if error is not None:
        client.chat.completions.create = AsyncMock(side_effect=error)
    else:
        client.chat.completions.create = AsyncMock(return_value=completion)
    client.close = AsyncMock()
    return client
