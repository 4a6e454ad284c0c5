"""Shared data models for search results and citation manifests."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any

from tariffs.errors import UpstreamFailure


@dataclass
class SourceExcerpt:
    """One retrieved filing fragment.

    Its identity is its 1-based position in the ordered list returned for
    one query; citation markers refer to it by that position.
    """

    title: str
    url: str
    content: str
    relevance_score: float | None = None
    publication_date: str | None = None
    source: str = ""
    id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def form_type(self) -> str:
        return self.metadata.get("form_type") or "SEC Filing"

    @property
    def date(self) -> str | None:
        return self.publication_date or self.metadata.get("date")

    @property
    def identity(self) -> str:
        """Key used to de-duplicate merged result sets."""
        return self.id or self.url or self.title

    @classmethod
    def from_provider(cls, raw: dict[str, Any]) -> SourceExcerpt:
        """Build an excerpt from a provider (or client round-tripped) result dict."""
        content = raw.get("content", "")
        if not isinstance(content, str):
            content = json.dumps(content)
        score = raw.get("relevance_score")
        return cls(
            title=raw.get("title") or "",
            url=raw.get("url") or "",
            content=content,
            relevance_score=float(score) if isinstance(score, (int, float)) else None,
            publication_date=raw.get("publication_date"),
            source=raw.get("source") or "",
            id=raw.get("id"),
            metadata=dict(raw.get("metadata") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SourceSummary:
    """Entry of the sources manifest sent ahead of the generated text."""

    index: int
    title: str
    url: str
    form_type: str = "SEC Filing"
    date: str | None = None
    relevance_score: float | None = None
    # Only known client side (from the search step); never sent in the manifest
    content: str = ""

    @classmethod
    def from_excerpt(cls, index: int, excerpt: SourceExcerpt) -> SourceSummary:
        return cls(
            index=index,
            title=excerpt.title,
            url=excerpt.url,
            form_type=excerpt.form_type,
            date=excerpt.date,
            relevance_score=excerpt.relevance_score,
            content=excerpt.content,
        )

    @classmethod
    def from_manifest(cls, raw: dict[str, Any]) -> SourceSummary:
        """Read one manifest entry; an entry without a numeric index is an upstream fault."""
        try:
            index = int(raw["index"])
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamFailure("Malformed sources manifest") from e
        return cls(
            index=index,
            title=raw.get("title") or "",
            url=raw.get("url") or "",
            form_type=raw.get("form_type") or "SEC Filing",
            date=raw.get("date"),
            relevance_score=raw.get("relevance_score"),
        )

    def to_manifest(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "title": self.title,
            "url": self.url,
            "form_type": self.form_type,
            "date": self.date,
            "relevance_score": self.relevance_score,
        }
