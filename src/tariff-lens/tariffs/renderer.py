"""Citation-aware HTML rendering and disclosure state.

Every citation span shows a superscript numeral.  A span whose index is in
the sources manifest is *bound*: it carries a hover preview panel and can
be expanded in place to the full excerpt.  Unbound spans keep the numeral
and the text but get neither.

Two pieces of interaction state live here rather than in a browser:

- ``PreviewController`` — first disclosure level (hover preview with a
  short dismissal delay so the pointer can travel from span to panel).
- ``ExpansionState`` — second disclosure level (one expanded excerpt at a
  time, shared by inline spans and the source list).
"""

from __future__ import annotations

import html
import re
import time
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime

from tariffs.citations import Block, CitationSpan, TextRun, parse_document, split_blocks, strip_markers
from tariffs.models import SourceSummary

PREVIEW_CHARS = 300
LIST_PREVIEW_CHARS = 800
PREVIEW_DISMISS_DELAY = 0.15

_TARIFF_TERMS = [
    "tariffs", "tariff", "duties", "duty", "import tax", "export tax",
    "trade war", "trade barrier", "customs", "quotas", "quota",
    "anti-dumping", "countervailing", "section 301", "section 232",
    "trade restriction", "trade policy", "trade agreement",
    "supply chain", "reshoring", "nearshoring", "onshoring",
]
_TARIFF_RE = re.compile(
    r"\b(" + "|".join(re.escape(t) for t in _TARIFF_TERMS) + r")\b",
    re.IGNORECASE,
)

_BLOCK_TAGS = {"h2": "h2", "h3": "h3", "paragraph": "p"}


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def truncate(text: str, length: int) -> str:
    if len(text) <= length:
        return text
    return text[:length] + "..."


def format_date(value: str | None) -> str:
    """``2025-03-05`` → ``Mar 5, 2025``; anything unparseable is returned as-is."""
    if not value:
        return ""
    try:
        d = datetime.fromisoformat(value[:10])
    except ValueError:
        return value
    return f"{d:%b} {d.day}, {d.year}"


def format_score(score: float | None) -> str:
    if not score:
        return ""
    return f"{round(score * 100)}% match"


def highlight_tariff_terms(text: str) -> str:
    """Escape *text* and wrap tariff vocabulary in ``<mark>``."""
    return _TARIFF_RE.sub(r"<mark>\1</mark>", html.escape(text))


def _escape_lines(text: str) -> str:
    return "<br>".join(html.escape(line) for line in text.split("\n"))


# ---------------------------------------------------------------------------
# Disclosure state
# ---------------------------------------------------------------------------

class ExpansionState:
    """Which source excerpt (if any) is expanded to its full content.

    Inline citation spans and the source list both call ``toggle`` so the
    two entry points always agree.
    """

    def __init__(self, bound: Iterable[int] | None = None) -> None:
        self.expanded: int | None = None
        self._bound = set(bound) if bound is not None else None

    def set_bound(self, bound: Iterable[int]) -> None:
        self._bound = set(bound)
        if self.expanded is not None and self.expanded not in self._bound:
            self.expanded = None

    def toggle(self, index: int) -> bool:
        """Expand *index* (collapsing any other) or collapse it if already open.

        Returns whether *index* is expanded afterwards.  Unbound indices are
        ignored.
        """
        if self._bound is not None and index not in self._bound:
            return False
        self.expanded = None if self.expanded == index else index
        return self.expanded == index

    def is_expanded(self, index: int) -> bool:
        return self.expanded == index

    def reset(self) -> None:
        self.expanded = None


class PreviewController:
    """Hover preview for bound citation spans.

    The preview stays open while the pointer is over the span or over the
    panel.  Leaving both starts a ``dismiss_delay`` timer; re-entering
    either one before it runs out keeps the preview open.
    """

    def __init__(
        self,
        bound: Iterable[int] = (),
        dismiss_delay: float = PREVIEW_DISMISS_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._bound = set(bound)
        self._delay = dismiss_delay
        self._clock = clock
        self._visible: int | None = None
        self._hovered: set[str] = set()
        self._dismiss_at: float | None = None

    def set_bound(self, bound: Iterable[int]) -> None:
        self._bound = set(bound)

    @property
    def visible(self) -> int | None:
        if self._dismiss_at is not None and self._clock() >= self._dismiss_at:
            self._visible = None
            self._dismiss_at = None
        return self._visible

    def pointer_enter(self, index: int, target: str = "span") -> None:
        if index not in self._bound:
            return
        if target == "panel" and self.visible != index:
            return
        if self.visible != index:
            self._visible = index
            self._hovered = set()
        self._hovered.add(target)
        self._dismiss_at = None

    def pointer_leave(self, index: int, target: str = "span") -> None:
        if self._visible != index:
            return
        self._hovered.discard(target)
        if not self._hovered:
            self._dismiss_at = self._clock() + self._delay

    def close(self) -> None:
        self._visible = None
        self._hovered = set()
        self._dismiss_at = None


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _render_runs(runs: Iterable[TextRun]) -> str:
    parts = []
    for run in runs:
        text = _escape_lines(run.text)
        parts.append(f"<strong>{text}</strong>" if run.bold else text)
    return "".join(parts)


def render_preview(source: SourceSummary) -> str:
    """Hover panel: title, form type tag, date, relevance, bounded preview, link."""
    meta = [f'<span class="tag">{html.escape(source.form_type)}</span>']
    if source.date:
        meta.append(f'<span class="date">{html.escape(format_date(source.date))}</span>')
    if source.relevance_score:
        meta.append(f'<span class="score">{format_score(source.relevance_score)}</span>')
    body = ""
    if source.content:
        body = f'<p class="preview-text">{_escape_lines(truncate(source.content, PREVIEW_CHARS))}</p>'
    link = ""
    if source.url:
        link = (
            f'<a class="outbound" href="{html.escape(source.url, quote=True)}" '
            f'target="_blank" rel="noopener noreferrer">View filing</a>'
        )
    return (
        f'<span class="citation-preview" role="tooltip" data-source="{source.index}" hidden>'
        f'<span class="title">{html.escape(source.title)}</span>'
        f'<span class="meta">{"".join(meta)}</span>'
        f"{body}{link}"
        f"</span>"
    )


def render_citation(
    span: CitationSpan,
    sources: dict[int, SourceSummary],
    expansion: ExpansionState | None = None,
) -> str:
    inner = _render_runs(span.runs)
    sup = f'<sup class="citation-index">{span.index}</sup>'
    source = sources.get(span.index)
    if source is None:
        return f'<span class="citation" data-source="{span.index}" data-unbound="true">{inner}{sup}</span>'
    expanded = "true" if expansion is not None and expansion.is_expanded(span.index) else "false"
    return (
        f'<span class="citation" data-source="{span.index}" tabindex="0" role="button" '
        f'aria-expanded="{expanded}">{inner}{sup}{render_preview(source)}</span>'
    )


def render_excerpt(source: SourceSummary) -> str:
    """Expanded in-document view of the full, untruncated excerpt."""
    return (
        f'<div class="citation-excerpt" data-source="{source.index}">'
        f'<div class="title">[{source.index}] {html.escape(source.title)}</div>'
        f'<div class="content">{_escape_lines(source.content)}</div>'
        f"</div>"
    )


def _render_item(item, sources, expansion) -> str:
    return "".join(
        render_citation(inline, sources, expansion) if isinstance(inline, CitationSpan) else _render_runs([inline])
        for inline in item
    )


def render_blocks(
    blocks: Sequence[Block],
    sources: Sequence[SourceSummary],
    expansion: ExpansionState | None = None,
) -> str:
    """Render a parsed document; the expanded excerpt follows the block that first cites it."""
    by_index = {s.index: s for s in sources}
    out: list[str] = []
    excerpt_placed = False
    for block in blocks:
        if block.kind in ("ul", "ol"):
            items = "".join(f"<li>{_render_item(item, by_index, expansion)}</li>" for item in block.items)
            out.append(f"<{block.kind}>{items}</{block.kind}>")
        else:
            tag = _BLOCK_TAGS.get(block.kind, "p")
            out.append(f"<{tag}>{_render_item(block.items[0], by_index, expansion)}</{tag}>")

        if expansion is not None and expansion.expanded is not None and not excerpt_placed:
            cited_here = any(
                isinstance(inline, CitationSpan) and inline.index == expansion.expanded
                for item in block.items for inline in item
            )
            if cited_here and expansion.expanded in by_index:
                out.append(render_excerpt(by_index[expansion.expanded]))
                excerpt_placed = True
    return "\n".join(out)


def render_document(
    text: str,
    sources: Sequence[SourceSummary],
    expansion: ExpansionState | None = None,
) -> str:
    return render_blocks(parse_document(text), sources, expansion)


def render_streaming(text: str) -> str:
    """Plain paragraphs of the marker-free buffer, shown while text is still arriving."""
    return "\n".join(f"<p>{_escape_lines(block)}</p>" for block in split_blocks(strip_markers(text)))


def render_source_list(sources: Sequence[SourceSummary], expansion: ExpansionState | None = None) -> str:
    """Companion list of every source, numbered like the citation markers."""
    entries = []
    for source in sources:
        expanded = expansion is not None and expansion.is_expanded(source.index)
        meta = " · ".join(
            part for part in (
                html.escape(source.form_type),
                html.escape(format_date(source.date)),
                format_score(source.relevance_score),
            ) if part
        )
        content = source.content if expanded else truncate(source.content, LIST_PREVIEW_CHARS)
        title = html.escape(source.title)
        if source.url:
            title = (
                f'<a href="{html.escape(source.url, quote=True)}" target="_blank" '
                f'rel="noopener noreferrer">{title}</a>'
            )
        entries.append(
            f'<li data-source="{source.index}" aria-expanded="{"true" if expanded else "false"}">'
            f'<span class="source-index">{source.index}</span> {title}'
            f'<div class="meta">{meta}</div>'
            f'<div class="content">{highlight_tariff_terms(content)}</div>'
            f"</li>"
        )
    return f'<ol class="sources">{"".join(entries)}</ol>'
