"""Citation marker parsing — streamed text to a block/inline document tree.

Two paths:

- **While streaming** — ``strip_markers`` removes every marker delimiter,
  including a half-received one at the tail of the buffer, so only plain
  prose is visible and source numbers never leak.
- **Once complete** — ``parse_document`` re-parses the full text from the
  start: blank lines split blocks, each block is classified (heading, list,
  paragraph) and its inline text is scanned for ``{{cite:N}}…{{/cite}}``
  spans and ``**bold**`` runs.

The tree is made of frozen dataclasses and tuples, so parsing the same text
twice yields equal values.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

CITE_OPEN = "{{cite:"
CITE_CLOSE = "{{/cite}}"

# Complete start / end delimiters
_MARKER_RE = re.compile(r"\{\{cite:\d+\}\}|\{\{/cite\}\}")

# A citation span: no start marker may appear inside, so spans never nest
_CITATION_RE = re.compile(
    r"\{\{cite:(\d+)\}\}((?:(?!\{\{cite:\d+\}\}).)*?)\{\{/cite\}\}",
    re.DOTALL,
)

_BOLD_RE = re.compile(r"\*\*(.+?)\*\*", re.DOTALL)
_BLOCK_SPLIT_RE = re.compile(r"\n[ \t]*\n")
_UL_ITEM_RE = re.compile(r"^\s*[-*]\s+")
_OL_ITEM_RE = re.compile(r"^\s*\d+\.\s+")
_PARTIAL_OPEN_RE = re.compile(r"\{\{cite:\d*\}?")

# Longest possible unterminated tail worth checking ("{{cite:" + digits + "}")
_MAX_PARTIAL = 24


# ---------------------------------------------------------------------------
# Document tree
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextRun:
    """Plain or bold inline text."""

    text: str
    bold: bool = False


@dataclass(frozen=True)
class CitationSpan:
    """Text attributed to the source at 1-based ``index``."""

    index: int
    runs: tuple[TextRun, ...]

    @property
    def text(self) -> str:
        return "".join(r.text for r in self.runs)


Inline = Union[TextRun, CitationSpan]


@dataclass(frozen=True)
class Block:
    """One blank-line separated block.

    ``kind`` is ``h2``, ``h3``, ``ul``, ``ol`` or ``paragraph``.  Lists have
    one entry in ``items`` per list line; every other kind has exactly one.
    """

    kind: str
    items: tuple[tuple[Inline, ...], ...]


# ---------------------------------------------------------------------------
# Streaming path
# ---------------------------------------------------------------------------

def _is_partial_marker(tail: str) -> bool:
    if CITE_CLOSE.startswith(tail) or CITE_OPEN.startswith(tail):
        return True
    return _PARTIAL_OPEN_RE.fullmatch(tail) is not None


def _strip_partial_tail(text: str) -> str:
    """Drop an unterminated marker prefix (``{{ci``, ``{{cite:1``, ``{{/cit``) at the end."""
    start = max(0, len(text) - _MAX_PARTIAL)
    for i in range(start, len(text)):
        if text[i] == "{" and _is_partial_marker(text[i:]):
            return text[:i]
    return text


def strip_markers(text: str) -> str:
    """Remove every citation delimiter, keeping all other characters in order."""
    return _strip_partial_tail(_MARKER_RE.sub("", text))


# ---------------------------------------------------------------------------
# Complete-text path
# ---------------------------------------------------------------------------

def _parse_bold(text: str) -> tuple[TextRun, ...]:
    runs: list[TextRun] = []
    pos = 0
    for m in _BOLD_RE.finditer(text):
        if m.start() > pos:
            runs.append(TextRun(text[pos:m.start()]))
        runs.append(TextRun(m.group(1), bold=True))
        pos = m.end()
    if pos < len(text):
        runs.append(TextRun(text[pos:]))
    return tuple(runs)


def parse_inline(text: str) -> tuple[Inline, ...]:
    """Scan left to right for citation spans; bold is scanned inside and outside them.

    Delimiters that are not part of a complete span (an unclosed start
    marker, a stray end marker) are dropped from the plain text.
    """
    inlines: list[Inline] = []
    pos = 0
    for m in _CITATION_RE.finditer(text):
        if m.start() > pos:
            inlines.extend(_parse_bold(_MARKER_RE.sub("", text[pos:m.start()])))
        inlines.append(CitationSpan(index=int(m.group(1)), runs=_parse_bold(m.group(2))))
        pos = m.end()
    if pos < len(text):
        inlines.extend(_parse_bold(_MARKER_RE.sub("", text[pos:])))
    return tuple(inlines)


def _classify(block: str) -> list[Block]:
    for prefix, kind in (("### ", "h3"), ("## ", "h2")):
        if not block.startswith(prefix):
            continue
        heading, _, rest = block.partition("\n")
        blocks = [Block(kind, (parse_inline(heading[len(prefix):].strip()),))]
        # A heading glued to its first paragraph still gets its own block
        if rest.strip():
            blocks.extend(_classify(rest.strip()))
        return blocks

    lines = [ln for ln in block.split("\n") if ln.strip()]
    if lines and all(_UL_ITEM_RE.match(ln) for ln in lines):
        return [Block("ul", tuple(parse_inline(_UL_ITEM_RE.sub("", ln, count=1).strip()) for ln in lines))]
    if lines and all(_OL_ITEM_RE.match(ln) for ln in lines):
        return [Block("ol", tuple(parse_inline(_OL_ITEM_RE.sub("", ln, count=1).strip()) for ln in lines))]
    return [Block("paragraph", (parse_inline(block),))]


def split_blocks(text: str) -> list[str]:
    return [b.strip() for b in _BLOCK_SPLIT_RE.split(text.replace("\r\n", "\n")) if b.strip()]


def parse_document(text: str) -> tuple[Block, ...]:
    """Parse complete generated text into blocks.

    A marker pair separated by a blank line is treated as two unterminated
    fragments: each side is split into its own block first and the orphaned
    delimiters are then dropped as plain text.
    """
    blocks: list[Block] = []
    for raw in split_blocks(text):
        blocks.extend(_classify(raw))
    return tuple(blocks)


def cited_indices(blocks: tuple[Block, ...]) -> list[int]:
    """Distinct source indices cited in *blocks*, in first-appearance order."""
    seen: list[int] = []
    for block in blocks:
        for item in block.items:
            for inline in item:
                if isinstance(inline, CitationSpan) and inline.index not in seen:
                    seen.append(inline.index)
    return seen
