"""Tests for citation marker parsing.

Covers the streaming path (markers stripped from a possibly truncated
buffer) and the complete-text path (block and inline structure).
"""

from __future__ import annotations

import pytest

from tariffs.citations import (
    Block,
    CitationSpan,
    TextRun,
    cited_indices,
    parse_document,
    parse_inline,
    split_blocks,
    strip_markers,
)

_SAMPLE = (
    "## Overview\n"
    "Nike has {{cite:1}}material exposure to **tariffs** on footwear{{/cite}} and "
    "{{cite:2}}shifted sourcing to Vietnam{{/cite}}.\n"
    "\n"
    "- {{cite:1}}Duties on Chinese imports{{/cite}}\n"
    "- Pricing actions\n"
    "\n"
    "1. First\n"
    "2. Second {{cite:3}}claim{{/cite}}"
)


# -----------------------------------------------------------------------
# Streaming path
# -----------------------------------------------------------------------


class TestStripMarkers:
    def test_complete_markers_removed(self) -> None:
        assert strip_markers("A {{cite:12}}b{{/cite}} c") == "A b c"

    @pytest.mark.parametrize(
        "buffer,expected",
        [
            ("text {", "text "),
            ("text {{", "text "),
            ("text {{ci", "text "),
            ("text {{cite:", "text "),
            ("text {{cite:4", "text "),
            ("text {{cite:4}", "text "),
            ("text {{cite:4}}span {{/", "text span "),
            ("text {{cite:4}}span {{/cite}", "text span "),
        ],
    )
    def test_partial_tail_removed(self, buffer, expected) -> None:
        assert strip_markers(buffer) == expected

    def test_braces_earlier_in_text_kept(self) -> None:
        assert strip_markers("set {a} then done") == "set {a} then done"

    def test_every_prefix_is_free_of_marker_text(self) -> None:
        for end in range(len(_SAMPLE) + 1):
            visible = strip_markers(_SAMPLE[:end])
            assert "{{" not in visible
            assert "cite" not in visible

    def test_two_fragment_stream(self) -> None:
        first = "{{cite:1}}partial "
        second = first + "text{{/cite}} done"
        assert strip_markers(first) == "partial "
        assert strip_markers(second) == "partial text done"


# -----------------------------------------------------------------------
# Inline parsing
# -----------------------------------------------------------------------


class TestParseInline:
    def test_single_span(self) -> None:
        inlines = parse_inline("The company {{cite:1}}faces tariff risk{{/cite}}.")
        assert inlines == (
            TextRun("The company "),
            CitationSpan(1, (TextRun("faces tariff risk"),)),
            TextRun("."),
        )

    def test_bold_inside_and_outside_spans(self) -> None:
        inlines = parse_inline("**Key** {{cite:2}}a **b** c{{/cite}}")
        assert inlines[0] == TextRun("Key", bold=True)
        assert inlines[2].runs == (TextRun("a "), TextRun("b", bold=True), TextRun(" c"))

    def test_unclosed_start_marker_dropped(self) -> None:
        inlines = parse_inline("before {{cite:3}}after")
        assert "".join(i.text for i in inlines) == "before after"
        assert not any(isinstance(i, CitationSpan) for i in inlines)

    def test_stray_end_marker_dropped(self) -> None:
        assert parse_inline("a{{/cite}}b") == (TextRun("ab"),)

    def test_spans_do_not_nest(self) -> None:
        inlines = parse_inline("{{cite:1}}outer {{cite:2}}inner{{/cite}}")
        spans = [i for i in inlines if isinstance(i, CitationSpan)]
        assert [s.index for s in spans] == [2]
        assert "".join(i.text for i in inlines) == "outer inner"

    def test_out_of_range_index_kept(self) -> None:
        (span,) = parse_inline("{{cite:99}}x{{/cite}}")
        assert span.index == 99


# -----------------------------------------------------------------------
# Block parsing
# -----------------------------------------------------------------------


class TestParseDocument:
    def test_block_kinds(self) -> None:
        blocks = parse_document(_SAMPLE)
        assert [b.kind for b in blocks] == ["h2", "paragraph", "ul", "ol"]

    def test_heading_glued_to_paragraph_is_split(self) -> None:
        blocks = parse_document("### Risks\nTariffs are rising.")
        assert blocks == (
            Block("h3", ((TextRun("Risks"),),)),
            Block("paragraph", ((TextRun("Tariffs are rising."),),)),
        )

    def test_list_items(self) -> None:
        blocks = parse_document("- one\n* two")
        assert blocks[0].kind == "ul"
        assert [item[0].text for item in blocks[0].items] == ["one", "two"]

    def test_mixed_lines_are_a_paragraph(self) -> None:
        assert parse_document("- one\nplain")[0].kind == "paragraph"

    def test_span_across_blank_line_is_not_annotated(self) -> None:
        blocks = parse_document("{{cite:1}}first half\n\nsecond half{{/cite}}")
        assert len(blocks) == 2
        assert cited_indices(blocks) == []
        assert [b.items[0][0].text for b in blocks] == ["first half", "second half"]

    def test_parsing_is_deterministic(self) -> None:
        assert parse_document(_SAMPLE) == parse_document(_SAMPLE)

    def test_cited_indices_first_appearance(self) -> None:
        assert cited_indices(parse_document(_SAMPLE)) == [1, 2, 3]

    def test_split_blocks_normalizes_crlf_and_whitespace_lines(self) -> None:
        assert split_blocks("a\r\n  \r\nb\n\n\n") == ["a", "b"]
