"""Turn caption chunks into an ordered FilterGraph of overlay instructions.

WHY: Every caption becomes one drawtext overlay. Keywords inside a caption
get a second, louder overlay drawn on top of it, so the viewer sees the
whole phrase with the important word popping out.

HOW: For each chunk, emit the base instruction (base style, chunk timing)
followed by one emphasis instruction per contiguous run of keyword words
(keyword style, run timing). Timing is repaired so every instruction has
start < end, and base captions are clipped so consecutive captions never
overlap.

RULES:
- Output order: chunk order; within a chunk, base first, then keyword
  runs left to right (last listed renders on top)
- Base end = chunk display end (min duration applied), clipped to the
  next chunk's start
- A caption that starts before the previous base ended is shifted to
  that end, so base windows never overlap even for equal start times
- Keyword overlays never outlive their base caption
- Instructions whose sanitized text is empty are dropped
- Font existence is not checked here; the executor reports it at run time
- Zero instructions raises EmptyFilterGraph
"""

from __future__ import annotations

from typing import Callable, List, Optional

from drawtext_pipeline.core.ir import (
    CaptionChunk,
    FilterGraph,
    OverlayInstruction,
    OverlayLayout,
    OverlayStyle,
    StyleConfig,
    Word,
)
from drawtext_pipeline.core.sanitizer import sanitize
from drawtext_pipeline.errors import EmptyFilterGraph

KeywordPredicate = Callable[[Word], bool]


def keyword_spans(chunk: CaptionChunk, predicate: KeywordPredicate) -> List[List[Word]]:
    """Return the contiguous runs of words in chunk where predicate holds."""
    spans: List[List[Word]] = []
    current: List[Word] = []
    for word in chunk.words:
        if predicate(word):
            current.append(word)
        elif current:
            spans.append(current)
            current = []
    if current:
        spans.append(current)
    return spans


def _instruction(
    text: str,
    start_s: float,
    end_s: float,
    style: OverlayStyle,
    is_keyword: bool,
) -> Optional[OverlayInstruction]:
    escaped = sanitize(text)
    if not escaped:
        return None
    return OverlayInstruction(
        text=escaped,
        start_s=start_s,
        end_s=end_s,
        font_size=style.font_size,
        color=style.color,
        border_width=style.border_width,
        is_keyword=is_keyword,
    )


def build_filter_graph(
    chunks: List[CaptionChunk],
    keyword_predicate: Optional[KeywordPredicate],
    style: StyleConfig,
    font_path: str,
    layout: Optional[OverlayLayout] = None,
) -> FilterGraph:
    """Build the FilterGraph for a sequence of caption chunks.

    Args:
        chunks: Caption chunks in display order.
        keyword_predicate: Word predicate for emphasis overlays, or None
            for plain captions.
        style: Base/keyword styles and the minimum overlay duration.
        font_path: Encoder-formatted font path shared by all overlays.
        layout: Placement and box settings (default: bottom-centred box).

    Returns:
        A FilterGraph owning the ordered instructions.

    Raises:
        EmptyFilterGraph: If no chunk produced a renderable instruction.
        ValueError: If style.min_overlay_s is not positive.
    """
    if style.min_overlay_s <= 0:
        raise ValueError("min_overlay_s must be positive, got {}".format(style.min_overlay_s))

    instructions: List[OverlayInstruction] = []
    floor_s = float("-inf")

    for idx, chunk in enumerate(chunks):
        # Never start before the previous caption has ended
        start_s = max(chunk.start_s, floor_s)
        end_s = max(chunk.display_end_s, start_s + style.min_overlay_s)

        # No overlap with the next caption
        if idx + 1 < len(chunks):
            next_start = chunks[idx + 1].start_s
            if start_s < next_start < end_s:
                end_s = next_start

        base = _instruction(
            chunk.raw_text, start_s, end_s, style.base, is_keyword=False
        )
        if base is None:
            continue
        instructions.append(base)
        floor_s = base.end_s

        if keyword_predicate is None:
            continue

        for span in keyword_spans(chunk, keyword_predicate):
            span_start = max(span[0].start_s, base.start_s)
            if span_start >= base.end_s:
                continue
            span_end = max(span[-1].end_s, span_start + style.min_overlay_s)
            if span_start < base.end_s < span_end:
                span_end = base.end_s
            emphasis = _instruction(
                " ".join(w.text for w in span),
                span_start,
                span_end,
                style.keyword,
                is_keyword=True,
            )
            if emphasis is not None:
                instructions.append(emphasis)

    if not instructions:
        raise EmptyFilterGraph("No overlay instructions were produced (empty transcript?)")

    return FilterGraph(
        instructions=instructions,
        font_path=font_path,
        layout=layout if layout is not None else OverlayLayout(),
    )
