"""Group timed words into caption chunks for on-screen display.

WHY: Word-by-word captions flicker; whole sentences overflow the safe area
of a vertical frame. Captions read best as short phrases that close at
sentence boundaries and fit one line.

HOW: Three passes over the word stream:
  1. Cleanup — normalize each word's text, drop words that end up empty,
     and merge punctuation-only words onto the word before them.
  2. Grouping — append words to the open chunk and close it right after a
     word ending in strong punctuation (. ! ?), when it reaches
     ``max_words``, or at the end of input.
  3. Splitting — any chunk whose text exceeds ``max_chars`` is re-packed
     greedily into sub-chunks, never splitting inside a word.

RULES:
- Output is exhaustive and order-preserving: every non-empty word appears
  exactly once, in input order
- Strong punctuation outranks the word-count limit
- Punctuation joins the previous word without a space ("Bonjour" + "!"
  -> "Bonjour!") and extends its end time
- Leading punctuation with no previous word is carried onto the next word
- A single word longer than ``max_chars`` becomes its own chunk
- Budgets are measured on rendered text (visible_len of sanitized text)
"""

from __future__ import annotations

import re
from typing import Callable, List, Optional

from drawtext_pipeline.core.ir import CaptionChunk, Word
from drawtext_pipeline.core.sanitizer import normalize, sanitize, visible_len

_PUNCTUATION_ONLY_RE = re.compile(r"^[^\w\s]+$")
_STRONG_END_RE = re.compile(r"[.!?]+[\"')\]]*$")


def is_punctuation_only(text: str) -> bool:
    return bool(_PUNCTUATION_ONLY_RE.match(text))


def ends_strong(text: str) -> bool:
    """True if text ends with terminal punctuation (. ! ?), closing quotes allowed."""
    return bool(_STRONG_END_RE.search(text))


def _rendered_len(texts: List[str]) -> int:
    return visible_len(sanitize(" ".join(texts)))


def merge_punctuation(words: List[Word]) -> List[Word]:
    """Normalize word text, drop empties and merge punctuation-only words.

    WHY: The transcriber emits "!" or "," as standalone words. A caption
    must never open with punctuation or consist of it alone.

    HOW: Walk the words. Punctuation-only words are appended to the
    previous kept word (its end time extends to the punctuation's end).
    Punctuation with nothing before it is held and prefixed onto the next
    real word. Words are immutable, so merged words are new instances.
    """
    merged: List[Word] = []
    pending_prefix = ""
    pending_start: Optional[float] = None

    for word in words:
        text = normalize(word.text)
        if not text:
            continue

        if is_punctuation_only(text):
            if merged:
                prev = merged[-1]
                merged[-1] = Word(
                    text=prev.text + text,
                    start_s=prev.start_s,
                    end_s=max(prev.end_s, word.end_s),
                    confidence=min(prev.confidence, word.confidence),
                )
            else:
                pending_prefix += text
                if pending_start is None:
                    pending_start = word.start_s
            continue

        if pending_prefix:
            text = pending_prefix + text
            start_s = pending_start if pending_start is not None else word.start_s
            pending_prefix = ""
            pending_start = None
        else:
            start_s = word.start_s

        merged.append(Word(
            text=text,
            start_s=start_s,
            end_s=max(word.end_s, start_s),
            confidence=word.confidence,
        ))

    return merged


def _split_by_chars(words: List[Word], max_chars: int) -> List[List[Word]]:
    """Pack words greedily into runs whose rendered text fits max_chars."""
    runs: List[List[Word]] = []
    current: List[Word] = []
    for word in words:
        candidate = [w.text for w in current] + [word.text]
        if current and _rendered_len(candidate) > max_chars:
            runs.append(current)
            current = [word]
        else:
            current.append(word)
    if current:
        runs.append(current)
    return runs


def group_words(
    words: List[Word],
    min_duration_s: float,
    max_words: int,
    max_chars: int,
    keyword_predicate: Optional[Callable[[Word], bool]] = None,
) -> List[CaptionChunk]:
    """Group timed words into caption chunks.

    Args:
        words: Flat, time-ordered word sequence.
        min_duration_s: Display floor attached to every chunk.
        max_words: Word-count limit per chunk (before the split pass).
        max_chars: Rendered character budget per chunk.
        keyword_predicate: Optional predicate used to flag chunks that
            contain at least one keyword.

    Returns:
        Ordered caption chunks; empty when no word has printable text.

    Raises:
        ValueError: If max_words or max_chars is not positive.
    """
    if max_words < 1:
        raise ValueError("max_words must be at least 1, got {}".format(max_words))
    if max_chars < 1:
        raise ValueError("max_chars must be at least 1, got {}".format(max_chars))

    cleaned = merge_punctuation(words)

    # Pass 2: punctuation and word-count grouping
    groups: List[List[Word]] = []
    current: List[Word] = []
    for word in cleaned:
        current.append(word)
        if ends_strong(word.text) or len(current) >= max_words:
            groups.append(current)
            current = []
    if current:
        groups.append(current)

    # Pass 3: character budget
    chunks: List[CaptionChunk] = []
    for group in groups:
        if _rendered_len([w.text for w in group]) > max_chars:
            runs = _split_by_chars(group, max_chars)
        else:
            runs = [group]
        for run in runs:
            chunk = CaptionChunk(words=run, min_duration_s=min_duration_s)
            if not chunk.display_text:
                continue
            if keyword_predicate is not None:
                chunk.is_keyword = any(keyword_predicate(w) for w in run)
            chunks.append(chunk)

    return chunks
