"""Keyword predicates from static word lists and tag records.

WHY: The builder layers an emphasis overlay over every keyword run, but it
only needs a yes/no answer per word. Keywords come either from a curated
word list or from the tagging collaborator's records, and operators drop
those files next to the transcript rather than passing paths around.

HOW: lexical_predicate() matches a word against a static set.
tag_predicate() keeps tag records at or above a confidence threshold and
flags words that start near a kept record. resolve_companion_files()
discovers the per-transcript files by naming convention. load_keywords()
and load_tags() read their respective formats.

RULES:
- Companion files: {stem}-keywords.txt and {stem}-tags.json next to the
  transcript; default-keywords.txt in the same directory
- Keyword files: one term per line, strip whitespace, ignore blank lines
  and lines starting with '#'
- Lexical matching is case-insensitive substring matching on the word
  stripped of surrounding punctuation
- Tag records are validated with jsonschema; a record needs "tag" or
  "emoji"; missing confidence counts as 1.0
- Kept records satisfy confidence >= threshold
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import jsonschema

from drawtext_pipeline.core.ir import Word
from drawtext_pipeline.core.sanitizer import normalize
from drawtext_pipeline.schemas import get_schema

DEFAULT_TAG_TOLERANCE_S = 0.25

_EDGE_PUNCTUATION_RE = re.compile(r"^[^\w]+|[^\w]+$")

WordPredicate = Callable[[Word], bool]


@dataclass
class KeywordFiles:
    """Resolved paths to optional keyword companion files.

    RULES:
    - keywords_path: {stem}-keywords.txt, or None if not found
    - tags_path: {stem}-tags.json, or None if not found
    - default_keywords_path: default-keywords.txt, or None if not found
    """

    keywords_path: Optional[Path] = None
    tags_path: Optional[Path] = None
    default_keywords_path: Optional[Path] = None

    @property
    def found(self) -> bool:
        return any((self.keywords_path, self.tags_path, self.default_keywords_path))


def _bare(text: str) -> str:
    return _EDGE_PUNCTUATION_RE.sub("", normalize(text)).casefold()


def resolve_companion_files(transcript_path: Union[str, Path]) -> KeywordFiles:
    """Discover keyword files next to the transcript.

    The stem is the transcript filename with all extensions stripped
    (e.g. "voice.words.json" -> "voice").
    """
    transcript = Path(transcript_path)
    directory = transcript.parent

    stem = transcript.name
    while "." in stem:
        stem = stem.rsplit(".", 1)[0]

    result = KeywordFiles()

    keywords_path = directory / "{}-keywords.txt".format(stem)
    if keywords_path.is_file():
        result.keywords_path = keywords_path

    tags_path = directory / "{}-tags.json".format(stem)
    if tags_path.is_file():
        result.tags_path = tags_path

    default_path = directory / "default-keywords.txt"
    if default_path.is_file():
        result.default_keywords_path = default_path

    return result


def load_keywords(path: Union[str, Path]) -> List[str]:
    """Load keyword terms from a text file, in file order."""
    terms: List[str] = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        terms.append(stripped)
    return terms


def lexical_predicate(keywords: Iterable[str]) -> WordPredicate:
    """Build a predicate matching words that contain any keyword.

    Matching ignores case and the word's leading/trailing punctuation, so
    "Liberté!" matches the keyword "liberté" and "libertés" matches too.
    """
    terms = [t for t in (_bare(k) for k in keywords) if t]

    def _predicate(word: Word) -> bool:
        bare = _bare(word.text)
        if not bare:
            return False
        return any(term in bare for term in terms)

    return _predicate


@dataclass(frozen=True)
class TagRecord:
    """One record from the tagging collaborator."""

    text: str
    start_s: float
    tag: str
    confidence: float = 1.0


def parse_tags(data: Any) -> List[TagRecord]:
    """Validate decoded tag JSON and convert it to TagRecords.

    Raises:
        jsonschema.ValidationError: If the document does not match the
            tag record schema.
    """
    jsonschema.validate(instance=data, schema=get_schema("tags"))
    records: List[TagRecord] = []
    for item in data:
        records.append(TagRecord(
            text=item["text"],
            start_s=float(item["start"]),
            tag=item.get("tag", item.get("emoji", "")),
            confidence=float(item.get("confidence", 1.0)),
        ))
    return records


def load_tags(path: Union[str, Path]) -> List[TagRecord]:
    """Read tag records from a JSON file (UTF-8)."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    return parse_tags(data)


def tag_predicate(
    records: Iterable[TagRecord],
    threshold: float,
    tolerance_s: float = DEFAULT_TAG_TOLERANCE_S,
) -> WordPredicate:
    """Build a predicate flagging words that start near a confident tag.

    Args:
        records: Tag records in any order.
        threshold: Minimum confidence for a record to count.
        tolerance_s: Maximum distance between word start and record start.
    """
    starts = sorted(r.start_s for r in records if r.tag and r.confidence >= threshold)

    def _predicate(word: Word) -> bool:
        return any(abs(word.start_s - s) <= tolerance_s for s in starts)

    return _predicate


def any_of(predicates: List[WordPredicate]) -> Optional[WordPredicate]:
    """Combine predicates with OR; None when there are none."""
    if not predicates:
        return None
    if len(predicates) == 1:
        return predicates[0]

    def _predicate(word: Word) -> bool:
        return any(p(word) for p in predicates)

    return _predicate


def tag_summary(records: List[TagRecord], threshold: float) -> Dict[str, int]:
    """Count kept records per tag, for status output."""
    counts: Dict[str, int] = {}
    for record in records:
        if record.tag and record.confidence >= threshold:
            counts[record.tag] = counts.get(record.tag, 0) + 1
    return counts
