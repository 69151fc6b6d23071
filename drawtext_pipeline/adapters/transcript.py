"""Load transcription JSON into the flat Word sequence the grouper consumes.

WHY: The transcription collaborator writes word timings in a few shapes
depending on the tool that produced them. The rest of the pipeline only
wants one thing: an ordered list of Words.

HOW: parse_transcript() accepts any of the supported shapes, flattens
segments in order, and converts each entry into a Word. load_transcript()
reads a file and also reports the detected language when present.

Supported shapes:
  {"segments": [{"words": [...]}, ...], "language": "fr"}   (Whisper)
  [{"words": [...]}, ...]                                    (segments only)
  [{"word": "...", "start": 0.0, "end": 0.4}, ...]           (flat words)

RULES:
- Word text comes from "word", falling back to "text"
- Confidence comes from "probability", then "confidence", default 1.0
- end < start is repaired to end = start (Word requires end >= start)
- Entries without numeric start/end raise ValueError naming the index
- Input order is preserved; nothing is sorted
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from drawtext_pipeline.core.ir import Word

logger = logging.getLogger(__name__)


@dataclass
class TranscriptData:
    """Words from one transcription file plus its detected language."""

    words: List[Word] = field(default_factory=list)
    language: Optional[str] = None


def _to_word(entry: Dict[str, Any], index: int) -> Word:
    if not isinstance(entry, dict):
        raise ValueError("Transcript word #{} is not an object".format(index))

    text = entry.get("word", entry.get("text"))
    if text is None:
        text = ""
    start = entry.get("start")
    end = entry.get("end")
    if not isinstance(start, (int, float)) or not isinstance(end, (int, float)):
        raise ValueError(
            "Transcript word #{} ({!r}) has no numeric start/end".format(index, text)
        )

    confidence = entry.get("probability", entry.get("confidence", 1.0))
    if not isinstance(confidence, (int, float)):
        confidence = 1.0

    if end < start:
        logger.debug("Repairing inverted timing for word #%d (%s > %s)", index, start, end)
        end = start

    return Word(
        text=str(text),
        start_s=float(start),
        end_s=float(end),
        confidence=float(confidence),
    )


def _flatten(entries: List[Any]) -> List[Dict[str, Any]]:
    """Flatten a list of segments, or pass a flat word list through."""
    flat: List[Dict[str, Any]] = []
    for entry in entries:
        if isinstance(entry, dict) and isinstance(entry.get("words"), list):
            flat.extend(entry["words"])
        else:
            flat.append(entry)
    return flat


def parse_transcript(data: Union[Dict[str, Any], List[Any]]) -> TranscriptData:
    """Convert a decoded transcription document into TranscriptData.

    Args:
        data: Decoded JSON in one of the supported shapes.

    Returns:
        TranscriptData with the flattened words (possibly empty).

    Raises:
        ValueError: If the document shape is not recognized or a word
            entry has no usable timing.
    """
    language: Optional[str] = None
    if isinstance(data, dict):
        if not isinstance(data.get("segments"), list):
            raise ValueError("Transcript object has no 'segments' array")
        entries = data["segments"]
        lang = data.get("language")
        language = lang if isinstance(lang, str) else None
    elif isinstance(data, list):
        entries = data
    else:
        raise ValueError("Transcript must be a JSON object or array")

    words = [_to_word(entry, i) for i, entry in enumerate(_flatten(entries))]
    return TranscriptData(words=words, language=language)


def load_transcript(path: Union[str, Path]) -> TranscriptData:
    """Read and parse a transcription JSON file (UTF-8).

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not valid JSON or not a transcript.
    """
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError("Transcript {} is not valid JSON: {}".format(path, e)) from e
    return parse_transcript(data)
