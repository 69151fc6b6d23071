"""Intermediate representation dataclasses for overlay building and execution.

WHY: Words flow through grouping and building into overlay directives,
which the scheduler slices into batches and the executor runs. Every stage
needs the same typed view of that data, and keeping it structured (rather
than re-parsing filter text) is what keeps overlay order and timing intact.

HOW: A chain of dataclasses, leaf-first:
  Word               — one timed word from the transcription collaborator
  CaptionChunk       — words displayed together as one caption
  OverlayStyle       — per-layer look (size, color, border)
  OverlayLayout      — graph-wide placement and box settings
  OverlayInstruction — one timed, styled drawtext directive
  FilterGraph        — ordered instructions + font + layout
  FontConfig         — resolved overlay font
  Batch              — one slice of a graph bound to input/output files
  CommandLogEntry    — audit record of one encoder invocation

RULES:
- Word, OverlayInstruction and CommandLogEntry are frozen (write-once)
- All times are float seconds
- FilterGraph.instructions order is render stack order (last on top)
- Batch indices are 1-based
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from drawtext_pipeline.core.sanitizer import sanitize


@dataclass(frozen=True)
class Word:
    """A single timed word from the transcription collaborator.

    RULES:
    - end_s >= start_s (adapters repair inverted timings)
    - confidence defaults to 1.0 when the source has none
    """

    text: str
    start_s: float
    end_s: float
    confidence: float = 1.0


@dataclass
class CaptionChunk:
    """An ordered, non-empty group of words shown on screen together.

    WHY: Captions read best in short phrases; the chunk is the unit the
    builder turns into one base overlay.

    RULES:
    - words is never empty
    - start_s / end_s come from the first / last word
    - min_duration_s is the display floor applied by the builder
    - is_keyword is True when any word matched the keyword predicate
    """

    words: List[Word]
    min_duration_s: float = 0.0
    is_keyword: bool = False

    @property
    def raw_text(self) -> str:
        return " ".join(w.text for w in self.words)

    @property
    def display_text(self) -> str:
        return sanitize(self.raw_text)

    @property
    def start_s(self) -> float:
        return self.words[0].start_s

    @property
    def end_s(self) -> float:
        return self.words[-1].end_s

    @property
    def display_end_s(self) -> float:
        """End time with the minimum display duration applied."""
        return max(self.end_s, self.start_s + self.min_duration_s)


@dataclass(frozen=True)
class OverlayStyle:
    """Visual style of one overlay layer (base captions or keyword emphasis)."""

    font_size: int
    color: str
    border_width: int


@dataclass(frozen=True)
class OverlayLayout:
    """Placement and box settings shared by every overlay in a graph.

    Values are encoder expressions, written into the filter text verbatim.
    """

    x: str = "(w-text_w)/2"
    y: str = "h*0.8"
    border_color: str = "black"
    box: bool = True
    box_color: str = "black@0.7"
    box_border_width: int = 12


@dataclass(frozen=True)
class OverlayInstruction:
    """One renderable overlay directive.

    RULES:
    - text is already sanitized (escaped for the filter mini-language)
    - start_s < end_s (the builder applies a minimum-duration floor)
    - is_keyword marks emphasis overlays layered over a base caption
    """

    text: str
    start_s: float
    end_s: float
    font_size: int
    color: str
    border_width: int
    is_keyword: bool = False


@dataclass
class FilterGraph:
    """Ordered overlay instructions plus the font and layout to render them with.

    WHY: This is the canonical form handed from the builder to the
    scheduler. Slicing it keeps font and layout attached to each batch.

    RULES:
    - Instruction order is preserved by every operation
    - Treated as read-only once the builder returns it
    """

    instructions: List[OverlayInstruction] = field(default_factory=list)
    font_path: str = ""
    layout: OverlayLayout = field(default_factory=OverlayLayout)

    def __len__(self) -> int:
        return len(self.instructions)

    def slice(self, start: int, stop: int) -> "FilterGraph":
        return FilterGraph(
            instructions=list(self.instructions[start:stop]),
            font_path=self.font_path,
            layout=self.layout,
        )

    @property
    def keyword_count(self) -> int:
        return sum(1 for i in self.instructions if i.is_keyword)


@dataclass(frozen=True)
class FontConfig:
    """Resolved overlay font.

    RULES:
    - path is already formatted for the encoder (Windows drive colon escaped)
    - available is False when the path is an unverified assumption
    """

    path: str
    name: str
    available: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "name": self.name, "available": self.available}


@dataclass
class Batch:
    """A contiguous slice of a FilterGraph bound to an input and output file.

    WHY: Each batch is one encoder invocation. Its output is the next
    batch's input, forming a singly-linked chain of intermediate files.

    RULES:
    - index is 1-based and equals the position in the chain
    - output_path is always an intermediate file; the runner moves the
      last one onto the real output
    - codec_args are passed through unchanged (default: copy audio)
    - input_args go before -i and output_args after the codec options;
      only batch 1 carries them, later batches read an already
      seeked and trimmed intermediate
    """

    index: int
    graph: FilterGraph
    input_path: str
    output_path: str
    is_last: bool = False
    codec_args: Tuple[str, ...] = ("-c:a", "copy")
    input_args: Tuple[str, ...] = ()
    output_args: Tuple[str, ...] = ()

    @property
    def instructions(self) -> List[OverlayInstruction]:
        return self.graph.instructions


@dataclass(frozen=True)
class CommandLogEntry:
    """Write-once audit record for one encoder invocation.

    RULES:
    - args excludes the program name; full_command includes it
    - error_detail is set only when success is False
    """

    batch_index: int
    timestamp: str
    args: Tuple[str, ...]
    success: bool
    error_detail: Optional[str] = None
    program: str = "ffmpeg"
    instruction_count: int = 0
    font_path: Optional[str] = None

    @property
    def full_command(self) -> str:
        return "{} {}".format(self.program, " ".join(self.args))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batchIndex": self.batch_index,
            "timestamp": self.timestamp,
            "argumentList": list(self.args),
            "fullCommand": self.full_command,
            "instructionCount": self.instruction_count,
            "success": self.success,
            "errorDetail": self.error_detail,
            "fontPath": self.font_path,
        }


@dataclass(frozen=True)
class StyleConfig:
    """Base and keyword styles plus the minimum overlay duration.

    RULES:
    - keyword style should differ visibly (larger font, accent color,
      heavier border) since it is drawn over the base caption
    - min_overlay_s is the floor that keeps start_s < end_s
    """

    base: OverlayStyle
    keyword: OverlayStyle
    min_overlay_s: float = 0.1
