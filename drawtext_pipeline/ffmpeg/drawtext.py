"""Drawtext filter serialization and fragment parsing.

WHY: The FilterGraph IR only becomes text at the executor boundary, and
that text must follow the encoder's escaping rules exactly. Commands that
arrive from outside as opaque text need the reverse trip so they can be
re-batched, and that trip must fail loudly rather than silently lose
overlays.

HOW: Serialization writes one ``drawtext=`` fragment per instruction and
joins them with commas, in instruction order. Parsing splits filter text
into fragments at top-level commas (quote- and escape-aware), then turns
each fragment into a tagged variant:
  DrawtextFragment — a drawtext with text and enable window
  OtherFragment    — a valid filter that is not drawtext
  InvalidFragment  — a drawtext missing text or timing
graph_from_filter_text() collects the drawtext variants into a FilterGraph
and either raises or logs a warning for the rest.

RULES:
- Fragment order is preserved; fragments are never sorted by time
- Strict mode raises MalformedCommand on the first non-drawtext fragment;
  lenient mode drops it with a warning-level log line
- Parsed text is re-sanitized, which is a no-op for already-escaped text
- fontfile values are single-quoted; Windows drive colons stay escaped
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from drawtext_pipeline.core.ir import FilterGraph, OverlayInstruction, OverlayLayout
from drawtext_pipeline.core.sanitizer import sanitize, unescape
from drawtext_pipeline.errors import MalformedCommand

logger = logging.getLogger(__name__)

DRAWTEXT_PREFIX = "drawtext="

# Defaults for fragments that omit style options
_DEFAULT_FONT_SIZE = 68
_DEFAULT_COLOR = "white"
_DEFAULT_BORDER_WIDTH = 3

_ENABLE_RE = re.compile(
    r"^between\(\s*t\s*\\?,\s*([0-9]*\.?[0-9]+)\s*\\?,\s*([0-9]*\.?[0-9]+)\s*\)$"
)
_FONTFILE_RE = re.compile(r"fontfile=(?:'([^']*)'|([^:,]+))")


# =============================================================================
# Serialization
# =============================================================================

def format_seconds(value: float) -> str:
    return "{:.3f}".format(value)


def serialize_instruction(
    instruction: OverlayInstruction,
    font_path: str,
    layout: OverlayLayout,
) -> str:
    """Render one instruction as a drawtext fragment."""
    parts = [
        "drawtext=fontfile='{}'".format(font_path),
        "text='{}'".format(instruction.text),
        "x={}".format(layout.x),
        "y={}".format(layout.y),
        "fontsize={}".format(instruction.font_size),
        "fontcolor={}".format(instruction.color),
        "enable='between(t\\,{}\\,{})'".format(
            format_seconds(instruction.start_s), format_seconds(instruction.end_s)
        ),
        "borderw={}".format(instruction.border_width),
        "bordercolor={}".format(layout.border_color),
    ]
    if layout.box:
        parts.extend([
            "box=1",
            "boxcolor={}".format(layout.box_color),
            "boxborderw={}".format(layout.box_border_width),
        ])
    return ":".join(parts)


def serialize_graph(graph: FilterGraph) -> str:
    """Render a FilterGraph as comma-joined drawtext fragments."""
    return ",".join(
        serialize_instruction(instr, graph.font_path, graph.layout)
        for instr in graph.instructions
    )


def count_drawtext(filter_text: str) -> int:
    return filter_text.count(DRAWTEXT_PREFIX)


# =============================================================================
# Parsing
# =============================================================================

def split_top_level(text: str, separator: str) -> List[str]:
    """Split text at separator characters outside quotes and escapes.

    A backslash protects the following character; single quotes protect
    everything up to the closing quote. Both are kept in the output.
    """
    parts: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    while i < len(text):
        char = text[i]
        if char == "\\" and i + 1 < len(text):
            current.append(text[i:i + 2])
            i += 2
            continue
        if char == "'":
            in_quotes = not in_quotes
        elif char == separator and not in_quotes:
            parts.append("".join(current))
            current = []
            i += 1
            continue
        current.append(char)
        i += 1
    parts.append("".join(current))
    return parts


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == "'" and value[-1] == "'":
        return value[1:-1]
    return value


@dataclass(frozen=True)
class DrawtextFragment:
    instruction: OverlayInstruction
    fontfile: Optional[str]
    options: Dict[str, str]


@dataclass(frozen=True)
class OtherFragment:
    name: str
    source: str


@dataclass(frozen=True)
class InvalidFragment:
    source: str
    reason: str


ParsedFragment = Union[DrawtextFragment, OtherFragment, InvalidFragment]


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(float(value)) if value else default
    except ValueError:
        return default


def parse_fragment(source: str) -> ParsedFragment:
    """Classify one filter fragment and extract its overlay, if any."""
    fragment = source.strip()
    if not fragment:
        return InvalidFragment(source=source, reason="empty fragment")

    name, _, body = fragment.partition("=")
    name = name.strip()
    if name != "drawtext":
        return OtherFragment(name=name, source=fragment)

    options: Dict[str, str] = {}
    for option in split_top_level(body, ":"):
        key, sep, value = option.partition("=")
        if not sep:
            continue
        options[key.strip()] = _unquote(value.strip())

    if "text" not in options:
        return InvalidFragment(source=fragment, reason="missing text option")
    text = sanitize(options["text"])
    if not text:
        return InvalidFragment(source=fragment, reason="empty text")

    match = _ENABLE_RE.match(options.get("enable", "").strip())
    if not match:
        return InvalidFragment(source=fragment, reason="missing or unsupported enable window")
    start_s = float(match.group(1))
    end_s = float(match.group(2))
    if end_s <= start_s:
        return InvalidFragment(source=fragment, reason="enable window ends before it starts")

    color = options.get("fontcolor", _DEFAULT_COLOR)
    instruction = OverlayInstruction(
        text=text,
        start_s=start_s,
        end_s=end_s,
        font_size=_parse_int(options.get("fontsize"), _DEFAULT_FONT_SIZE),
        color=color,
        border_width=_parse_int(options.get("borderw"), _DEFAULT_BORDER_WIDTH),
        is_keyword=color != _DEFAULT_COLOR,
    )
    return DrawtextFragment(
        instruction=instruction,
        fontfile=options.get("fontfile"),
        options=options,
    )


def parse_fragments(filter_text: str) -> List[ParsedFragment]:
    return [parse_fragment(part) for part in split_top_level(filter_text, ",") if part.strip()]


def _layout_from_options(options: Dict[str, str]) -> OverlayLayout:
    default = OverlayLayout()
    box_value = options.get("box")
    return OverlayLayout(
        x=options.get("x", default.x),
        y=options.get("y", default.y),
        border_color=options.get("bordercolor", default.border_color),
        box=default.box if box_value is None else box_value.strip() == "1",
        box_color=options.get("boxcolor", default.box_color),
        box_border_width=_parse_int(options.get("boxborderw"), default.box_border_width),
    )


def graph_from_filter_text(
    filter_text: str,
    font_path: Optional[str] = None,
    strict: bool = True,
) -> FilterGraph:
    """Rebuild a FilterGraph from serialized filter text.

    WHY: Commands ingested as JSON text have to be split into batches,
    which requires the individual overlays back.

    HOW: Parses every fragment. Drawtext fragments become instructions in
    source order. Placement and box settings come from the first drawtext.
    The font is ``font_path`` when given, otherwise the first fragment's.

    Args:
        filter_text: Value of the command's video filter option.
        font_path: Font to render all batches with, or None to keep the
            command's own.
        strict: Raise on fragments that are not usable drawtext filters
            instead of dropping them.

    Returns:
        FilterGraph with the recovered instructions (possibly empty).

    Raises:
        MalformedCommand: In strict mode, for any non-drawtext or invalid
            fragment.
    """
    instructions: List[OverlayInstruction] = []
    first: Optional[DrawtextFragment] = None

    for fragment in parse_fragments(filter_text):
        if isinstance(fragment, DrawtextFragment):
            if first is None:
                first = fragment
            instructions.append(fragment.instruction)
            continue

        if isinstance(fragment, OtherFragment):
            reason = "unsupported filter '{}'".format(fragment.name)
        else:
            reason = fragment.reason
        if strict:
            raise MalformedCommand(
                "Cannot re-batch filter fragment ({}): {}".format(reason, fragment.source[:120])
            )
        logger.warning("Dropping filter fragment (%s): %s", reason, fragment.source[:120])

    resolved_font = font_path
    if resolved_font is None and first is not None:
        resolved_font = first.fontfile
    return FilterGraph(
        instructions=instructions,
        font_path=resolved_font or "",
        layout=_layout_from_options(first.options) if first is not None else OverlayLayout(),
    )


def retarget_fontfile(
    filter_text: str,
    font_path: str,
    exists: Callable[[str], bool],
) -> str:
    """Point fontfile options that do not exist on this host at font_path."""
    def _replace(match: "re.Match[str]") -> str:
        current = match.group(1) if match.group(1) is not None else match.group(2)
        if exists(unescape(current)):
            return match.group(0)
        logger.info("Retargeting missing font %s -> %s", current, font_path)
        return "fontfile='{}'".format(font_path)

    return _FONTFILE_RE.sub(_replace, filter_text)
