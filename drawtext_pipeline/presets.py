"""Style and grouping presets for caption overlays.

WHY: Different outputs want different caption looks and densities. Named
presets let callers pick a look without knowing every drawtext knob.

HOW: STYLE_PRESETS maps names to StyleConfig instances; GROUPING_PRESETS
maps the same names to plain dicts of grouping limits.

RULES:
- Presets are frozen constants; never mutate them at runtime
- "shorts" is the default: 9:16 vertical, white captions, yellow keywords
"""

from __future__ import annotations

from typing import Dict

from drawtext_pipeline.core.ir import OverlayLayout, OverlayStyle, StyleConfig

SHORTS_STYLE = StyleConfig(
    base=OverlayStyle(font_size=68, color="white", border_width=3),
    keyword=OverlayStyle(font_size=84, color="yellow", border_width=5),
    min_overlay_s=0.1,
)

BOLD_STYLE = StyleConfig(
    base=OverlayStyle(font_size=72, color="white", border_width=4),
    keyword=OverlayStyle(font_size=90, color="#FFD400", border_width=6),
    min_overlay_s=0.1,
)

STYLE_PRESETS: Dict[str, StyleConfig] = {
    "shorts": SHORTS_STYLE,
    "bold": BOLD_STYLE,
}

GROUPING_PRESETS: Dict[str, Dict] = {
    "shorts": {"max_words": 4, "max_chars": 27, "min_duration_s": 0.3},
    "bold": {"max_words": 3, "max_chars": 20, "min_duration_s": 0.4},
}

DEFAULT_LAYOUT = OverlayLayout()
DEFAULT_PRESET = "shorts"
