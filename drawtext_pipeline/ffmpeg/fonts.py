"""Resolve the overlay font for the current host.

WHY: drawtext needs a real font file path, and the right one differs per
operating system. Resolving it once and passing it around keeps the
builder and scheduler free of filesystem probing and makes the choice
testable for every platform on any machine.

HOW: detect_font() is a pure function of the platform name and a
filesystem probe. It walks a short ordered list of well-known locations
for the platform family and returns the first hit. When nothing is found
it returns an assumed path with available=False, which callers must log
and warn about distinctly.

RULES:
- Windows paths are formatted for the filter language: forward slashes
  and an escaped drive colon (C\\:/Windows/Fonts/Impact.ttf)
- Unknown platforms use the Linux list
- available=False means "unverified", not "missing for sure"
"""

from __future__ import annotations

import ntpath
import re
from typing import Callable, Optional

from drawtext_pipeline.core.ir import FontConfig

WINDOWS_FONT_CANDIDATES = (
    "C:/Windows/Fonts/Impact.ttf",
    "C:\\Windows\\Fonts\\Impact.ttf",
)
WINDOWS_FALLBACK = FontConfig(
    path="C\\:/Windows/Fonts/Impact.ttf", name="Impact (assumed)", available=False
)

MAC_FONT_CANDIDATES = (
    "/System/Library/Fonts/Impact.ttc",
    "/Library/Fonts/Impact.ttf",
    "/System/Library/Fonts/Helvetica.ttc",
)
MAC_FALLBACK = FontConfig(
    path="/System/Library/Fonts/Helvetica.ttc", name="Helvetica (fallback)", available=False
)

LINUX_FONT_CANDIDATES = (
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/TTF/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/ubuntu/Ubuntu-Bold.ttf",
)
LINUX_FALLBACK = FontConfig(
    path="/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    name="Liberation Sans (assumed)",
    available=False,
)

_DRIVE_RE = re.compile(r"^([A-Za-z]):")


def format_windows_path(path: str) -> str:
    """Forward slashes and an escaped drive colon, as drawtext expects."""
    return _DRIVE_RE.sub(r"\1\\:", path.replace("\\", "/"))


def _font_name(path: str) -> str:
    base = path.replace("\\", "/").rsplit("/", 1)[-1]
    return base.rsplit(".", 1)[0] if "." in base else base


def detect_font(
    platform: str,
    exists: Callable[[str], bool],
    windir: Optional[str] = None,
) -> FontConfig:
    """Pick the overlay font for a platform.

    Args:
        platform: ``sys.platform``-style name (win32, darwin, linux...).
        exists: Filesystem probe; returns True if a path exists.
        windir: Windows directory (the WINDIR variable) on win32.

    Returns:
        A verified FontConfig, or the platform's assumed fallback.
    """
    if platform.startswith("win"):
        candidates = list(WINDOWS_FONT_CANDIDATES)
        candidates.append(ntpath.join(windir or "C:\\Windows", "Fonts", "Impact.ttf"))
        for candidate in candidates:
            if exists(candidate):
                return FontConfig(path=format_windows_path(candidate), name="Impact", available=True)
        return WINDOWS_FALLBACK

    if platform == "darwin":
        for candidate in MAC_FONT_CANDIDATES:
            if exists(candidate):
                return FontConfig(path=candidate, name=_font_name(candidate), available=True)
        return MAC_FALLBACK

    for candidate in LINUX_FONT_CANDIDATES:
        if exists(candidate):
            return FontConfig(path=candidate, name=_font_name(candidate), available=True)
    return LINUX_FALLBACK
