"""Configuration constants and .env loading.

WHY: Batching thresholds, caption budgets, and encoder settings are the
knobs operators tune most. Keeping them in one module, as plain values,
makes them easy to find and override without touching pipeline logic.

HOW: python-dotenv loads the .env file on import. Every constant reads an
environment variable with a documented default. Components never import
this module themselves; the CLIs pass the values in explicitly.

RULES:
- All defaults can be overridden via environment variables
- FFMPEG_TIMEOUT_S of 0 or empty means no timeout
- Boolean variables accept true/false (case-insensitive)
"""

from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv

# Load .env from the project root (where the script is run from)
load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


def _optional_timeout(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    value = float(raw)
    return value if value > 0 else None


# ---------------------------------------------------------------------------
# Encoder
# ---------------------------------------------------------------------------

FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")
FFMPEG_TIMEOUT_S = _optional_timeout("FFMPEG_TIMEOUT_S")
"""Per-batch timeout in seconds, or None to wait indefinitely."""

# ---------------------------------------------------------------------------
# Batching thresholds
# ---------------------------------------------------------------------------

MAX_COMMAND_LENGTH = _env_int("DRAWTEXT_MAX_COMMAND_LENGTH", 6000)
"""Serialized command length above which batching is forced."""

MAX_OVERLAY_FILTERS = _env_int("DRAWTEXT_MAX_FILTERS", 10)
"""Drawtext count above which batching is forced."""

DEFAULT_BATCH_SIZE = _env_int("DRAWTEXT_BATCH_SIZE", 8)
FALLBACK_BATCH_SIZE = _env_int("DRAWTEXT_FALLBACK_BATCH_SIZE", 4)
"""Batch size used when a direct attempt already failed."""

STRICT_FILTER_PARSE = os.getenv("DRAWTEXT_STRICT_PARSE", "true").lower() == "true"

# ---------------------------------------------------------------------------
# Caption grouping
# ---------------------------------------------------------------------------

MAX_CAPTION_CHARS = _env_int("DRAWTEXT_MAX_CHARS", 27)
MAX_WORDS_PER_CAPTION = _env_int("DRAWTEXT_MAX_WORDS", 4)
MIN_CAPTION_DURATION_S = _env_float("DRAWTEXT_MIN_DURATION_S", 0.3)
TAG_CONFIDENCE_THRESHOLD = _env_float("DRAWTEXT_TAG_THRESHOLD", 0.5)

# ---------------------------------------------------------------------------
# Files and logging
# ---------------------------------------------------------------------------

COMMAND_JSON_PATH = os.getenv(
    "DRAWTEXT_COMMAND_JSON", os.path.join("public", "ffmpeg-command.json")
)
LOG_DIR = os.getenv("DRAWTEXT_LOG_DIR", "")
"""Directory for audit logs; empty means the current directory."""

TEMP_DIR = os.getenv("DRAWTEXT_TEMP_DIR", "")
"""Directory for intermediate batch files; empty means the current directory."""

LOG_LEVEL = os.getenv("DRAWTEXT_LOG_LEVEL", "WARNING").upper()
