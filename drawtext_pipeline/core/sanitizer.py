"""Caption text cleanup and escaping for the drawtext mini-language.

WHY: Transcription output carries typographic punctuation, stray spaces
around hyphens and apostrophes ("est -elle"), and characters that the
encoder's filter syntax treats as separators. Unescaped, a single colon
or comma in a caption silently truncates the filter or breaks the graph.

HOW: Four steps in strict order:
  1. normalize look-alike punctuation (curly quotes, dashes, ellipsis,
     non-breaking spaces) to plain equivalents
  2. collapse whitespace the transcriber inserted around hyphens and
     apostrophes inside a word
  3. collapse runs of whitespace and trim
  4. backslash-escape filter metacharacters in a single pass that leaves
     already-escaped pairs alone
Steps 1-3 are exposed as normalize(), step 4 as escape().

RULES:
- sanitize() never raises; empty output means "drop this overlay"
- sanitize(sanitize(x)) == sanitize(x)
- Escaping is single-pass, so inserted backslashes are never re-escaped
- A raw backslash directly before a metacharacter is read as an escape
  pair: "50\\%" stays as is and renders "50%". Round trips through
  unescape() hold only for backslashes not followed by a metacharacter
- visible_len() measures rendered length (escape backslashes excluded)
"""

from __future__ import annotations

import re

# Step 1: look-alike punctuation → plain equivalents
_LOOKALIKES = {
    "\u2018": "'", "\u2019": "'", "\u201a": "'", "\u201b": "'", "\u2032": "'",
    "\u201c": '"', "\u201d": '"', "\u201e": '"', "\u201f": '"', "\u2033": '"',
    "\u00ab": '"', "\u00bb": '"',
    "\u2010": "-", "\u2011": "-", "\u2012": "-", "\u2013": "-", "\u2014": "-",
    "\u2015": "-", "\u2212": "-",
    "\u2026": "...",
    "\u00a0": " ", "\u202f": " ", "\u2007": " ", "\u2009": " ",
    "\u200b": "", "\ufeff": "",
}
_LOOKALIKE_TABLE = str.maketrans(_LOOKALIKES)

# Step 2: "est -elle" / "est- elle" → "est-elle"; "l' homme" → "l'homme".
# Spaces on both sides of a hyphen are a real dash and are left alone.
_HYPHEN_GAP_RE = re.compile(r"(?<=\w)(?:\s+-(?=\w)|-\s+(?=\w))")
_APOSTROPHE_GAP_RE = re.compile(r"(?<=\w)(?:\s+'\s*|'\s+)(?=\w)")

# Step 3
_WHITESPACE_RE = re.compile(r"\s+")

# Step 4: an existing escape pair, or a bare metacharacter
METACHARACTERS = "\\:,[]();%'"
_ESCAPE_RE = re.compile(r"\\([\\:,\[\]();%'])|([\\:,\[\]();%'])")
_UNESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)


def normalize(raw: str) -> str:
    """Apply cleanup steps 1-3 (no escaping)."""
    if not raw:
        return ""
    text = str(raw).translate(_LOOKALIKE_TABLE)
    text = _HYPHEN_GAP_RE.sub("-", text)
    text = _APOSTROPHE_GAP_RE.sub("'", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def _escape_match(match: "re.Match[str]") -> str:
    if match.group(1) is not None:
        return match.group(0)
    return "\\" + match.group(2)


def escape(text: str) -> str:
    """Backslash-escape filter metacharacters (step 4)."""
    return _ESCAPE_RE.sub(_escape_match, text)


def unescape(text: str) -> str:
    """Drop escape backslashes, giving the text as the encoder renders it."""
    return _UNESCAPE_RE.sub(r"\1", text)


def sanitize(raw: str) -> str:
    """Clean and escape raw caption text for embedding in a drawtext filter.

    Args:
        raw: Text as produced by the transcription collaborator.

    Returns:
        Escaped text, or "" when nothing printable is left.
    """
    return escape(normalize(raw))


def visible_len(text: str) -> int:
    """Rendered character count of sanitized text."""
    return len(unescape(text))
