"""Persist the per-run audit log of encoder invocations.

WHY: When a long batch chain fails, the operator needs to see exactly
which arguments each invocation received and what the encoder said,
without re-running anything. A machine-readable JSON log serves tooling;
a plain-text transcript serves the human reading it.

HOW: CommandLog owns the list of CommandLogEntry records for one run. Each
append() rewrites the JSON log file, so a crash mid-chain still leaves
every finished invocation on disk. write_transcript() renders the same
entries as text next to the JSON file.

Log file: ffmpeg-commands-log-{timestamp}.json
  {"metadata": {totalBatches, timestamp, platform, logFile, fontConfig},
   "commands": [CommandLogEntry.to_dict(), ...]}

RULES:
- Entries are append-only and never mutated
- The document is validated with jsonschema before every write
- Validation and write failures (OSError) are logged as warnings, never
  raised; the audit log must not break a render
- totalBatches counts logged invocations
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import jsonschema

from drawtext_pipeline.core.ir import CommandLogEntry, FontConfig
from drawtext_pipeline.schemas import get_schema

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_file_name(timestamp: str) -> str:
    """File name for a run started at ``timestamp`` (ISO format)."""
    return "ffmpeg-commands-log-{}.json".format(timestamp.replace(":", "-").replace(".", "-"))


class CommandLog:
    """Append-only audit log for one run, mirrored to a JSON file.

    Args:
        log_dir: Directory for the log files ("" = current directory).
        platform: Host platform name recorded in the metadata.
        font: Resolved font recorded in the metadata.
        started_at: Run timestamp used in the file name (default: now).
    """

    def __init__(
        self,
        log_dir: str = "",
        platform: str = sys.platform,
        font: Optional[FontConfig] = None,
        started_at: Optional[str] = None,
    ) -> None:
        self.started_at = started_at or utc_timestamp()
        self.path = os.path.join(log_dir, log_file_name(self.started_at))
        self.platform = platform
        self.font = font
        self._entries: List[CommandLogEntry] = []

    @property
    def entries(self) -> List[CommandLogEntry]:
        return list(self._entries)

    @property
    def transcript_path(self) -> str:
        return os.path.splitext(self.path)[0] + ".txt"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": {
                "totalBatches": len(self._entries),
                "timestamp": utc_timestamp(),
                "logFile": os.path.basename(self.path),
                "platform": self.platform,
                "fontConfig": self.font.to_dict() if self.font else None,
            },
            "commands": [e.to_dict() for e in self._entries],
        }

    def append(self, entry: CommandLogEntry) -> None:
        """Record one invocation and rewrite the JSON log."""
        self._entries.append(entry)
        self.save()

    def save(self) -> bool:
        """Write the JSON log. Returns False if it failed validation or could not be written."""
        document = self.to_dict()
        try:
            jsonschema.validate(instance=document, schema=get_schema("command_log"))
        except jsonschema.ValidationError as e:
            logger.warning("Command log %s failed validation, not written: %s", self.path, e.message)
            return False
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.warning("Could not save command log %s: %s", self.path, e)
            return False
        return True

    def render_transcript(self) -> str:
        """Human-readable text version of the log."""
        lines = [
            "=== ENCODER COMMANDS ===",
            "Generated: {}".format(utc_timestamp()),
            "Platform: {}".format(self.platform),
        ]
        if self.font is not None:
            lines.append("Font: {}".format(self.font.name))
            lines.append("Font path: {}".format(self.font.path))
        lines.append("Total invocations: {}".format(len(self._entries)))
        lines.append("")

        for entry in self._entries:
            lines.append("--- BATCH {} ---".format(entry.batch_index))
            lines.append("Timestamp: {}".format(entry.timestamp))
            lines.append("Overlays: {}".format(entry.instruction_count))
            if entry.font_path:
                lines.append("Font: {}".format(entry.font_path))
            lines.append("Status: {}".format("SUCCESS" if entry.success else "FAILED"))
            if entry.error_detail:
                lines.append("Error: {}".format(entry.error_detail))
            lines.append("")
            lines.append("Full command:")
            lines.append(entry.full_command)
            lines.append("")
            lines.append("Arguments:")
            for i, arg in enumerate(entry.args):
                lines.append("  [{}]: {}".format(i, arg))
            lines.append("")
            lines.append("=" * 80)
            lines.append("")

        return "\n".join(lines)

    def write_transcript(self) -> Optional[str]:
        """Write the readable transcript next to the JSON log.

        Returns:
            The transcript path, or None if it could not be written.
        """
        try:
            with open(self.transcript_path, "w", encoding="utf-8") as f:
                f.write(self.render_transcript())
        except OSError as e:
            logger.warning("Could not write readable command log %s: %s", self.transcript_path, e)
            return None
        return self.transcript_path
