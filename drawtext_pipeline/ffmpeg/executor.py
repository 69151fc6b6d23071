"""Run one encoder invocation per batch and record it in the audit log.

WHY: The encoder writes a steady stream of diagnostics to stderr. If
nobody reads that pipe, the child blocks once the OS buffer fills and the
run hangs forever. The same stream carries the progress markers and, on
failure, the only explanation of what went wrong.

HOW: CommandExecutor spawns the encoder with stderr piped and a reader
thread that drains it continuously in small chunks. Chunks are split into
lines on both \\r and \\n (the encoder rewrites its status line with \\r).
With progress enabled, each line is scanned for a ``time=HH:MM:SS.ss``
marker and the parsed seconds go to the progress callback. The main
thread blocks in wait() (with an optional timeout), then joins the reader.

RULES:
- Exactly one CommandLogEntry per execute()/run_args() call, success or not
- Non-zero exit, timeout, and spawn failure all raise BatchExecutionFailure
  carrying the full captured stderr
- A timed-out process is killed before the failure is raised
- An interrupted wait (Ctrl-C) kills the process, then re-raises
- Lines without a progress marker are ignored
- The font access probe is not audited
"""

from __future__ import annotations

import codecs
import logging
import re
import subprocess
import threading
import time
import warnings
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

from drawtext_pipeline.core.ir import Batch, CommandLogEntry, FontConfig
from drawtext_pipeline.errors import BatchExecutionFailure, EmptyFilterGraph, FontUnavailable
from drawtext_pipeline.ffmpeg.audit import CommandLog, utc_timestamp
from drawtext_pipeline.ffmpeg.drawtext import serialize_graph

logger = logging.getLogger(__name__)

FONT_PROBE_TIMEOUT_S = 5.0

_TIME_RE = re.compile(r"time=\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
_LINE_SPLIT_RE = re.compile(r"[\r\n]")
_READ_CHUNK = 4096

ProgressCallback = Callable[[int, float, str], None]
"""Called with (batch_index, seconds_done, raw_line)."""


def parse_progress_time(line: str) -> Optional[float]:
    """Seconds from a ``time=HH:MM:SS.ss`` marker, or None if the line has none."""
    match = _TIME_RE.search(line)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def batch_args(batch: Batch) -> List[str]:
    """Encoder arguments (without the program) for one batch."""
    if not batch.instructions:
        raise EmptyFilterGraph("Batch {} has no overlay instructions".format(batch.index))
    args = list(batch.input_args)
    args.extend(["-i", batch.input_path, "-vf", serialize_graph(batch.graph)])
    args.extend(batch.codec_args)
    args.extend(batch.output_args)
    args.extend(["-y", batch.output_path])
    return args


@dataclass
class ProcessOutcome:
    """What one finished (or abandoned) child process left behind."""

    returncode: Optional[int]
    stderr: str
    timed_out: bool = False
    spawn_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and self.spawn_error is None


class _StderrPump:
    """Drain a binary stream on a daemon thread, handing complete lines to a callback."""

    def __init__(self, stream: Any, on_line: Optional[Callable[[str], None]]) -> None:
        self._stream = stream
        self._on_line = on_line
        self._parts: List[str] = []
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._thread = threading.Thread(target=self._run, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def join(self) -> str:
        self._thread.join()
        return "".join(self._parts)

    def _read(self) -> bytes:
        read1 = getattr(self._stream, "read1", None)
        if read1 is not None:
            return read1(_READ_CHUNK)
        return self._stream.read(_READ_CHUNK)

    def _feed(self, text: str) -> None:
        self._parts.append(text)
        if self._on_line is None:
            return
        self._pending += text
        pieces = _LINE_SPLIT_RE.split(self._pending)
        self._pending = pieces.pop()
        for line in pieces:
            if line:
                self._on_line(line)

    def _run(self) -> None:
        try:
            while True:
                chunk = self._read()
                if not chunk:
                    break
                self._feed(self._decoder.decode(chunk))
            self._feed(self._decoder.decode(b"", final=True))
            if self._on_line is not None and self._pending:
                self._on_line(self._pending)
                self._pending = ""
        except (OSError, ValueError) as e:
            # Stream closed under us after a kill
            logger.debug("stderr reader stopped: %s", e)
        finally:
            self._stream.close()


class CommandExecutor:
    """Runs encoder invocations and appends one audit entry per invocation.

    Args:
        audit: Audit log shared by the whole run.
        ffmpeg_bin: Encoder executable.
        timeout_s: Per-invocation timeout in seconds, or None.
        font: Resolved overlay font (recorded in entries, checked by
            check_font()).
        on_progress: Receives parsed progress when progress is enabled.
        popen: Process factory (subprocess.Popen; replaced in tests).
    """

    def __init__(
        self,
        audit: CommandLog,
        ffmpeg_bin: str = "ffmpeg",
        timeout_s: Optional[float] = None,
        font: Optional[FontConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
        popen: Callable[..., Any] = subprocess.Popen,
    ) -> None:
        self.audit = audit
        self.ffmpeg_bin = ffmpeg_bin
        self.timeout_s = timeout_s
        self.font = font
        self.on_progress = on_progress
        self._popen = popen

    # -- process plumbing --------------------------------------------------

    def _run(
        self,
        args: Sequence[str],
        on_line: Optional[Callable[[str], None]] = None,
        timeout_s: Optional[float] = None,
    ) -> ProcessOutcome:
        try:
            proc = self._popen(
                [self.ffmpeg_bin] + list(args),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            return ProcessOutcome(returncode=None, stderr="", spawn_error=str(e))

        pump = _StderrPump(proc.stderr, on_line)
        pump.start()
        try:
            returncode = proc.wait(timeout=timeout_s)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
            return ProcessOutcome(returncode=None, stderr=pump.join(), timed_out=True)
        except BaseException:
            # Ctrl-C or any other abort must not leave the encoder running
            proc.kill()
            proc.wait()
            raise
        return ProcessOutcome(returncode=returncode, stderr=pump.join())

    def _progress_handler(self, batch_index: int) -> Optional[Callable[[str], None]]:
        callback = self.on_progress
        if callback is None:
            return None

        def _on_line(line: str) -> None:
            seconds = parse_progress_time(line)
            if seconds is not None:
                callback(batch_index, seconds, line)

        return _on_line

    # -- public API --------------------------------------------------------

    def run_args(
        self,
        args: Sequence[str],
        batch_index: int,
        instruction_count: int = 0,
        progress: bool = False,
    ) -> str:
        """Run the encoder with explicit arguments and audit the invocation.

        Returns:
            The captured stderr text.

        Raises:
            BatchExecutionFailure: On non-zero exit, timeout, or spawn failure.
        """
        started = utc_timestamp()
        on_line = self._progress_handler(batch_index) if progress else None
        logger.info("Batch %d: running %s with %d argument(s)", batch_index, self.ffmpeg_bin, len(args))

        outcome = self._run(args, on_line=on_line, timeout_s=self.timeout_s)

        if outcome.spawn_error is not None:
            detail = "Could not start {}: {}".format(self.ffmpeg_bin, outcome.spawn_error)
        elif outcome.timed_out:
            detail = "Timed out after {}s: {}".format(self.timeout_s, outcome.stderr)
        elif outcome.returncode != 0:
            detail = "Code {}: {}".format(outcome.returncode, outcome.stderr or "(no diagnostic output)")
        else:
            detail = None

        self.audit.append(CommandLogEntry(
            batch_index=batch_index,
            timestamp=started,
            args=tuple(args),
            success=detail is None,
            error_detail=detail,
            program=self.ffmpeg_bin,
            instruction_count=instruction_count,
            font_path=self.font.path if self.font else None,
        ))

        if detail is not None:
            logger.error("Batch %d failed: %s", batch_index, detail)
            raise BatchExecutionFailure(
                batch_index,
                outcome.returncode,
                outcome.stderr or detail,
                timed_out=outcome.timed_out,
            )
        return outcome.stderr

    def execute(self, batch: Batch, progress: bool = False) -> None:
        """Run one batch: draw its overlays from input_path into output_path.

        Raises:
            EmptyFilterGraph: If the batch has no instructions (no process
                is started).
            BatchExecutionFailure: If the invocation fails.
        """
        args = batch_args(batch)
        started = time.monotonic()
        self.run_args(args, batch.index, len(batch.instructions), progress=progress)
        logger.info("Batch %d finished in %.2fs", batch.index, time.monotonic() - started)

    def check_font(self) -> bool:
        """Warn (FontUnavailable) when the font is an unverified assumption."""
        if self.font is None or self.font.available:
            return True
        message = "Font not found on this host, assuming {} ({})".format(self.font.path, self.font.name)
        logger.warning(message)
        warnings.warn(message, FontUnavailable, stacklevel=2)
        return False

    def test_font_access(self) -> bool:
        """Render one second of black video with the font to see if the encoder can load it."""
        if self.font is None:
            return False
        args = [
            "-f", "lavfi",
            "-i", "color=black:size=100x100:duration=1",
            "-vf", "drawtext=fontfile='{}':text='test':x=10:y=10:fontsize=12:fontcolor=white".format(
                self.font.path
            ),
            "-f", "null",
            "-",
        ]
        outcome = self._run(args, timeout_s=FONT_PROBE_TIMEOUT_S)
        accessible = (
            outcome.ok
            and "No such file" not in outcome.stderr
            and "cannot find" not in outcome.stderr
        )
        if not accessible:
            message = "Encoder could not load font {}: {}".format(
                self.font.path, (outcome.spawn_error or outcome.stderr)[:200]
            )
            logger.warning(message)
            warnings.warn(message, FontUnavailable, stacklevel=2)
        return accessible
