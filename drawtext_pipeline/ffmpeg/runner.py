"""Drive a whole render: direct attempt, batch chain, fallback and cleanup.

WHY: A render is more than one encoder call. Oversized graphs must be
split, a direct attempt that fails deserves a second try in small
batches, intermediate files must never outlive the run, and the real
output must only appear once every step succeeded.

HOW: ChainRunner has two entry points:
  process_command() — an ingested command string (JSON boundary). Parses
      it; if it needs batching and carries drawtext overlays, re-plans
      it from its filter text (input and output options go to batch 1),
      otherwise runs it directly and falls back to small batches when
      that fails.
  render() — an in-process FilterGraph. Plans batches straight from the
      IR, never going through text.
run_chain() executes planned batches strictly in order, stops at the
first failure, and moves the last intermediate onto the real output. All
tracked temp files are removed in a finally block.

RULES:
- Batches run sequentially; the first failure aborts the chain
- Every written file is tracked as a temp file before the process starts
- The real output is written by a move, only after the chain succeeded
- cleanup() never raises; removal failures are logged as warnings
- A direct attempt that fails is retried once as batches of
  fallback_batch_size; a failing batch chain is not retried
"""

from __future__ import annotations

import dataclasses
import logging
import os
import shutil
import time
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from drawtext_pipeline.core.ir import Batch, FilterGraph
from drawtext_pipeline.errors import BatchExecutionFailure, EmptyFilterGraph, MalformedCommand
from drawtext_pipeline.ffmpeg.command import ParsedCommand, parse, quote_arg
from drawtext_pipeline.ffmpeg.drawtext import count_drawtext, graph_from_filter_text, retarget_fontfile
from drawtext_pipeline.ffmpeg.executor import CommandExecutor, batch_args
from drawtext_pipeline.ffmpeg.scheduler import intermediate_path, needs_batching, plan_batches

logger = logging.getLogger(__name__)

DIRECT_INDEX = 0
"""Audit index of an unbatched invocation."""

OVERWRITE_FLAGS = frozenset({"-y", "-n"})


@dataclass
class RunResult:
    """Summary of a successful render."""

    output_path: str
    mode: str
    batch_count: int
    elapsed_s: float
    log_path: str


def _move_into_place(source: str, destination: str) -> None:
    directory = os.path.dirname(destination)
    if directory:
        os.makedirs(directory, exist_ok=True)
    try:
        os.replace(source, destination)
    except OSError:
        # Different filesystem
        shutil.move(source, destination)


def _without_overwrite_flags(args: Sequence[str]) -> Tuple[str, ...]:
    """Drop -y/-n; every batch writes its intermediate with -y."""
    return tuple(a for a in args if a not in OVERWRITE_FLAGS)


class ChainRunner:
    """Runs renders through a CommandExecutor and owns their temp files.

    Args:
        executor: Executor shared by every invocation of the run.
        batch_size: Overlays per batch when batching up front.
        fallback_batch_size: Overlays per batch after a failed direct run.
        max_command_length: Command length above which batching is forced.
        max_instruction_count: Drawtext count above which batching is forced.
        temp_dir: Directory for intermediate files ("" = current dir).
        strict: Reject unparseable filter fragments instead of dropping them.
        path_exists: Filesystem probe (injectable for tests).
        on_status: Receives one human-readable line per step.
        run_id: Token for intermediate names (default: random).
    """

    def __init__(
        self,
        executor: CommandExecutor,
        batch_size: int = 8,
        fallback_batch_size: int = 4,
        max_command_length: int = 6000,
        max_instruction_count: int = 10,
        temp_dir: str = "",
        strict: bool = True,
        path_exists: Callable[[str], bool] = os.path.exists,
        on_status: Optional[Callable[[str], None]] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.executor = executor
        self.batch_size = batch_size
        self.fallback_batch_size = fallback_batch_size
        self.max_command_length = max_command_length
        self.max_instruction_count = max_instruction_count
        self.temp_dir = temp_dir
        self.strict = strict
        self.path_exists = path_exists
        self.run_id = run_id or uuid.uuid4().hex[:8]
        self.temp_files: List[str] = []
        self._on_status = on_status
        self._font_checked = False

    def _status(self, msg: str) -> None:
        logger.info(msg)
        if self._on_status is not None:
            self._on_status(msg)

    def _track(self, path: str) -> None:
        if path not in self.temp_files:
            self.temp_files.append(path)

    @property
    def _font_path(self) -> Optional[str]:
        return self.executor.font.path if self.executor.font else None

    def _prepare(self, progress: bool) -> None:
        """Report the font once per run; probe it when progress is on."""
        if self._font_checked:
            return
        self._font_checked = True
        self.executor.check_font()
        if progress and self.executor.font is not None:
            self._status("Testing font access...")
            accessible = self.executor.test_font_access()
            self._status("Font accessible: {}".format("yes" if accessible else "no (assumed path)"))

    # -- chain execution ---------------------------------------------------

    def run_chain(self, batches: Sequence[Batch], output_path: str, progress: bool = False) -> None:
        """Execute batches in order and move the last output onto output_path.

        Raises:
            BatchExecutionFailure: From the first failing batch; no later
                batch is started and output_path is not written.
        """
        try:
            for batch in batches:
                self._status("Batch {}/{} ({} overlays)".format(
                    batch.index, len(batches), len(batch.instructions)
                ))
                self._track(batch.output_path)
                self.executor.execute(batch, progress=progress)
            if batches:
                _move_into_place(batches[-1].output_path, output_path)
        finally:
            self.cleanup()

    def _plan(
        self,
        graph: FilterGraph,
        batch_size: int,
        input_path: str,
        output_path: str,
        codec_args: Optional[Sequence[str]],
    ) -> List[Batch]:
        return plan_batches(
            graph,
            batch_size,
            input_path,
            output_path,
            self.run_id,
            temp_dir=self.temp_dir,
            codec_args=codec_args,
        )

    def _result(self, output_path: str, mode: str, batch_count: int, started: float) -> RunResult:
        self.executor.audit.write_transcript()
        return RunResult(
            output_path=output_path,
            mode=mode,
            batch_count=batch_count,
            elapsed_s=time.monotonic() - started,
            log_path=self.executor.audit.path,
        )

    # -- entry points ------------------------------------------------------

    def render(
        self,
        graph: FilterGraph,
        input_path: str,
        output_path: str,
        progress: bool = False,
        codec_args: Optional[Sequence[str]] = None,
    ) -> RunResult:
        """Render an in-process FilterGraph onto input_path.

        Raises:
            EmptyFilterGraph: Before any process runs, if graph is empty.
            BatchExecutionFailure: If the chain fails.
        """
        if len(graph) == 0:
            raise EmptyFilterGraph("Nothing to render: the filter graph is empty")
        started = time.monotonic()
        self._prepare(progress)

        single = self._plan(graph, len(graph), input_path, output_path, codec_args)
        command_text = " ".join(quote_arg(a) for a in [self.executor.ffmpeg_bin] + batch_args(single[0]))
        oversized = needs_batching(command_text, self.max_command_length, self.max_instruction_count)

        if oversized:
            batches = self._plan(graph, self.batch_size, input_path, output_path, codec_args)
            self._status("Large filter graph, rendering in {} batches".format(len(batches)))
            self.run_chain(batches, output_path, progress)
            return self._result(output_path, "batched", len(batches), started)

        try:
            self.run_chain(single, output_path, progress)
            return self._result(output_path, "direct", 1, started)
        except BatchExecutionFailure:
            if len(graph) <= self.fallback_batch_size:
                raise
            logger.warning("Single-pass render failed, retrying in batches of %d", self.fallback_batch_size)
            self._status("Single pass failed, switching to batches")

        batches = self._plan(graph, self.fallback_batch_size, input_path, output_path, codec_args)
        self.run_chain(batches, output_path, progress)
        return self._result(output_path, "batched", len(batches), started)

    def _run_direct(self, parsed: ParsedCommand, progress: bool) -> None:
        temp_output = intermediate_path(parsed.output_path, DIRECT_INDEX, self.run_id, self.temp_dir)
        filter_text = parsed.filter_text
        if filter_text and self._font_path:
            filter_text = retarget_fontfile(filter_text, self._font_path, self.path_exists)
        direct = dataclasses.replace(parsed, filter_text=filter_text, output_path=temp_output)
        args = direct.to_args()
        if "-y" not in args:
            args.insert(0, "-y")

        try:
            self._track(temp_output)
            self.executor.run_args(args, DIRECT_INDEX, progress=progress)
            _move_into_place(temp_output, parsed.output_path)
        finally:
            self.cleanup()

    def _run_batched(self, parsed: ParsedCommand, batch_size: int, progress: bool) -> int:
        graph = graph_from_filter_text(parsed.filter_text, font_path=self._font_path, strict=self.strict)
        if len(graph) == 0:
            raise EmptyFilterGraph("No drawtext overlays found in the command's filter graph")
        dropped = parsed.leading_paths + parsed.trailing_paths
        if dropped:
            logger.warning("Extra output paths are not rendered in batch mode: %s", ", ".join(dropped))
        batches = plan_batches(
            graph,
            batch_size,
            parsed.input_path,
            parsed.output_path,
            self.run_id,
            temp_dir=self.temp_dir,
            codec_args=parsed.codec_args or None,
            input_args=_without_overwrite_flags(parsed.input_args),
            output_args=_without_overwrite_flags(parsed.other_args),
        )
        self._status("Rendering {} overlays in {} batches of at most {}".format(
            len(graph), len(batches), batch_size
        ))
        self.run_chain(batches, parsed.output_path, progress)
        return len(batches)

    def process_command(self, command_text: str, progress: bool = False) -> RunResult:
        """Render an ingested command string, batching when needed.

        An oversized command without any drawtext overlay has nothing to
        split and is run directly.

        Raises:
            MalformedCommand: If input/output cannot be found, or (strict
                mode) a filter fragment cannot be re-batched.
            EmptyFilterGraph: If batching is required but no overlay
                could be recovered.
            BatchExecutionFailure: If the final attempt fails.
        """
        parsed = parse(command_text, path_exists=self.path_exists)
        started = time.monotonic()
        self._status("Audit log: {}".format(os.path.basename(self.executor.audit.path)))
        self._prepare(progress)

        oversized = needs_batching(command_text, self.max_command_length, self.max_instruction_count)
        if oversized and count_drawtext(parsed.filter_text) == 0:
            logger.warning("Command is oversized but has no drawtext overlays, running it as is")
            self._status("No captions found in the command, trying normal execution")
            oversized = False

        if oversized:
            self._status("Command too long, using batch processing")
            count = self._run_batched(parsed, self.batch_size, progress)
            return self._result(parsed.output_path, "batched", count, started)

        try:
            self._status("Trying direct execution...")
            self._run_direct(parsed, progress)
            self._status("Direct execution succeeded")
            return self._result(parsed.output_path, "direct", 1, started)
        except BatchExecutionFailure as direct_failure:
            logger.warning("Direct execution failed, falling back to batches of %d", self.fallback_batch_size)
            self._status("Direct execution failed, switching to batch processing")
            try:
                count = self._run_batched(parsed, self.fallback_batch_size, progress)
            except (EmptyFilterGraph, MalformedCommand):
                # Nothing to re-batch
                raise direct_failure
        return self._result(parsed.output_path, "batched", count, started)

    def cleanup(self) -> List[str]:
        """Remove every tracked temp file. Returns the paths that could not be removed."""
        failed: List[str] = []
        for path in self.temp_files:
            try:
                if os.path.exists(path):
                    os.remove(path)
                    logger.info("Removed temp file %s", path)
            except OSError as e:
                logger.warning("Could not remove temp file %s: %s", path, e)
                failed.append(path)
        self.temp_files = []
        return failed
