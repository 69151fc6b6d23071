"""Decide when a filter graph must be split, and split it into chained batches.

WHY: Long drawtext graphs hit two separate ceilings: the host's command
line length and the encoder's tolerance for very large filter graphs.
Splitting the overlays into batches, each rendered onto the previous
batch's output, keeps every invocation small while producing the same
final frames.

HOW: needs_batching() checks both thresholds on the serialized command.
plan_batches() cuts the ordered instruction list into consecutive slices
and links them: batch 1 reads the real input and batch k reads batch k-1's
output. Every batch writes an intermediate file; the runner moves the last
one onto the real output only after the whole chain succeeded.

RULES:
- Slices are contiguous and in order; concatenating them reproduces the
  original instruction list exactly
- Batch indices start at 1
- A failed chain never leaves a partial file at the real output
- Intermediate outputs are distinct, live in temp_dir, and keep the
  output's extension so the encoder picks the same container
- Batches must run in index order; later batches draw on top of earlier ones
- Input and output options (seek, duration, rate) apply to batch 1 only
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional, Sequence

from drawtext_pipeline.core.ir import Batch, FilterGraph
from drawtext_pipeline.errors import EmptyFilterGraph
from drawtext_pipeline.ffmpeg.drawtext import count_drawtext, graph_from_filter_text

logger = logging.getLogger(__name__)

DEFAULT_CODEC_ARGS = ("-c:a", "copy")


def needs_batching(command_text: str, max_length: int, max_instruction_count: int) -> bool:
    """True if the command is too long or carries too many drawtext filters."""
    return len(command_text) > max_length or count_drawtext(command_text) > max_instruction_count


def intermediate_path(output_path: str, index: int, run_id: str, temp_dir: str = "") -> str:
    """Name the intermediate file written by batch ``index``."""
    base = os.path.basename(output_path)
    stem, suffix = os.path.splitext(base)
    name = "{}.batch{:03d}-{}{}".format(stem or "output", index, run_id, suffix or ".mp4")
    return os.path.join(temp_dir, name) if temp_dir else name


def plan_batches(
    graph: FilterGraph,
    batch_size: int,
    input_path: str,
    output_path: str,
    run_id: str,
    temp_dir: str = "",
    codec_args: Optional[Sequence[str]] = None,
    input_args: Optional[Sequence[str]] = None,
    output_args: Optional[Sequence[str]] = None,
) -> List[Batch]:
    """Partition a FilterGraph into an ordered, chained list of Batches.

    Args:
        graph: The full graph; its instruction order is kept.
        batch_size: Maximum instructions per batch.
        input_path: The real input file, read by batch 1.
        output_path: The real output file; intermediate names derive from it.
        run_id: Token that keeps intermediate names unique per run.
        temp_dir: Directory for intermediate files ("" = current dir).
        codec_args: Codec options for every batch (default: copy audio).
        input_args: Options placed before batch 1's -i (seek, offsets).
        output_args: Options placed after batch 1's codec options
            (duration, frame rate, mapping).

    Returns:
        Batches in execution order.

    Raises:
        EmptyFilterGraph: If the graph has no instructions.
        ValueError: If batch_size is not positive.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1, got {}".format(batch_size))
    if len(graph) == 0:
        raise EmptyFilterGraph("Cannot plan batches for an empty filter graph")

    codecs = tuple(codec_args) if codec_args else DEFAULT_CODEC_ARGS
    total = (len(graph) + batch_size - 1) // batch_size

    batches: List[Batch] = []
    current_input = input_path
    for offset in range(0, len(graph), batch_size):
        index = offset // batch_size + 1
        batch_output = intermediate_path(output_path, index, run_id, temp_dir)
        batches.append(Batch(
            index=index,
            graph=graph.slice(offset, offset + batch_size),
            input_path=current_input,
            output_path=batch_output,
            is_last=index == total,
            codec_args=codecs,
            input_args=tuple(input_args or ()) if index == 1 else (),
            output_args=tuple(output_args or ()) if index == 1 else (),
        ))
        current_input = batch_output

    logger.info(
        "Planned %d batch(es) of at most %d overlays for %d instructions",
        len(batches), batch_size, len(graph),
    )
    return batches


def plan_batches_from_text(
    filter_text: str,
    batch_size: int,
    input_path: str,
    output_path: str,
    run_id: str,
    font_path: Optional[str] = None,
    strict: bool = True,
    temp_dir: str = "",
    codec_args: Optional[Sequence[str]] = None,
    input_args: Optional[Sequence[str]] = None,
    output_args: Optional[Sequence[str]] = None,
) -> List[Batch]:
    """Plan batches for serialized filter text from an ingested command.

    Raises:
        MalformedCommand: In strict mode, if a fragment is not a usable
            drawtext filter.
        EmptyFilterGraph: If no drawtext overlay could be recovered.
    """
    graph = graph_from_filter_text(filter_text, font_path=font_path, strict=strict)
    return plan_batches(
        graph,
        batch_size,
        input_path,
        output_path,
        run_id,
        temp_dir=temp_dir,
        codec_args=codec_args,
        input_args=input_args,
        output_args=output_args,
    )
