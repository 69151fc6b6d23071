"""Drawtext Pipeline — batched caption overlay generation and execution.

WHY: Short-form vertical videos need burned-in captions with emphasised
keywords. Building those captions as ffmpeg drawtext filters is easy;
running them is not. A few hundred overlays produce a filter graph that
overflows command-line limits and trips the encoder's parser, so the
graph has to be split into batches that render one after another
through intermediate files.

HOW: Three-stage pipeline — ingest (transcript and keyword adapters),
build (sanitize, group, build the FilterGraph IR), execute (schedule
batches, run the encoder once per batch, audit every invocation).
Each stage is independently testable.

RULES:
- The FilterGraph IR is the canonical representation; text is produced
  only at the executor boundary
- Overlay order inside a graph is render stack order and is never changed
- A failed batch aborts the chain; no partial final artifact is produced
"""

__version__ = "0.1.0"
