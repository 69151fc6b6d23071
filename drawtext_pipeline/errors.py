"""Error taxonomy for the overlay pipeline.

WHY: Callers must tell apart a command that can never run (malformed),
a graph with nothing to render (empty), a run that broke halfway
(batch failure), and a degraded but usable environment (font missing).
Each needs a different reaction, so each gets its own type.

HOW: Hard failures are exceptions under DrawtextPipelineError. The font
case is a UserWarning subclass issued through ``warnings.warn`` because
execution continues with an assumed path.

RULES:
- MalformedCommand and EmptyFilterGraph are raised before any process runs
- BatchExecutionFailure always carries the full diagnostic text
- FontUnavailable is never raised, only warned
"""

from __future__ import annotations

from typing import Optional


class DrawtextPipelineError(Exception):
    """Base class for all pipeline failures."""


class MalformedCommand(DrawtextPipelineError, ValueError):
    """Raised when a command's input or output path cannot be determined.

    Also raised by the strict drawtext parser when a filter fragment
    cannot be turned back into an overlay instruction.
    """


class EmptyFilterGraph(DrawtextPipelineError, ValueError):
    """Raised when a filter graph has zero overlay instructions.

    WHY: Running the encoder with nothing to draw would only copy the
    input, hiding an upstream problem (empty transcript, bad parse).

    RULES:
    - Raised before any process invocation
    """


class BatchExecutionFailure(DrawtextPipelineError):
    """Raised when one encoder invocation exits non-zero, times out, or cannot start.

    WHY: The chain driver must abort on the first broken intermediate file
    and the operator needs the encoder's own diagnostics to fix the cause.

    HOW: Carries the batch index, exit code and the complete captured
    diagnostic stream.

    RULES:
    - returncode is None when the process could not be started or timed out
    - detail is the full captured diagnostic text, never truncated
    - Not retried by the driver
    """

    def __init__(
        self,
        batch_index: int,
        returncode: Optional[int],
        detail: str,
        timed_out: bool = False,
    ) -> None:
        self.batch_index = batch_index
        self.returncode = returncode
        self.detail = detail
        self.timed_out = timed_out
        if timed_out:
            summary = "timed out"
        elif returncode is None:
            summary = "could not be started"
        else:
            summary = "exited with code {}".format(returncode)
        super().__init__("Batch {} {}: {}".format(batch_index, summary, detail))

    @property
    def exit_code(self) -> int:
        """Process exit code to propagate from the CLI."""
        if self.timed_out:
            return 124
        if self.returncode is None:
            return 127
        return self.returncode if self.returncode != 0 else 1


class FontUnavailable(UserWarning):
    """Warning issued when the overlay font could not be verified on this host."""
