"""Command-line entry point that executes a prepared encoder command.

WHY: The generator writes the full encoder command into a JSON file so it
can be inspected, edited, or produced by other tools. This CLI is the one
place that turns that document into a rendered video, with batching,
fallback, audit logging and temp-file cleanup handled for the operator.

HOW: Reads {"command": "..."} from COMMAND_JSON_PATH, validates it with
jsonschema, resolves the overlay font for this host, then hands the
command to ChainRunner.process_command(). All tunables come from
config.py (.env aware) and are passed in explicitly.

RULES:
- Single optional flag: --progress (live encoder progress + font probe)
- Exit codes: 0 success; 1 missing/invalid command file; 2 malformed
  command or empty filter graph; the failing process's code on batch
  failure (124 timeout, 127 encoder not found); 130 on Ctrl-C
- Status lines go to stdout, unstructured; diagnostics of a failed batch
  are printed in full
- Temp files are removed whatever the outcome
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

import jsonschema

from drawtext_pipeline import config
from drawtext_pipeline.errors import BatchExecutionFailure, EmptyFilterGraph, MalformedCommand
from drawtext_pipeline.ffmpeg.audit import CommandLog
from drawtext_pipeline.ffmpeg.executor import CommandExecutor
from drawtext_pipeline.ffmpeg.fonts import detect_font
from drawtext_pipeline.ffmpeg.runner import ChainRunner, RunResult
from drawtext_pipeline.schemas import get_schema

EXIT_BAD_COMMAND_FILE = 1
EXIT_MALFORMED = 2
EXIT_INTERRUPTED = 130


class ProgressLine:
    """A single status line rewritten in place with carriage returns."""

    def __init__(self) -> None:
        self.active = False

    def update(self, batch_index: int, seconds: float, raw_line: str) -> None:
        minutes, secs = divmod(seconds, 60)
        print(
            "\rBatch {}: {:02d}:{:05.2f} encoded".format(batch_index, int(minutes), secs),
            end="",
            flush=True,
        )
        self.active = True

    def finish(self) -> None:
        if self.active:
            print(flush=True)
            self.active = False


_progress_line = ProgressLine()


def _status(msg: str) -> None:
    """Print an operator status line, ending any in-place progress line first."""
    _progress_line.finish()
    print(msg, flush=True)


def configure_logging(level: str = config.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


def load_command(path: str) -> str:
    """Read and validate the command document.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If it is not JSON or has no non-empty "command" string.
    """
    with open(path, encoding="utf-8") as f:
        try:
            document = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError("{} is not valid JSON: {}".format(path, e)) from e
    try:
        jsonschema.validate(instance=document, schema=get_schema("command"))
    except jsonschema.ValidationError as e:
        raise ValueError("{} has no usable command: {}".format(path, e.message)) from e
    return document["command"]


def _report_success(result: RunResult) -> None:
    _status("Done in {:.2f} seconds ({} mode, {} batch(es))".format(
        result.elapsed_s, result.mode, result.batch_count
    ))
    if os.path.isfile(result.output_path):
        size_mb = os.path.getsize(result.output_path) / (1024 * 1024)
        _status("Output: {}".format(result.output_path))
        _status("Size: {:.2f} MB".format(size_mb))
    _status("Audit log: {}".format(result.log_path))


def run(progress: bool = False) -> int:
    """Execute the command document and return the process exit code."""
    command_path = config.COMMAND_JSON_PATH
    if not os.path.isfile(command_path):
        print("Error: Command file not found: {}".format(os.path.abspath(command_path)), file=sys.stderr)
        print("Generate it first with: python -m drawtext_pipeline generate ...", file=sys.stderr)
        return EXIT_BAD_COMMAND_FILE

    try:
        command = load_command(command_path)
    except (OSError, ValueError) as e:
        print("Error: {}".format(e), file=sys.stderr)
        return EXIT_BAD_COMMAND_FILE

    font = detect_font(sys.platform, os.path.exists, os.environ.get("WINDIR"))
    _status("Font: {} ({})".format(font.name, "available" if font.available else "unverified"))
    _status("Font path: {}".format(font.path))

    audit = CommandLog(log_dir=config.LOG_DIR, platform=sys.platform, font=font)
    executor = CommandExecutor(
        audit,
        ffmpeg_bin=config.FFMPEG_BIN,
        timeout_s=config.FFMPEG_TIMEOUT_S,
        font=font,
        on_progress=_progress_line.update if progress else None,
    )
    runner = ChainRunner(
        executor,
        batch_size=config.DEFAULT_BATCH_SIZE,
        fallback_batch_size=config.FALLBACK_BATCH_SIZE,
        max_command_length=config.MAX_COMMAND_LENGTH,
        max_instruction_count=config.MAX_OVERLAY_FILTERS,
        temp_dir=config.TEMP_DIR,
        strict=config.STRICT_FILTER_PARSE,
        on_status=_status,
    )

    preview = command if len(command) <= 200 else command[:200] + "..."
    _status("Command: {}".format(preview))
    _status("Starting...")

    try:
        result = runner.process_command(command, progress=progress)
    except KeyboardInterrupt:
        _status("Cancelled by user.")
        return EXIT_INTERRUPTED
    except (MalformedCommand, EmptyFilterGraph) as e:
        _progress_line.finish()
        print("Error: {}".format(e), file=sys.stderr)
        return EXIT_MALFORMED
    except BatchExecutionFailure as e:
        _progress_line.finish()
        audit.write_transcript()
        print("Error: batch {} failed.".format(e.batch_index), file=sys.stderr)
        print("Encoder output:", file=sys.stderr)
        print(e.detail, file=sys.stderr)
        print("Audit log: {}".format(audit.path), file=sys.stderr)
        return e.exit_code
    finally:
        runner.cleanup()

    _report_success(result)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser (the only option is --progress)."""
    parser = argparse.ArgumentParser(
        prog="drawtext-exec",
        description="Execute the encoder command stored in {} with automatic "
                    "batching of large drawtext filter graphs.".format(config.COMMAND_JSON_PATH),
    )
    parser.add_argument(
        "--progress",
        action="store_true",
        help="Stream encoder progress and test font access before rendering.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for ``drawtext-exec`` and ``python -m drawtext_pipeline``.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    configure_logging()
    args = build_parser().parse_args(argv)
    sys.exit(run(progress=args.progress))


if __name__ == "__main__":
    main()
