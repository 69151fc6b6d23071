"""Command-line entry point that turns a transcript into drawtext captions.

WHY: Captions start life as word timings from the transcription step.
This CLI runs them through grouping and overlay building and either
writes the resulting encoder command for review (the default) or renders
the video straight away.

HOW: Loads the transcript, discovers keyword sources (explicit flags or
companion files), groups words into caption chunks, builds the
FilterGraph, then:
  default   — serializes the full command and writes {"command": ...} to
              the command JSON path for ``drawtext-exec``
  --render  — passes the in-process FilterGraph to ChainRunner.render(),
              which batches from the IR without re-parsing any text

RULES:
- Positional arguments: transcript JSON, input video, output video
- Keyword sources: --keywords (repeatable), --tags; otherwise companion
  files {stem}-keywords.txt, {stem}-tags.json and default-keywords.txt
- Grouping limits default to the preset, then config, then flags win
- Exit codes: 0 success; 1 unreadable transcript or keyword files;
  2 nothing to render; batch failures as in drawtext-exec
- Statistics (captions, keyword overlays, words) are always printed
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import jsonschema

from drawtext_pipeline import config
from drawtext_pipeline.adapters.keywords import (
    WordPredicate,
    any_of,
    lexical_predicate,
    load_keywords,
    load_tags,
    resolve_companion_files,
    tag_predicate,
    tag_summary,
)
from drawtext_pipeline.adapters.transcript import load_transcript
from drawtext_pipeline.cli import configure_logging
from drawtext_pipeline.core.builder import build_filter_graph
from drawtext_pipeline.core.grouper import group_words
from drawtext_pipeline.core.ir import FilterGraph
from drawtext_pipeline.errors import BatchExecutionFailure, EmptyFilterGraph
from drawtext_pipeline.ffmpeg.audit import CommandLog
from drawtext_pipeline.ffmpeg.command import ParsedCommand, serialize
from drawtext_pipeline.ffmpeg.drawtext import serialize_graph
from drawtext_pipeline.ffmpeg.executor import CommandExecutor
from drawtext_pipeline.ffmpeg.fonts import detect_font
from drawtext_pipeline.ffmpeg.runner import ChainRunner
from drawtext_pipeline.ffmpeg.scheduler import DEFAULT_CODEC_ARGS
from drawtext_pipeline.presets import DEFAULT_PRESET, GROUPING_PRESETS, STYLE_PRESETS
from drawtext_pipeline.schemas import get_schema


def _status(msg: str) -> None:
    """Print a status line (flushed so it interleaves with encoder output)."""
    print(msg, flush=True)


def _load_keyword_predicate(
    transcript_path: Path,
    keyword_paths: Optional[List[str]],
    tags_path: Optional[str],
    threshold: float,
) -> Optional[WordPredicate]:
    """Resolve keyword sources and combine them into one predicate.

    RULES:
    - Explicit --keywords / --tags override the matching companion file
    - default-keywords.txt is added whenever it exists
    - Returns None when no source was found (plain captions)
    """
    companion = resolve_companion_files(transcript_path)
    terms: List[str] = []
    predicates: List[WordPredicate] = []

    if keyword_paths:
        for path in keyword_paths:
            terms.extend(load_keywords(path))
            _status("  Keywords: {} (explicit)".format(path))
    elif companion.keywords_path:
        terms.extend(load_keywords(companion.keywords_path))
        _status("  Keywords: {} (auto-discovered)".format(companion.keywords_path))

    if companion.default_keywords_path:
        defaults = load_keywords(companion.default_keywords_path)
        terms.extend(defaults)
        if defaults:
            _status("  Default keywords: {} ({} terms)".format(
                companion.default_keywords_path, len(defaults)
            ))

    if terms:
        predicates.append(lexical_predicate(terms))

    resolved_tags = tags_path or (str(companion.tags_path) if companion.tags_path else None)
    if resolved_tags:
        records = load_tags(resolved_tags)
        kept = tag_summary(records, threshold)
        _status("  Tags: {} ({} of {} records at confidence >= {})".format(
            resolved_tags, sum(kept.values()), len(records), threshold
        ))
        predicates.append(tag_predicate(records, threshold))

    return any_of(predicates)


def _grouping_limits(args: argparse.Namespace) -> Tuple[int, int, float]:
    preset = GROUPING_PRESETS[args.preset]
    if args.preset == DEFAULT_PRESET:
        max_words = config.MAX_WORDS_PER_CAPTION
        max_chars = config.MAX_CAPTION_CHARS
        min_duration = config.MIN_CAPTION_DURATION_S
    else:
        max_words = preset["max_words"]
        max_chars = preset["max_chars"]
        min_duration = preset["min_duration_s"]
    if args.max_words is not None:
        max_words = args.max_words
    if args.max_chars is not None:
        max_chars = args.max_chars
    if args.min_duration is not None:
        min_duration = args.min_duration
    return max_words, max_chars, min_duration


def write_command_json(path: str, command: str) -> None:
    """Write {"command": command} to path, creating its directory."""
    document = {"command": command}
    jsonschema.validate(instance=document, schema=get_schema("command"))
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2, ensure_ascii=False)


def build_command(graph: FilterGraph, input_path: str, output_path: str, ffmpeg_bin: str = "ffmpeg") -> str:
    """Serialize the single-invocation command for a FilterGraph."""
    parsed = ParsedCommand(
        input_path=input_path,
        output_path=output_path,
        filter_text=serialize_graph(graph),
        codec_args=DEFAULT_CODEC_ARGS,
        program=ffmpeg_bin,
    )
    return serialize(parsed)


def run(args: argparse.Namespace) -> int:
    """Generate captions for one transcript and return the exit code."""
    transcript_path = Path(args.transcript)
    try:
        transcript = load_transcript(transcript_path)
    except FileNotFoundError:
        print("Error: Transcript not found: {}".format(transcript_path), file=sys.stderr)
        return 1
    except ValueError as e:
        print("Error: {}".format(e), file=sys.stderr)
        return 1

    _status("Loading keyword sources...")
    try:
        predicate = _load_keyword_predicate(
            transcript_path,
            args.keywords,
            args.tags,
            config.TAG_CONFIDENCE_THRESHOLD,
        )
    except (OSError, ValueError, jsonschema.ValidationError) as e:
        print("Error: could not load keyword sources: {}".format(e), file=sys.stderr)
        return 1

    max_words, max_chars, min_duration = _grouping_limits(args)
    try:
        chunks = group_words(
            transcript.words,
            min_duration_s=min_duration,
            max_words=max_words,
            max_chars=max_chars,
            keyword_predicate=predicate,
        )
    except ValueError as e:
        print("Error: {}".format(e), file=sys.stderr)
        return 1

    font = detect_font(sys.platform, os.path.exists, os.environ.get("WINDIR"))
    try:
        graph = build_filter_graph(chunks, predicate, STYLE_PRESETS[args.preset], font.path)
    except EmptyFilterGraph as e:
        print("Error: {}".format(e), file=sys.stderr)
        return 2

    _status("")
    _status("Statistics:")
    _status("  Captions: {}".format(len(chunks)))
    _status("  Keyword overlays: {}".format(graph.keyword_count))
    _status("  Words: {}".format(len(transcript.words)))
    if transcript.language:
        _status("  Language: {}".format(transcript.language))

    if not args.render:
        command = build_command(graph, args.input, args.output, config.FFMPEG_BIN)
        write_command_json(args.command_json, command)
        _status("")
        _status("Command written to {} ({} overlays, {} chars)".format(
            args.command_json, len(graph), len(command)
        ))
        return 0

    audit = CommandLog(log_dir=config.LOG_DIR, platform=sys.platform, font=font)
    executor = CommandExecutor(
        audit,
        ffmpeg_bin=config.FFMPEG_BIN,
        timeout_s=config.FFMPEG_TIMEOUT_S,
        font=font,
    )
    runner = ChainRunner(
        executor,
        batch_size=config.DEFAULT_BATCH_SIZE,
        fallback_batch_size=config.FALLBACK_BATCH_SIZE,
        max_command_length=config.MAX_COMMAND_LENGTH,
        max_instruction_count=config.MAX_OVERLAY_FILTERS,
        temp_dir=config.TEMP_DIR,
        on_status=_status,
    )
    try:
        result = runner.render(graph, args.input, args.output)
    except BatchExecutionFailure as e:
        audit.write_transcript()
        print("Error: batch {} failed.".format(e.batch_index), file=sys.stderr)
        print(e.detail, file=sys.stderr)
        return e.exit_code
    finally:
        runner.cleanup()

    _status("Rendered {} in {:.2f} seconds ({} batch(es))".format(
        result.output_path, result.elapsed_s, result.batch_count
    ))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="drawtext-generate",
        description="Build drawtext caption overlays from a word-timed transcript.",
    )
    parser.add_argument("transcript", help="Transcript JSON with word timings.")
    parser.add_argument("input", help="Video to draw the captions on.")
    parser.add_argument("output", help="Path of the captioned video.")
    parser.add_argument(
        "--keywords",
        action="append",
        default=None,
        help="Keyword file (one term per line). Can be specified multiple times.",
    )
    parser.add_argument("--tags", default=None, help="Tag records JSON from the tagging step.")
    parser.add_argument(
        "--preset",
        choices=sorted(STYLE_PRESETS),
        default=DEFAULT_PRESET,
        help="Caption style and grouping preset (default: %(default)s).",
    )
    parser.add_argument("--max-words", type=int, default=None, help="Words per caption.")
    parser.add_argument("--max-chars", type=int, default=None, help="Characters per caption.")
    parser.add_argument(
        "--min-duration", type=float, default=None, help="Minimum caption display time in seconds."
    )
    parser.add_argument(
        "--command-json",
        default=config.COMMAND_JSON_PATH,
        help="Where to write the command document (default: %(default)s).",
    )
    parser.add_argument(
        "--render",
        action="store_true",
        help="Render now instead of writing the command document.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    configure_logging()
    args = build_parser().parse_args(argv)
    sys.exit(run(args))


if __name__ == "__main__":
    main()
