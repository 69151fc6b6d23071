"""Parse encoder command text into structured parts and serialize it back.

WHY: Commands that were built elsewhere arrive as one opaque string in a
JSON document. To re-batch them, the runner needs the input file, the
output file, the filter graph text and the codec options as separate
values. Naive whitespace splitting breaks on quoted paths and on filter
text full of spaces and quotes.

HOW: tokenize() walks the string with quote-state tracking. parse() then
classifies tokens: known flags, options with values, the input (-i), the
video filter (-vf / -filter:v / -filter_complex), codec options, and bare
positional paths. serialize() quotes each argument so tokenize() gives it
back unchanged.

RULES:
- A leading program token (ffmpeg, ffmpeg.exe, or a path to either) is
  stripped and kept as ParsedCommand.program
- Inside quotes, a backslash before the active quote character yields the
  quote character; every other backslash is literal (Windows paths)
- Without -i, the first bare path that exists on disk is the input
- The output is the first remaining bare path that does not exist yet,
  otherwise the last one
- Missing input or output raises MalformedCommand
- parse(serialize(parse(text))) == parse(text) for a fixed filesystem
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from drawtext_pipeline.errors import MalformedCommand

_PROGRAM_RE = re.compile(r"^(?:.*[\\/])?ffmpeg(?:\.exe)?$", re.IGNORECASE)
_NEGATIVE_NUMBER_RE = re.compile(r"^-\d")
_BARE_SAFE_RE = re.compile(r"^[^\s'\"]+$")

BOOLEAN_FLAGS = frozenset({
    "-y", "-n", "-hide_banner", "-nostdin", "-nostats", "-stats",
    "-an", "-vn", "-sn", "-dn", "-shortest",
})

FILTER_OPTIONS = frozenset({"-vf", "-filter:v", "-filter_complex"})

CODEC_OPTIONS = frozenset({
    "-c", "-c:a", "-c:v", "-codec", "-codec:a", "-codec:v",
    "-acodec", "-vcodec", "-b:a", "-b:v", "-crf", "-preset", "-pix_fmt",
})


def tokenize(text: str) -> List[str]:
    """Split command text into arguments, honouring single and double quotes.

    Quotes group characters and are removed. Adjacent quoted and unquoted
    parts form one argument (``-vf"a b"`` -> ``-vfa b``), as in a shell.
    """
    args: List[str] = []
    current: List[str] = []
    has_token = False
    quote: Optional[str] = None
    i = 0

    while i < len(text):
        char = text[i]
        if quote is not None:
            if char == "\\" and i + 1 < len(text) and text[i + 1] == quote:
                current.append(quote)
                i += 2
                continue
            if char == quote:
                quote = None
            else:
                current.append(char)
        elif char in ("'", '"'):
            quote = char
            has_token = True
        elif char.isspace():
            if has_token:
                args.append("".join(current))
                current = []
                has_token = False
        else:
            current.append(char)
            has_token = True
        i += 1

    if quote is not None:
        raise MalformedCommand("Unterminated {} quote in command".format(quote))
    if has_token:
        args.append("".join(current))
    return args


def quote_arg(arg: str) -> str:
    """Quote one argument so tokenize() returns it unchanged."""
    if _BARE_SAFE_RE.match(arg):
        return arg
    if '"' not in arg:
        return '"{}"'.format(arg)
    if "'" not in arg:
        return "'{}'".format(arg)
    return '"{}"'.format(arg.replace('"', '\\"'))


@dataclass
class ParsedCommand:
    """Structured view of one encoder command.

    RULES:
    - input_args are options that appeared before the input file
    - other_args keep their relative order; values follow their option
    - filter_option records which flag carried filter_text
    - leading_paths and trailing_paths are the other bare paths, split
      around output_path so serialization keeps their original order
    """

    input_path: str
    output_path: str
    filter_text: str = ""
    codec_args: Tuple[str, ...] = ()
    input_args: Tuple[str, ...] = ()
    other_args: Tuple[str, ...] = ()
    filter_option: str = "-vf"
    program: str = "ffmpeg"
    leading_paths: Tuple[str, ...] = ()
    trailing_paths: Tuple[str, ...] = ()

    def to_args(self) -> List[str]:
        """Argument list (without the program name) for execution."""
        args: List[str] = list(self.input_args)
        args.extend(["-i", self.input_path])
        if self.filter_text:
            args.extend([self.filter_option, self.filter_text])
        args.extend(self.codec_args)
        args.extend(self.other_args)
        args.extend(self.leading_paths)
        args.append(self.output_path)
        args.extend(self.trailing_paths)
        return args


def serialize(parsed: ParsedCommand) -> str:
    return " ".join(quote_arg(a) for a in [parsed.program] + parsed.to_args())


def _takes_value(option: str, next_token: Optional[str]) -> bool:
    if option in BOOLEAN_FLAGS or next_token is None:
        return False
    if next_token.startswith("-") and not _NEGATIVE_NUMBER_RE.match(next_token):
        return False
    return True


def parse(
    command_text: str,
    path_exists: Callable[[str], bool] = os.path.exists,
) -> ParsedCommand:
    """Parse a full command string into a ParsedCommand.

    Args:
        command_text: Program name plus arguments, as one string.
        path_exists: Filesystem probe used to tell input from output when
            paths are given without -i (injectable for tests).

    Returns:
        The structured command.

    Raises:
        MalformedCommand: If quoting is unbalanced or no input or output
            path can be determined.
    """
    tokens = tokenize(command_text)
    program = "ffmpeg"
    if tokens and _PROGRAM_RE.match(tokens[0]):
        program = tokens.pop(0)

    input_path: Optional[str] = None
    filter_text = ""
    filter_option = "-vf"
    codec_args: List[str] = []
    input_args: List[str] = []
    other_args: List[str] = []
    positionals: List[str] = []

    i = 0
    while i < len(tokens):
        token = tokens[i]
        next_token = tokens[i + 1] if i + 1 < len(tokens) else None

        if token == "-i" and next_token is not None:
            if input_path is None:
                input_path = next_token
            else:
                other_args.extend([token, next_token])
            i += 2
            continue

        if token in FILTER_OPTIONS and next_token is not None:
            filter_text = next_token
            filter_option = token
            i += 2
            continue

        if token in CODEC_OPTIONS and next_token is not None:
            codec_args.extend([token, next_token])
            i += 2
            continue

        if token.startswith("-") and len(token) > 1 and not _NEGATIVE_NUMBER_RE.match(token):
            target = input_args if input_path is None else other_args
            if _takes_value(token, next_token):
                target.extend([token, next_token])  # type: ignore[list-item]
                i += 2
            else:
                target.append(token)
                i += 1
            continue

        positionals.append(token)
        i += 1

    if input_path is None:
        for candidate in positionals:
            if path_exists(candidate):
                input_path = candidate
                positionals.remove(candidate)
                break

    output_path: Optional[str] = None
    leading_paths: List[str] = []
    trailing_paths: List[str] = []
    if positionals:
        fresh = [p for p in positionals if not path_exists(p)]
        output_path = fresh[0] if fresh else positionals[-1]
        split = positionals.index(output_path)
        leading_paths = positionals[:split]
        trailing_paths = positionals[split + 1:]

    if not input_path:
        raise MalformedCommand("No input file found in command")
    if not output_path:
        raise MalformedCommand("No output file found in command")

    return ParsedCommand(
        input_path=input_path,
        output_path=output_path,
        filter_text=filter_text,
        codec_args=tuple(codec_args),
        input_args=tuple(input_args),
        other_args=tuple(other_args),
        filter_option=filter_option,
        program=program,
        leading_paths=tuple(leading_paths),
        trailing_paths=tuple(trailing_paths),
    )
