"""Shared test fixtures for the drawtext_pipeline test suite.

WHY: Most modules are pure, but the executor and runner sit on top of a
child process. Tests need a stand-in for subprocess.Popen that behaves
like the encoder (stderr diagnostics, exit codes, an output file on
success) without requiring ffmpeg on the test machine.

HOW: FakePopen is a process factory that replays scripted outcomes in
order and records every argument list it was called with. FakeProcess
exposes the subset of the Popen API the executor uses. Word fixtures
mirror the French short-form transcripts the pipeline was built for.

RULES:
- FakePopen writes the output file (last argument) on success, like the
  encoder would, so the runner's final move has something to move
- A scripted outcome of ``OSError`` simulates a missing encoder binary
- ``Outcome(interrupt=True)`` raises KeyboardInterrupt from wait() until
  the process is killed
- All file I/O goes through tmp_path
"""

import io
import subprocess
from typing import Any, List, Optional

import pytest

from drawtext_pipeline.core.ir import FontConfig, Word
from drawtext_pipeline.ffmpeg.audit import CommandLog


class FakeProcess:
    """Minimal Popen stand-in: binary stderr, wait(), kill()."""

    def __init__(
        self,
        args: List[str],
        returncode: int,
        stderr: bytes,
        hang: bool = False,
        interrupt: bool = False,
    ) -> None:
        self.args = args
        self.returncode: Optional[int] = None
        self._final_code = returncode
        self.stderr = io.BytesIO(stderr)
        self.hang = hang
        self.interrupt = interrupt
        self.killed = False

    def wait(self, timeout: Optional[float] = None) -> int:
        if self.interrupt and not self.killed:
            raise KeyboardInterrupt
        if self.hang and not self.killed:
            raise subprocess.TimeoutExpired(self.args, timeout)
        self.returncode = -9 if self.killed else self._final_code
        return self.returncode

    def kill(self) -> None:
        self.killed = True


class Outcome:
    """One scripted process result."""

    def __init__(
        self, returncode: int = 0, stderr: str = "", hang: bool = False, interrupt: bool = False
    ) -> None:
        self.returncode = returncode
        self.stderr = stderr.encode("utf-8")
        self.hang = hang
        self.interrupt = interrupt


class FakePopen:
    """Process factory replaying Outcomes in order (the last one repeats)."""

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes) or [Outcome()]
        self.calls: List[List[str]] = []
        self.kwargs: List[dict] = []
        self.processes: List[FakeProcess] = []

    def __call__(self, args: List[str], **kwargs: Any) -> FakeProcess:
        self.calls.append(list(args))
        self.kwargs.append(kwargs)
        index = min(len(self.calls) - 1, len(self.outcomes) - 1)
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome.returncode == 0 and not (outcome.hang or outcome.interrupt):
            target = args[-1]
            if target != "-":
                with open(target, "wb") as f:
                    f.write(b"video")
        process = FakeProcess(
            list(args), outcome.returncode, outcome.stderr, hang=outcome.hang, interrupt=outcome.interrupt
        )
        self.processes.append(process)
        return process


@pytest.fixture
def fake_popen():
    """Factory fixture: fake_popen(Outcome(...), ...) -> FakePopen."""
    return FakePopen


@pytest.fixture
def font():
    return FontConfig(path="/fonts/Test-Bold.ttf", name="Test-Bold", available=True)


@pytest.fixture
def audit(tmp_path, font):
    return CommandLog(log_dir=str(tmp_path / "logs"), platform="linux", font=font)


@pytest.fixture
def input_video(tmp_path):
    path = tmp_path / "input.mp4"
    path.write_bytes(b"source video")
    return str(path)


@pytest.fixture
def bonjour_words():
    """Three words where a standalone '!' must merge onto 'Bonjour'."""
    return [
        Word(text="Bonjour", start_s=0.0, end_s=0.4),
        Word(text="!", start_s=0.4, end_s=0.5),
        Word(text="Monde", start_s=0.6, end_s=1.0),
    ]


@pytest.fixture
def sentence_words():
    """A two-sentence transcript with a keyword-worthy word."""
    texts = [
        "La", "liberté", "est", "une", "illusion.", "Nous", "sommes",
        "tous", "prisonniers", "de", "nos", "choix", "!",
    ]
    words = []
    t = 0.0
    for text in texts:
        words.append(Word(text=text, start_s=round(t, 2), end_s=round(t + 0.3, 2)))
        t += 0.35
    return words


@pytest.fixture
def outcome():
    """Factory fixture: outcome(returncode, stderr, hang, interrupt) -> Outcome."""
    return Outcome
