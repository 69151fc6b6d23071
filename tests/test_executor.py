"""Unit tests for encoder invocation, progress parsing and auditing.

WHY: The executor is where the pipeline meets a real process. It must
never deadlock on a chatty stderr, must turn every kind of failure into
one BatchExecutionFailure with the full diagnostics, and must leave
exactly one audit entry per invocation.

HOW: Most tests inject FakePopen (see conftest.py). One test runs a real
child process (the current Python interpreter standing in for the
encoder) that floods stderr far beyond a pipe buffer and exits non-zero.

RULES:
- No test requires ffmpeg to be installed
- Timeouts in tests are short; the fake process "hangs" until killed
"""

import dataclasses
import subprocess
import sys

import pytest

from drawtext_pipeline.core.ir import Batch, FilterGraph, FontConfig, OverlayInstruction
from drawtext_pipeline.errors import BatchExecutionFailure, EmptyFilterGraph, FontUnavailable
from drawtext_pipeline.ffmpeg.executor import (
    CommandExecutor,
    ProcessOutcome,
    batch_args,
    parse_progress_time,
)


def _batch(tmp_path, count=2, index=1):
    graph = FilterGraph(
        instructions=[
            OverlayInstruction(
                text="mot{}".format(i), start_s=float(i), end_s=i + 0.5,
                font_size=68, color="white", border_width=3,
            )
            for i in range(count)
        ],
        font_path="/fonts/Test-Bold.ttf",
    )
    return Batch(
        index=index,
        graph=graph,
        input_path=str(tmp_path / "input.mp4"),
        output_path=str(tmp_path / "out.batch001-t.mp4"),
    )


class TestParseProgressTime:
    def test_hours_minutes_seconds(self):
        assert parse_progress_time("frame=10 fps=0 time=01:02:03.50 bitrate=1k") == pytest.approx(3723.5)

    def test_padded_value(self):
        assert parse_progress_time("time= 00:00:07.00") == pytest.approx(7.0)

    @pytest.mark.parametrize("line", ["time=N/A", "Input #0, mov", ""])
    def test_no_marker(self, line):
        assert parse_progress_time(line) is None


class TestBatchArgs:
    def test_shape(self, tmp_path):
        batch = _batch(tmp_path)
        args = batch_args(batch)
        assert args[:3] == ["-i", batch.input_path, "-vf"]
        assert args[3].count("drawtext=") == 2
        assert args[4:] == ["-c:a", "copy", "-y", batch.output_path]

    def test_input_and_output_options_placement(self, tmp_path):
        batch = dataclasses.replace(_batch(tmp_path), input_args=("-ss", "5"), output_args=("-t", "3"))
        args = batch_args(batch)
        assert args[:4] == ["-ss", "5", "-i", batch.input_path]
        assert args[-6:] == ["-c:a", "copy", "-t", "3", "-y", batch.output_path]

    def test_empty_batch(self, tmp_path):
        with pytest.raises(EmptyFilterGraph):
            batch_args(_batch(tmp_path, count=0))


class TestProcessOutcome:
    def test_ok(self):
        assert ProcessOutcome(returncode=0, stderr="").ok
        assert not ProcessOutcome(returncode=1, stderr="").ok
        assert not ProcessOutcome(returncode=None, stderr="", timed_out=True).ok


class TestExecute:
    def test_success_writes_one_entry(self, tmp_path, audit, font, fake_popen):
        popen = fake_popen()
        executor = CommandExecutor(audit, font=font, popen=popen)
        batch = _batch(tmp_path)

        executor.execute(batch)

        assert popen.calls == [["ffmpeg"] + batch_args(batch)]
        kwargs = popen.kwargs[0]
        assert kwargs["stdin"] is subprocess.DEVNULL
        assert kwargs["stderr"] is subprocess.PIPE
        entries = audit.entries
        assert len(entries) == 1
        assert entries[0].success
        assert entries[0].batch_index == 1
        assert entries[0].instruction_count == 2
        assert entries[0].font_path == font.path
        assert entries[0].error_detail is None

    def test_failure_carries_full_stderr(self, tmp_path, audit, fake_popen, outcome):
        diagnostics = "Error opening filters!\n" + "x" * 10000
        executor = CommandExecutor(audit, popen=fake_popen(outcome(returncode=1, stderr=diagnostics)))

        with pytest.raises(BatchExecutionFailure) as excinfo:
            executor.execute(_batch(tmp_path, index=3))

        failure = excinfo.value
        assert failure.batch_index == 3
        assert failure.returncode == 1
        assert failure.detail == diagnostics
        assert failure.exit_code == 1
        entries = audit.entries
        assert len(entries) == 1
        assert not entries[0].success
        assert entries[0].error_detail == "Code 1: " + diagnostics

    def test_timeout_kills_process(self, tmp_path, audit, fake_popen, outcome):
        executor = CommandExecutor(audit, timeout_s=0.5, popen=fake_popen(outcome(hang=True, stderr="frame=1")))

        with pytest.raises(BatchExecutionFailure) as excinfo:
            executor.execute(_batch(tmp_path))

        assert excinfo.value.timed_out
        assert excinfo.value.exit_code == 124
        assert audit.entries[0].error_detail.startswith("Timed out after 0.5s")

    def test_interrupt_kills_process(self, tmp_path, audit, fake_popen, outcome):
        popen = fake_popen(outcome(interrupt=True))
        executor = CommandExecutor(audit, popen=popen)

        with pytest.raises(KeyboardInterrupt):
            executor.execute(_batch(tmp_path))

        assert popen.processes[0].killed
        assert popen.processes[0].returncode == -9

    def test_missing_encoder(self, tmp_path, audit, fake_popen):
        executor = CommandExecutor(audit, ffmpeg_bin="no-such-ffmpeg", popen=fake_popen(FileNotFoundError("no-such-ffmpeg")))

        with pytest.raises(BatchExecutionFailure) as excinfo:
            executor.execute(_batch(tmp_path))

        assert excinfo.value.returncode is None
        assert excinfo.value.exit_code == 127
        assert "Could not start no-such-ffmpeg" in excinfo.value.detail
        assert len(audit.entries) == 1

    def test_empty_batch_starts_nothing(self, tmp_path, audit, fake_popen):
        popen = fake_popen()
        executor = CommandExecutor(audit, popen=popen)
        with pytest.raises(EmptyFilterGraph):
            executor.execute(_batch(tmp_path, count=0))
        assert popen.calls == []
        assert audit.entries == []


class TestProgress:
    def test_markers_reported(self, tmp_path, audit, fake_popen, outcome):
        stderr = (
            "Input #0, mov\n"
            "frame=  1 time=00:00:01.50 bitrate=N/A\r"
            "frame=  2 time=00:01:02.25 bitrate=N/A\r"
            "video:1kB"
        )
        seen = []
        executor = CommandExecutor(
            audit,
            on_progress=lambda idx, secs, line: seen.append((idx, secs)),
            popen=fake_popen(outcome(stderr=stderr)),
        )

        executor.execute(_batch(tmp_path, index=2), progress=True)

        assert seen == [(2, pytest.approx(1.5)), (2, pytest.approx(62.25))]

    def test_progress_off_ignores_markers(self, tmp_path, audit, fake_popen, outcome):
        seen = []
        executor = CommandExecutor(
            audit,
            on_progress=lambda *a: seen.append(a),
            popen=fake_popen(outcome(stderr="time=00:00:01.00\n")),
        )
        executor.execute(_batch(tmp_path))
        assert seen == []


class TestRealProcess:
    def test_large_stderr_does_not_block(self, audit):
        code = "import sys; sys.stderr.write('frame=1 time=00:00:01.50\\n' * 5000); sys.exit(3)"
        seen = []
        executor = CommandExecutor(
            audit,
            ffmpeg_bin=sys.executable,
            timeout_s=60,
            on_progress=lambda idx, secs, line: seen.append(secs),
        )

        with pytest.raises(BatchExecutionFailure) as excinfo:
            executor.run_args(["-c", code], batch_index=1, progress=True)

        assert excinfo.value.returncode == 3
        assert excinfo.value.detail.count("time=00:00:01.50") == 5000
        assert len(seen) == 5000
        assert len(audit.entries) == 1


class TestFontChecks:
    def test_available_font_no_warning(self, audit, font, recwarn):
        executor = CommandExecutor(audit, font=font)
        assert executor.check_font()
        assert not [w for w in recwarn if issubclass(w.category, FontUnavailable)]

    def test_assumed_font_warns(self, audit):
        assumed = FontConfig(path="/nowhere/Impact.ttf", name="Impact (assumed)", available=False)
        executor = CommandExecutor(audit, font=assumed)
        with pytest.warns(FontUnavailable, match="assuming /nowhere/Impact.ttf"):
            assert not executor.check_font()

    def test_font_probe_success_not_audited(self, audit, font, fake_popen):
        popen = fake_popen()
        executor = CommandExecutor(audit, font=font, popen=popen)
        assert executor.test_font_access()
        assert popen.calls[0][-3:] == ["-f", "null", "-"]
        assert "fontfile='/fonts/Test-Bold.ttf'" in " ".join(popen.calls[0])
        assert audit.entries == []

    def test_font_probe_failure_warns(self, audit, font, fake_popen, outcome):
        executor = CommandExecutor(
            audit, font=font, popen=fake_popen(outcome(returncode=1, stderr="No such file or directory"))
        )
        with pytest.warns(FontUnavailable):
            assert not executor.test_font_access()
