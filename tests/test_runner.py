"""Integration tests for ChainRunner: batching, fallback and cleanup.

WHY: The runner owns the guarantees an operator relies on: batches run in
order, the first failure stops the chain, the real output only appears
after full success, and no intermediate file survives the run.

HOW: A real CommandExecutor and CommandLog are wired to FakePopen, which
writes each invocation's output file on success. Tests then inspect the
recorded argument lists, the audit entries and the files left in
tmp_path.

RULES:
- Intermediate files live in tmp_path (temp_dir) with run_id "t"
- "Nothing left behind" means no file with ".batch" in its name remains
"""

import os

import pytest

from drawtext_pipeline.core.ir import FilterGraph, OverlayInstruction
from drawtext_pipeline.errors import BatchExecutionFailure, EmptyFilterGraph, MalformedCommand
from drawtext_pipeline.ffmpeg.command import ParsedCommand, serialize
from drawtext_pipeline.ffmpeg.drawtext import serialize_graph
from drawtext_pipeline.ffmpeg.executor import CommandExecutor
from drawtext_pipeline.ffmpeg.runner import DIRECT_INDEX, ChainRunner
from drawtext_pipeline.ffmpeg.scheduler import DEFAULT_CODEC_ARGS


def _graph(count, font_path="/fonts/Test-Bold.ttf"):
    return FilterGraph(
        instructions=[
            OverlayInstruction(
                text="mot{}".format(i), start_s=float(i), end_s=i + 0.5,
                font_size=68, color="white", border_width=3,
            )
            for i in range(count)
        ],
        font_path=font_path,
    )


def _command(graph, input_path, output_path):
    return serialize(ParsedCommand(
        input_path=input_path,
        output_path=output_path,
        filter_text=serialize_graph(graph),
        codec_args=DEFAULT_CODEC_ARGS,
    ))


def _leftovers(directory):
    return [name for name in os.listdir(directory) if ".batch" in name]


@pytest.fixture
def make_runner(tmp_path, audit, font):
    def _make(popen, **kwargs):
        executor = CommandExecutor(audit, font=font, popen=popen)
        return ChainRunner(executor, temp_dir=str(tmp_path), run_id="t", **kwargs)
    return _make


class TestRender:
    def test_oversized_graph_is_batched(self, tmp_path, input_video, audit, fake_popen, make_runner):
        popen = fake_popen()
        runner = make_runner(popen)
        output = str(tmp_path / "final.mp4")

        result = runner.render(_graph(20), input_video, output)

        assert result.mode == "batched"
        assert result.batch_count == 3
        assert os.path.isfile(output)
        assert _leftovers(tmp_path) == []
        assert [e.batch_index for e in audit.entries] == [1, 2, 3]
        assert [e.instruction_count for e in audit.entries] == [8, 8, 4]
        # Each batch reads the previous batch's output
        assert popen.calls[0][2] == input_video
        assert popen.calls[1][2] == popen.calls[0][-1]
        assert popen.calls[2][2] == popen.calls[1][-1]

    def test_failure_aborts_chain(self, tmp_path, input_video, audit, fake_popen, outcome, make_runner):
        popen = fake_popen(outcome(), outcome(returncode=1, stderr="Error reinitializing filters!"), outcome())
        runner = make_runner(popen)
        output = str(tmp_path / "final.mp4")

        with pytest.raises(BatchExecutionFailure) as excinfo:
            runner.render(_graph(20), input_video, output)

        assert excinfo.value.batch_index == 2
        assert "Error reinitializing filters!" in excinfo.value.detail
        assert len(popen.calls) == 2
        assert not os.path.exists(output)
        assert _leftovers(tmp_path) == []
        assert runner.temp_files == []
        failed = [e for e in audit.entries if not e.success]
        assert len(failed) == 1
        assert failed[0].batch_index == 2

    def test_small_graph_runs_once(self, tmp_path, input_video, audit, fake_popen, make_runner):
        popen = fake_popen()
        output = str(tmp_path / "final.mp4")

        result = make_runner(popen).render(_graph(3), input_video, output)

        assert result.mode == "direct"
        assert result.batch_count == 1
        assert len(popen.calls) == 1
        assert os.path.isfile(output)
        assert os.path.isfile(audit.transcript_path)

    def test_single_pass_failure_falls_back(self, tmp_path, input_video, audit, fake_popen, outcome, make_runner):
        popen = fake_popen(outcome(returncode=1, stderr="boom"), outcome())
        output = str(tmp_path / "final.mp4")

        result = make_runner(popen, fallback_batch_size=4).render(_graph(6), input_video, output)

        assert result.mode == "batched"
        assert result.batch_count == 2
        assert [e.success for e in audit.entries] == [False, True, True]
        assert os.path.isfile(output)
        assert _leftovers(tmp_path) == []

    def test_no_fallback_for_small_graph(self, tmp_path, input_video, fake_popen, outcome, make_runner):
        popen = fake_popen(outcome(returncode=1, stderr="boom"))
        with pytest.raises(BatchExecutionFailure):
            make_runner(popen, fallback_batch_size=4).render(_graph(3), input_video, str(tmp_path / "o.mp4"))
        assert len(popen.calls) == 1

    def test_empty_graph(self, tmp_path, input_video, fake_popen, make_runner):
        popen = fake_popen()
        with pytest.raises(EmptyFilterGraph):
            make_runner(popen).render(_graph(0), input_video, str(tmp_path / "o.mp4"))
        assert popen.calls == []

    def test_output_directory_created(self, tmp_path, input_video, fake_popen, make_runner):
        output = str(tmp_path / "renders" / "final.mp4")
        make_runner(fake_popen()).render(_graph(2), input_video, output)
        assert os.path.isfile(output)


class TestProcessCommand:
    def test_direct_execution(self, tmp_path, input_video, audit, fake_popen, make_runner):
        popen = fake_popen()
        output = str(tmp_path / "final.mp4")

        result = make_runner(popen).process_command(_command(_graph(3), input_video, output))

        assert result.mode == "direct"
        assert len(popen.calls) == 1
        args = popen.calls[0]
        assert args[1] == "-y"
        assert args[-1] != output
        assert os.path.isfile(output)
        assert [e.batch_index for e in audit.entries] == [DIRECT_INDEX]
        assert result.log_path == audit.path

    def test_direct_retargets_missing_font(self, tmp_path, input_video, fake_popen, make_runner):
        popen = fake_popen()
        text = _command(_graph(2, font_path="/gone/Impact.ttf"), input_video, str(tmp_path / "o.mp4"))

        make_runner(popen, path_exists=lambda p: p == input_video).process_command(text)

        filter_text = popen.calls[0][popen.calls[0].index("-vf") + 1]
        assert "/gone/Impact.ttf" not in filter_text
        assert filter_text.count("fontfile='/fonts/Test-Bold.ttf'") == 2

    def test_long_command_is_batched(self, tmp_path, input_video, audit, fake_popen, make_runner):
        popen = fake_popen()
        output = str(tmp_path / "final.mp4")

        result = make_runner(popen, batch_size=8).process_command(_command(_graph(20), input_video, output))

        assert result.mode == "batched"
        assert result.batch_count == 3
        assert [e.batch_index for e in audit.entries] == [1, 2, 3]
        assert os.path.isfile(output)
        assert _leftovers(tmp_path) == []

    def test_direct_failure_falls_back(self, tmp_path, input_video, audit, fake_popen, outcome, make_runner):
        popen = fake_popen(outcome(returncode=1, stderr="Too many filters"), outcome())
        output = str(tmp_path / "final.mp4")

        result = make_runner(popen, fallback_batch_size=4).process_command(
            _command(_graph(6), input_video, output)
        )

        assert result.mode == "batched"
        assert [e.batch_index for e in audit.entries] == [DIRECT_INDEX, 1, 2]
        assert [e.success for e in audit.entries] == [False, True, True]
        assert os.path.isfile(output)
        assert _leftovers(tmp_path) == []

    def test_unbatchable_fallback_reraises_direct_failure(self, tmp_path, input_video, fake_popen, outcome, make_runner):
        popen = fake_popen(outcome(returncode=1, stderr="direct broke"))
        text = serialize(ParsedCommand(
            input_path=input_video, output_path=str(tmp_path / "o.mp4"), filter_text="scale=2:2"
        ))

        with pytest.raises(BatchExecutionFailure) as excinfo:
            make_runner(popen).process_command(text)

        assert excinfo.value.batch_index == DIRECT_INDEX
        assert "direct broke" in excinfo.value.detail

    def test_strict_batching_rejects_foreign_filter(self, tmp_path, input_video, fake_popen, make_runner):
        popen = fake_popen()
        filter_text = "scale=2:2," + serialize_graph(_graph(12))
        text = serialize(ParsedCommand(
            input_path=input_video, output_path=str(tmp_path / "o.mp4"), filter_text=filter_text
        ))

        with pytest.raises(MalformedCommand):
            make_runner(popen).process_command(text)
        assert popen.calls == []

    def test_lenient_batching_drops_foreign_filter(self, tmp_path, input_video, fake_popen, make_runner):
        popen = fake_popen()
        filter_text = "scale=2:2," + serialize_graph(_graph(12))
        text = serialize(ParsedCommand(
            input_path=input_video, output_path=str(tmp_path / "o.mp4"), filter_text=filter_text
        ))

        result = make_runner(popen, strict=False).process_command(text)

        assert result.batch_count == 2
        assert all("scale=" not in call[4] for call in popen.calls)

    def test_batching_keeps_input_and_output_options(self, tmp_path, input_video, audit, fake_popen, make_runner):
        popen = fake_popen()
        output = str(tmp_path / "o.mp4")
        text = serialize(ParsedCommand(
            input_path=input_video,
            output_path=output,
            filter_text=serialize_graph(_graph(12)),
            codec_args=DEFAULT_CODEC_ARGS,
            input_args=("-y", "-ss", "5"),
            other_args=("-t", "3", "-r", "30"),
        ))

        result = make_runner(popen, batch_size=8).process_command(text)

        assert result.batch_count == 2
        first, second = popen.calls
        assert first[1:5] == ["-ss", "5", "-i", input_video]
        assert first[first.index("-t") + 1] == "3"
        assert first[first.index("-r") + 1] == "30"
        assert first.count("-y") == 1
        # Later batches read the already trimmed intermediate
        assert second[1:3] == ["-i", first[-1]]
        for option in ("-ss", "-t", "-r"):
            assert option not in second
        assert os.path.isfile(output)

    def test_oversized_command_without_drawtext_runs_directly(self, tmp_path, input_video, audit, fake_popen, make_runner):
        popen = fake_popen()
        output = str(tmp_path / "o.mp4")
        filter_text = ",".join(["eq=brightness=0.01"] * 400)
        text = serialize(ParsedCommand(input_path=input_video, output_path=output, filter_text=filter_text))
        assert len(text) > 6000

        result = make_runner(popen).process_command(text)

        assert result.mode == "direct"
        assert len(popen.calls) == 1
        assert popen.calls[0][popen.calls[0].index("-vf") + 1] == filter_text
        assert [e.batch_index for e in audit.entries] == [DIRECT_INDEX]
        assert os.path.isfile(output)

    def test_oversized_command_without_drawtext_failure_is_reported(
        self, tmp_path, input_video, fake_popen, outcome, make_runner
    ):
        popen = fake_popen(outcome(returncode=1, stderr="bad eq"))
        text = serialize(ParsedCommand(
            input_path=input_video,
            output_path=str(tmp_path / "o.mp4"),
            filter_text=",".join(["eq=brightness=0.01"] * 400),
        ))

        with pytest.raises(BatchExecutionFailure) as excinfo:
            make_runner(popen).process_command(text)

        assert excinfo.value.batch_index == DIRECT_INDEX
        assert len(popen.calls) == 1

    def test_malformed_command(self, fake_popen, make_runner):
        popen = fake_popen()
        with pytest.raises(MalformedCommand):
            make_runner(popen).process_command("ffmpeg -vf drawtext=x")
        assert popen.calls == []

    def test_progress_probes_font_first(self, tmp_path, input_video, audit, fake_popen, make_runner):
        popen = fake_popen()
        make_runner(popen).process_command(
            _command(_graph(2), input_video, str(tmp_path / "o.mp4")), progress=True
        )
        assert popen.calls[0][-3:] == ["-f", "null", "-"]
        assert len(popen.calls) == 2
        assert len(audit.entries) == 1


class TestCleanup:
    def test_never_raises(self, tmp_path, fake_popen, make_runner):
        runner = make_runner(fake_popen())
        stuck = tmp_path / "stuck.batch001-t.mp4"
        stuck.mkdir()
        gone = tmp_path / "gone.batch002-t.mp4"
        removable = tmp_path / "ok.batch003-t.mp4"
        removable.write_bytes(b"x")
        runner.temp_files = [str(stuck), str(gone), str(removable)]

        failed = runner.cleanup()

        assert failed == [str(stuck)]
        assert not removable.exists()
        assert runner.temp_files == []
