"""Tests for pipeline context building, stage selection and end-to-end runs."""

import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from vr180.artifacts import ArtifactKind
from vr180.config import PipelineConfig
from vr180.errors import MissingCachedArtifact, StageFailure, UsageError
from vr180.eyes import Eye
from vr180.pipeline import (
    Pipeline,
    Stage,
    ToolExecutor,
    build_pipeline_context,
    default_stages,
    run_pipeline,
    select_stages,
)
from vr180.pipeline.stages import CalibrationStage, CompositionStage, MaskStage, OrientationStage
from vr180.tools import ToolRunner

HUGIN_STAGES = ["pto_gen", "cpfind", "cpclean", "linefind", "autooptimiser"]


def _mask_stages(stages: list[str]) -> list[str]:
    return [s for s in stages if s.startswith("mask_")]


class TestBuildPipelineContext:
    """Tests for build_pipeline_context."""

    def test_structure(self, pipeline_config, fake_runner, videos):
        """Test that the context holds streams, flats and a saved config copy."""
        ctx = build_pipeline_context(pipeline_config, runner=fake_runner)

        assert ctx.runner is fake_runner
        assert ctx.store.prefix == "clip"
        assert ctx.streams[Eye.LEFT].source == videos["left"]
        assert ctx.streams[Eye.RIGHT].concat is False
        assert ctx.streams[Eye.RIGHT].input_fov == 202.0
        assert ctx.flats == {
            Eye.LEFT: str(videos["left_flat"]),
            Eye.RIGHT: str(videos["right_flat"]),
        }
        assert ctx.masks is None and ctx.model is None and ctx.orientation is None

        saved = ctx.store.path(ArtifactKind.CONFIG)
        assert PipelineConfig.from_yaml(saved) == pipeline_config

    def test_default_runner(self, pipeline_config):
        """Test that a ToolRunner is built from the config when none is given."""
        pipeline_config.runtime.tool_timeout = 12.5
        ctx = build_pipeline_context(pipeline_config)
        assert isinstance(ctx.runner, ToolRunner)
        assert ctx.runner.timeout == 12.5

    def test_missing_inputs(self, tmp_path):
        """Test that missing inputs fail before anything is written."""
        config = PipelineConfig.model_validate({"inputs": {"output_dir": str(tmp_path / "out")}})
        with pytest.raises(UsageError) as excinfo:
            build_pipeline_context(config)
        message = str(excinfo.value)
        assert "inputs.left_video" in message
        assert "inputs.output_prefix" in message
        assert not (tmp_path / "out").exists()

    def test_flats_not_needed(self, pipeline_config, fake_runner):
        """Test that flats are optional when mask generation is not part of the run."""
        pipeline_config.inputs.left_flat = None
        with pytest.raises(UsageError, match="left_flat"):
            build_pipeline_context(pipeline_config, runner=fake_runner)

        ctx = build_pipeline_context(pipeline_config, runner=fake_runner, need_flats=False)
        assert ctx.flats == {}

    def test_concat_directory(self, tmp_path, pipeline_config, fake_runner):
        """Test that a segment directory becomes a stored concat list."""
        segments = tmp_path / "left_segments"
        segments.mkdir()
        for name in ("GX020001.MP4", "GX010001.MP4"):
            (segments / name).write_bytes(b"x")
        list_file = tmp_path / "right.txt"
        list_file.write_text(f"file '{tmp_path / 'right.mp4'}'\n")

        pipeline_config.inputs.concat = True
        pipeline_config.inputs.left_video = str(segments)
        pipeline_config.inputs.right_video = str(list_file)
        ctx = build_pipeline_context(pipeline_config, runner=fake_runner)

        left = ctx.streams[Eye.LEFT]
        assert left.concat is True
        assert left.source == ctx.store.path(ArtifactKind.CONCAT_LIST, Eye.LEFT)
        assert left.source.read_text().splitlines() == [
            f"file '{(segments / 'GX010001.MP4').resolve()}'",
            f"file '{(segments / 'GX020001.MP4').resolve()}'",
        ]
        assert ctx.streams[Eye.RIGHT].source == list_file

    def test_empty_segment_directory(self, tmp_path, pipeline_config, fake_runner):
        """Test that a segment directory without videos is a usage error."""
        empty = tmp_path / "empty"
        empty.mkdir()
        pipeline_config.inputs.concat = True
        pipeline_config.inputs.left_video = str(empty)
        with pytest.raises(UsageError, match="holds no videos"):
            build_pipeline_context(pipeline_config, runner=fake_runner)


class TestStages:
    """Tests for the stage chain."""

    def test_protocols(self):
        """Test that stages and runners satisfy the pipeline protocols."""
        for stage in default_stages():
            assert isinstance(stage, Stage)
        assert isinstance(ToolRunner(), ToolExecutor)

    def test_default_order(self):
        """Test the fixed chain order."""
        assert [s.name for s in default_stages()] == [
            "masks",
            "calibration",
            "orientation",
            "render",
        ]

    def test_select_keeps_chain_order(self):
        """Test that selection keeps chain order regardless of request order."""
        selected = select_stages(["render", "masks"])
        assert [type(s) for s in selected] == [MaskStage, CompositionStage]

    def test_select_unknown(self):
        """Test that an unknown stage name is a usage error."""
        with pytest.raises(UsageError, match="Unknown stages"):
            select_stages(["masks", "stitch"])

    def test_skip_predicates(self, pipeline_config, fake_runner):
        """Test that reuse flags drive the skip predicates."""
        ctx = build_pipeline_context(pipeline_config, runner=fake_runner)
        assert MaskStage().should_skip(ctx) is False
        assert CalibrationStage().should_skip(ctx) is False

        pipeline_config.masks.reuse = True
        pipeline_config.calibration.pto_file = "existing.pto"
        assert MaskStage().should_skip(ctx) is True
        assert CalibrationStage().should_skip(ctx) is True
        assert OrientationStage().should_skip(ctx) is False
        assert CompositionStage().should_skip(ctx) is False


class TestRunPipeline:
    """End-to-end runs with a recording runner."""

    def test_full_run(self, pipeline_config, fake_runner):
        """Test the full chain: masks, calibration, orientation, render."""
        ctx = run_pipeline(pipeline_config, runner=fake_runner)

        stages = fake_runner.stages
        assert len(_mask_stages(stages)) == 12
        assert [s for s in stages if s in HUGIN_STAGES] == HUGIN_STAGES
        assert stages[-1] == "compose"
        assert stages.index("compose") > stages.index("autooptimiser")

        assert ctx.output == pipeline_config.output_file
        assert ctx.output.exists()
        assert ctx.orientation.left == ctx.model.angles_for("right")
        assert ctx.orientation.right == ctx.model.angles_for("left")

        compose_args = fake_runner.calls_for("compose")[0]
        graph = compose_args[compose_args.index("-filter_complex") + 1]
        assert ":yaw=4.125:pitch=-2.5:roll=-1:output=hequirect[left]" in graph
        assert ":yaw=-3.5:pitch=1.25:roll=0.75:output=hequirect[right]" in graph

    def test_each_eye_gets_its_own_masks(self, pipeline_config, fake_runner):
        """Test that the right eye is blended with the right eye's masks."""
        ctx = run_pipeline(pipeline_config, runner=fake_runner)
        compose_args = fake_runner.calls_for("compose")[0]
        inputs = [compose_args[i + 1] for i, a in enumerate(compose_args) if a == "-i"]
        assert inputs[4] == str(ctx.masks[Eye.RIGHT].normalized_alpha)
        assert inputs[5] == str(ctx.masks[Eye.RIGHT].border_alpha)

    def test_reuse_runs_only_compose(self, pipeline_config, fake_runner):
        """Test that a rerun with both reuse flags invokes no mask or Hugin tool."""
        first = run_pipeline(pipeline_config, runner=fake_runner)
        fake_runner.calls.clear()

        rerun = pipeline_config.model_copy(deep=True)
        rerun.masks.reuse = True
        rerun.calibration.pto_file = str(first.store.path(ArtifactKind.CALIBRATED))
        ctx = run_pipeline(rerun, runner=fake_runner)

        assert fake_runner.stages == ["compose"]
        assert ctx.masks == first.masks
        assert ctx.orientation == first.orientation

    def test_reuse_missing_masks(self, pipeline_config, fake_runner):
        """Test that mask reuse without cached masks fails before any tool runs."""
        pipeline_config.masks.reuse = True
        with pytest.raises(MissingCachedArtifact, match="normalized_alpha"):
            run_pipeline(pipeline_config, runner=fake_runner)
        assert fake_runner.calls == []

    def test_missing_supplied_project(self, pipeline_config, fake_runner, tmp_path):
        """Test that a supplied project that does not exist fails the run."""
        pipeline_config.calibration.pto_file = str(tmp_path / "gone.pto")
        with pytest.raises(MissingCachedArtifact):
            run_pipeline(pipeline_config, runner=fake_runner)
        assert "compose" not in fake_runner.stages

    def test_override_applied_to_both_eyes(self, pipeline_config, fake_runner):
        """Test that yaw=10 renders both eyes at (10, 0, 0)."""
        pipeline_config.override.yaw = 10.0
        ctx = run_pipeline(pipeline_config, runner=fake_runner)

        assert ctx.orientation.left.yaw == ctx.orientation.right.yaw == 10.0
        compose_args = fake_runner.calls_for("compose")[0]
        graph = compose_args[compose_args.index("-filter_complex") + 1]
        assert graph.count(":yaw=10:pitch=0:roll=0:") == 2

    def test_stage_failure_stops_run(self, pipeline_config, fake_runner):
        """Test that a failing stage aborts the run before rendering."""
        fake_runner.fail_stage = "cpfind"
        with pytest.raises(StageFailure):
            run_pipeline(pipeline_config, runner=fake_runner)
        assert "compose" not in fake_runner.stages

    def test_masks_only(self, pipeline_config, fake_runner):
        """Test that the masks stage alone runs only mask tools."""
        ctx = run_pipeline(pipeline_config, stages=["masks"], runner=fake_runner)
        assert fake_runner.stages == _mask_stages(fake_runner.stages)
        assert set(ctx.masks) == {Eye.LEFT, Eye.RIGHT}
        assert ctx.output is None

    def test_orientation_from_previous_calibration(self, pipeline_config, fake_runner):
        """Test that orientation alone reads the current calibration pointer."""
        run_pipeline(pipeline_config, stages=["calibration"], runner=fake_runner)
        fake_runner.calls.clear()

        pipeline_config.inputs.left_flat = None
        ctx = run_pipeline(pipeline_config, stages=["orientation"], runner=fake_runner)

        assert fake_runner.calls == []
        assert ctx.orientation.left.yaw == 4.125
        assert ctx.orientation.right.yaw == -3.5

    def test_orientation_without_calibration(self, pipeline_config, fake_runner):
        """Test that orientation without any calibration is a missing artifact."""
        with pytest.raises(MissingCachedArtifact, match="calibrated"):
            run_pipeline(pipeline_config, stages=["orientation"], runner=fake_runner)

    def test_render_reuses_previous_artifacts(self, pipeline_config, fake_runner):
        """Test that render alone picks up masks and calibration from disk."""
        run_pipeline(pipeline_config, stages=["masks", "calibration"], runner=fake_runner)
        fake_runner.calls.clear()

        ctx = run_pipeline(pipeline_config, stages=["render"], runner=fake_runner)
        assert fake_runner.stages == ["compose"]
        assert ctx.output.exists()

    def test_concat_sources(self, tmp_path, pipeline_config, fake_runner, videos):
        """Test that concat lists flow into still extraction and the final render."""
        for eye in ("left", "right"):
            list_file = tmp_path / f"{eye}.txt"
            list_file.write_text(f"file '{videos[eye]}'\n")
            setattr(pipeline_config.inputs, f"{eye}_video", str(list_file))
        pipeline_config.inputs.output_dir = str(tmp_path / "out")
        pipeline_config.inputs.concat = True

        run_pipeline(pipeline_config, runner=fake_runner)

        still = fake_runner.calls_for("extract_still_left")[0]
        assert still[still.index("-i") - 4 : still.index("-i")] == ["-f", "concat", "-safe", "0"]
        compose_args = fake_runner.calls_for("compose")[0]
        assert compose_args.count("concat") == 2

    def test_check_tools_before_work(self, pipeline_config, fake_runner):
        """Test that missing executables are reported before any tool runs."""
        pipeline_config.runtime.check_tools = True
        with patch("vr180.tools.shutil.which", return_value=None):
            with pytest.raises(UsageError, match="not found on PATH") as excinfo:
                run_pipeline(pipeline_config, runner=fake_runner)
        assert fake_runner.calls == []
        assert "cpfind" in str(excinfo.value)

    def test_check_tools_skips_reused_stages(self, pipeline_config, fake_runner):
        """Test that tools of skipped stages are not required."""
        run_pipeline(pipeline_config, runner=fake_runner)
        pipeline_config.masks.reuse = True
        pipeline_config.calibration.pto_file = str(
            Path(pipeline_config.output_dir) / "clip-hugin-calibrated.pto"
        )
        pipeline_config.runtime.check_tools = True

        def which(name):
            return "/usr/bin/ffmpeg" if name == "ffmpeg" else None

        with patch("vr180.tools.shutil.which", side_effect=which):
            run_pipeline(pipeline_config, runner=fake_runner)

    def test_stage_timing_logged(self, pipeline_config, fake_runner, caplog):
        """Test that each run stage logs its start and duration."""
        with caplog.at_level(logging.INFO, logger="vr180.pipeline"):
            run_pipeline(pipeline_config, runner=fake_runner)
        assert "Stage 'masks': started" in caplog.text
        assert "Stage 'render': finished in" in caplog.text


def test_pipeline_class(pipeline_config, fake_runner):
    """Test the programmatic Pipeline entry point."""
    pipeline = Pipeline(pipeline_config, runner=fake_runner)
    output = pipeline.run()
    assert output == pipeline_config.output_file
    assert pipeline.context.orientation is not None
