"""Tests for external tool execution and ffprobe parsing."""

import json
import subprocess
import sys
from unittest.mock import MagicMock, patch

import pytest

from vr180.config import ToolsConfig
from vr180.errors import StageFailure, UsageError
from vr180.tools import ToolRunner, check_tools, input_args, probe_video


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(["tool"], returncode, stdout=stdout, stderr=stderr)


def test_run_uses_configured_executable():
    """Test that tool keys map to configured executable names."""
    runner = ToolRunner(ToolsConfig(convert="magick"), timeout=30)
    with patch("vr180.tools.subprocess.run", return_value=_completed()) as mock_run:
        runner.run("mask_alpha", "convert", ["in.png", "out.png"])

    cmd = mock_run.call_args.args[0]
    assert cmd == ["magick", "in.png", "out.png"]
    assert mock_run.call_args.kwargs["timeout"] == 30
    assert mock_run.call_args.kwargs["capture_output"] is True


def test_run_nonzero_exit_raises_stage_failure():
    """Test that a failing tool surfaces its stage, status and stderr tail."""
    stderr = "\n".join(f"line {i}" for i in range(50))
    runner = ToolRunner()
    with patch(
        "vr180.tools.subprocess.run", return_value=_completed(1, stderr=stderr)
    ):
        with pytest.raises(StageFailure) as excinfo:
            runner.run("cpfind", "cpfind", ["-o", "out.pto", "in.pto"])

    error = excinfo.value
    assert error.stage == "cpfind"
    assert error.returncode == 1
    assert error.command[0] == "cpfind"
    assert "line 49" in error.stderr_tail
    assert "line 10" not in error.stderr_tail
    assert error.exit_code == 2
    assert "Stage 'cpfind' failed" in str(error)


def test_run_missing_executable():
    """Test that a missing executable is a stage failure, not a crash."""
    runner = ToolRunner()
    with patch("vr180.tools.subprocess.run", side_effect=FileNotFoundError()):
        with pytest.raises(StageFailure, match="executable not found"):
            runner.run("pto_gen", "pto_gen", [])


def test_run_timeout():
    """Test that an expired timeout is a stage failure."""
    runner = ToolRunner(timeout=5)
    with patch(
        "vr180.tools.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="ffmpeg", timeout=5),
    ):
        with pytest.raises(StageFailure, match="timed out"):
            runner.run("compose", "ffmpeg", [])


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell script")
def test_run_undecodable_stderr(tmp_path):
    """Test that non-UTF-8 tool output still surfaces as a stage failure."""
    script = tmp_path / "fake-ffmpeg"
    script.write_text("#!/bin/sh\nprintf 'bad \\377\\376 bytes\\n' >&2\nexit 1\n")
    script.chmod(0o755)
    runner = ToolRunner(ToolsConfig(ffmpeg=str(script)))

    with pytest.raises(StageFailure) as excinfo:
        runner.run("compose", "ffmpeg", [])

    error = excinfo.value
    assert error.stage == "compose"
    assert error.returncode == 1
    assert "bad" in error.stderr_tail
    assert "\ufffd" in error.stderr_tail


def test_check_tools_reports_missing():
    """Test that every missing executable is listed."""
    runner = ToolRunner(ToolsConfig(cpfind="/nowhere/cpfind"))

    def fake_which(name):
        return None if name.startswith("/nowhere") or name == "linefind" else f"/usr/bin/{name}"

    with patch("vr180.tools.shutil.which", side_effect=fake_which):
        with pytest.raises(UsageError) as excinfo:
            check_tools(runner, ["ffmpeg", "cpfind", "linefind"])

    assert "/nowhere/cpfind" in str(excinfo.value)
    assert "linefind" in str(excinfo.value)
    assert "ffmpeg" not in str(excinfo.value)


def test_check_tools_all_present():
    """Test that nothing is raised when everything is on PATH."""
    with patch("vr180.tools.shutil.which", return_value="/usr/bin/x"):
        check_tools(ToolRunner(), ["ffmpeg", "convert"])


def test_input_args():
    """Test plain and concat input arguments."""
    assert input_args("a.mp4") == ["-i", "a.mp4"]
    assert input_args("list.txt", concat=True) == [
        "-f",
        "concat",
        "-safe",
        "0",
        "-i",
        "list.txt",
    ]


def test_probe_video():
    """Test ffprobe JSON parsing."""
    payload = {
        "streams": [
            {
                "width": 6000,
                "height": 3000,
                "avg_frame_rate": "60000/1001",
                "nb_frames": "600",
                "pix_fmt": "yuv420p",
                "codec_name": "h264",
                "profile": "Constrained Baseline",
            }
        ],
        "format": {"duration": "10.01"},
    }
    runner = MagicMock()
    runner.run.return_value = _completed(stdout=json.dumps(payload))

    info = probe_video(runner, "out.mp4")

    assert (info.width, info.height) == (6000, 3000)
    assert info.fps == pytest.approx(59.94, abs=0.01)
    assert info.duration == pytest.approx(10.01)
    assert info.frame_count == 600
    assert info.profile == "Constrained Baseline"
    stage, tool, args = runner.run.call_args.args
    assert (stage, tool) == ("probe", "ffprobe")
    assert args[-2:] == ["-i", "out.mp4"]


def test_probe_video_without_stream():
    """Test that a file without a video stream is a stage failure."""
    runner = MagicMock()
    runner.run.return_value = _completed(stdout=json.dumps({"streams": []}))
    with pytest.raises(StageFailure, match="no video stream"):
        probe_video(runner, "audio.m4a")
