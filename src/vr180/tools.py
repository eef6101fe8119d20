"""External engine execution (FFmpeg, ImageMagick, Hugin) and video probing."""

import json
import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path

from .config import ToolsConfig
from .errors import StageFailure, UsageError

logger = logging.getLogger(__name__)

# Number of stderr lines kept in a StageFailure message
STDERR_TAIL_LINES = 20


class ToolRunner:
    """Runs external engine executables and turns failures into StageFailure.

    Executable names come from :class:`ToolsConfig`, so ``convert`` can be
    pointed at ``magick`` or a Hugin build outside ``PATH``.

    Args:
        tools: Executable names keyed by tool.
        timeout: Seconds before a tool is killed (None = wait forever).
    """

    def __init__(self, tools: ToolsConfig | None = None, timeout: float | None = None):
        self.tools = tools or ToolsConfig()
        self.timeout = timeout

    def executable(self, tool: str) -> str:
        """Resolve the configured executable for a tool name."""
        return getattr(self.tools, tool, tool)

    def run(self, stage: str, tool: str, args: list[str]) -> subprocess.CompletedProcess:
        """Run one tool invocation to completion.

        Args:
            stage: Stage name reported on failure.
            tool: Tool key (e.g., "ffmpeg", "cpfind").
            args: Arguments after the executable.

        Returns:
            The completed process (stdout/stderr captured as text).

        Raises:
            StageFailure: If the executable is missing, times out, or exits non-zero.
        """
        cmd = [self.executable(tool), *[str(a) for a in args]]
        logger.debug("Running: %s", shlex.join(cmd))

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except FileNotFoundError:
            raise StageFailure(
                stage, f"executable not found: {cmd[0]}", command=cmd
            ) from None
        except subprocess.TimeoutExpired:
            raise StageFailure(
                stage, f"{cmd[0]} timed out after {self.timeout}s", command=cmd
            ) from None

        if result.returncode != 0:
            tail = "\n".join((result.stderr or "").splitlines()[-STDERR_TAIL_LINES:])
            raise StageFailure(
                stage,
                f"{cmd[0]} exited with status {result.returncode}",
                returncode=result.returncode,
                command=cmd,
                stderr_tail=tail,
            )

        return result


def check_tools(runner: ToolRunner, tools: list[str]) -> None:
    """Verify that every required executable is on PATH.

    Args:
        runner: Tool runner holding the executable names.
        tools: Tool keys to check.

    Raises:
        UsageError: If any executable cannot be found.
    """
    missing = [
        runner.executable(tool)
        for tool in tools
        if shutil.which(runner.executable(tool)) is None
    ]
    if missing:
        raise UsageError(f"Required executables not found on PATH: {missing}")


def input_args(source: str | Path, concat: bool = False) -> list[str]:
    """FFmpeg/ffprobe input arguments for a plain file or a concat list."""
    if concat:
        return ["-f", "concat", "-safe", "0", "-i", str(source)]
    return ["-i", str(source)]


@dataclass
class VideoInfo:
    """Metadata of the first video stream of a file.

    Attributes:
        width: Frame width in pixels.
        height: Frame height in pixels.
        fps: Average frame rate.
        duration: Duration in seconds.
        frame_count: Number of frames (counted when requested, else from metadata).
        pix_fmt: Pixel format.
        codec: Codec name.
        profile: Codec profile, if reported.
    """

    width: int
    height: int
    fps: float
    duration: float
    frame_count: int | None
    pix_fmt: str
    codec: str
    profile: str | None


def probe_video(
    runner: ToolRunner,
    path: str | Path,
    concat: bool = False,
    count_frames: bool = False,
) -> VideoInfo:
    """Read stream metadata with ffprobe.

    Args:
        runner: Tool runner (uses the ``ffprobe`` executable).
        path: Video file or concat list.
        concat: Treat ``path`` as a concat list.
        count_frames: Decode the stream to count frames exactly (slow).

    Returns:
        Metadata of the first video stream.

    Raises:
        StageFailure: If ffprobe fails or the file has no video stream.
    """
    args = ["-v", "error", "-select_streams", "v:0"]
    if count_frames:
        args.append("-count_frames")
    args += ["-show_streams", "-show_format", "-of", "json"]
    args += input_args(path, concat)

    result = runner.run("probe", "ffprobe", args)
    info = json.loads(result.stdout or "{}")
    streams = info.get("streams") or []
    if not streams:
        raise StageFailure("probe", f"no video stream in {path}")

    stream = streams[0]
    fmt = info.get("format") or {}

    rate = stream.get("avg_frame_rate") or stream.get("r_frame_rate") or "0/1"
    try:
        fps = float(Fraction(rate))
    except (ValueError, ZeroDivisionError):
        fps = 0.0

    duration = stream.get("duration") or fmt.get("duration") or 0.0
    frames = stream.get("nb_read_frames") if count_frames else stream.get("nb_frames")

    return VideoInfo(
        width=int(stream.get("width", 0)),
        height=int(stream.get("height", 0)),
        fps=fps,
        duration=float(duration),
        frame_count=int(frames) if frames not in (None, "N/A") else None,
        pix_fmt=stream.get("pix_fmt", ""),
        codec=stream.get("codec_name", ""),
        profile=stream.get("profile"),
    )
