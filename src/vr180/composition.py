"""Final stereo composition: per-eye blend and reprojection, side-by-side encode."""

import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path

from .config import EncodeConfig, RenderConfig
from .errors import MissingCachedArtifact, StageFailure, UsageError
from .eyes import EYES, Eye
from .masks import MaskSet
from .orientation import Orientation, OrientationSpec
from .tools import ToolRunner, input_args

logger = logging.getLogger(__name__)

# Video file extensions picked up from a segment directory
VIDEO_EXTENSIONS = {".mp4", ".mjpeg", ".mjpg", ".mkv", ".mov", ".avi", ".ts"}


@dataclass(frozen=True)
class EyeStream:
    """Raw source of one eye.

    Attributes:
        eye: Eye identity.
        source: Video file, or FFmpeg concat list when ``concat`` is set.
        input_fov: Lens field of view (degrees).
        concat: ``source`` is an ordered list of segments.
    """

    eye: Eye
    source: Path
    input_fov: float
    concat: bool = False

    def input_args(self) -> list[str]:
        return input_args(self.source, self.concat)


@dataclass(frozen=True)
class CompositionRequest:
    """Everything a single composition run consumes."""

    left: EyeStream
    right: EyeStream
    masks: Mapping[Eye, MaskSet]
    orientation: OrientationSpec
    render: RenderConfig
    encode: EncodeConfig
    output: Path

    def stream(self, eye: Eye) -> EyeStream:
        return self.left if eye is Eye.LEFT else self.right


def _fmt(value: float) -> str:
    """Render a number for a filter argument without losing precision."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def build_eye_graph(
    eye: Eye,
    first_input: int,
    stream: EyeStream,
    orientation: Orientation,
    render: RenderConfig,
) -> str:
    """Filter graph of one eye, ending in the ``[left]``/``[right]`` label.

    Expects the raw video at input ``first_input``, its normalized-alpha
    mask at ``first_input + 1`` and its border-alpha mask at
    ``first_input + 2``.

    Args:
        eye: Eye the graph is for.
        first_input: FFmpeg input index of the raw video.
        stream: Raw source (for the input field of view).
        orientation: Resolved orientation of this eye.
        render: Render configuration.

    Returns:
        Semicolon-separated filter chains.
    """
    p = eye.value[0]
    video, normalized, border = first_input, first_input + 1, first_input + 2
    scale = f"scale={render.scale_width}x{render.scale_height}"
    pad = f"pad={render.canvas_width}:{render.canvas_height}:(ow-iw)/2:(oh-ih)/2"
    fov = _fmt(stream.input_fov)
    v360 = (
        f"v360=input=fisheye:ih_fov={fov}:iv_fov={fov}"
        f":h_fov={_fmt(render.output_h_fov)}:v_fov={_fmt(render.output_v_fov)}"
        f":yaw={_fmt(orientation.yaw)}:pitch={_fmt(orientation.pitch)}"
        f":roll={_fmt(orientation.roll)}:output=hequirect"
    )

    chains = [
        f"[{video}:v]setpts={_fmt(render.pts_factor)}*PTS,fps={_fmt(render.output_fps)}"
        f",{scale},format=gbrp[{p}_scaled]",
        f"[{normalized}:v]{scale}[{p}_na_scaled]",
        f"[{p}_scaled][{p}_na_scaled]blend=all_mode=divide,format=yuv420p[{p}_blended]",
        f"[{border}:v]{scale}[{p}_ba_scaled]",
        f"[{p}_blended][{p}_ba_scaled]overlay[{p}_over]",
        f"[{p}_over]{scale},{pad},{v360}[{eye.value}]",
    ]
    return ";".join(chains)


def build_filter_graph(request: CompositionRequest) -> str:
    """Complete filter graph: both eyes stacked horizontally into ``[output]``."""
    graphs = [
        build_eye_graph(
            eye,
            index * 3,
            request.stream(eye),
            request.orientation.for_eye(eye),
            request.render,
        )
        for index, eye in enumerate(EYES)
    ]
    graphs.append("[left][right]hstack=inputs=2[output]")
    return ";".join(graphs)


def compose_command(request: CompositionRequest) -> list[str]:
    """FFmpeg arguments of the final render.

    Inputs are ordered left video, left masks, right video, right masks;
    each eye blends against its own masks.
    """
    args = ["-y", "-v", request.encode.log_level]
    for eye in EYES:
        masks = request.masks[eye]
        args += request.stream(eye).input_args()
        args += ["-loop", "0", "-i", str(masks.normalized_alpha)]
        args += ["-loop", "0", "-i", str(masks.border_alpha)]

    args += [
        "-filter_complex",
        build_filter_graph(request),
        "-map",
        "[output]",
        "-an",
        "-vcodec",
        request.encode.codec,
        "-preset",
        request.encode.preset,
    ]
    if request.encode.x264_opts:
        args += ["-x264opts", request.encode.x264_opts]
    args += [
        "-profile:v",
        request.encode.profile,
        "-pix_fmt",
        request.encode.pix_fmt,
        str(request.output),
    ]
    return args


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == "'":
        return value[1:-1].replace("'\\''", "'")
    return value


def iter_concat_entries(list_path: str | Path) -> Iterator[Path]:
    """Yield the segment paths of an FFmpeg concat list, one line at a time.

    Relative entries resolve against the list's directory. Directives other
    than ``file`` are skipped.
    """
    list_path = Path(list_path)
    with open(list_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            directive, _, value = line.partition(" ")
            if directive != "file":
                continue
            segment = Path(_unquote(value))
            if not segment.is_absolute():
                segment = list_path.parent / segment
            yield segment


def validate_concat_list(list_path: str | Path) -> int:
    """Check that every segment referenced by a concat list exists.

    Returns:
        Number of segments.

    Raises:
        UsageError: If the list is missing, empty, or names a missing segment.
    """
    list_path = Path(list_path)
    if not list_path.is_file():
        raise UsageError(f"concat list not found: {list_path}")

    count = 0
    for segment in iter_concat_entries(list_path):
        if not segment.is_file():
            raise UsageError(f"segment listed in {list_path} not found: {segment}")
        count += 1

    if count == 0:
        raise UsageError(f"concat list {list_path} names no segments")
    return count


def write_concat_list(segments: Iterable[str | Path], output: str | Path) -> Path:
    """Write an FFmpeg concat list from ordered segment paths.

    Segments are written one line at a time in the order given.

    Returns:
        Path of the written list.
    """
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    with open(output, "w") as f:
        for segment in segments:
            escaped = str(Path(segment).resolve()).replace("'", "'\\''")
            f.write(f"file '{escaped}'\n")
    return output


def _natural_key(path: Path) -> list:
    return [
        int(part) if part.isdecimal() else part.lower()
        for part in re.split(r"(\d+)", path.name)
    ]


def segment_files(directory: str | Path) -> list[Path]:
    """Video segments of a directory in natural name order (``seg2`` before ``seg10``)."""
    directory = Path(directory)
    return sorted(
        (
            p
            for p in directory.iterdir()
            if p.is_file() and p.suffix.lower() in VIDEO_EXTENSIONS
        ),
        key=_natural_key,
    )


def compose(request: CompositionRequest, runner: ToolRunner) -> Path:
    """Render the frame-packed stereo video.

    Args:
        request: Composition inputs.
        runner: External tool runner.

    Returns:
        Path of the encoded video.

    Raises:
        UsageError: If a raw source or concat segment is missing.
        MissingCachedArtifact: If a consumed mask is missing.
        StageFailure: If FFmpeg fails or produces no file.
    """
    for eye in EYES:
        stream = request.stream(eye)
        if stream.concat:
            count = validate_concat_list(stream.source)
            logger.info("%s eye: %d concatenated segments", eye.value.capitalize(), count)
        elif not stream.source.is_file():
            raise UsageError(f"{eye.value} video not found: {stream.source}")

        masks = request.masks[eye]
        for kind, path in (
            ("normalized_alpha", masks.normalized_alpha),
            ("border_alpha", masks.border_alpha),
        ):
            if not path.exists():
                raise MissingCachedArtifact(f"{eye.value} {kind}", path)

    request.output.parent.mkdir(parents=True, exist_ok=True)

    logger.info("Rendering frame-packed stereo video to %s", request.output)
    runner.run("compose", "ffmpeg", compose_command(request))

    if not request.output.exists():
        raise StageFailure("compose", f"ffmpeg reported success but {request.output} is missing")

    logger.info("Wrote %s", request.output)
    return request.output


__all__ = [
    "EyeStream",
    "CompositionRequest",
    "build_eye_graph",
    "build_filter_graph",
    "compose_command",
    "iter_concat_entries",
    "validate_concat_list",
    "write_concat_list",
    "segment_files",
    "compose",
]
