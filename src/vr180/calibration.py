"""Camera-pair calibration through the Hugin command-line tools.

The chain is strictly ordered and never rewrites a file in place: each stage
reads the previous project and writes a new one, so a failed stage leaves the
last good project on disk for diagnosis.
"""

import logging
import re
import sys
from dataclasses import dataclass, replace
from pathlib import Path

import numpy as np
from tqdm import tqdm

from .artifacts import ArtifactKind, ArtifactStore
from .config import CalibrationConfig
from .errors import DegenerateCalibration, MissingCachedArtifact, StageFailure, UsageError
from .eyes import Eye, for_each_eye
from .orientation import Orientation
from .tools import ToolRunner, input_args

logger = logging.getLogger(__name__)

# A token is either key"quoted value" or a run of non-space characters
_TOKEN_RE = re.compile(r'\S+?"[^"]*"|\S+')


@dataclass(frozen=True)
class ImageEntry:
    """One ``i`` line of a Hugin project.

    Attributes:
        index: Position of the image in the project.
        name: Image file name as written in the project.
        width: Image width in pixels.
        height: Image height in pixels.
        fov: Horizontal field of view (degrees).
        yaw: Yaw in degrees.
        pitch: Pitch in degrees.
        roll: Roll in degrees.
    """

    index: int
    name: str
    width: int
    height: int
    fov: float
    yaw: float
    pitch: float
    roll: float

    @property
    def orientation(self) -> Orientation:
        return Orientation(yaw=self.yaw, pitch=self.pitch, roll=self.roll)


@dataclass(frozen=True)
class CalibrationModel:
    """Parsed Hugin project.

    Attributes:
        path: Project file the model was read from.
        images: Image entries in project order.
        control_points: Number of point correspondences (``c`` lines with t0).
        line_constraints: Number of line constraints (``c`` lines with t>0).
    """

    path: Path
    images: tuple[ImageEntry, ...]
    control_points: int = 0
    line_constraints: int = 0

    def entry_for(self, label: str) -> ImageEntry:
        """The single image whose file name carries ``label`` ("left"/"right").

        Raises:
            DegenerateCalibration: If no image or more than one image matches.
        """
        matches = [e for e in self.images if label in Path(e.name).name]
        if len(matches) > 1:
            # The prefix itself may contain the label; prefer the still name
            narrowed = [
                e for e in matches if f"-{label}-calibration" in Path(e.name).name
            ]
            if narrowed:
                matches = narrowed
        if len(matches) != 1:
            raise DegenerateCalibration(
                label,
                "images",
                float(len(matches)),
                f"expected exactly one image labelled '{label}' in {self.path}",
            )
        return matches[0]

    def angles_for(self, label: str) -> Orientation:
        """Angle triple of the image labelled ``label``."""
        return self.entry_for(label).orientation

    def with_angles(self, orientation: Orientation) -> "CalibrationModel":
        """Copy of the model with every image set to the same angles."""
        images = tuple(
            replace(
                e,
                yaw=orientation.yaw,
                pitch=orientation.pitch,
                roll=orientation.roll,
            )
            for e in self.images
        )
        return replace(self, images=images)


def _tokens(line: str) -> dict[str, str]:
    """Map single-letter lowercase keys of a project line to their raw values."""
    values = {}
    for token in _TOKEN_RE.findall(line)[1:]:
        key, value = token[0], token[1:]
        if key.islower():
            values.setdefault(key, value.strip('"'))
    return values


def parse_project(path: str | Path) -> CalibrationModel:
    """Parse a Hugin ``.pto`` project.

    Image lines hold ``w``/``h``/``v``/``y``/``p``/``r`` values and an
    ``n"file"`` name; a value of ``=N`` refers back to image N.

    Args:
        path: Project file.

    Returns:
        Parsed CalibrationModel.

    Raises:
        StageFailure: If the file cannot be read or holds no usable image lines.
    """
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise StageFailure("parse", f"cannot read project {path}: {e}") from None

    raw_images: list[dict[str, str]] = []
    control_points = 0
    line_constraints = 0

    for line in text.splitlines():
        if line.startswith("i "):
            raw_images.append(_tokens(line))
        elif line.startswith("c "):
            kind = _tokens(line).get("t", "0")
            if kind in ("", "0"):
                control_points += 1
            else:
                line_constraints += 1

    if not raw_images:
        raise StageFailure("parse", f"no image lines in project {path}")

    def resolve_value(index: int, key: str, default: str) -> str:
        value = raw_images[index].get(key, default)
        seen = set()
        while value.startswith("="):
            ref = int(value[1:])
            if ref in seen or not 0 <= ref < len(raw_images):
                raise StageFailure("parse", f"bad back-reference {key}{value} in {path}")
            seen.add(ref)
            value = raw_images[ref].get(key, default)
        return value

    images = []
    for index, raw in enumerate(raw_images):
        try:
            images.append(
                ImageEntry(
                    index=index,
                    name=raw.get("n", ""),
                    width=int(resolve_value(index, "w", "0")),
                    height=int(resolve_value(index, "h", "0")),
                    fov=float(resolve_value(index, "v", "nan")),
                    yaw=float(resolve_value(index, "y", "0")),
                    pitch=float(resolve_value(index, "p", "0")),
                    roll=float(resolve_value(index, "r", "0")),
                )
            )
        except ValueError as e:
            raise StageFailure("parse", f"bad image line {index} in {path}: {e}") from None

    return CalibrationModel(
        path=path,
        images=tuple(images),
        control_points=control_points,
        line_constraints=line_constraints,
    )


def normalize_yaw(yaw: float) -> float:
    """Wrap a yaw angle into (-180, 180]."""
    wrapped = (yaw + 180.0) % 360.0 - 180.0
    return 180.0 if wrapped == -180.0 else wrapped


def validate_model(
    model: CalibrationModel,
    config: CalibrationConfig,
    check_points: bool = True,
) -> CalibrationModel:
    """Reject models whose angles must not reach rendering.

    Every angle must be finite and ``|pitch|``/``|roll|`` must stay below
    the configured limits; yaw is unconstrained.

    Args:
        model: Parsed model.
        config: Calibration configuration (limits).
        check_points: Also require ``config.min_control_points`` control points.

    Returns:
        The same model.

    Raises:
        DegenerateCalibration: On the first violation found.
    """
    if check_points and model.control_points < config.min_control_points:
        raise DegenerateCalibration(
            "both",
            "control_points",
            float(model.control_points),
            f"fewer than {config.min_control_points} control points survived",
        )

    for label in ("left", "right"):
        entry = model.entry_for(label)
        values = {"yaw": entry.yaw, "pitch": entry.pitch, "roll": entry.roll}
        for field, value in values.items():
            if not np.isfinite(value):
                raise DegenerateCalibration(label, field, value, "angle is not finite")

        if abs(entry.pitch) >= config.max_abs_pitch:
            raise DegenerateCalibration(
                label,
                "pitch",
                entry.pitch,
                f"|pitch| must be below {config.max_abs_pitch:g} degrees",
            )
        if abs(entry.roll) >= config.max_abs_roll:
            raise DegenerateCalibration(
                label,
                "roll",
                entry.roll,
                f"|roll| must be below {config.max_abs_roll:g} degrees",
            )

        logger.debug(
            "%s image: yaw %.6f (wrapped %.6f), pitch %.6f, roll %.6f",
            label,
            entry.yaw,
            normalize_yaw(entry.yaw),
            entry.pitch,
            entry.roll,
        )

    return model


@dataclass(frozen=True)
class HuginStep:
    """One project-to-project stage of the calibration chain."""

    name: str
    tool: str
    flags: tuple[str, ...]
    source: ArtifactKind
    output: ArtifactKind
    description: str

    def command(self, store: ArtifactStore) -> list[str]:
        return [
            *self.flags,
            "-o",
            str(store.path(self.output)),
            str(store.path(self.source)),
        ]


def hugin_steps(config: CalibrationConfig) -> list[HuginStep]:
    """Stages run after the initial project is generated, in order."""
    return [
        HuginStep(
            "cpfind",
            "cpfind",
            ("--fullscale", "--celeste", "--multirow", "-n", str(config.cpfind_threads)),
            ArtifactKind.PROJECT,
            ArtifactKind.PROJECT_WITH_CP,
            "Detecting control points",
        ),
        HuginStep(
            "cpclean",
            "cpclean",
            (),
            ArtifactKind.PROJECT_WITH_CP,
            ArtifactKind.PROJECT_CLEANED,
            "Cleaning control points",
        ),
        HuginStep(
            "linefind",
            "linefind",
            (),
            ArtifactKind.PROJECT_CLEANED,
            ArtifactKind.PROJECT_LINES,
            "Finding lines in images",
        ),
        HuginStep(
            "autooptimiser",
            "autooptimiser",
            ("-a", "-p", "-s"),
            ArtifactKind.PROJECT_LINES,
            ArtifactKind.PROJECT_OPTIMISED,
            "Optimizing orientation",
        ),
    ]


def still_command(
    source: str | Path, output: Path, config: CalibrationConfig, concat: bool = False
) -> list[str]:
    """FFmpeg arguments extracting one reduced-size RGB still at ``still_time``."""
    return [
        "-y",
        "-accurate_seek",
        "-ss",
        f"{config.still_time:g}",
        *input_args(source, concat),
        "-vf",
        f"scale={config.still_width}x{config.still_height}",
        "-compression_algo",
        "raw",
        "-pix_fmt",
        "rgb24",
        "-vframes",
        "1",
        str(output),
    ]


def extract_still(
    eye: Eye,
    source: str | Path,
    store: ArtifactStore,
    config: CalibrationConfig,
    runner: ToolRunner,
    concat: bool = False,
) -> Path:
    """Extract the calibration still of one eye.

    Returns:
        Path of the written still.
    """
    output = store.path(ArtifactKind.CALIBRATION_STILL, eye)
    logger.info("Extracting %s calibration frame", eye.value)
    runner.run(
        f"extract_still_{eye.value}",
        "ffmpeg",
        still_command(source, output, config, concat),
    )
    return output


def calibrate(
    sources: dict[Eye, str],
    input_fov: float,
    store: ArtifactStore,
    config: CalibrationConfig,
    runner: ToolRunner,
    concat: bool = False,
    parallel: bool = True,
    quiet: bool = False,
) -> CalibrationModel:
    """Run the full calibration chain and return the validated model.

    Stages: extract stills, generate the project, detect control points,
    clean them, find lines, optimize. The "current calibration" pointer is
    then moved to the optimized project.

    Args:
        sources: Raw video (or concat list) per eye.
        input_fov: Declared lens field of view (degrees).
        store: Artifact store for the run.
        config: Calibration configuration.
        runner: External tool runner.
        concat: Sources are concat lists.
        parallel: Extract the two stills concurrently.
        quiet: Suppress the progress bar.

    Returns:
        Validated CalibrationModel of the optimized project.

    Raises:
        UsageError: If a source does not exist.
        StageFailure: If any stage fails.
        DegenerateCalibration: If the optimized angles are unusable.
    """
    for eye, source in sources.items():
        if not Path(source).is_file():
            raise UsageError(f"{eye.value} calibration source not found: {source}")

    store.prepare()

    # 1. Stills
    stills = for_each_eye(
        lambda eye: extract_still(eye, sources[eye], store, config, runner, concat),
        parallel=parallel,
    )

    # 2. Initial project
    logger.info("Creating Hugin project file")
    runner.run(
        "pto_gen",
        "pto_gen",
        [
            "-p",
            str(config.projection),
            "-f",
            f"{input_fov:g}",
            "-o",
            str(store.path(ArtifactKind.PROJECT)),
            str(stills[Eye.LEFT]),
            str(stills[Eye.RIGHT]),
        ],
    )

    # 3-6. Points, cleaning, lines, optimization
    for step in tqdm(
        hugin_steps(config),
        desc="Calibrating",
        disable=quiet or not sys.stderr.isatty(),
        unit="stage",
    ):
        logger.info("%s with Hugin", step.description)
        runner.run(step.name, step.tool, step.command(store))

    pointer = store.point_current_calibration(store.path(ArtifactKind.PROJECT_OPTIMISED))
    model = parse_project(pointer)
    logger.info(
        "Calibration: %d control points, %d line constraints",
        model.control_points,
        model.line_constraints,
    )
    return validate_model(model, config, check_points=True)


def load_supplied_model(
    pto_file: str | Path,
    store: ArtifactStore,
    config: CalibrationConfig,
) -> CalibrationModel:
    """Use a pre-built project instead of calibrating.

    The project is trusted as-is apart from parseability and angle sanity.

    Raises:
        MissingCachedArtifact: If the project file does not exist.
        StageFailure: If it cannot be parsed.
        DegenerateCalibration: If its angles are unusable.
    """
    pto_file = Path(pto_file)
    if not pto_file.is_file():
        raise MissingCachedArtifact("pto_file", pto_file)

    logger.info("Using existing project file %s", pto_file)
    pointer = store.point_current_calibration(pto_file)
    model = parse_project(pointer)
    return validate_model(model, config, check_points=False)


__all__ = [
    "ImageEntry",
    "CalibrationModel",
    "HuginStep",
    "parse_project",
    "validate_model",
    "normalize_yaw",
    "hugin_steps",
    "still_command",
    "extract_still",
    "calibrate",
    "load_supplied_model",
]
