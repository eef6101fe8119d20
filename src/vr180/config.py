"""Configuration management for the VR180 pipeline."""

import logging
import math
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

# Largest absolute manual pitch or roll (degrees, exclusive)
MAX_OVERRIDE_TILT = 90.0

# Top-level sections, used to report which ones fell back to defaults.
SECTIONS = [
    "inputs",
    "masks",
    "calibration",
    "render",
    "encode",
    "override",
    "tools",
    "runtime",
]


class InputConfig(BaseModel):
    """Source videos and naming for one pipeline run.

    Attributes:
        left_video: Left-eye raw video, or a concat list file when ``concat`` is set.
        right_video: Right-eye raw video, or a concat list file when ``concat`` is set.
        left_flat: Left-eye video used to derive the blend masks.
        right_flat: Right-eye video used to derive the blend masks.
        concat: Treat the raw video paths as FFmpeg concat lists of segments.
        input_fov: Fisheye lens field of view in degrees.
        output_prefix: Prefix every intermediate artifact is keyed by.
        output_file: Final video path (default: ``{output_dir}/{prefix}-output.mp4``).
        output_dir: Directory for intermediate artifacts (default: left video's directory).
    """

    model_config = ConfigDict(extra="allow")

    left_video: str = ""
    right_video: str = ""
    left_flat: str | None = None
    right_flat: str | None = None
    concat: bool = False
    input_fov: float = 202.0
    output_prefix: str = ""
    output_file: str | None = None
    output_dir: str | None = None

    @field_validator("input_fov")
    @classmethod
    def validate_input_fov(cls, v: float) -> float:
        """Validate that the lens field of view is within (0, 360]."""
        if not 0.0 < v <= 360.0:
            raise ValueError(f"input_fov must be in (0, 360], got {v}")
        return v

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "InputConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in InputConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class MaskConfig(BaseModel):
    """Configuration for blend mask generation.

    Attributes:
        reuse: Skip mask generation and use masks from a previous run with the same prefix.
        frame_window: Number of leading frames averaged into the flat still.
        contrast_low: Black point of the alpha contrast stretch (percent).
        contrast_high: White point of the alpha contrast stretch (percent).
        posterize_levels: Number of gray levels kept in the alpha mask.
    """

    model_config = ConfigDict(extra="allow")

    reuse: bool = False
    frame_window: int = 128
    contrast_low: float = 3.0
    contrast_high: float = 77.0
    posterize_levels: int = 8

    @field_validator("frame_window", "posterize_levels")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that counts are positive."""
        if v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    @model_validator(mode="after")
    def check_contrast_range(self) -> "MaskConfig":
        """Validate the contrast stretch range and warn about extra fields."""
        if not 0.0 <= self.contrast_low < self.contrast_high <= 100.0:
            raise ValueError(
                "contrast stretch must satisfy 0 <= contrast_low < contrast_high <= 100, "
                f"got {self.contrast_low}/{self.contrast_high}"
            )
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in MaskConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    @property
    def contrast_stretch(self) -> str:
        """ImageMagick ``-contrast-stretch`` argument, e.g. ``3%x77%``."""
        return f"{self.contrast_low:g}%x{self.contrast_high:g}%"


class CalibrationConfig(BaseModel):
    """Configuration for the Hugin calibration sub-pipeline.

    Attributes:
        pto_file: Pre-built Hugin project to use instead of calibrating.
        still_time: Offset (seconds) of the still extracted from each raw video.
        still_width: Width of the calibration stills.
        still_height: Height of the calibration stills.
        projection: Hugin lens projection code passed to pto_gen (2 = circular fisheye).
        cpfind_threads: Worker threads for control point detection.
        min_control_points: Minimum control points for a usable calibration.
        max_abs_pitch: Largest plausible absolute pitch (degrees, exclusive).
        max_abs_roll: Largest plausible absolute roll (degrees, exclusive).
    """

    model_config = ConfigDict(extra="allow")

    pto_file: str | None = None
    still_time: float = 1.0
    still_width: int = 2000
    still_height: int = 1500
    projection: int = 2
    cpfind_threads: int = 2
    min_control_points: int = 3
    max_abs_pitch: float = 90.0
    max_abs_roll: float = 90.0

    @field_validator("still_time", "min_control_points")
    @classmethod
    def validate_non_negative(cls, v):
        """Validate that offsets and counts are not negative."""
        if v < 0:
            raise ValueError(f"must be non-negative, got {v}")
        return v

    @field_validator("still_width", "still_height", "cpfind_threads")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that sizes are positive."""
        if v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "CalibrationConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in CalibrationConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    @property
    def reuse(self) -> bool:
        """Whether calibration is bypassed by a supplied project file."""
        return self.pto_file is not None


class RenderConfig(BaseModel):
    """Configuration for the per-eye projection and blend graph.

    Attributes:
        pts_factor: Presentation timestamp multiplier applied to the raw stream.
        output_fps: Output frame rate.
        scale_width: Intermediate working width.
        scale_height: Intermediate working height.
        canvas_width: Square canvas width the scaled eye is padded to.
        canvas_height: Square canvas height the scaled eye is padded to.
        output_h_fov: Output horizontal field of view (degrees).
        output_v_fov: Output vertical field of view (degrees, at most 180).
    """

    model_config = ConfigDict(extra="allow")

    pts_factor: float = 0.5
    output_fps: float = 60.0
    scale_width: int = 3000
    scale_height: int = 2250
    canvas_width: int = 3000
    canvas_height: int = 3000
    output_h_fov: float = 180.0
    output_v_fov: float = 180.0

    @field_validator(
        "pts_factor",
        "output_fps",
        "scale_width",
        "scale_height",
        "canvas_width",
        "canvas_height",
    )
    @classmethod
    def validate_positive(cls, v):
        """Validate that rates and sizes are positive."""
        if v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    @field_validator("output_h_fov")
    @classmethod
    def validate_h_fov(cls, v: float) -> float:
        """Validate the horizontal output field of view."""
        if not 0.0 < v <= 360.0:
            raise ValueError(f"output_h_fov must be in (0, 360], got {v}")
        return v

    @field_validator("output_v_fov")
    @classmethod
    def validate_v_fov(cls, v: float) -> float:
        """Validate the vertical output field of view."""
        if not 0.0 < v <= 180.0:
            raise ValueError(f"output_v_fov must be in (0, 180], got {v}")
        return v

    @model_validator(mode="after")
    def check_canvas(self) -> "RenderConfig":
        """Validate that the canvas can hold the scaled eye and warn about extra fields."""
        if (
            self.canvas_width < self.scale_width
            or self.canvas_height < self.scale_height
        ):
            raise ValueError(
                f"canvas {self.canvas_width}x{self.canvas_height} is smaller than "
                f"scale {self.scale_width}x{self.scale_height}"
            )
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in RenderConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class EncodeConfig(BaseModel):
    """Configuration for the final frame-packed encode.

    Attributes:
        codec: FFmpeg video encoder.
        preset: Encoder preset.
        x264_opts: Extra x264 options; ``frame-packing=3`` signals side-by-side stereo.
        profile: Encoder profile.
        pix_fmt: Output pixel format.
        log_level: FFmpeg ``-v`` verbosity for the final encode.
    """

    model_config = ConfigDict(extra="allow")

    codec: str = "libx264"
    preset: str = "superfast"
    x264_opts: str = "frame-packing=3"
    profile: str = "baseline"
    pix_fmt: str = "yuv420p"
    log_level: str = "info"

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "EncodeConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in EncodeConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class OverrideConfig(BaseModel):
    """Manual orientation applied identically to both eyes.

    Setting any of the three angles activates the override; unset angles
    default to 0. Angles must be finite, and |pitch| and |roll| must stay
    below MAX_OVERRIDE_TILT degrees.

    Attributes:
        yaw: Yaw in degrees.
        pitch: Pitch in degrees.
        roll: Roll in degrees.
    """

    model_config = ConfigDict(extra="allow", validate_assignment=True)

    yaw: float | None = None
    pitch: float | None = None
    roll: float | None = None

    @field_validator("yaw", "pitch", "roll")
    @classmethod
    def validate_finite(cls, v: float | None) -> float | None:
        """Reject NaN and infinite angles."""
        if v is not None and not math.isfinite(v):
            raise ValueError(f"angle must be finite, got {v}")
        return v

    @field_validator("pitch", "roll")
    @classmethod
    def validate_tilt(cls, v: float | None) -> float | None:
        """Validate that pitch and roll stay below MAX_OVERRIDE_TILT degrees."""
        if v is not None and abs(v) >= MAX_OVERRIDE_TILT:
            raise ValueError(
                f"must be within (-{MAX_OVERRIDE_TILT:g}, {MAX_OVERRIDE_TILT:g}), got {v}"
            )
        return v

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "OverrideConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in OverrideConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    @property
    def is_set(self) -> bool:
        """True when any angle was given explicitly."""
        return any(v is not None for v in (self.yaw, self.pitch, self.roll))


class ToolsConfig(BaseModel):
    """Executable names (or paths) of the external engines."""

    model_config = ConfigDict(extra="allow")

    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    convert: str = "convert"
    pto_gen: str = "pto_gen"
    cpfind: str = "cpfind"
    cpclean: str = "cpclean"
    linefind: str = "linefind"
    autooptimiser: str = "autooptimiser"

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "ToolsConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in ToolsConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class RuntimeConfig(BaseModel):
    """Configuration for runtime behaviour.

    Attributes:
        parallel_eyes: Run left/right mask builds and still extraction concurrently.
        check_tools: Verify required executables are on PATH before any work.
        tool_timeout: Seconds before an external tool is killed (None = wait forever).
        quiet: Suppress progress output.
    """

    model_config = ConfigDict(extra="allow")

    parallel_eyes: bool = True
    check_tools: bool = True
    tool_timeout: float | None = None
    quiet: bool = False

    @field_validator("tool_timeout")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        """Validate that a timeout, when given, is positive."""
        if v is not None and v <= 0:
            raise ValueError(f"tool_timeout must be positive, got {v}")
        return v

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "RuntimeConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in RuntimeConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class PipelineConfig(BaseModel):
    """Top-level configuration for the VR180 pipeline.

    Attributes:
        inputs: Source videos and artifact naming.
        masks: Blend mask generation.
        calibration: Calibration sub-pipeline.
        render: Per-eye projection and blend graph.
        encode: Final encode settings.
        override: Optional manual orientation for both eyes.
        tools: External executable names.
        runtime: Runtime behaviour.
    """

    model_config = ConfigDict(extra="allow")

    inputs: InputConfig = Field(default_factory=InputConfig)
    masks: MaskConfig = Field(default_factory=MaskConfig)
    calibration: CalibrationConfig = Field(default_factory=CalibrationConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    encode: EncodeConfig = Field(default_factory=EncodeConfig)
    override: OverrideConfig = Field(default_factory=OverrideConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @model_validator(mode="after")
    def check_cross_stage_constraints(self) -> "PipelineConfig":
        """Validate cross-stage constraints and warn about extra fields."""
        if self.inputs.concat and not (self.masks.reuse and self.calibration.reuse):
            logger.warning(
                "concat mode without mask and calibration reuse: masks are built "
                "from the flat videos and calibration stills are read through "
                "the concat lists."
            )

        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in PipelineConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )

        return self

    @property
    def output_dir(self) -> Path:
        """Directory holding every prefix-keyed artifact."""
        if self.inputs.output_dir:
            return Path(self.inputs.output_dir)
        if self.inputs.left_video:
            return Path(self.inputs.left_video).parent
        return Path(".")

    @property
    def output_file(self) -> Path:
        """Path of the final frame-packed video."""
        if self.inputs.output_file:
            return Path(self.inputs.output_file)
        return self.output_dir / f"{self.inputs.output_prefix}-output.mp4"

    def require_inputs(self, include_flats: bool = True) -> list[str]:
        """List the required input fields that are missing.

        Args:
            include_flats: Whether mask generation will run, so the flat
                videos are needed unless masks are reused.

        Returns:
            Human-readable descriptions of missing inputs (empty when complete).
        """
        missing = []
        if not self.inputs.left_video:
            missing.append("inputs.left_video")
        if not self.inputs.right_video:
            missing.append("inputs.right_video")
        if not self.inputs.output_prefix:
            missing.append("inputs.output_prefix")
        if include_flats and not self.masks.reuse:
            if not self.inputs.left_flat:
                missing.append("inputs.left_flat (or masks.reuse)")
            if not self.inputs.right_flat:
                missing.append("inputs.right_flat (or masks.reuse)")
        return missing

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PipelineConfig":
        """Load configuration from a YAML file.

        Missing fields use their default values.

        Args:
            path: Path to YAML configuration file.

        Returns:
            Loaded configuration with defaults filled in.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            ValueError: If validation fails (with all errors collected).
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}

        for section in SECTIONS:
            if section not in data:
                logger.info("Using default: %s (all defaults)", section)

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            formatted_errors = format_validation_errors(e)
            raise ValueError(
                f"Configuration validation failed:\n{formatted_errors}"
            ) from None

        return config

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file.

        All fields including defaults are written for explicitness.

        Args:
            path: Path to output YAML file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json")

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors with YAML-style paths.

    Args:
        error: Pydantic ValidationError.

    Returns:
        Formatted error string with YAML paths and messages.
    """
    lines = []
    for err in error.errors():
        loc = err["loc"]
        path_parts: list[str] = []
        for part in loc:
            if isinstance(part, int) and path_parts:
                path_parts[-1] = f"{path_parts[-1]}[{part}]"
            else:
                path_parts.append(str(part))

        path = ".".join(path_parts)
        lines.append(f"  {path}: {err['msg']}")

    return "\n".join(lines)


def merge_overrides(data: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge dotted-key overrides (``"render.output_fps": 30``) into a config dict.

    Args:
        data: Nested configuration dictionary (not modified).
        overrides: Mapping of dotted keys to values; ``None`` values are skipped.

    Returns:
        New dictionary with the overrides applied.
    """
    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in data.items()}
    for dotted, value in overrides.items():
        if value is None:
            continue
        section, _, key = dotted.partition(".")
        if not key:
            merged[section] = value
            continue
        merged.setdefault(section, {})[key] = value
    return merged
