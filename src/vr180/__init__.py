"""Fisheye stereo pair to frame-packed VR180 video via FFmpeg, ImageMagick and Hugin."""

from .artifacts import ArtifactKind, ArtifactStore
from .calibration import (
    CalibrationModel,
    ImageEntry,
    calibrate,
    load_supplied_model,
    parse_project,
    validate_model,
)
from .composition import (
    CompositionRequest,
    EyeStream,
    compose,
    compose_command,
    write_concat_list,
)
from .config import (
    CalibrationConfig,
    EncodeConfig,
    InputConfig,
    MaskConfig,
    OverrideConfig,
    PipelineConfig,
    RenderConfig,
    RuntimeConfig,
    ToolsConfig,
)
from .errors import (
    DegenerateCalibration,
    MissingCachedArtifact,
    StageFailure,
    UsageError,
    Vr180Error,
)
from .eyes import EYES, Eye
from .masks import MaskSet, build_masks, load_mask_sets
from .orientation import Orientation, OrientationSpec, resolve, resolve_eye_orientation
from .pipeline import Pipeline, PipelineContext, run_pipeline
from .tools import ToolRunner, VideoInfo, probe_video

__version__ = "0.1.0"

__all__ = [
    "ArtifactKind",
    "ArtifactStore",
    "CalibrationConfig",
    "CalibrationModel",
    "CompositionRequest",
    "DegenerateCalibration",
    "EYES",
    "EncodeConfig",
    "Eye",
    "EyeStream",
    "ImageEntry",
    "InputConfig",
    "MaskConfig",
    "MaskSet",
    "MissingCachedArtifact",
    "Orientation",
    "OrientationSpec",
    "OverrideConfig",
    "Pipeline",
    "PipelineConfig",
    "PipelineContext",
    "RenderConfig",
    "RuntimeConfig",
    "StageFailure",
    "ToolRunner",
    "ToolsConfig",
    "UsageError",
    "VideoInfo",
    "Vr180Error",
    "build_masks",
    "calibrate",
    "compose",
    "compose_command",
    "load_mask_sets",
    "load_supplied_model",
    "parse_project",
    "probe_video",
    "resolve",
    "resolve_eye_orientation",
    "run_pipeline",
    "validate_model",
    "write_concat_list",
]
