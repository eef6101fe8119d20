"""Pipeline context dataclass for per-run state."""

from dataclasses import dataclass, field
from pathlib import Path

from ..artifacts import ArtifactStore
from ..calibration import CalibrationModel
from ..composition import EyeStream
from ..config import PipelineConfig
from ..eyes import Eye
from ..masks import MaskSet
from ..orientation import OrientationSpec
from .interfaces import ToolExecutor


@dataclass
class PipelineContext:
    """State shared by the stages of one run.

    Created once by build_pipeline_context(). The first four fields are fixed
    for the run; the remaining ones are filled in by the stages as they
    complete (or resolved from the artifact store when a stage is skipped).
    """

    config: PipelineConfig
    store: ArtifactStore
    runner: ToolExecutor
    streams: dict[Eye, EyeStream]
    flats: dict[Eye, str] = field(default_factory=dict)
    masks: dict[Eye, MaskSet] | None = None
    model: CalibrationModel | None = None
    orientation: OrientationSpec | None = None
    output: Path | None = None
