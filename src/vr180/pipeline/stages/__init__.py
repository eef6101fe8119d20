"""Pipeline stages, one per component."""

from .calibration import CalibrationStage
from .composition import CompositionStage
from .masks import MaskStage
from .orientation import OrientationStage

__all__ = [
    "CalibrationStage",
    "CompositionStage",
    "MaskStage",
    "OrientationStage",
]
