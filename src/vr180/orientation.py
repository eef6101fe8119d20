"""Per-eye orientation resolution from a calibration model."""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .config import OverrideConfig
from .eyes import Eye

if TYPE_CHECKING:
    from .calibration import CalibrationModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Orientation:
    """Camera rotation in degrees, kept at full float precision."""

    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0

    def __str__(self) -> str:
        return f"Yaw={self.yaw!r}, Pitch={self.pitch!r}, Roll={self.roll!r}"


@dataclass(frozen=True)
class OrientationSpec:
    """Final orientation of both eyes, consumed by composition."""

    left: Orientation
    right: Orientation

    def for_eye(self, eye: Eye) -> Orientation:
        """Orientation of one eye."""
        return self.left if eye is Eye.LEFT else self.right


def override_orientation(override: OverrideConfig) -> Orientation | None:
    """Turn an override config into an Orientation, or None when nothing is set.

    Unset angles default to 0.
    """
    if not override.is_set:
        return None
    return Orientation(
        yaw=override.yaw or 0.0,
        pitch=override.pitch or 0.0,
        roll=override.roll or 0.0,
    )


def resolve_eye_orientation(model: "CalibrationModel", eye: Eye) -> Orientation:
    """Orientation of ``eye`` as stored in the calibration model.

    The model's labels are crossed: the image named "right" carries the
    rotation that renders the left eye correctly, and vice versa. This
    function is the only place that swap happens.

    Args:
        model: Parsed calibration model.
        eye: Semantic eye to resolve.

    Returns:
        The angles of the opposite-labelled image.
    """
    return model.angles_for(eye.other.value)


def resolve(
    model: "CalibrationModel", override: Orientation | None = None
) -> OrientationSpec:
    """Resolve final per-eye orientation.

    Args:
        model: Parsed, validated calibration model.
        override: Manual orientation; when given it replaces the model's
            angles for both eyes with the same triple.

    Returns:
        OrientationSpec for composition.
    """
    logger.info(
        "Non-adjusted yaw, pitch, roll: right image %s; left image %s",
        model.angles_for("right"),
        model.angles_for("left"),
    )

    if override is not None:
        logger.info("Applying manual orientation override to both eyes: %s", override)
        model = model.with_angles(override)

    spec = OrientationSpec(
        left=resolve_eye_orientation(model, Eye.LEFT),
        right=resolve_eye_orientation(model, Eye.RIGHT),
    )
    logger.info("Left - %s", spec.left)
    logger.info("Right - %s", spec.right)
    return spec
