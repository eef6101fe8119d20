"""Per-eye blend mask generation from long-exposure flat frame averages."""

import logging
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np

from .artifacts import ArtifactKind, ArtifactStore
from .config import MaskConfig
from .errors import StageFailure, UsageError
from .eyes import Eye, for_each_eye
from .tools import ToolRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MaskSet:
    """Mask artifacts of one eye.

    Only ``normalized_alpha`` (fisheye content with a transparent surround)
    and ``border_alpha`` (the surround isolated) are consumed by composition;
    the rest are kept on disk for inspection.
    """

    eye: Eye
    average: Path
    normalized: Path
    alpha: Path
    inverse_alpha: Path
    border_alpha: Path
    normalized_alpha: Path

    @classmethod
    def from_store(cls, store: ArtifactStore, eye: Eye) -> "MaskSet":
        """Name the mask artifacts of ``eye`` without touching the disk."""
        return cls(
            eye=eye,
            average=store.path(ArtifactKind.AVERAGE, eye),
            normalized=store.path(ArtifactKind.NORMALIZED, eye),
            alpha=store.path(ArtifactKind.ALPHA, eye),
            inverse_alpha=store.path(ArtifactKind.INVERSE_ALPHA, eye),
            border_alpha=store.path(ArtifactKind.BORDER_ALPHA, eye),
            normalized_alpha=store.path(ArtifactKind.NORMALIZED_ALPHA, eye),
        )

    def validate(self) -> tuple[int, int]:
        """Check that both consumed images share resolution and pixel format.

        Returns:
            Mask size as (width, height).

        Raises:
            StageFailure: If an image is unreadable or the two disagree.
        """
        normalized = load_mask_image(self.normalized_alpha)
        border = load_mask_image(self.border_alpha)

        if normalized.shape != border.shape or normalized.dtype != border.dtype:
            raise StageFailure(
                "mask_validate",
                f"{self.eye.value} masks disagree: normalized_alpha "
                f"{normalized.shape} {normalized.dtype} vs border_alpha "
                f"{border.shape} {border.dtype}",
            )

        height, width = normalized.shape[:2]
        return width, height


def load_mask_image(path: Path) -> np.ndarray:
    """Load a mask image with its alpha channel intact.

    Args:
        path: Image path.

    Returns:
        Image array (H, W) or (H, W, C) in the file's bit depth.

    Raises:
        StageFailure: If the image is missing or cannot be decoded.
    """
    image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise StageFailure("mask_validate", f"cannot read mask image {path}")
    return image


def average_command(raw_video: Path, output: Path, frame_window: int) -> list[str]:
    """FFmpeg arguments averaging the first ``frame_window`` frames into a 16-bit still."""
    return [
        "-y",
        "-i",
        str(raw_video),
        "-vf",
        f"tmix={frame_window},format=rgb48",
        "-frames",
        "1",
        str(output),
    ]


def normalize_command(still: Path, output: Path) -> list[str]:
    """FFmpeg arguments normalizing a still against a 1x1 black reference pixel."""
    return [
        "-y",
        "-i",
        str(still),
        "-vf",
        "drawbox=w=1:h=1:color=black,normalize",
        "-frames",
        "1",
        str(output),
    ]


def alpha_command(
    normalized: Path, output: Path, config: MaskConfig, negate: bool = False
) -> list[str]:
    """ImageMagick arguments deriving a posterized alpha mask (or its negation)."""
    args = [
        str(normalized),
        "-contrast-stretch",
        config.contrast_stretch,
        "-colorspace",
        "gray",
        "+dither",
        "-posterize",
        str(config.posterize_levels),
    ]
    if negate:
        args.append("-negate")
    args += ["-alpha", "copy", str(output)]
    return args


def composite_command(normalized: Path, alpha: Path, output: Path) -> list[str]:
    """ImageMagick arguments cutting ``alpha`` out of ``normalized`` (destination-out)."""
    return [
        str(normalized),
        str(alpha),
        "-compose",
        "DstOut",
        "-composite",
        f"PNG32:{output}",
    ]


def build_masks(
    eye: Eye,
    raw_video: str | Path,
    store: ArtifactStore,
    config: MaskConfig,
    runner: ToolRunner,
) -> MaskSet:
    """Build the blend masks of one eye from its flat video.

    Averages the leading frames, normalizes the average, derives alpha and
    inverse alpha masks, and composites the normalized still against both.
    Every artifact is written under the store's prefix.

    Args:
        eye: Eye being processed.
        raw_video: Flat (mask source) video of this eye.
        store: Artifact store for the run.
        config: Mask configuration.
        runner: External tool runner.

    Returns:
        The validated MaskSet.

    Raises:
        UsageError: If the raw video does not exist.
        StageFailure: If any tool fails or the resulting masks disagree.
    """
    raw_video = Path(raw_video)
    if not raw_video.is_file():
        raise UsageError(f"{eye.value} mask source video not found: {raw_video}")

    store.prepare()
    masks = MaskSet.from_store(store, eye)

    logger.info("Averaging %s flat frames into %s", eye.value, masks.average.name)
    runner.run(
        "mask_average",
        "ffmpeg",
        average_command(raw_video, masks.average, config.frame_window),
    )

    logger.info("Normalizing %s flat image", eye.value)
    runner.run("mask_normalize", "ffmpeg", normalize_command(masks.average, masks.normalized))

    logger.info("Creating %s alpha channels for fisheye masks", eye.value)
    runner.run("mask_alpha", "convert", alpha_command(masks.normalized, masks.alpha, config))
    runner.run(
        "mask_border_alpha",
        "convert",
        composite_command(masks.normalized, masks.alpha, masks.border_alpha),
    )
    runner.run(
        "mask_inverse_alpha",
        "convert",
        alpha_command(masks.normalized, masks.inverse_alpha, config, negate=True),
    )
    runner.run(
        "mask_normalized_alpha",
        "convert",
        composite_command(masks.normalized, masks.inverse_alpha, masks.normalized_alpha),
    )

    width, height = masks.validate()
    logger.info("%s masks ready (%dx%d)", eye.value.capitalize(), width, height)
    return masks


def build_all_masks(
    flats: dict[Eye, str],
    store: ArtifactStore,
    config: MaskConfig,
    runner: ToolRunner,
    parallel: bool = True,
) -> dict[Eye, MaskSet]:
    """Build masks for both eyes, concurrently when ``parallel`` is set.

    Args:
        flats: Flat video per eye.
        store: Artifact store for the run.
        config: Mask configuration.
        runner: External tool runner.
        parallel: Build left and right at the same time.

    Returns:
        MaskSet per eye.
    """
    return for_each_eye(
        lambda eye: build_masks(eye, flats[eye], store, config, runner),
        parallel=parallel,
    )


def load_mask_sets(store: ArtifactStore) -> dict[Eye, MaskSet]:
    """Resolve masks left by a previous run with the same prefix.

    Performs no writes and runs no tools. Only existence of the consumed
    images is checked; whether they match the current videos is not.

    Args:
        store: Artifact store for the run.

    Returns:
        MaskSet per eye.

    Raises:
        MissingCachedArtifact: If a consumed mask image is absent.
    """
    mask_sets = {}
    for eye in (Eye.LEFT, Eye.RIGHT):
        store.require(ArtifactKind.NORMALIZED_ALPHA, eye)
        store.require(ArtifactKind.BORDER_ALPHA, eye)
        mask_sets[eye] = MaskSet.from_store(store, eye)
    logger.info("Re-using mask and alpha channel files from a previous run")
    return mask_sets


__all__ = [
    "MaskSet",
    "load_mask_image",
    "build_masks",
    "build_all_masks",
    "load_mask_sets",
]
