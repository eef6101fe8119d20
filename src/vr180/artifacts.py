"""Prefix-keyed store for intermediate pipeline artifacts."""

import logging
import os
import shutil
from enum import Enum
from pathlib import Path

from .errors import MissingCachedArtifact
from .eyes import Eye

logger = logging.getLogger(__name__)


class ArtifactKind(str, Enum):
    """Every file the pipeline persists between stages."""

    AVERAGE = "average"
    NORMALIZED = "normalized"
    ALPHA = "alpha"
    INVERSE_ALPHA = "inverse_alpha"
    BORDER_ALPHA = "border_alpha"
    NORMALIZED_ALPHA = "normalized_alpha"
    CALIBRATION_STILL = "calibration_still"
    PROJECT = "project"
    PROJECT_WITH_CP = "project_with_cp"
    PROJECT_CLEANED = "project_cleaned"
    PROJECT_LINES = "project_lines"
    PROJECT_OPTIMISED = "project_optimised"
    CALIBRATED = "calibrated"
    CONCAT_LIST = "concat_list"
    CONFIG = "config"
    OUTPUT = "output"


# File name templates; kinds using {eye} are stored once per eye.
TEMPLATES = {
    ArtifactKind.AVERAGE: "{prefix}-{eye}_tmp.png",
    ArtifactKind.NORMALIZED: "{prefix}-{eye}_normalized.png",
    ArtifactKind.ALPHA: "{prefix}-{eye}_alpha.png",
    ArtifactKind.INVERSE_ALPHA: "{prefix}-{eye}_inverse_alpha.png",
    ArtifactKind.BORDER_ALPHA: "{prefix}-{eye}_border_alpha.png",
    ArtifactKind.NORMALIZED_ALPHA: "{prefix}-{eye}_normalized_alpha.png",
    ArtifactKind.CALIBRATION_STILL: "{prefix}-{eye}-calibration.tiff",
    ArtifactKind.PROJECT: "{prefix}-hugin.pto",
    ArtifactKind.PROJECT_WITH_CP: "{prefix}-hugin-with_cp.pto",
    ArtifactKind.PROJECT_CLEANED: "{prefix}-hugin-with_cp-cleaned.pto",
    ArtifactKind.PROJECT_LINES: "{prefix}-hugin-with_cp-cleaned-lines.pto",
    ArtifactKind.PROJECT_OPTIMISED: "{prefix}-hugin-with_cp-cleaned-lines-optomized.pto",
    ArtifactKind.CALIBRATED: "{prefix}-hugin-calibrated.pto",
    ArtifactKind.CONCAT_LIST: "{prefix}-{eye}-segments.txt",
    ArtifactKind.CONFIG: "{prefix}-config.yaml",
    ArtifactKind.OUTPUT: "{prefix}-output.mp4",
}


def is_per_eye(kind: ArtifactKind) -> bool:
    """Whether an artifact kind is stored once per eye."""
    return "{eye}" in TEMPLATES[kind]


class ArtifactStore:
    """Resolves (prefix, kind, eye) keys to files under one directory.

    The store only names files and checks their existence; the stages write
    them. Two runs sharing a prefix share artifacts, which is what the reuse
    flags rely on (and why concurrent runs with one prefix are unsafe).

    Args:
        root: Directory holding the artifacts.
        prefix: Caller-chosen output prefix (may contain sub-directories).
    """

    def __init__(self, root: str | Path, prefix: str):
        if not prefix:
            raise ValueError("artifact prefix must not be empty")
        self.root = Path(root)
        self.prefix = prefix

    def path(self, kind: ArtifactKind, eye: Eye | None = None) -> Path:
        """Path of an artifact.

        Args:
            kind: Artifact kind.
            eye: Eye, required for per-eye kinds and rejected otherwise.

        Returns:
            Absolute or root-relative path of the artifact.

        Raises:
            ValueError: If ``eye`` does not match the kind.
        """
        if is_per_eye(kind) and eye is None:
            raise ValueError(f"artifact {kind.value!r} is per-eye; an eye is required")
        if not is_per_eye(kind) and eye is not None:
            raise ValueError(f"artifact {kind.value!r} is not per-eye")
        name = TEMPLATES[kind].format(
            prefix=self.prefix, eye=eye.value if eye is not None else ""
        )
        return self.root / name

    def exists(self, kind: ArtifactKind, eye: Eye | None = None) -> bool:
        """Whether the artifact is present on disk."""
        return self.path(kind, eye).exists()

    def require(self, kind: ArtifactKind, eye: Eye | None = None) -> Path:
        """Path of an artifact that must already exist.

        Raises:
            MissingCachedArtifact: If the artifact is absent.
        """
        path = self.path(kind, eye)
        if not path.exists():
            label = kind.value if eye is None else f"{eye.value} {kind.value}"
            raise MissingCachedArtifact(label, path)
        return path

    def prepare(self) -> None:
        """Create the directory artifacts are written into."""
        self.path(ArtifactKind.PROJECT).parent.mkdir(parents=True, exist_ok=True)

    def point_current_calibration(self, target: str | Path) -> Path:
        """Point the "current calibration" file at a project.

        Any previous pointer is replaced. A symlink is used where supported,
        otherwise the project is copied.

        Args:
            target: Project file the pointer should resolve to.

        Returns:
            Path of the pointer.
        """
        target = Path(target).resolve()
        pointer = self.path(ArtifactKind.CALIBRATED)
        pointer.parent.mkdir(parents=True, exist_ok=True)

        if pointer.absolute() == target:
            return pointer

        if pointer.is_symlink() or pointer.exists():
            pointer.unlink()

        try:
            os.symlink(target, pointer)
        except OSError:
            logger.debug("Symlinks unavailable, copying %s to %s", target, pointer)
            shutil.copy2(target, pointer)

        logger.info("Current calibration -> %s", target)
        return pointer
