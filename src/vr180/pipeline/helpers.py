"""Helper functions for pipeline operations."""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

from ..artifacts import ArtifactKind
from ..calibration import CalibrationModel, load_supplied_model, parse_project, validate_model
from ..eyes import Eye
from ..masks import MaskSet, load_mask_sets
from ..orientation import OrientationSpec, override_orientation, resolve
from .context import PipelineContext


@contextmanager
def timed_stage(name: str, log: logging.Logger) -> Iterator[None]:
    """Log the start and wall-clock duration of a stage.

    Args:
        name: Stage name.
        log: Logger of the calling module.
    """
    log.info("Stage '%s': started", name)
    start = time.perf_counter()
    yield
    log.info("Stage '%s': finished in %.1fs", name, time.perf_counter() - start)


def current_model(ctx: PipelineContext) -> CalibrationModel:
    """Calibration model of the run, loading it from disk when no stage produced it.

    A supplied project file takes precedence; otherwise the "current
    calibration" pointer left by an earlier calibrate run is read.

    Raises:
        MissingCachedArtifact: If neither is available.
    """
    if ctx.model is None:
        config = ctx.config.calibration
        if config.pto_file is not None:
            ctx.model = load_supplied_model(config.pto_file, ctx.store, config)
        else:
            pointer = ctx.store.require(ArtifactKind.CALIBRATED)
            ctx.model = validate_model(parse_project(pointer), config, check_points=False)
    return ctx.model


def current_masks(ctx: PipelineContext) -> dict[Eye, MaskSet]:
    """Mask sets of the run, resolving them from the store when not built here."""
    if ctx.masks is None:
        ctx.masks = load_mask_sets(ctx.store)
    return ctx.masks


def current_orientation(ctx: PipelineContext) -> OrientationSpec:
    """Orientation of the run, resolving it from the calibration when needed."""
    if ctx.orientation is None:
        ctx.orientation = resolve(
            current_model(ctx), override_orientation(ctx.config.override)
        )
    return ctx.orientation
