"""Hugin calibration stage."""

import logging

from ...calibration import calibrate, load_supplied_model
from ...eyes import EYES
from ..context import PipelineContext

logger = logging.getLogger(__name__)


class CalibrationStage:
    """Derive per-image orientation with Hugin, or load a supplied project."""

    name = "calibration"
    tools = ("ffmpeg", "pto_gen", "cpfind", "cpclean", "linefind", "autooptimiser")

    def should_skip(self, ctx: PipelineContext) -> bool:
        return ctx.config.calibration.reuse

    def reuse(self, ctx: PipelineContext) -> None:
        config = ctx.config.calibration
        logger.info("Using supplied Hugin project %s", config.pto_file)
        ctx.model = load_supplied_model(config.pto_file, ctx.store, config)

    def run(self, ctx: PipelineContext) -> None:
        config = ctx.config
        ctx.model = calibrate(
            {eye: str(ctx.streams[eye].source) for eye in EYES},
            config.inputs.input_fov,
            ctx.store,
            config.calibration,
            ctx.runner,
            concat=config.inputs.concat,
            parallel=config.runtime.parallel_eyes,
            quiet=config.runtime.quiet,
        )
