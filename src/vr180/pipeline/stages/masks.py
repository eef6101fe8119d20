"""Blend mask generation stage."""

import logging

from ...masks import build_all_masks, load_mask_sets
from ..context import PipelineContext

logger = logging.getLogger(__name__)


class MaskStage:
    """Build per-eye blend masks from the flat videos, or re-use a previous run's."""

    name = "masks"
    tools = ("ffmpeg", "convert")

    def should_skip(self, ctx: PipelineContext) -> bool:
        return ctx.config.masks.reuse

    def reuse(self, ctx: PipelineContext) -> None:
        ctx.masks = load_mask_sets(ctx.store)
        logger.info("Re-using masks from %s", ctx.store.root)

    def run(self, ctx: PipelineContext) -> None:
        ctx.masks = build_all_masks(
            ctx.flats,
            ctx.store,
            ctx.config.masks,
            ctx.runner,
            parallel=ctx.config.runtime.parallel_eyes,
        )
