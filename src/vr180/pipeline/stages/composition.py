"""Final stereo composition stage."""

import logging

from ...composition import CompositionRequest, compose
from ...eyes import Eye
from ..context import PipelineContext
from ..helpers import current_masks, current_orientation

logger = logging.getLogger(__name__)


class CompositionStage:
    """Render both eyes and encode the frame-packed output."""

    name = "render"
    tools = ("ffmpeg",)

    def should_skip(self, ctx: PipelineContext) -> bool:
        return False

    def reuse(self, ctx: PipelineContext) -> None:
        self.run(ctx)

    def run(self, ctx: PipelineContext) -> None:
        config = ctx.config
        request = CompositionRequest(
            left=ctx.streams[Eye.LEFT],
            right=ctx.streams[Eye.RIGHT],
            masks=current_masks(ctx),
            orientation=current_orientation(ctx),
            render=config.render,
            encode=config.encode,
            output=config.output_file,
        )
        logger.info("Rendering %s", request.output)
        ctx.output = compose(request, ctx.runner)
