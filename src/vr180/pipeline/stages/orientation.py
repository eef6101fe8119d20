"""Orientation resolution stage."""

from ...orientation import override_orientation, resolve
from ..context import PipelineContext
from ..helpers import current_model


class OrientationStage:
    """Merge the calibration model with the manual override into per-eye angles.

    Runs no external tools and is never skipped. When calibration did not run
    in this invocation, the model is read from the supplied project or the
    current calibration pointer.
    """

    name = "orientation"
    tools = ()

    def should_skip(self, ctx: PipelineContext) -> bool:
        return False

    def reuse(self, ctx: PipelineContext) -> None:
        self.run(ctx)

    def run(self, ctx: PipelineContext) -> None:
        ctx.orientation = resolve(
            current_model(ctx), override_orientation(ctx.config.override)
        )
