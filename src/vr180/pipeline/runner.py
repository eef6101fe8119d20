"""Pipeline runner: orchestrates stage execution and provides public API."""

import logging
import sys

from tqdm import tqdm

from ..config import PipelineConfig
from ..errors import UsageError
from ..tools import check_tools
from .builder import build_pipeline_context
from .context import PipelineContext
from .helpers import timed_stage
from .interfaces import Stage, ToolExecutor
from .stages import CalibrationStage, CompositionStage, MaskStage, OrientationStage

logger = logging.getLogger(__name__)

# Stage names in chain order
STAGE_NAMES = ("masks", "calibration", "orientation", "render")


def default_stages() -> list[Stage]:
    """The full chain: masks, calibration, orientation, render."""
    return [MaskStage(), CalibrationStage(), OrientationStage(), CompositionStage()]


def select_stages(names: list[str] | None = None) -> list[Stage]:
    """Stages of the chain restricted to ``names``, kept in chain order.

    Raises:
        UsageError: If a name is not a known stage.
    """
    stages = default_stages()
    if names is None:
        return stages
    unknown = sorted(set(names) - set(STAGE_NAMES))
    if unknown:
        raise UsageError(f"Unknown stages {unknown}; valid: {list(STAGE_NAMES)}")
    return [stage for stage in stages if stage.name in names]


def required_tools(ctx: PipelineContext, stages: list[Stage]) -> list[str]:
    """Tool keys used by the stages that will actually run."""
    tools: list[str] = []
    for stage in stages:
        if stage.should_skip(ctx):
            continue
        for tool in stage.tools:
            if tool not in tools:
                tools.append(tool)
    return tools


def run_stages(ctx: PipelineContext, stages: list[Stage]) -> PipelineContext:
    """Run stages in order, re-using artifacts for the skipped ones.

    Args:
        ctx: Pipeline context.
        stages: Stages in chain order.

    Returns:
        The same context, filled in by the stages.
    """
    if ctx.config.runtime.check_tools:
        check_tools(ctx.runner, required_tools(ctx, stages))

    for stage in tqdm(
        stages,
        desc="VR180",
        disable=ctx.config.runtime.quiet or not sys.stderr.isatty(),
        unit="stage",
    ):
        if stage.should_skip(ctx):
            logger.info("Stage '%s': skipped, re-using existing artifacts", stage.name)
            stage.reuse(ctx)
            continue

        with timed_stage(stage.name, logger):
            stage.run(ctx)

    return ctx


def run_pipeline(
    config: PipelineConfig,
    stages: list[str] | None = None,
    runner: ToolExecutor | None = None,
) -> PipelineContext:
    """Run the pipeline (or a subset of its stages).

    Args:
        config: Full pipeline configuration.
        stages: Stage names to run (default: all, in chain order).
        runner: Tool executor override (default: ToolRunner from ``config.tools``).

    Returns:
        PipelineContext holding masks, model, orientation and output path of
        the stages that ran.

    Raises:
        Vr180Error: Any pipeline error; nothing is caught here.
    """
    selected = select_stages(stages)
    need_flats = any(stage.name == "masks" for stage in selected)
    ctx = build_pipeline_context(config, runner=runner, need_flats=need_flats)

    run_stages(ctx, selected)

    if ctx.output is not None:
        logger.info("Pipeline complete: %s", ctx.output)
    else:
        logger.info("Pipeline complete")
    return ctx


class Pipeline:
    """VR180 stereo composition pipeline.

    Primary programmatic entry point.

    Example:
        pipeline = Pipeline(config)
        output = pipeline.run()
    """

    def __init__(self, config: PipelineConfig, runner: ToolExecutor | None = None):
        """Initialize the pipeline with configuration.

        Args:
            config: Full pipeline configuration.
            runner: Optional tool executor override.
        """
        self.config = config
        self.runner = runner
        self.context: PipelineContext | None = None

    def run(self, stages: list[str] | None = None):
        """Run the pipeline and return the output video path (None if not rendered)."""
        self.context = run_pipeline(self.config, stages=stages, runner=self.runner)
        return self.context.output
