"""Pipeline context builder for one-time initialization."""

import logging
from pathlib import Path

from ..artifacts import ArtifactKind, ArtifactStore
from ..composition import EyeStream, segment_files, write_concat_list
from ..config import PipelineConfig
from ..errors import UsageError
from ..eyes import EYES, Eye
from ..tools import ToolRunner
from .context import PipelineContext
from .interfaces import ToolExecutor

logger = logging.getLogger(__name__)


def resolve_eye_stream(
    eye: Eye, source: str, config: PipelineConfig, store: ArtifactStore
) -> EyeStream:
    """Build the EyeStream of one eye.

    In concat mode the source may be either an existing concat list or a
    directory of segments; a directory is turned into a list (ordered by
    file name) stored as an artifact.

    Args:
        eye: Eye the source belongs to.
        source: Configured video, concat list or segment directory.
        config: Pipeline configuration.
        store: Artifact store for the run.

    Returns:
        EyeStream for composition and calibration.

    Raises:
        UsageError: If a segment directory holds no video files.
    """
    path = Path(source)
    concat = config.inputs.concat

    if concat and path.is_dir():
        segments = segment_files(path)
        if not segments:
            raise UsageError(f"{eye.value} segment directory {path} holds no videos")
        path = write_concat_list(segments, store.path(ArtifactKind.CONCAT_LIST, eye))
        logger.info(
            "%s eye: wrote concat list of %d segments to %s",
            eye.value.capitalize(),
            len(segments),
            path,
        )

    return EyeStream(eye=eye, source=path, input_fov=config.inputs.input_fov, concat=concat)


def build_pipeline_context(
    config: PipelineConfig,
    runner: ToolExecutor | None = None,
    need_flats: bool = True,
) -> PipelineContext:
    """Perform one-time pipeline initialization.

    Checks that required inputs are configured, creates the artifact store
    and tool runner, resolves both eye streams and saves a copy of the
    configuration next to the artifacts.

    Args:
        config: Full pipeline configuration.
        runner: Tool executor; a ToolRunner built from ``config.tools`` when None.
        need_flats: Whether mask generation is part of this run.

    Returns:
        PipelineContext for the stages.

    Raises:
        UsageError: If a required input is missing.
    """
    missing = config.require_inputs(include_flats=need_flats)
    if missing:
        raise UsageError(f"Missing required inputs: {', '.join(missing)}")

    store = ArtifactStore(config.output_dir, config.inputs.output_prefix)
    store.prepare()

    if runner is None:
        runner = ToolRunner(config.tools, timeout=config.runtime.tool_timeout)

    sources = {Eye.LEFT: config.inputs.left_video, Eye.RIGHT: config.inputs.right_video}
    streams = {eye: resolve_eye_stream(eye, sources[eye], config, store) for eye in EYES}

    flats = {}
    if config.inputs.left_flat and config.inputs.right_flat:
        flats = {Eye.LEFT: config.inputs.left_flat, Eye.RIGHT: config.inputs.right_flat}

    config_path = store.path(ArtifactKind.CONFIG)
    config.to_yaml(config_path)
    logger.info("Config saved to %s", config_path)

    return PipelineContext(
        config=config,
        store=store,
        runner=runner,
        streams=streams,
        flats=flats,
    )
