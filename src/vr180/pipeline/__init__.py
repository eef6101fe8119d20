"""Pipeline orchestration package for the VR180 stage chain.

Provides the pipeline context, builder, stages and runner.
"""

from .builder import build_pipeline_context, resolve_eye_stream
from .context import PipelineContext
from .interfaces import Stage, ToolExecutor
from .runner import Pipeline, default_stages, run_pipeline, run_stages, select_stages

__all__ = [
    "Pipeline",
    "PipelineContext",
    "Stage",
    "ToolExecutor",
    "build_pipeline_context",
    "default_stages",
    "resolve_eye_stream",
    "run_pipeline",
    "run_stages",
    "select_stages",
]
