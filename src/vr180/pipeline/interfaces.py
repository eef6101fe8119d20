"""Protocol interfaces for pipeline abstraction."""

import subprocess
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .context import PipelineContext


@runtime_checkable
class ToolExecutor(Protocol):
    """Protocol for running external engine executables.

    The existing ToolRunner satisfies this protocol structurally; tests
    substitute a recorder that writes the expected output files instead of
    launching FFmpeg, ImageMagick or Hugin.
    """

    def executable(self, tool: str) -> str:
        """Executable name configured for a tool key."""
        ...

    def run(self, stage: str, tool: str, args: list[str]) -> subprocess.CompletedProcess:
        """Run one tool invocation, raising StageFailure on error."""
        ...


@runtime_checkable
class Stage(Protocol):
    """Protocol for one step of the fixed pipeline chain.

    A stage either runs (producing its artifacts and storing its result on
    the context) or, when ``should_skip`` is true, resolves its result from
    artifacts of a previous run without invoking any tool.
    """

    name: str
    tools: tuple[str, ...]

    def should_skip(self, ctx: "PipelineContext") -> bool:
        """Whether the stage's artifacts are re-used instead of rebuilt."""
        ...

    def reuse(self, ctx: "PipelineContext") -> None:
        """Resolve the stage's result from existing artifacts.

        Raises:
            MissingCachedArtifact: If a required artifact is absent.
        """
        ...

    def run(self, ctx: "PipelineContext") -> None:
        """Produce the stage's artifacts and store the result on ``ctx``."""
        ...
