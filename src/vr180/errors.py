"""Error taxonomy for the VR180 pipeline.

Every failure is terminal for the run. Library code raises these; only the
CLI catches them and maps them to process exit codes.
"""

from pathlib import Path

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_STAGE_FAILURE = 2
EXIT_MISSING_ARTIFACT = 3
EXIT_DEGENERATE_CALIBRATION = 4


class Vr180Error(Exception):
    """Base class for all pipeline errors."""

    exit_code = EXIT_USAGE


class UsageError(Vr180Error):
    """Missing or invalid inputs, reported before any work is done."""

    exit_code = EXIT_USAGE


class StageFailure(Vr180Error):
    """An external tool invocation (or its result) failed.

    Attributes:
        stage: Name of the failing stage (e.g., "cpfind", "mask_average").
        returncode: Process exit status, or None when the tool never ran.
        command: Command line that was executed, if any.
        stderr_tail: Last lines of the tool's stderr, if captured.
    """

    exit_code = EXIT_STAGE_FAILURE

    def __init__(
        self,
        stage: str,
        message: str,
        returncode: int | None = None,
        command: list[str] | None = None,
        stderr_tail: str = "",
    ):
        self.stage = stage
        self.returncode = returncode
        self.command = command or []
        self.stderr_tail = stderr_tail
        text = f"Stage '{stage}' failed: {message}"
        if stderr_tail:
            text += f"\n{stderr_tail}"
        super().__init__(text)


class MissingCachedArtifact(Vr180Error):
    """A reuse flag was set but the cached artifact is not on disk."""

    exit_code = EXIT_MISSING_ARTIFACT

    def __init__(self, kind: str, path: Path):
        self.kind = kind
        self.path = Path(path)
        super().__init__(
            f"Cached artifact '{kind}' not found at {self.path}. "
            "Re-run without the reuse flag or check the output prefix."
        )


class DegenerateCalibration(Vr180Error):
    """Calibration produced non-finite or implausible orientation values."""

    exit_code = EXIT_DEGENERATE_CALIBRATION

    def __init__(self, eye: str, field: str, value: float, reason: str):
        self.eye = eye
        self.field = field
        self.value = value
        super().__init__(
            f"Degenerate calibration for {eye} ({field}={value!r}): {reason}"
        )


__all__ = [
    "EXIT_OK",
    "EXIT_USAGE",
    "EXIT_STAGE_FAILURE",
    "EXIT_MISSING_ARTIFACT",
    "EXIT_DEGENERATE_CALIBRATION",
    "Vr180Error",
    "UsageError",
    "StageFailure",
    "MissingCachedArtifact",
    "DegenerateCalibration",
]
