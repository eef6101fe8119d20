"""Shared pytest fixtures for vr180 tests."""

import shutil
import subprocess
import threading
from pathlib import Path

import cv2
import numpy as np
import pytest

from vr180.config import PipelineConfig
from vr180.errors import StageFailure

PREFIX = "clip"


def project_text(
    prefix: str = PREFIX,
    left: tuple[float, float, float] = (-3.5, 1.25, 0.75),
    right: tuple[float, float, float] = (4.125, -2.5, -1.0),
    control_points: int = 5,
    line_constraints: int = 2,
) -> str:
    """Hugin project with one image per eye; angle tuples are (yaw, pitch, roll)."""
    lines = [
        "# hugin project file",
        'p f2 w3000 h1500 v360  E0 R0 n"TIFF_m c:LZW r:CROP"',
        "m i0",
        "",
        "# image lines",
        f"i w2000 h1500 f2 v202 Ra0 Rb0 Rc0 Rd0 Re0 Eev0 Er1 Eb1 r{left[2]} p{left[1]} "
        f'y{left[0]} TrX0 TrY0 TrZ0 Tpy0 Tpp0 j0 a0 b0 c0 d0 e0 g0 t0 Va1 Vb0 Vc0 Vd0 '
        f'Vx0 Vy0 Vm5 n"{prefix}-left-calibration.tiff"',
        f"i w=0 h=0 f2 v=0 Ra=0 Rb=0 Rc=0 Rd=0 Re=0 Eev0 Er1 Eb1 r{right[2]} p{right[1]} "
        f'y{right[0]} TrX0 TrY0 TrZ0 Tpy0 Tpp0 j0 a=0 b=0 c=0 d=0 e=0 g=0 t=0 Va1 Vb0 '
        f'Vc0 Vd0 Vx0 Vy0 Vm5 n"{prefix}-right-calibration.tiff"',
        "",
        "# control points",
    ]
    for i in range(control_points):
        lines.append(f"c n0 N1 x{100 + i} y{200 + i} X{110 + i} Y{210 + i} t0")
    for i in range(line_constraints):
        lines.append(f"c n0 N0 x{10 + i} y20 X{10 + i} Y900 t3")
    lines.append("")
    return "\n".join(lines)


def _output_after(args: list[str], flag: str = "-o") -> Path:
    return Path(args[args.index(flag) + 1])


class FakeRunner:
    """Records tool invocations and writes the files they would have produced.

    Mask composites are written as real RGBA PNGs so that OpenCV validation
    runs against them.

    Attributes:
        calls: (stage, tool, args) per invocation, in call order.
        mask_size: (width, height) of written mask images.
        mismatched_eye: Eye whose border-alpha mask is written at a different size.
        optimised_project: Project text written by autooptimiser.
        fail_stage: Stage name that raises StageFailure instead of running.
    """

    def __init__(self):
        self.calls: list[tuple[str, str, list[str]]] = []
        self.mask_size = (64, 48)
        self.mismatched_eye: str | None = None
        self.optimised_project = project_text()
        self.fail_stage: str | None = None
        self._lock = threading.Lock()

    def executable(self, tool: str) -> str:
        return tool

    @property
    def stages(self) -> list[str]:
        return [stage for stage, _, _ in self.calls]

    def calls_for(self, stage: str) -> list[list[str]]:
        return [args for s, _, args in self.calls if s == stage]

    def run(self, stage: str, tool: str, args: list[str]) -> subprocess.CompletedProcess:
        args = [str(a) for a in args]
        with self._lock:
            self.calls.append((stage, tool, args))

        if stage == self.fail_stage:
            raise StageFailure(stage, f"{tool} exited with status 1", returncode=1)

        self._produce(stage, tool, args)
        return subprocess.CompletedProcess([tool, *args], 0, stdout="", stderr="")

    def _write_mask(self, path: Path) -> None:
        width, height = self.mask_size
        if (
            self.mismatched_eye is not None
            and path.name.endswith("_border_alpha.png")
            and f"-{self.mismatched_eye}_" in path.name
        ):
            width, height = width * 2, height
        image = np.zeros((height, width, 4), dtype=np.uint8)
        image[height // 4 : 3 * height // 4, width // 4 : 3 * width // 4] = 255
        cv2.imwrite(str(path), image)

    def _produce(self, stage: str, tool: str, args: list[str]) -> None:
        if tool == "ffmpeg":
            Path(args[-1]).write_bytes(b"fake media")
        elif tool == "convert":
            output = args[-1]
            if output.startswith("PNG32:"):
                self._write_mask(Path(output[len("PNG32:") :]))
            else:
                Path(output).write_bytes(b"fake alpha")
        elif tool == "pto_gen":
            _output_after(args).write_text(project_text(control_points=0, line_constraints=0))
        elif tool == "autooptimiser":
            _output_after(args).write_text(self.optimised_project)
        elif tool in ("cpfind", "cpclean", "linefind"):
            shutil.copyfile(args[-1], _output_after(args))


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Tool runner double that records commands and fabricates outputs."""
    return FakeRunner()


@pytest.fixture
def videos(tmp_path: Path) -> dict[str, Path]:
    """Placeholder raw and flat videos for both eyes."""
    paths = {}
    for name in ("left", "right", "left_flat", "right_flat"):
        path = tmp_path / f"{name}.mp4"
        path.write_bytes(b"not really a video")
        paths[name] = path
    return paths


@pytest.fixture
def pipeline_config(tmp_path: Path, videos: dict[str, Path]) -> PipelineConfig:
    """Complete configuration writing artifacts under tmp_path/out."""
    return PipelineConfig.model_validate(
        {
            "inputs": {
                "left_video": str(videos["left"]),
                "right_video": str(videos["right"]),
                "left_flat": str(videos["left_flat"]),
                "right_flat": str(videos["right_flat"]),
                "output_prefix": PREFIX,
                "output_dir": str(tmp_path / "out"),
            },
            "runtime": {"check_tools": False, "quiet": True},
        }
    )


@pytest.fixture
def pto_text():
    """Factory for Hugin project text (see project_text)."""
    return project_text
