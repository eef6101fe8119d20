"""Command-line interface for the VR180 pipeline."""

import argparse
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from vr180.config import PipelineConfig, format_validation_errors, merge_overrides
from vr180.errors import EXIT_USAGE, Vr180Error

logger = logging.getLogger(__name__)

# Subcommand name -> pipeline stages it runs
STAGE_COMMANDS = {
    "masks": ["masks"],
    "calibrate": ["calibration"],
    "orientation": ["orientation"],
}


class ArgumentParser(argparse.ArgumentParser):
    """Argument parser whose usage errors exit with EXIT_USAGE."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def _configure_logging(verbose: bool = False) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def add_source_arguments(parser: argparse.ArgumentParser) -> None:
    """Add the flags describing one run's inputs, reuse switches and overrides."""
    parser.add_argument("-L", "--left-video", help="Left-eye raw video (or concat list/directory)")
    parser.add_argument("-R", "--right-video", help="Right-eye raw video (or concat list/directory)")
    parser.add_argument("-l", "--left-flat", help="Left-eye flat video used for the blend masks")
    parser.add_argument("-r", "--right-flat", help="Right-eye flat video used for the blend masks")
    parser.add_argument(
        "-f", "--input-fov", type=float, default=None, help="Lens field of view (default: 202)"
    )
    parser.add_argument(
        "-F", "--output-fps", type=float, default=None, help="Output frame rate (default: 60)"
    )
    parser.add_argument(
        "-s", "--pts-factor", type=float, default=None, help="PTS multiplier (default: 0.5)"
    )
    parser.add_argument("-o", "--output-prefix", help="Prefix of every intermediate file")
    parser.add_argument("-O", "--output-file", help="Final video path")
    parser.add_argument("--output-dir", help="Artifact directory (default: left video's directory)")
    parser.add_argument(
        "-m",
        "--reuse-masks",
        action="store_true",
        help="Re-use mask files from a previous run with the same prefix",
    )
    parser.add_argument("-H", "--pto-file", help="Existing Hugin project to use instead of calibrating")
    parser.add_argument(
        "-c",
        "--concat",
        action="store_true",
        help=(
            "Raw video arguments are concat lists or segment directories "
            "(segments join in natural name order)"
        ),
    )
    parser.add_argument("-y", "--yaw", type=float, default=None, help="Manual yaw override")
    parser.add_argument("-p", "--pitch", type=float, default=None, help="Manual pitch override")
    parser.add_argument("-x", "--roll", type=float, default=None, help="Manual roll override")


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    """Build a PipelineConfig from parsed source flags.

    Unset flags leave the configuration defaults in place.

    Raises:
        ValueError: If the resulting configuration is invalid.
    """
    data = merge_overrides(
        {},
        {
            "inputs.left_video": args.left_video,
            "inputs.right_video": args.right_video,
            "inputs.left_flat": args.left_flat,
            "inputs.right_flat": args.right_flat,
            "inputs.input_fov": args.input_fov,
            "inputs.output_prefix": args.output_prefix,
            "inputs.output_file": args.output_file,
            "inputs.output_dir": args.output_dir,
            "inputs.concat": args.concat or None,
            "masks.reuse": args.reuse_masks or None,
            "calibration.pto_file": args.pto_file,
            "render.output_fps": args.output_fps,
            "render.pts_factor": args.pts_factor,
            "override.yaw": args.yaw,
            "override.pitch": args.pitch,
            "override.roll": args.roll,
        },
    )
    try:
        return PipelineConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(
            f"Configuration validation failed:\n{format_validation_errors(e)}"
        ) from None


def init_config(args: argparse.Namespace, config_path: Path) -> PipelineConfig:
    """Generate a config YAML from command-line flags.

    Args:
        args: Parsed source flags.
        config_path: Path where the generated config YAML will be saved.

    Returns:
        The generated PipelineConfig.

    Raises:
        SystemExit: If the flags do not form a valid configuration.
    """
    try:
        config = config_from_args(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_USAGE)

    missing = config.require_inputs()

    print(f"\n{'=' * 70}")
    print("Configuration Initialization Summary")
    print(f"{'=' * 70}\n")
    print(f"  Left video:   {config.inputs.left_video or '-'}")
    print(f"  Right video:  {config.inputs.right_video or '-'}")
    print(f"  Prefix:       {config.inputs.output_prefix or '-'}")
    print(f"  Output:       {config.output_file if config.inputs.output_prefix else '-'}")
    print(f"  Reuse masks:  {config.masks.reuse}")
    print(f"  PTO file:     {config.calibration.pto_file or '-'}")
    if config.override.is_set:
        print("  Override:     yaw/pitch/roll set (applied to both eyes)")
    print()

    if missing:
        print(f"[WARN] {len(missing)} required input(s) still missing:")
        for name in missing:
            print(f"  {name}")
        print()

    config.to_yaml(config_path)
    print(f"[OK] Configuration saved to: {config_path}")
    print(f"{'=' * 70}\n")

    return config


def load_config(config_path: Path) -> PipelineConfig:
    """Load a config file, exiting with the usage code on failure."""
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}", file=sys.stderr)
        sys.exit(EXIT_USAGE)

    try:
        return PipelineConfig.from_yaml(config_path)
    except Exception as e:
        print(f"Error: Failed to load config: {e}", file=sys.stderr)
        sys.exit(EXIT_USAGE)


def execute(config: PipelineConfig, stages: list[str] | None = None):
    """Run pipeline stages, mapping pipeline errors to exit codes.

    Returns:
        The PipelineContext of the run.

    Raises:
        SystemExit: With the error's exit code on any pipeline error.
    """
    from vr180.pipeline import run_pipeline

    try:
        return run_pipeline(config, stages=stages)
    except Vr180Error as e:
        logger.error("%s", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(e.exit_code)


def run_command(config_path: Path, verbose: bool = False, quiet: bool = False) -> None:
    """Execute the full pipeline from a config file.

    Args:
        config_path: Path to the pipeline config YAML file.
        verbose: If True, set logging to DEBUG level.
        quiet: If True, suppress progress bars.
    """
    _configure_logging(verbose)
    config = load_config(config_path)
    if quiet:
        config.runtime.quiet = True

    ctx = execute(config)
    print(f"[OK] Wrote {ctx.output}")


def stage_command(command: str, config_path: Path, verbose: bool = False) -> None:
    """Run a single component (masks, calibrate or orientation) from a config file."""
    _configure_logging(verbose)
    config = load_config(config_path)

    ctx = execute(config, stages=STAGE_COMMANDS[command])

    if ctx.masks is not None:
        for eye, masks in ctx.masks.items():
            print(f"{eye.value}: {masks.normalized_alpha} {masks.border_alpha}")
    if ctx.model is not None and ctx.orientation is None:
        print(f"Calibration: {ctx.model.path}")
    if ctx.orientation is not None:
        print(f"Left - {ctx.orientation.left}")
        print(f"Right - {ctx.orientation.right}")


def render_command(args: argparse.Namespace) -> None:
    """Run the full pipeline straight from command-line flags."""
    _configure_logging(args.verbose)
    try:
        config = config_from_args(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_USAGE)

    ctx = execute(config)
    print(f"[OK] Wrote {ctx.output}")


def main() -> None:
    """Main entry point for the vr180 CLI."""
    parser = ArgumentParser(
        prog="vr180",
        description="Turn a fisheye stereo pair into frame-packed VR180 video.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init subcommand
    init_parser = subparsers.add_parser(
        "init",
        help="Generate config from command-line flags",
    )
    add_source_arguments(init_parser)
    init_parser.add_argument(
        "--config",
        type=Path,
        default=Path("vr180.yaml"),
        help="Path to output config YAML file (default: vr180.yaml)",
    )

    # run subcommand
    run_parser = subparsers.add_parser(
        "run",
        help="Run the full pipeline from a config file",
    )
    run_parser.add_argument(
        "config",
        type=Path,
        help="Path to pipeline config YAML file",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    run_parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress progress bars",
    )

    # single-component subcommands
    for command, help_text in (
        ("masks", "Build the blend masks only"),
        ("calibrate", "Run the Hugin calibration only"),
        ("orientation", "Resolve and print the per-eye orientation"),
    ):
        stage_parser = subparsers.add_parser(command, help=help_text)
        stage_parser.add_argument(
            "config",
            type=Path,
            help="Path to pipeline config YAML file",
        )
        stage_parser.add_argument(
            "-v",
            "--verbose",
            action="store_true",
            help="Enable verbose (DEBUG) logging",
        )

    # render subcommand
    render_parser = subparsers.add_parser(
        "render",
        help="Run the full pipeline from command-line flags",
    )
    add_source_arguments(render_parser)
    render_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args()

    # Dispatch
    if args.command == "init":
        init_config(args, config_path=args.config)
    elif args.command == "run":
        run_command(
            config_path=args.config,
            verbose=args.verbose,
            quiet=args.quiet,
        )
    elif args.command in STAGE_COMMANDS:
        stage_command(args.command, config_path=args.config, verbose=args.verbose)
    elif args.command == "render":
        render_command(args)
    else:
        parser.print_help()
        sys.exit(EXIT_USAGE)
