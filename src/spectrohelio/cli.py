"""Command-line interface for the spectroheliograph pipeline."""

import argparse
import logging
import sys
from pathlib import Path

from spectrohelio.config import PipelineConfig
from spectrohelio.errors import SerFormatError
from spectrohelio.ser import SerFileReader, trim_video


def configure_logging(verbose: bool = False) -> None:
    """Configure root logging for CLI commands."""
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def init_config(
    output_dir: str,
    config_path: Path,
    line_type: str = "absorption",
) -> PipelineConfig:
    """Write a configuration file holding every default value.

    Args:
        output_dir: Output directory stored in the configuration.
        config_path: Path where the generated config YAML will be saved.
        line_type: Type of the observed spectral line.

    Returns:
        The generated PipelineConfig.
    """
    config = PipelineConfig()
    config.output.output_dir = output_dir
    config.spectrum.line_type = line_type
    config.to_yaml(config_path)
    print(f"[OK] Configuration saved to: {config_path}")
    return config


def run_command(
    video_path: Path,
    config_path: Path | None = None,
    output_dir: Path | None = None,
    workers: int | None = None,
    verbose: bool = False,
    quiet: bool = False,
) -> int:
    """Process one video.

    Args:
        video_path: SER file or directory of frames.
        config_path: Optional pipeline config YAML file.
        output_dir: Optional output directory override.
        workers: Optional worker count override.
        verbose: If True, set logging to DEBUG level.
        quiet: If True, hide the progress bar.

    Returns:
        Process exit code (0 on success).
    """
    configure_logging(verbose)

    if not video_path.exists():
        print(f"Error: Input not found: {video_path}", file=sys.stderr)
        sys.exit(1)

    if config_path is None:
        config = PipelineConfig()
    else:
        if not config_path.exists():
            print(f"Error: Config file not found: {config_path}", file=sys.stderr)
            sys.exit(1)
        try:
            config = PipelineConfig.from_yaml(config_path)
        except Exception as e:
            print(f"Error: Failed to load config: {e}", file=sys.stderr)
            sys.exit(1)

    if workers is not None:
        if workers < 1:
            print(f"Error: --workers must be positive, got {workers}", file=sys.stderr)
            sys.exit(1)
        config.execution.max_workers = workers
    if quiet:
        config.runtime.quiet = True

    from spectrohelio.events import LoggingListener
    from spectrohelio.pipeline import SolexVideoProcessor

    processor = SolexVideoProcessor(video_path, config, output_dir=output_dir)
    processor.broadcaster.add_listener(LoggingListener())
    result = processor.process()
    if result is None:
        return 1
    for name, path in result.images.items():
        print(f"[OK] {name}: {path}")
    return 0


def info_command(video_path: Path) -> None:
    """Print a summary of a SER file header."""
    try:
        reader = SerFileReader(video_path)
    except (OSError, SerFormatError) as e:
        print(f"Error: Cannot read {video_path}: {e}", file=sys.stderr)
        sys.exit(1)

    with reader:
        header = reader.header
        geometry = header.geometry
        metadata = header.metadata
        fps = reader.estimate_fps()
        print(f"File:        {video_path}")
        print(f"Frames:      {header.frame_count}")
        print(f"Size:        {geometry.width}x{geometry.height}")
        print(f"Color mode:  {geometry.color_mode.name}")
        print(f"Pixel depth: {geometry.pixel_depth_per_plane} bits")
        print(f"Byte order:  {'little' if geometry.byte_order == '<' else 'big'} endian")
        print(f"Camera id:   {header.camera_id}")
        print(f"Observer:    {metadata.observer}")
        print(f"Instrument:  {metadata.instrument}")
        print(f"Telescope:   {metadata.telescope}")
        print(f"Date (UTC):  {metadata.utc_date or 'unknown'}")
        print(f"Timestamps:  {'yes' if metadata.has_timestamps else 'no'}")
        print(f"Frame rate:  {f'{fps:.2f} fps' if fps else 'unknown'}")


def trim_command(video_path: Path, start: int, end: int | None, output: Path) -> None:
    """Write frames ``[start, end)`` of a SER file to a new file."""
    configure_logging()
    if output.resolve() == video_path.resolve():
        print("Error: Output file must differ from the input file", file=sys.stderr)
        sys.exit(1)
    try:
        count = trim_video(video_path, output, start, end)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"[OK] Wrote {count} frames to: {output}")


def main() -> None:
    """Main entry point for the spectrohelio CLI."""
    parser = argparse.ArgumentParser(
        prog="spectrohelio",
        description="Reconstruct solar images from spectroheliograph SER videos.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init subcommand
    init_parser = subparsers.add_parser(
        "init",
        help="Generate a default config file",
    )
    init_parser.add_argument(
        "--output-dir",
        type=str,
        required=True,
        help="Output directory for generated images",
    )
    init_parser.add_argument(
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to output config YAML file (default: config.yaml)",
    )
    init_parser.add_argument(
        "--line-type",
        choices=["absorption", "emission"],
        default="absorption",
        help="Type of the observed spectral line (default: absorption)",
    )

    # run subcommand
    run_parser = subparsers.add_parser(
        "run",
        help="Reconstruct the image of a video",
    )
    run_parser.add_argument(
        "video",
        type=Path,
        help="SER file or directory of frames",
    )
    run_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to pipeline config YAML file (default: built-in defaults)",
    )
    run_parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Override the output directory",
    )
    run_parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of worker threads (default: number of CPUs)",
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
        help="Hide the progress bar",
    )

    # info subcommand
    info_parser = subparsers.add_parser(
        "info",
        help="Print the header of a SER file",
    )
    info_parser.add_argument(
        "video",
        type=Path,
        help="SER file",
    )

    # trim subcommand
    trim_parser = subparsers.add_parser(
        "trim",
        help="Copy a range of frames to a new SER file",
    )
    trim_parser.add_argument(
        "video",
        type=Path,
        help="SER file",
    )
    trim_parser.add_argument(
        "--start",
        type=int,
        default=0,
        help="First frame to keep (default: 0)",
    )
    trim_parser.add_argument(
        "--end",
        type=int,
        default=None,
        help="End of the kept range, exclusive (default: end of video)",
    )
    trim_parser.add_argument(
        "--output",
        type=Path,
        required=True,
        help="Output SER file",
    )

    args = parser.parse_args()

    # Dispatch
    if args.command == "init":
        init_config(
            output_dir=args.output_dir,
            config_path=args.config,
            line_type=args.line_type,
        )
    elif args.command == "run":
        exit_code = run_command(
            video_path=args.video,
            config_path=args.config,
            output_dir=args.output_dir,
            workers=args.workers,
            verbose=args.verbose,
            quiet=args.quiet,
        )
        sys.exit(exit_code)
    elif args.command == "info":
        info_command(args.video)
    elif args.command == "trim":
        trim_command(
            video_path=args.video,
            start=args.start,
            end=args.end,
            output=args.output,
        )
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
