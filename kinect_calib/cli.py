"""Command line entry point: ``kinect-calibrate DATA_DIR -r ROWS -c COLS -s SIZE``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from .chessboard import ChessboardPattern
from .errors import ConfigurationError, DetectionError, SolveError
from .pipeline import run_calibration

logger = logging.getLogger(__name__)


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str):
        raise ConfigurationError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="kinect-calibrate",
        description="Calibrate a Kinect depth/IR and RGB camera pair and register the depth frames.",
    )
    parser.add_argument("data_dir", nargs="?", type=Path, help="Directory with img_ir_NN, img_rgb_NN and img_depth_NN images")
    parser.add_argument("-r", "--rows", type=int, default=0, help="Number of interior chessboard corners per row")
    parser.add_argument("-c", "--cols", type=int, default=0, help="Number of interior chessboard corners per column")
    parser.add_argument("-s", "--square-size", type=float, default=0.0, help="Chessboard square edge length in metres")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.rows or not args.cols or not args.square_size or args.data_dir is None:
        raise ConfigurationError("Must give the checkerboard dimensions and data directory.")
    if args.rows < 0 or args.cols < 0 or args.square_size < 0:
        raise ConfigurationError("Checkerboard dimensions must be positive.")
    if not args.data_dir.is_dir():
        raise ConfigurationError(f"Data directory does not exist: {args.data_dir}")
    return args


def main(argv: Sequence[str] | None = None) -> int:
    try:
        args = parse_args(argv)
    except ConfigurationError as exc:
        print(exc)
        build_parser().print_usage()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    pattern = ChessboardPattern(args.rows, args.cols, args.square_size)
    try:
        run = run_calibration(args.data_dir, pattern)
    except DetectionError as exc:
        logger.error("*** %s", exc)
        return 1
    except SolveError as exc:
        logger.error("**** %s ****", exc)
        return 1

    depth_model = run.depth_model
    print(
        f"Depth RMS: {run.depth_intrinsics.rms:.4f} px, RGB RMS: {run.rgb_intrinsics.rms:.4f} px, "
        f"stereo RMS: {run.stereo.rms:.4f} px\n"
        f"A = {depth_model.A:.6f}, B = {depth_model.B:.6f}, baseline = {depth_model.baseline:.6f} m\n"
        f"Wrote {len(run.written)} files to {args.data_dir}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
