"""Chessboard corner collection over numbered image sequences."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .backend import CalibrationBackend
from .config import IR_DEPTH_OFFSET, CornerDetectionConfig
from .errors import DetectionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChessboardPattern:
    """Definition of a planar chessboard calibration target.

    ``rows`` and ``cols`` count interior corners; ``square_size`` is the edge
    length of one square in metres.
    """

    rows: int
    cols: int
    square_size: float

    @property
    def size(self) -> tuple[int, int]:
        return self.rows, self.cols

    @property
    def num_corners(self) -> int:
        return self.rows * self.cols

    def object_points(self) -> np.ndarray:
        # Column index is the slow axis, row index the fast one, matching the
        # order the detector reports corners for a (rows, cols) pattern size.
        grid = np.mgrid[0 : self.cols, 0 : self.rows].reshape(2, -1).T
        obj = np.zeros((self.num_corners, 3), dtype=np.float32)
        obj[:, :2] = grid * float(self.square_size)
        return obj


@dataclass(frozen=True)
class FrameCorners:
    """Detected (and refined) corners of one frame."""

    index: int
    image_path: Path
    points: np.ndarray
    image_size: tuple[int, int]

    def as_float32(self) -> np.ndarray:
        pts = np.asarray(self.points, dtype=np.float32)
        if pts.ndim == 2:
            pts = pts[:, None, :]
        return pts


@dataclass(frozen=True)
class CorrespondenceSet:
    """All frames of one stage, paired with the shared pattern."""

    pattern: ChessboardPattern
    frames: tuple[FrameCorners, ...]

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    def object_points(self) -> list[np.ndarray]:
        obj = self.pattern.object_points()
        return [obj for _ in self.frames]

    def image_points(self) -> list[np.ndarray]:
        return [f.as_float32() for f in self.frames]


def frame_path(data_dir: str | Path, prefix: str, index: int) -> Path:
    return Path(data_dir) / f"{prefix}_{index:02d}.png"


def detect_frame_corners(
    image: np.ndarray,
    image_path: Path,
    index: int,
    pattern: ChessboardPattern,
    backend: CalibrationBackend,
    config: CornerDetectionConfig,
    offset: tuple[float, float] | None = None,
) -> FrameCorners:
    """Detect, refine and optionally shift the corners of a single image."""

    corners = backend.detect_checkerboard(image, pattern.rows, pattern.cols)
    if corners is None:
        raise DetectionError(image_path)

    corners = np.asarray(corners, dtype=np.float32).reshape(-1, 1, 2)
    if corners.shape[0] != pattern.num_corners:
        raise DetectionError(
            image_path,
            f"Expected {pattern.num_corners} corners in {image_path}, got {corners.shape[0]}",
        )
    logger.info("Found corners in image %s", image_path)

    win = max(1, int(config.subpixel_window))
    corners = backend.refine_subpixel(image, corners, win, config.criteria)
    corners = np.asarray(corners, dtype=np.float32).reshape(-1, 1, 2)

    if offset is not None:
        corners = corners + np.array(offset, dtype=np.float32)

    h, w = image.shape[:2]
    return FrameCorners(index=index, image_path=image_path, points=corners, image_size=(w, h))


def collect_corners(
    data_dir: str | Path,
    prefix: str,
    pattern: ChessboardPattern,
    backend: CalibrationBackend,
    config: CornerDetectionConfig | None = None,
    *,
    color: bool = False,
    apply_ir_offset: bool = False,
    ir_offset: tuple[float, float] = IR_DEPTH_OFFSET,
) -> CorrespondenceSet:
    """Collect corners from ``prefix_00.png``, ``prefix_01.png``, ... in ``data_dir``.

    The first index whose image cannot be read ends the sequence. A frame
    without a detectable board aborts the whole collection, since later
    stages pair frames of different sensors by index.
    """

    config = config or CornerDetectionConfig()
    offset = ir_offset if apply_ir_offset else None
    frames: list[FrameCorners] = []

    index = 0
    while True:
        path = frame_path(data_dir, prefix, index)
        image = backend.decode_image(path, color=color)
        if image is None:
            break
        frames.append(detect_frame_corners(image, path, index, pattern, backend, config, offset))
        index += 1

    logger.info("Collected %d %s frames from %s", len(frames), prefix, data_dir)
    return CorrespondenceSet(pattern=pattern, frames=tuple(frames))


def check_corner_ordering(
    first: CorrespondenceSet,
    second: CorrespondenceSet,
) -> list[int]:
    """Return indices of frame pairs whose corner orderings look reversed.

    Frames of two sensors are paired by index only. If the detector walked
    the board from opposite ends in the two images, the first-to-last corner
    directions point roughly opposite ways. Mismatches are logged, not raised.
    """

    mismatched: list[int] = []
    for a, b in zip(first.frames, second.frames):
        pa = a.as_float32().reshape(-1, 2)
        pb = b.as_float32().reshape(-1, 2)
        da = pa[-1] - pa[0]
        db = pb[-1] - pb[0]
        if float(np.dot(da, db)) < 0.0:
            mismatched.append(a.index)
            logger.warning(
                "Corner ordering of %s and %s disagree; index pairing may be wrong",
                a.image_path,
                b.image_path,
            )
    return mismatched
