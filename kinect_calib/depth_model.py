"""Raw depth reading to metric depth model.

The sensor reports a raw shift value ``r`` per pixel that is related to the
metric depth ``Z`` by ``r = B - A / Z``. Multiplying through by ``Z`` gives a
system that is linear in ``(A, B)``::

    -A + Z * B = Z * r

which is solved in the least-squares sense over every board corner of every
frame, using the board poses recovered by the depth camera calibration to
supply ``Z``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np

from .backend import CalibrationBackend
from .calibration import IntrinsicModel
from .chessboard import CorrespondenceSet, frame_path
from .config import SHIFT_SCALE
from .errors import DetectionError, SolveError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DepthModel:
    A: float
    B: float
    baseline: float
    shift_scale: float = SHIFT_SCALE

    @property
    def shift_offset(self) -> float:
        return self.B

    def shift_to_disparity(self, raw) -> np.ndarray:
        return self.shift_scale * (self.B - np.asarray(raw, dtype=np.float64))

    def raw_to_depth(self, raw) -> np.ndarray:
        with np.errstate(divide="ignore"):
            return self.A / (self.B - np.asarray(raw, dtype=np.float64))


def solve_depth_params(depths: np.ndarray, readings: np.ndarray) -> tuple[float, float]:
    """Least-squares ``(A, B)`` from paired metric depths and raw readings."""

    Z = np.asarray(depths, dtype=np.float64).reshape(-1)
    r = np.asarray(readings, dtype=np.float64).reshape(-1)
    if Z.shape != r.shape:
        raise ValueError("Depth and reading arrays must have the same length")

    M = np.column_stack([-np.ones_like(Z), Z])
    y = Z * r
    normal = M.T @ M
    rhs = M.T @ y
    if Z.size < 2 or np.linalg.matrix_rank(normal) < 2:
        raise SolveError("Failed to solve least-squares problem: normal equations are singular")
    try:
        A, B = np.linalg.solve(normal, rhs)
    except np.linalg.LinAlgError as exc:
        raise SolveError(f"Failed to solve least-squares problem: {exc}") from exc
    return float(A), float(B)


def board_depths(intrinsics: IntrinsicModel, frame: int, object_points: np.ndarray) -> np.ndarray:
    """Metric depth of each pattern point in the depth camera frame."""
    rot, trans = intrinsics.extrinsics(frame)
    pts = np.asarray(object_points, dtype=np.float64).reshape(-1, 3)
    return pts @ rot[2] + trans[2]


def sample_readings(depth_image: np.ndarray, corners: np.ndarray) -> np.ndarray:
    """Raw readings at the nearest pixel to each corner."""
    pts = np.rint(np.asarray(corners, dtype=np.float64).reshape(-1, 2)).astype(np.int64)
    cols, rows = pts[:, 0], pts[:, 1]
    h, w = depth_image.shape[:2]
    if np.any((cols < 0) | (cols >= w) | (rows < 0) | (rows >= h)):
        raise ValueError("Corner lies outside the depth image")
    return np.asarray(depth_image, dtype=np.float64)[rows, cols]


def fit_depth_model(
    intrinsics: IntrinsicModel,
    correspondences: CorrespondenceSet,
    depth_images: Sequence[np.ndarray],
    shift_scale: float = SHIFT_SCALE,
) -> DepthModel:
    """Fit ``raw = B - A/Z`` over all frames that have a depth image.

    ``depth_images[k]`` must be the raw depth frame captured with IR frame
    ``k``. The projector baseline follows as ``shift_scale * A / fx``.
    """

    frames = correspondences.frames[: len(depth_images)]
    if not frames:
        raise SolveError("No depth images available for the depth model fit")

    obj = correspondences.pattern.object_points()
    depths, readings = [], []
    for corners, depth in zip(frames, depth_images):
        depths.append(board_depths(intrinsics, corners.index, obj))
        try:
            readings.append(sample_readings(depth, corners.points))
        except ValueError as exc:
            raise DetectionError(
                corners.image_path,
                f"Corner in image {corners.image_path} falls outside the depth image after the IR offset",
            ) from exc

    depths, readings = np.concatenate(depths), np.concatenate(readings)
    A, B = solve_depth_params(depths, readings)
    baseline = shift_scale * A / intrinsics.fx
    logger.info(
        "Reading to depth fitting parameters: A = %f, B = %f, projector baseline = %f",
        A,
        B,
        baseline,
    )
    model = DepthModel(A=A, B=B, baseline=baseline, shift_scale=shift_scale)
    residual = np.abs(model.raw_to_depth(readings) - depths)
    logger.debug("Depth model residual: mean %f m, max %f m", residual.mean(), residual.max())
    return model


def read_depth_sequence(data_dir: str | Path, backend: CalibrationBackend, prefix: str = "img_depth") -> list[np.ndarray]:
    """Load ``img_depth_00.png``, ``img_depth_01.png``, ... until one is missing."""
    images: list[np.ndarray] = []
    while True:
        image = backend.decode_image(frame_path(data_dir, prefix, len(images)))
        if image is None:
            break
        images.append(image)
    return images
