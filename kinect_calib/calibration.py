"""Intrinsic and depth-to-RGB stereo calibration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Literal

import cv2
import numpy as np

from .backend import CalibrationBackend
from .chessboard import CorrespondenceSet
from .config import IMAGE_SIZE
from .errors import SolveError

if TYPE_CHECKING:
    from .depth_model import DepthModel

logger = logging.getLogger(__name__)

SensorKind = Literal["depth", "rgb"]

# Depth/IR distortion is treated as negligible at 640x480.
DEPTH_CALIB_FLAGS = (
    cv2.CALIB_FIX_K1
    | cv2.CALIB_FIX_K2
    | cv2.CALIB_FIX_K3
    | cv2.CALIB_ZERO_TANGENT_DIST
    | cv2.CALIB_FIX_ASPECT_RATIO
)
RGB_CALIB_FLAGS = cv2.CALIB_FIX_K3 | cv2.CALIB_ZERO_TANGENT_DIST | cv2.CALIB_FIX_ASPECT_RATIO


def rgb_seed_matrix() -> np.ndarray:
    return np.array([[1.0, 0.0, 320.0], [0.0, 1.0, 240.0], [0.0, 0.0, 1.0]], dtype=np.float64)


@dataclass(frozen=True)
class IntrinsicModel:
    camera_matrix: np.ndarray
    distortion: np.ndarray
    rvecs: tuple[np.ndarray, ...]
    tvecs: tuple[np.ndarray, ...]
    rms: float
    image_size: tuple[int, int] = IMAGE_SIZE
    per_frame_errors: tuple[float, ...] = ()

    @property
    def fx(self) -> float:
        return float(self.camera_matrix[0, 0])

    @property
    def fy(self) -> float:
        return float(self.camera_matrix[1, 1])

    @property
    def cx(self) -> float:
        return float(self.camera_matrix[0, 2])

    @property
    def cy(self) -> float:
        return float(self.camera_matrix[1, 2])

    def projection_matrix(self) -> np.ndarray:
        """Camera matrix with an appended zero column (3x4)."""
        return np.hstack([np.asarray(self.camera_matrix, dtype=np.float64), np.zeros((3, 1))])

    def extrinsics(self, frame: int) -> tuple[np.ndarray, np.ndarray]:
        """Rotation matrix and translation of the board in ``frame``."""
        rot, _ = cv2.Rodrigues(np.asarray(self.rvecs[frame], dtype=np.float64).reshape(3, 1))
        return rot, np.asarray(self.tvecs[frame], dtype=np.float64).reshape(3)


@dataclass(frozen=True)
class StereoExtrinsic:
    """Rigid transform from the depth camera frame to the RGB camera frame."""

    rotation: np.ndarray
    translation: np.ndarray
    rms: float


def _per_frame_errors(
    object_points: list[np.ndarray],
    image_points: list[np.ndarray],
    model: IntrinsicModel,
) -> tuple[float, ...]:
    errors = []
    for obj, img, rvec, tvec in zip(object_points, image_points, model.rvecs, model.tvecs):
        proj, _ = cv2.projectPoints(obj, rvec, tvec, model.camera_matrix, model.distortion)
        diff = proj.reshape(-1, 2) - np.asarray(img, dtype=np.float64).reshape(-1, 2)
        errors.append(float(np.sqrt(np.mean(np.sum(diff * diff, axis=1)))))
    return tuple(errors)


def _log_intrinsics(sensor: str, model: IntrinsicModel) -> None:
    k1, k2, t1, t2, k3 = (float(v) for v in model.distortion)
    logger.info("%s camera matrix:\n%s", sensor, np.array2string(model.camera_matrix, precision=6))
    logger.info(
        "%s distortion: k1=%f k2=%f t1=%f t2=%f k3=%f", sensor, k1, k2, t1, t2, k3
    )
    logger.info("%s reprojection error = %f", sensor, model.rms)
    for index, err in enumerate(model.per_frame_errors):
        logger.debug("%s frame %02d reprojection error = %f", sensor, index, err)


def calibrate_intrinsics(
    correspondences: CorrespondenceSet,
    sensor: SensorKind,
    backend: CalibrationBackend,
    image_size: tuple[int, int] = IMAGE_SIZE,
) -> IntrinsicModel:
    """Fit one camera matrix and distortion vector for ``sensor``.

    The depth/IR sensor is solved with all distortion terms pinned to zero;
    the RGB sensor keeps k1 and k2 free and starts from a seeded matrix.
    Both keep a fixed aspect ratio. The RMS error is reported, never gated.
    """

    object_points = correspondences.object_points()
    image_points = correspondences.image_points()
    if len(object_points) != len(image_points):
        raise ValueError("Pattern and corner sequences must have the same length")
    if not image_points:
        raise SolveError(f"No {sensor} frames to calibrate from")

    if sensor == "depth":
        flags, seed, dist_seed = DEPTH_CALIB_FLAGS, None, None
    elif sensor == "rgb":
        flags, seed, dist_seed = RGB_CALIB_FLAGS, rgb_seed_matrix(), np.zeros(5, dtype=np.float64)
    else:
        raise ValueError(f"Unknown sensor kind: {sensor!r}")

    try:
        solved = backend.calibrate_mono(object_points, image_points, image_size, flags, seed, dist_seed)
    except cv2.error as exc:
        raise SolveError(f"{sensor} calibration failed: {exc}") from exc
    distortion = np.zeros(5, dtype=np.float64)
    distortion[: solved.distortion.size] = solved.distortion[:5]

    model = IntrinsicModel(
        camera_matrix=solved.camera_matrix,
        distortion=distortion,
        rvecs=solved.rvecs,
        tvecs=solved.tvecs,
        rms=solved.rms,
        image_size=image_size,
    )
    model = replace(model, per_frame_errors=_per_frame_errors(object_points, image_points, model))
    _log_intrinsics(sensor, model)
    return model


def calibrate_stereo(
    depth_corners: CorrespondenceSet,
    rgb_corners: CorrespondenceSet,
    depth_intrinsics: IntrinsicModel,
    rgb_intrinsics: IntrinsicModel,
    backend: CalibrationBackend,
    image_size: tuple[int, int] = IMAGE_SIZE,
) -> StereoExtrinsic:
    """Solve the depth->RGB rigid transform with both intrinsics held fixed."""

    if depth_corners.frame_count != rgb_corners.frame_count:
        raise SolveError(
            f"IR and RGB frame counts differ: {depth_corners.frame_count} != {rgb_corners.frame_count}"
        )
    if depth_corners.frame_count == 0:
        raise SolveError("No IR/RGB frame pairs to calibrate from")

    try:
        R, T, rms = backend.calibrate_stereo(
            depth_corners.object_points(),
            depth_corners.image_points(),
            rgb_corners.image_points(),
            depth_intrinsics.camera_matrix,
            depth_intrinsics.distortion,
            rgb_intrinsics.camera_matrix,
            rgb_intrinsics.distortion,
            image_size,
        )
    except cv2.error as exc:
        raise SolveError(f"Stereo calibration failed: {exc}") from exc

    result = StereoExtrinsic(
        rotation=np.asarray(R, dtype=np.float64).reshape(3, 3),
        translation=np.asarray(T, dtype=np.float64).reshape(3),
        rms=float(rms),
    )
    logger.info("Translation between depth and RGB sensors (m): %s", np.array2string(result.translation, precision=6))
    logger.info("Rotation matrix:\n%s", np.array2string(result.rotation, precision=6))
    logger.info("Stereo reprojection error = %f", result.rms)
    return result


@dataclass(frozen=True)
class TransformChain:
    """Projective chain from (depth pixel, disparity) to an RGB pixel.

    ``Q`` lifts homogeneous ``(px, py, d, 1)`` into the depth camera frame,
    ``S`` moves it into the RGB camera frame and ``P`` projects it. Only the
    composed ``D = P @ S @ Q`` is used per pixel.
    """

    Q: np.ndarray
    S: np.ndarray
    P: np.ndarray
    D: np.ndarray

    def project(self, px, py, disparity) -> tuple[np.ndarray, np.ndarray]:
        """Apply ``D`` and divide by the third component."""
        px, py, disparity = np.broadcast_arrays(
            np.asarray(px, dtype=np.float64),
            np.asarray(py, dtype=np.float64),
            np.asarray(disparity, dtype=np.float64),
        )
        D = self.D
        q0 = D[0, 0] * px + D[0, 1] * py + D[0, 2] * disparity + D[0, 3]
        q1 = D[1, 0] * px + D[1, 1] * py + D[1, 2] * disparity + D[1, 3]
        q2 = D[2, 0] * px + D[2, 1] * py + D[2, 2] * disparity + D[2, 3]
        with np.errstate(divide="ignore", invalid="ignore"):
            return q0 / q2, q1 / q2


def build_transform_chain(
    depth_intrinsics: IntrinsicModel,
    rgb_intrinsics: IntrinsicModel,
    depth_model: DepthModel,
    stereo: StereoExtrinsic,
) -> TransformChain:
    b = float(depth_model.baseline)
    if b == 0.0 or not np.isfinite(b):
        raise SolveError(f"Projector baseline is degenerate: {b}")

    Q = np.array(
        [
            [1.0, 0.0, 0.0, -depth_intrinsics.cx],
            [0.0, 1.0, 0.0, -depth_intrinsics.cy],
            [0.0, 0.0, 0.0, depth_intrinsics.fx],
            [0.0, 0.0, 1.0 / b, 0.0],
        ],
        dtype=np.float64,
    )

    S = np.eye(4, dtype=np.float64)
    S[:3, :3] = stereo.rotation
    S[:3, 3] = stereo.translation

    P = np.array(
        [
            [rgb_intrinsics.fx, 0.0, rgb_intrinsics.cx, 0.0],
            [0.0, rgb_intrinsics.fy, rgb_intrinsics.cy, 0.0],
            [0.0, 0.0, 1.0, 0.0],
        ],
        dtype=np.float64,
    )

    D = P @ S @ Q
    logger.info("Transform matrix:\n%s", np.array2string(D, precision=6))
    return TransformChain(Q=Q, S=S, P=P, D=D)
