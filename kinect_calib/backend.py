"""Image and solver capabilities consumed by the calibration pipeline.

The pipeline never calls OpenCV directly for detection, the nonlinear
calibration solves, undistortion or image codecs. It goes through an object
implementing :class:`CalibrationBackend`; :class:`OpenCVBackend` is the one
used in production.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence

import cv2
import numpy as np


@dataclass(frozen=True)
class MonoCalibration:
    """Raw output of a monocular calibration solve."""

    camera_matrix: np.ndarray
    distortion: np.ndarray
    rvecs: tuple[np.ndarray, ...]
    tvecs: tuple[np.ndarray, ...]
    rms: float


class CalibrationBackend(Protocol):
    def decode_image(self, path: str | Path, color: bool = False) -> Optional[np.ndarray]: ...

    def encode_image(self, path: str | Path, image: np.ndarray) -> bool: ...

    def detect_checkerboard(self, image: np.ndarray, rows: int, cols: int) -> Optional[np.ndarray]: ...

    def refine_subpixel(
        self,
        image: np.ndarray,
        corners: np.ndarray,
        window: int,
        criteria: tuple[int, int, float],
    ) -> np.ndarray: ...

    def calibrate_mono(
        self,
        object_points: Sequence[np.ndarray],
        image_points: Sequence[np.ndarray],
        image_size: tuple[int, int],
        flags: int,
        camera_matrix: Optional[np.ndarray] = None,
        distortion: Optional[np.ndarray] = None,
    ) -> MonoCalibration: ...

    def calibrate_stereo(
        self,
        object_points: Sequence[np.ndarray],
        image_points_a: Sequence[np.ndarray],
        image_points_b: Sequence[np.ndarray],
        camera_matrix_a: np.ndarray,
        distortion_a: np.ndarray,
        camera_matrix_b: np.ndarray,
        distortion_b: np.ndarray,
        image_size: tuple[int, int],
    ) -> tuple[np.ndarray, np.ndarray, float]: ...

    def undistort(self, image: np.ndarray, camera_matrix: np.ndarray, distortion: np.ndarray) -> np.ndarray: ...


def _to_gray(image: np.ndarray) -> np.ndarray:
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if image.ndim == 3 else image


class OpenCVBackend:
    """Default backend built on ``cv2``."""

    def decode_image(self, path: str | Path, color: bool = False) -> Optional[np.ndarray]:
        path = Path(path)
        if not path.is_file():
            return None
        flag = cv2.IMREAD_COLOR if color else cv2.IMREAD_UNCHANGED
        return cv2.imread(str(path), flag)

    def encode_image(self, path: str | Path, image: np.ndarray) -> bool:
        return bool(cv2.imwrite(str(path), image))

    def detect_checkerboard(self, image: np.ndarray, rows: int, cols: int) -> Optional[np.ndarray]:
        found, corners = cv2.findChessboardCorners(image, (rows, cols))
        if not found or corners is None:
            return None
        corners = np.asarray(corners, dtype=np.float32)
        return corners[:, None, :] if corners.ndim == 2 else corners

    def refine_subpixel(
        self,
        image: np.ndarray,
        corners: np.ndarray,
        window: int,
        criteria: tuple[int, int, float],
    ) -> np.ndarray:
        refined = np.array(corners, dtype=np.float32, copy=True)
        cv2.cornerSubPix(_to_gray(image), refined, (window, window), (-1, -1), criteria)
        return refined

    def calibrate_mono(
        self,
        object_points: Sequence[np.ndarray],
        image_points: Sequence[np.ndarray],
        image_size: tuple[int, int],
        flags: int,
        camera_matrix: Optional[np.ndarray] = None,
        distortion: Optional[np.ndarray] = None,
    ) -> MonoCalibration:
        rms, K, dist, rvecs, tvecs = cv2.calibrateCamera(
            [np.asarray(p, dtype=np.float32) for p in object_points],
            [np.asarray(p, dtype=np.float32) for p in image_points],
            image_size,
            None if camera_matrix is None else np.array(camera_matrix, dtype=np.float64),
            None if distortion is None else np.array(distortion, dtype=np.float64).reshape(-1, 1),
            flags=flags,
        )
        return MonoCalibration(
            camera_matrix=np.asarray(K, dtype=np.float64),
            distortion=np.asarray(dist, dtype=np.float64).reshape(-1)[:5],
            rvecs=tuple(np.asarray(r, dtype=np.float64).reshape(3) for r in rvecs),
            tvecs=tuple(np.asarray(t, dtype=np.float64).reshape(3) for t in tvecs),
            rms=float(rms),
        )

    def calibrate_stereo(
        self,
        object_points: Sequence[np.ndarray],
        image_points_a: Sequence[np.ndarray],
        image_points_b: Sequence[np.ndarray],
        camera_matrix_a: np.ndarray,
        distortion_a: np.ndarray,
        camera_matrix_b: np.ndarray,
        distortion_b: np.ndarray,
        image_size: tuple[int, int],
    ) -> tuple[np.ndarray, np.ndarray, float]:
        rms, _, _, _, _, R, T, _, _ = cv2.stereoCalibrate(
            [np.asarray(p, dtype=np.float32) for p in object_points],
            [np.asarray(p, dtype=np.float32) for p in image_points_a],
            [np.asarray(p, dtype=np.float32) for p in image_points_b],
            np.asarray(camera_matrix_a, dtype=np.float64),
            np.asarray(distortion_a, dtype=np.float64).reshape(-1, 1),
            np.asarray(camera_matrix_b, dtype=np.float64),
            np.asarray(distortion_b, dtype=np.float64).reshape(-1, 1),
            image_size,
            flags=cv2.CALIB_FIX_INTRINSIC,
        )
        return np.asarray(R, dtype=np.float64), np.asarray(T, dtype=np.float64).reshape(3), float(rms)

    def undistort(self, image: np.ndarray, camera_matrix: np.ndarray, distortion: np.ndarray) -> np.ndarray:
        return cv2.undistort(image, camera_matrix, np.asarray(distortion, dtype=np.float64).reshape(-1, 1))
