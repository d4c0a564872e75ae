from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np
import pytest

from kinect_calib.backend import OpenCVBackend
from kinect_calib.chessboard import ChessboardPattern, frame_path


class InMemoryBackend(OpenCVBackend):
    """OpenCV solvers over images and corner detections held in memory."""

    def __init__(self):
        self.images: dict[Path, np.ndarray] = {}
        self.corners: dict[int, np.ndarray] = {}
        self.encoded: dict[Path, np.ndarray] = {}
        self.refined = 0

    def add_image(self, path, image: np.ndarray, corners: np.ndarray | None = None) -> None:
        path = Path(path)
        self.images[path] = image
        if corners is not None:
            self.corners[id(image)] = np.asarray(corners, dtype=np.float32).reshape(-1, 1, 2)

    def decode_image(self, path, color=False):
        return self.images.get(Path(path))

    def encode_image(self, path, image):
        self.encoded[Path(path)] = np.array(image, copy=True)
        return True

    def detect_checkerboard(self, image, rows, cols):
        corners = self.corners.get(id(image))
        return None if corners is None else corners.copy()

    def refine_subpixel(self, image, corners, window, criteria):
        self.refined += 1
        return np.array(corners, dtype=np.float32, copy=True)


@pytest.fixture
def memory_backend() -> InMemoryBackend:
    return InMemoryBackend()


@dataclass
class SyntheticRig:
    pattern: ChessboardPattern
    K_depth: np.ndarray
    K_rgb: np.ndarray
    R: np.ndarray
    T: np.ndarray
    A: float
    B: float
    rvecs: list[np.ndarray]
    tvecs: list[np.ndarray]

    def depth_corners(self, frame: int) -> np.ndarray:
        obj = self.pattern.object_points().astype(np.float64)
        proj, _ = cv2.projectPoints(obj, self.rvecs[frame], self.tvecs[frame], self.K_depth, np.zeros(5))
        return proj.reshape(-1, 2)

    def rgb_corners(self, frame: int) -> np.ndarray:
        rot, _ = cv2.Rodrigues(self.rvecs[frame])
        rvec_rgb, _ = cv2.Rodrigues(self.R @ rot)
        tvec_rgb = self.R @ self.tvecs[frame] + self.T
        obj = self.pattern.object_points().astype(np.float64)
        proj, _ = cv2.projectPoints(obj, rvec_rgb, tvec_rgb, self.K_rgb, np.zeros(5))
        return proj.reshape(-1, 2)

    def board_depths(self, frame: int) -> np.ndarray:
        rot, _ = cv2.Rodrigues(self.rvecs[frame])
        obj = self.pattern.object_points().astype(np.float64)
        return obj @ rot[2] + self.tvecs[frame][2]


@pytest.fixture
def rig() -> SyntheticRig:
    pattern = ChessboardPattern(rows=6, cols=7, square_size=0.025)
    rvecs = [
        np.array([0.30, 0.10, 0.05]),
        np.array([-0.25, 0.20, -0.10]),
        np.array([0.10, -0.35, 0.20]),
        np.array([-0.20, -0.15, 0.30]),
        np.array([0.35, 0.30, -0.05]),
    ]
    tvecs = [
        np.array([-0.07, -0.06, 0.60]),
        np.array([-0.05, -0.08, 0.70]),
        np.array([-0.09, -0.05, 0.65]),
        np.array([-0.06, -0.07, 0.80]),
        np.array([-0.08, -0.04, 0.55]),
    ]
    R, _ = cv2.Rodrigues(np.array([0.01, -0.02, 0.005]))
    return SyntheticRig(
        pattern=pattern,
        K_depth=np.array([[580.0, 0.0, 318.5], [0.0, 580.0, 242.0], [0.0, 0.0, 1.0]]),
        K_rgb=np.array([[525.0, 0.0, 321.0], [0.0, 525.0, 238.5], [0.0, 0.0, 1.0]]),
        R=R,
        T=np.array([-0.025, 0.001, 0.002]),
        A=2300.0,
        B=1090.0,
        rvecs=rvecs,
        tvecs=tvecs,
    )


def populate_rig_images(data_dir, backend: InMemoryBackend, rig: SyntheticRig, frames: int = 5) -> None:
    """Store IR, RGB and raw depth frames of ``rig`` as ``img_*_NN.png`` entries."""
    rng = np.random.default_rng(7)
    for k in range(frames):
        depth_px = rig.depth_corners(k)
        # The collector shifts IR corners by (-4, -3) into depth image coordinates.
        ir_px = depth_px + np.array([4.0, 3.0])
        backend.add_image(frame_path(data_dir, "img_ir", k), np.zeros((480, 640), np.uint8), ir_px)
        backend.add_image(
            frame_path(data_dir, "img_rgb", k),
            rng.integers(0, 255, size=(480, 640, 3), dtype=np.uint8),
            rig.rgb_corners(k),
        )

        depth = np.full((480, 640), rig.B - rig.A / 1.5, dtype=np.float64)
        raw = rig.B - rig.A / rig.board_depths(k)
        # Fill a small neighbourhood so nearest-pixel sampling is insensitive
        # to float32 rounding of the stored corners.
        centres = np.rint(depth_px).astype(int)
        for (x, y), value in zip(centres, raw):
            depth[y - 1 : y + 2, x - 1 : x + 2] = value
        backend.add_image(frame_path(data_dir, "img_depth", k), depth)


@pytest.fixture
def rig_dataset(tmp_path, memory_backend, rig) -> InMemoryBackend:
    populate_rig_images(tmp_path, memory_backend, rig)
    return memory_backend
