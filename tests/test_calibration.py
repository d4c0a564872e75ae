from __future__ import annotations

import numpy as np
import pytest

from kinect_calib.backend import MonoCalibration
from kinect_calib.calibration import (
    DEPTH_CALIB_FLAGS,
    RGB_CALIB_FLAGS,
    IntrinsicModel,
    StereoExtrinsic,
    build_transform_chain,
    calibrate_intrinsics,
    calibrate_stereo,
)
from kinect_calib.chessboard import CorrespondenceSet, FrameCorners
from kinect_calib.depth_model import DepthModel
from kinect_calib.errors import SolveError


class RecordingBackend:
    def __init__(self, camera_matrix):
        self.camera_matrix = camera_matrix
        self.calls = []

    def calibrate_mono(self, object_points, image_points, image_size, flags, camera_matrix=None, distortion=None):
        self.calls.append((len(object_points), image_size, flags, camera_matrix, distortion))
        n = len(object_points)
        return MonoCalibration(
            camera_matrix=self.camera_matrix,
            distortion=np.zeros(5),
            rvecs=tuple(np.zeros(3) for _ in range(n)),
            tvecs=tuple(np.array([0.0, 0.0, 1.0]) for _ in range(n)),
            rms=0.25,
        )


def _intrinsics(K) -> IntrinsicModel:
    return IntrinsicModel(np.asarray(K, dtype=np.float64), np.zeros(5), (), (), 0.0)


def _correspondences(rig, project) -> CorrespondenceSet:
    frames = tuple(
        FrameCorners(k, None, project(k).astype(np.float32).reshape(-1, 1, 2), (640, 480))
        for k in range(len(rig.rvecs))
    )
    return CorrespondenceSet(rig.pattern, frames)


def test_transform_chain_reproduces_rgb_pixel(rig):
    depth_model = DepthModel(A=rig.A, B=rig.B, baseline=0.125 * rig.A / rig.K_depth[0, 0])
    stereo = StereoExtrinsic(rotation=rig.R, translation=rig.T, rms=0.0)
    chain = build_transform_chain(_intrinsics(rig.K_depth), _intrinsics(rig.K_rgb), depth_model, stereo)

    assert chain.Q.shape == (4, 4)
    assert chain.S.shape == (4, 4)
    assert chain.P.shape == (3, 4)
    np.testing.assert_allclose(chain.D, chain.P @ chain.S @ chain.Q)

    for k in range(len(rig.rvecs)):
        depth_px = rig.depth_corners(k)
        rgb_px = rig.rgb_corners(k)
        Z = rig.board_depths(k)
        raw = rig.B - rig.A / Z
        d = depth_model.shift_to_disparity(raw)
        u, v = chain.project(depth_px[:, 0], depth_px[:, 1], d)
        np.testing.assert_allclose(u, rgb_px[:, 0], atol=1e-6)
        np.testing.assert_allclose(v, rgb_px[:, 1], atol=1e-6)


def test_transform_chain_rows(rig):
    K = rig.K_depth
    depth_model = DepthModel(A=rig.A, B=rig.B, baseline=0.4)
    stereo = StereoExtrinsic(rotation=np.eye(3), translation=np.zeros(3), rms=0.0)
    chain = build_transform_chain(_intrinsics(K), _intrinsics(rig.K_rgb), depth_model, stereo)
    np.testing.assert_allclose(chain.Q[0], [1, 0, 0, -K[0, 2]])
    np.testing.assert_allclose(chain.Q[1], [0, 1, 0, -K[1, 2]])
    np.testing.assert_allclose(chain.Q[2], [0, 0, 0, K[0, 0]])
    np.testing.assert_allclose(chain.Q[3], [0, 0, 1 / 0.4, 0])
    np.testing.assert_allclose(chain.P[:, :3], rig.K_rgb)


def test_zero_baseline_is_a_solve_error(rig):
    depth_model = DepthModel(A=0.0, B=rig.B, baseline=0.0)
    stereo = StereoExtrinsic(rotation=np.eye(3), translation=np.zeros(3), rms=0.0)
    with pytest.raises(SolveError):
        build_transform_chain(_intrinsics(rig.K_depth), _intrinsics(rig.K_rgb), depth_model, stereo)


def test_depth_calibration_pins_distortion(rig):
    backend = RecordingBackend(rig.K_depth)
    model = calibrate_intrinsics(_correspondences(rig, rig.depth_corners), "depth", backend)

    n, size, flags, seed, dist_seed = backend.calls[0]
    assert n == 5
    assert size == (640, 480)
    assert flags == DEPTH_CALIB_FLAGS
    assert seed is None and dist_seed is None
    assert model.rms == 0.25
    assert len(model.per_frame_errors) == 5
    np.testing.assert_allclose(model.projection_matrix(), np.hstack([rig.K_depth, np.zeros((3, 1))]))


def test_rgb_calibration_is_seeded(rig):
    backend = RecordingBackend(rig.K_rgb)
    calibrate_intrinsics(_correspondences(rig, rig.rgb_corners), "rgb", backend)

    _, _, flags, seed, dist_seed = backend.calls[0]
    assert flags == RGB_CALIB_FLAGS
    np.testing.assert_array_equal(seed, [[1, 0, 320], [0, 1, 240], [0, 0, 1]])
    np.testing.assert_array_equal(dist_seed, np.zeros(5))


def test_unknown_sensor_rejected(rig):
    with pytest.raises(ValueError):
        calibrate_intrinsics(_correspondences(rig, rig.rgb_corners), "thermal", RecordingBackend(rig.K_rgb))


def test_stereo_requires_matching_frame_counts(rig):
    ir = _correspondences(rig, rig.depth_corners)
    rgb = CorrespondenceSet(rig.pattern, ir.frames[:3])
    with pytest.raises(SolveError):
        calibrate_stereo(ir, rgb, _intrinsics(rig.K_depth), _intrinsics(rig.K_rgb), backend=None)


def test_empty_correspondences_are_a_solve_error(rig):
    empty = CorrespondenceSet(rig.pattern, ())
    with pytest.raises(SolveError):
        calibrate_intrinsics(empty, "depth", RecordingBackend(rig.K_depth))
    with pytest.raises(SolveError):
        calibrate_stereo(empty, empty, _intrinsics(rig.K_depth), _intrinsics(rig.K_rgb), backend=None)
