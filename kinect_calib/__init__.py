"""Kinect depth/IR to RGB calibration and depth registration."""

from .backend import CalibrationBackend, MonoCalibration, OpenCVBackend
from .chessboard import (
    ChessboardPattern,
    CorrespondenceSet,
    FrameCorners,
    check_corner_ordering,
    collect_corners,
)
from .config import CornerDetectionConfig, SensorConfig
from .calibration import (
    IntrinsicModel,
    StereoExtrinsic,
    TransformChain,
    build_transform_chain,
    calibrate_intrinsics,
    calibrate_stereo,
)
from .depth_model import DepthModel, fit_depth_model, solve_depth_params
from .projection import FrameRegistration, colorize_depth, gamma_table, register_frame, reproject_sequence
from .calibration_io import (
    load_camera_calibration,
    load_kinect_params,
    write_camera_calibration,
    write_kinect_params,
)
from .errors import (
    CalibrationError,
    CalibrationWriteError,
    ConfigurationError,
    DetectionError,
    SolveError,
)
from .pipeline import CalibrationRun, run_calibration

__all__ = [
    "CalibrationBackend",
    "MonoCalibration",
    "OpenCVBackend",
    "ChessboardPattern",
    "CorrespondenceSet",
    "FrameCorners",
    "CornerDetectionConfig",
    "SensorConfig",
    "IntrinsicModel",
    "StereoExtrinsic",
    "TransformChain",
    "DepthModel",
    "FrameRegistration",
    "CalibrationRun",
    "CalibrationError",
    "CalibrationWriteError",
    "ConfigurationError",
    "DetectionError",
    "SolveError",
    "check_corner_ordering",
    "collect_corners",
    "calibrate_intrinsics",
    "calibrate_stereo",
    "build_transform_chain",
    "fit_depth_model",
    "solve_depth_params",
    "colorize_depth",
    "gamma_table",
    "register_frame",
    "reproject_sequence",
    "load_camera_calibration",
    "load_kinect_params",
    "write_camera_calibration",
    "write_kinect_params",
    "run_calibration",
]
