"""Reading and writing calibration documents.

Two document kinds are produced:

* a per-camera file (``calibration_depth.yaml`` / ``calibration_rgb.yaml``)
  in the ``camera_info`` layout: camera matrix, distortion, rectification
  and projection matrices, each as ``rows``/``cols``/``data``;
* ``kinect_params.yaml`` holding the depth model and the depth->RGB
  extrinsics.

Field order is fixed and preserved on disk.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import yaml

from .calibration import IntrinsicModel, StereoExtrinsic
from .depth_model import DepthModel
from .errors import CalibrationWriteError

logger = logging.getLogger(__name__)

CAMERA_FIELDS = (
    "camera_matrix",
    "distortion_coefficients",
    "rectification_matrix",
    "projection_matrix",
)
KINECT_FIELDS = (
    "shift_offset",
    "projector_depth_baseline",
    "depth_rgb_rotation",
    "depth_rgb_translation",
)


def _matrix_entry(values: np.ndarray, rows: int, cols: int) -> dict:
    flat = np.asarray(values, dtype=np.float64).reshape(-1)
    if flat.size != rows * cols:
        raise ValueError(f"Expected {rows * cols} values, got {flat.size}")
    return {"rows": rows, "cols": cols, "data": [float(v) for v in flat]}


def _floats(values) -> list[float]:
    return [float(v) for v in np.asarray(values, dtype=np.float64).reshape(-1)]


def camera_document(intrinsics: IntrinsicModel) -> dict:
    return {
        "camera_matrix": _matrix_entry(intrinsics.camera_matrix, 3, 3),
        "distortion_coefficients": _matrix_entry(intrinsics.distortion, 1, 5),
        "rectification_matrix": _matrix_entry(np.eye(3), 3, 3),
        "projection_matrix": _matrix_entry(intrinsics.projection_matrix(), 3, 4),
    }


def kinect_document(depth_model: DepthModel, stereo: StereoExtrinsic) -> dict:
    return {
        "shift_offset": float(depth_model.shift_offset),
        "projector_depth_baseline": float(depth_model.baseline),
        "depth_rgb_rotation": _floats(stereo.rotation),
        "depth_rgb_translation": _floats(stereo.translation),
    }


def _dump(path: str | Path, document: dict) -> Path:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(document, f, sort_keys=False, default_flow_style=None)
    except (OSError, yaml.YAMLError) as exc:
        raise CalibrationWriteError(path, str(exc)) from exc
    return path


def write_camera_calibration(path: str | Path, intrinsics: IntrinsicModel) -> Path:
    path = _dump(path, camera_document(intrinsics))
    logger.info("Wrote camera calibration to %s", path)
    return path


def write_kinect_params(path: str | Path, depth_model: DepthModel, stereo: StereoExtrinsic) -> Path:
    path = _dump(path, kinect_document(depth_model, stereo))
    logger.info("Wrote additional calibration parameters to %s", path)
    return path


def _load(path: str | Path, fields: tuple[str, ...]) -> dict:
    with Path(path).open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} is not a calibration document")
    missing = [name for name in fields if name not in data]
    if missing:
        raise ValueError(f"{path} is missing fields: {', '.join(missing)}")
    return data


def _matrix(entry: dict) -> np.ndarray:
    return np.asarray(entry["data"], dtype=np.float64).reshape(int(entry["rows"]), int(entry["cols"]))


def load_camera_calibration(path: str | Path) -> tuple[np.ndarray, np.ndarray]:
    """Camera matrix (3x3) and distortion vector (5,) from a camera document."""
    data = _load(path, CAMERA_FIELDS)
    return _matrix(data["camera_matrix"]), _matrix(data["distortion_coefficients"]).reshape(-1)


def load_kinect_params(path: str | Path) -> dict:
    data = _load(path, KINECT_FIELDS)
    return {
        "shift_offset": float(data["shift_offset"]),
        "projector_depth_baseline": float(data["projector_depth_baseline"]),
        "depth_rgb_rotation": np.asarray(data["depth_rgb_rotation"], dtype=np.float64).reshape(3, 3),
        "depth_rgb_translation": np.asarray(data["depth_rgb_translation"], dtype=np.float64).reshape(3),
    }
