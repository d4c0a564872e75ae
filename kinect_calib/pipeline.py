"""End-to-end calibration and registration run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .backend import CalibrationBackend, OpenCVBackend
from .calibration import (
    IntrinsicModel,
    StereoExtrinsic,
    TransformChain,
    build_transform_chain,
    calibrate_intrinsics,
    calibrate_stereo,
)
from .calibration_io import write_camera_calibration, write_kinect_params
from .chessboard import ChessboardPattern, CorrespondenceSet, check_corner_ordering, collect_corners
from .config import CornerDetectionConfig, SensorConfig
from .depth_model import DepthModel, fit_depth_model, read_depth_sequence
from .errors import CalibrationWriteError
from .projection import reproject_sequence

logger = logging.getLogger(__name__)

DEPTH_CALIBRATION_FILE = "calibration_depth.yaml"
RGB_CALIBRATION_FILE = "calibration_rgb.yaml"
KINECT_PARAMS_FILE = "kinect_params.yaml"


@dataclass
class CalibrationRun:
    """State of one calibration run, filled in stage by stage."""

    data_dir: Path
    pattern: ChessboardPattern
    backend: CalibrationBackend = field(default_factory=OpenCVBackend)
    detection: CornerDetectionConfig = field(default_factory=CornerDetectionConfig)
    sensor: SensorConfig = field(default_factory=SensorConfig)

    ir_corners: Optional[CorrespondenceSet] = None
    depth_intrinsics: Optional[IntrinsicModel] = None
    depth_model: Optional[DepthModel] = None
    rgb_corners: Optional[CorrespondenceSet] = None
    rgb_intrinsics: Optional[IntrinsicModel] = None
    stereo: Optional[StereoExtrinsic] = None
    chain: Optional[TransformChain] = None
    ordering_mismatches: list[int] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)
    write_errors: list[CalibrationWriteError] = field(default_factory=list)

    def _write(self, writer, name: str, *args) -> None:
        try:
            self.written.append(writer(self.data_dir / name, *args))
        except CalibrationWriteError as exc:
            logger.error("%s", exc)
            self.write_errors.append(exc)

    def collect_ir(self) -> CorrespondenceSet:
        self.ir_corners = collect_corners(
            self.data_dir,
            "img_ir",
            self.pattern,
            self.backend,
            self.detection,
            apply_ir_offset=True,
            ir_offset=self.sensor.ir_depth_offset,
        )
        return self.ir_corners

    def calibrate_depth(self) -> IntrinsicModel:
        self.depth_intrinsics = calibrate_intrinsics(
            self.ir_corners, "depth", self.backend, self.sensor.image_size
        )
        self._write(write_camera_calibration, DEPTH_CALIBRATION_FILE, self.depth_intrinsics)
        return self.depth_intrinsics

    def fit_depth(self) -> DepthModel:
        depth_images = read_depth_sequence(self.data_dir, self.backend)
        if len(depth_images) < self.ir_corners.frame_count:
            logger.warning(
                "Only %d depth images for %d IR frames", len(depth_images), self.ir_corners.frame_count
            )
        self.depth_model = fit_depth_model(
            self.depth_intrinsics, self.ir_corners, depth_images, self.sensor.shift_scale
        )
        return self.depth_model

    def collect_rgb(self) -> CorrespondenceSet:
        self.rgb_corners = collect_corners(
            self.data_dir, "img_rgb", self.pattern, self.backend, self.detection, color=True
        )
        self.ordering_mismatches = check_corner_ordering(self.ir_corners, self.rgb_corners)
        return self.rgb_corners

    def calibrate_rgb(self) -> IntrinsicModel:
        self.rgb_intrinsics = calibrate_intrinsics(
            self.rgb_corners, "rgb", self.backend, self.sensor.image_size
        )
        self._write(write_camera_calibration, RGB_CALIBRATION_FILE, self.rgb_intrinsics)
        return self.rgb_intrinsics

    def register(self) -> TransformChain:
        self.stereo = calibrate_stereo(
            self.ir_corners,
            self.rgb_corners,
            self.depth_intrinsics,
            self.rgb_intrinsics,
            self.backend,
            self.sensor.image_size,
        )
        self.chain = build_transform_chain(
            self.depth_intrinsics, self.rgb_intrinsics, self.depth_model, self.stereo
        )
        self._write(write_kinect_params, KINECT_PARAMS_FILE, self.depth_model, self.stereo)
        return self.chain

    def reproject(self) -> list[Path]:
        images = reproject_sequence(
            self.data_dir,
            self.backend,
            self.chain,
            self.depth_model,
            self.rgb_intrinsics,
            self.sensor.shift_scale,
            self.sensor.gamma_size,
        )
        self.written.extend(images)
        return images


def run_calibration(
    data_dir: str | Path,
    pattern: ChessboardPattern,
    *,
    backend: CalibrationBackend | None = None,
    detection: CornerDetectionConfig | None = None,
    sensor: SensorConfig | None = None,
    reproject: bool = True,
) -> CalibrationRun:
    """Run every stage in order. Fatal errors propagate; write errors do not."""

    run = CalibrationRun(
        data_dir=Path(data_dir),
        pattern=pattern,
        backend=backend or OpenCVBackend(),
        detection=detection or CornerDetectionConfig(),
        sensor=sensor or SensorConfig(),
    )
    run.collect_ir()
    run.calibrate_depth()
    run.fit_depth()
    run.collect_rgb()
    run.calibrate_rgb()
    run.register()
    if reproject:
        run.reproject()
    return run
