"""Fixed sensor constants and tunables for a calibration run."""

from __future__ import annotations

from dataclasses import dataclass

import cv2

# Kinect depth/IR and RGB streams are both 640x480 (width, height).
IMAGE_SIZE = (640, 480)

# Raw shift units per disparity pixel.
SHIFT_SCALE = 0.125

# Pixel offset from the IR image to the depth image.
IR_DEPTH_OFFSET = (-4.0, -3.0)

GAMMA_SIZE = 2048


@dataclass(frozen=True)
class CornerDetectionConfig:
    """Parameters controlling sub-pixel corner refinement."""

    subpixel_window: int = 5
    max_iterations: int = 30
    epsilon: float = 0.1

    @property
    def criteria(self) -> tuple[int, int, float]:
        return (
            cv2.TERM_CRITERIA_MAX_ITER + cv2.TERM_CRITERIA_EPS,
            int(self.max_iterations),
            float(self.epsilon),
        )


@dataclass(frozen=True)
class SensorConfig:
    """Geometry and encoding constants of the depth sensor pair."""

    image_size: tuple[int, int] = IMAGE_SIZE
    shift_scale: float = SHIFT_SCALE
    ir_depth_offset: tuple[float, float] = IR_DEPTH_OFFSET
    gamma_size: int = GAMMA_SIZE
