"""Exception types raised by the calibration pipeline."""

from __future__ import annotations


class CalibrationError(Exception):
    """Base class for all pipeline failures."""


class ConfigurationError(CalibrationError, ValueError):
    """Missing or invalid run parameters; nothing has been attempted yet."""


class DetectionError(CalibrationError, RuntimeError):
    """A loaded frame has no detectable checkerboard."""

    def __init__(self, image_path, message: str | None = None):
        self.image_path = image_path
        super().__init__(message or f"Didn't find corners in image {image_path}")


class SolveError(CalibrationError, RuntimeError):
    """A least-squares or stereo system could not be solved."""


class CalibrationWriteError(CalibrationError, OSError):
    """An output document could not be written. Later stages keep running."""

    def __init__(self, path, reason: str):
        self.path = path
        super().__init__(f"Failed to write {path}: {reason}")
