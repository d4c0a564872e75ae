"""Registering raw depth frames into the RGB camera."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import numpy as np

from .backend import CalibrationBackend
from .calibration import IntrinsicModel, TransformChain
from .chessboard import frame_path
from .config import GAMMA_SIZE, SHIFT_SCALE
from .depth_model import DepthModel

logger = logging.getLogger(__name__)

# Fixed-point scale of the occlusion buffer and the registered depth image.
DISPARITY_SCALE = 16

OUTPUT_PREFIXES = (
    "img_depth_rect",
    "img_depth_rect_color",
    "img_depth_color",
    "img_rgb_mapped",
    "img_rgb_rect",
)


@lru_cache(maxsize=None)
def gamma_table(size: int = GAMMA_SIZE) -> np.ndarray:
    """Cubic ramp mapping a raw reading onto six 256-wide colour bands."""
    idx = np.arange(size, dtype=np.float64)
    table = np.rint(((idx / float(size)) ** 3) * 6 * 6 * 256).astype(np.int64)
    table.setflags(write=False)
    return table


def _band_colors(pval: np.ndarray) -> np.ndarray:
    lb = (pval & 0xFF).astype(np.int64)
    band = pval >> 8
    out = np.zeros(pval.shape + (3,), dtype=np.int64)  # BGR

    def put(sel, b, g, r):
        out[sel, 0] = b[sel] if isinstance(b, np.ndarray) else b
        out[sel, 1] = g[sel] if isinstance(g, np.ndarray) else g
        out[sel, 2] = r[sel] if isinstance(r, np.ndarray) else r

    put(band == 0, 255 - lb, 255 - lb, 255)  # white -> red
    put(band == 1, 0, lb, 255)  # red -> yellow
    put(band == 2, 0, 255, 255 - lb)  # yellow -> green
    put(band == 3, lb, 255, 0)  # green -> cyan
    put(band == 4, 255, 255 - lb, 0)  # cyan -> blue
    put(band == 5, 255 - lb, 0, 0)  # blue -> black
    return out.astype(np.uint8)


@lru_cache(maxsize=None)
def depth_color_lut(size: int = GAMMA_SIZE) -> np.ndarray:
    lut = _band_colors(gamma_table(size))
    lut.setflags(write=False)
    return lut


def colorize_depth(raw: np.ndarray, size: int = GAMMA_SIZE) -> np.ndarray:
    """Colour raw depth readings (BGR, uint8). Readings past the table are clamped."""
    idx = np.clip(np.asarray(raw).astype(np.int64), 0, size - 1)
    return depth_color_lut(size)[idx]


@dataclass(frozen=True)
class FrameRegistration:
    depth_rect: np.ndarray  # uint16, disparity * 16 in the RGB frame
    depth_rect_color: np.ndarray
    depth_color: np.ndarray
    rgb_mapped: np.ndarray
    rgb_rect: np.ndarray

    def images(self) -> tuple[np.ndarray, ...]:
        return (self.depth_rect, self.depth_rect_color, self.depth_color, self.rgb_mapped, self.rgb_rect)


def _round_half_up_trunc(values: np.ndarray) -> np.ndarray:
    # Same as a C ``(int)(x + 0.5)`` cast: rounds, but truncates toward zero.
    with np.errstate(invalid="ignore"):
        return np.trunc(values + 0.5)


def register_frame(
    raw_depth: np.ndarray,
    rgb_rect: np.ndarray,
    chain: TransformChain,
    depth_model: DepthModel,
    shift_scale: float = SHIFT_SCALE,
    gamma_size: int = GAMMA_SIZE,
) -> FrameRegistration:
    """Forward-warp one raw depth frame into the (undistorted) RGB frame.

    Every depth pixel ``(row i, col j)`` is mapped with ``D @ (j, i, d, 1)``.
    When several depth pixels land on the same RGB pixel the largest
    disparity, i.e. the nearest surface, wins; among equal disparities the
    first pixel in raster order keeps the slot. Non-positive disparities are
    marked invalid (zero) and never enter the registered depth image.
    """

    raw = np.asarray(raw_depth)
    if raw.ndim != 2:
        raise ValueError("Depth input must be a 2-D array")
    rgb_rect = np.asarray(rgb_rect)
    h, w = raw.shape
    rgb_h, rgb_w = rgb_rect.shape[:2]

    rows, cols = np.indices((h, w))
    d = shift_scale * (depth_model.shift_offset - raw.astype(np.float64))
    d[d <= 0] = 0.0

    uf, vf = chain.project(cols, rows, d)
    u = _round_half_up_trunc(uf)
    v = _round_half_up_trunc(vf)
    with np.errstate(invalid="ignore"):
        inside = np.isfinite(u) & np.isfinite(v) & (u >= 0) & (v >= 0) & (u < rgb_w) & (v < rgb_h)

    u_idx = np.where(inside, u, 0).astype(np.int64)
    v_idx = np.where(inside, v, 0).astype(np.int64)
    disp = np.floor(d * DISPARITY_SCALE + 0.499).astype(np.int64)

    src_color = colorize_depth(raw, gamma_size)

    depth_rect = np.zeros((rgb_h, rgb_w), dtype=np.uint16)
    depth_rect_color = np.zeros((rgb_h, rgb_w, 3), dtype=np.uint8)

    # Occlusion buffer: keep the largest disparity per target pixel, earliest
    # source index on ties.
    candidates = np.flatnonzero(inside & (disp > 0))
    if candidates.size:
        target = v_idx.flat[candidates] * rgb_w + u_idx.flat[candidates]
        order = np.lexsort((candidates, -disp.flat[candidates]))
        _, first = np.unique(target[order], return_index=True)
        winners = candidates[order[first]]
        win_target = target[order[first]]
        depth_rect.flat[win_target] = np.minimum(disp.flat[winners], np.iinfo(np.uint16).max)
        depth_rect_color.reshape(-1, 3)[win_target] = src_color.reshape(-1, 3)[winners]

    rgb_mapped = np.zeros((h, w) + rgb_rect.shape[2:], dtype=rgb_rect.dtype)
    mapped = inside & (d != 0.0)
    rgb_mapped[mapped] = rgb_rect[v_idx[mapped], u_idx[mapped]]

    return FrameRegistration(
        depth_rect=depth_rect,
        depth_rect_color=depth_rect_color,
        depth_color=src_color,
        rgb_mapped=rgb_mapped,
        rgb_rect=rgb_rect,
    )


def reproject_sequence(
    data_dir: str | Path,
    backend: CalibrationBackend,
    chain: TransformChain,
    depth_model: DepthModel,
    rgb_intrinsics: IntrinsicModel,
    shift_scale: float = SHIFT_SCALE,
    gamma_size: int = GAMMA_SIZE,
) -> list[Path]:
    """Register every ``img_depth_NN``/``img_rgb_NN`` pair and write the outputs.

    Stops at the first index where either input is missing. Returns the paths
    that were written successfully.
    """

    written: list[Path] = []
    index = 0
    logger.info("Creating output images")
    while True:
        raw = backend.decode_image(frame_path(data_dir, "img_depth", index))
        if raw is None:
            break
        rgb = backend.decode_image(frame_path(data_dir, "img_rgb", index), color=True)
        if rgb is None:
            break

        rgb_rect = backend.undistort(rgb, rgb_intrinsics.camera_matrix, rgb_intrinsics.distortion)
        result = register_frame(raw, rgb_rect, chain, depth_model, shift_scale, gamma_size)

        for prefix, image in zip(OUTPUT_PREFIXES, result.images()):
            path = frame_path(data_dir, prefix, index)
            logger.info("Writing %s", path)
            if backend.encode_image(path, image):
                written.append(path)
            else:
                logger.warning("Failed to write %s", path)
        index += 1

    return written
