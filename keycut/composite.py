from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple, Union

import cv2
import numpy as np

from .config import DEFAULT_SHADOW, MAX_BACKGROUND_BLUR, ShadowParams
from .raster import RasterImage


@dataclass(frozen=True)
class Transparent:
    pass


@dataclass(frozen=True)
class SolidColor:
    rgb: Tuple[int, int, int]

    def __post_init__(self) -> None:
        if len(self.rgb) != 3 or any(not 0 <= int(c) <= 255 for c in self.rgb):
            raise ValueError(f"Expected RGB in 0..255, got {self.rgb}")


@dataclass(frozen=True, eq=False)
class ImageLayer:
    source: RasterImage
    blur_radius_px: int = 0

    def __post_init__(self) -> None:
        if not 0 <= int(self.blur_radius_px) <= MAX_BACKGROUND_BLUR:
            raise ValueError(f"Blur radius must be in 0..{MAX_BACKGROUND_BLUR}, got {self.blur_radius_px}")


BackgroundSpec = Union[Transparent, SolidColor, ImageLayer]


def cover_fit_rect(src_w: int, src_h: int, dst_w: int, dst_h: int) -> Tuple[float, float, float, float]:
    """
    Destination rect (dx, dy, dw, dh) that covers dst with src, aspect preserved, overflow centered.

    Wider source: match canvas height and center horizontally.
    Otherwise: match canvas width and center vertically.
    """
    src_aspect = src_w / float(src_h)
    dst_aspect = dst_w / float(dst_h)
    if src_aspect > dst_aspect:
        dh = float(dst_h)
        dw = dst_h * src_aspect
        dx = (dst_w - dw) / 2.0
        dy = 0.0
    else:
        dw = float(dst_w)
        dh = dst_w / src_aspect
        dx = 0.0
        dy = (dst_h - dh) / 2.0
    return dx, dy, dw, dh


def gaussian_blur(arr: np.ndarray, sigma: float) -> np.ndarray:
    """
    Gaussian blur with a 3-sigma kernel; pixels outside the array count as zero.
    """
    if sigma <= 0:
        return arr
    k = 2 * int(math.ceil(3.0 * sigma)) + 1
    return cv2.GaussianBlur(arr, (k, k), sigmaX=sigma, sigmaY=sigma, borderType=cv2.BORDER_CONSTANT)


def _to_float_rgba(raster: RasterImage) -> np.ndarray:
    return raster.pixels.astype(np.float32) / 255.0


def _over(dst: np.ndarray, src: np.ndarray) -> np.ndarray:
    """
    Straight-alpha source-over on float32 (H,W,4) layers in [0,1].
    """
    sa = src[..., 3:4]
    da = dst[..., 3:4]
    out_a = sa + da * (1.0 - sa)
    num = src[..., :3] * sa + dst[..., :3] * da * (1.0 - sa)
    out_rgb = np.divide(num, out_a, out=np.zeros_like(num), where=out_a > 0)
    return np.concatenate([out_rgb, out_a], axis=-1)


def _translate(arr: np.ndarray, dx: int, dy: int) -> np.ndarray:
    """Shift a 2D array by (dx, dy), filling uncovered pixels with zero."""
    h, w = arr.shape[:2]
    out = np.zeros_like(arr)
    if abs(dx) >= w or abs(dy) >= h:
        return out
    src_x0, src_x1 = max(0, -dx), min(w, w - dx)
    src_y0, src_y1 = max(0, -dy), min(h, h - dy)
    out[src_y0 + dy : src_y1 + dy, src_x0 + dx : src_x1 + dx] = arr[src_y0:src_y1, src_x0:src_x1]
    return out


def render_image_layer(layer: ImageLayer, width: int, height: int) -> np.ndarray:
    """
    Cover-fit the layer source onto a width x height canvas, blurred. Returns float32 (H,W,4).

    Work is bounded by the canvas size, not by the cover-fit rect, so extreme
    aspect ratios stay cheap.
    """
    src = layer.source
    dx, dy, dw, dh = cover_fit_rect(src.width, src.height, width, height)
    scale = dw / float(src.width)
    sigma = float(layer.blur_radius_px)

    # Only the canvas window plus the blur reach is ever resized.
    pad = int(math.ceil(3.0 * sigma)) + 1
    sx0, sx1 = _visible_span(dx, scale, width, pad, src.width)
    sy0, sy1 = _visible_span(dy, scale, height, pad, src.height)
    crop = src.pixels[sy0:sy1, sx0:sx1].astype(np.float32) / 255.0

    crop_w = max(1, int(round((sx1 - sx0) * scale)))
    crop_h = max(1, int(round((sy1 - sy0) * scale)))
    interp = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR
    scaled = cv2.resize(crop, (crop_w, crop_h), interpolation=interp)

    if sigma > 0:
        # premultiplied blur, unpremultiplied after
        pre = scaled.copy()
        pre[..., :3] *= pre[..., 3:4]
        pre = cv2.GaussianBlur(pre, (0, 0), sigmaX=sigma, sigmaY=sigma, borderType=cv2.BORDER_REFLECT)
        a = pre[..., 3:4]
        pre[..., :3] = np.divide(pre[..., :3], a, out=np.zeros_like(pre[..., :3]), where=a > 0)
        scaled = pre

    # fractional placement of the crop's top-left corner on the canvas
    ox = dx + sx0 * scale
    oy = dy + sy0 * scale
    m = np.float32([[1.0, 0.0, ox], [0.0, 1.0, oy]])
    placed = cv2.warpAffine(
        scaled, m, (width, height), flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_REFLECT
    )
    return np.clip(placed, 0.0, 1.0)


def _visible_span(offset: float, scale: float, extent: int, pad: int, src_extent: int) -> Tuple[int, int]:
    """Source index range [lo, hi) that lands on canvas [-pad, extent + pad)."""
    lo = int(math.floor((-pad - offset) / scale))
    hi = int(math.ceil((extent + pad - offset) / scale))
    lo = min(max(lo, 0), src_extent - 1)
    hi = max(min(hi, src_extent), lo + 1)
    return lo, hi


def render_background(background: BackgroundSpec, width: int, height: int) -> np.ndarray:
    canvas = np.zeros((height, width, 4), dtype=np.float32)
    if isinstance(background, SolidColor):
        canvas[..., :3] = np.array(background.rgb, dtype=np.float32) / 255.0
        canvas[..., 3] = 1.0
    elif isinstance(background, ImageLayer):
        if background.source.is_empty():
            return canvas
        canvas = render_image_layer(background, width, height)
    return canvas


def render_shadow(subject_alpha: np.ndarray, shadow: ShadowParams = DEFAULT_SHADOW) -> np.ndarray:
    """
    Drop shadow layer that follows the subject silhouette. Returns float32 (H,W,4).
    """
    h, w = subject_alpha.shape[:2]
    alpha = np.ascontiguousarray(subject_alpha, dtype=np.float32)
    footprint = _translate(alpha, int(shadow.offset_x), int(shadow.offset_y))
    footprint = gaussian_blur(footprint, float(shadow.blur) / 2.0)

    layer = np.zeros((h, w, 4), dtype=np.float32)
    layer[..., :3] = np.array(shadow.color, dtype=np.float32) / 255.0
    layer[..., 3] = np.clip(footprint * float(shadow.opacity), 0.0, 1.0)
    return layer


def composite(
    subject: RasterImage,
    background: BackgroundSpec = Transparent(),
    shadow: ShadowParams = DEFAULT_SHADOW,
) -> RasterImage:
    """
    Flatten background, drop shadow and subject onto a canvas sized to the subject.

    Layer order (bottom to top): background fill, shadow, subject at (0,0).
    """
    subject.validate()
    w, h = subject.width, subject.height
    if w <= 0 or h <= 0:
        return RasterImage.blank(w, h)

    canvas = render_background(background, w, h)

    fg = _to_float_rgba(subject)
    canvas = _over(canvas, render_shadow(fg[..., 3], shadow))
    canvas = _over(canvas, fg)

    out = np.clip(np.round(canvas * 255.0), 0, 255).astype(np.uint8)
    return RasterImage.from_array(out)
