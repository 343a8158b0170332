from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

import numpy as np

from .config import DEFAULT_KEYING, KeyingParams
from .io import decode_image, encode_png
from .raster import RasterImage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyProfile:
    is_magenta_key: bool
    reference_color: Tuple[int, int, int]


class KeyDetector(Protocol):
    def detect(self, image: RasterImage, params: KeyingParams) -> KeyProfile: ...


def _is_magenta(rgb: Tuple[int, int, int], params: KeyingParams) -> bool:
    r, g, b = rgb
    return r > params.magenta_detect_min_rb and g < params.magenta_detect_max_g and b > params.magenta_detect_min_rb


class CornerSampleDetector:
    """
    Samples pixel (0,0). Corners of the service output are background, never subject.
    """

    def detect(self, image: RasterImage, params: KeyingParams) -> KeyProfile:
        r, g, b = (int(v) for v in image.pixels[0, 0, :3])
        return KeyProfile(is_magenta_key=_is_magenta((r, g, b), params), reference_color=(r, g, b))


class BorderMedianDetector:
    """
    Per-channel median of the one-pixel border; tolerates a subject touching a single corner.
    """

    def detect(self, image: RasterImage, params: KeyingParams) -> KeyProfile:
        px = image.pixels[..., :3]
        border = np.concatenate([px[0, :], px[-1, :], px[:, 0], px[:, -1]], axis=0)
        r, g, b = (int(v) for v in np.median(border, axis=0))
        return KeyProfile(is_magenta_key=_is_magenta((r, g, b), params), reference_color=(r, g, b))


_DEFAULT_DETECTOR = CornerSampleDetector()


def hard_cut_mask(rgb: np.ndarray, params: KeyingParams = DEFAULT_KEYING) -> np.ndarray:
    """
    Pixels that are magenta in character: high red and blue, low green, red/blue balanced.
    """
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    return (
        (r > params.hard_cut_min_rb)
        & (g < params.hard_cut_max_g)
        & (b > params.hard_cut_min_rb)
        & (np.abs(r - b) < params.hard_cut_max_rb_diff)
    )


def despill(rgb: np.ndarray, keep: np.ndarray, params: KeyingParams = DEFAULT_KEYING) -> np.ndarray:
    """
    Clamp magenta bleed on kept pixels.

    Skin has red > green but blue < green, so only pixels with BOTH red and blue above
    green are treated as spill. Red and blue are pulled down to green + offset; green is untouched.
    `rgb` must be a signed integer array; a new array is returned.
    """
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    limit = g + params.despill_offset
    spill = keep & (r > g) & (b > g) & (r > limit) & (b > limit)

    out = rgb.copy()
    out[..., 0] = np.where(spill, limit, r)
    out[..., 2] = np.where(spill, limit, b)
    return out


def reference_match_mask(rgb: np.ndarray, reference: Tuple[int, int, int], tolerance: int) -> np.ndarray:
    ref = np.array(reference, dtype=np.int16).reshape(1, 1, 3)
    return np.all(np.abs(rgb - ref) < int(tolerance), axis=-1)


def key(
    image: RasterImage,
    params: KeyingParams = DEFAULT_KEYING,
    detector: Optional[KeyDetector] = None,
) -> RasterImage:
    """
    Turn a key-colored raster into an alpha-masked, despilled cutout.

    Never raises: zero-size or malformed input comes back as an unmodified copy.
    """
    result, _profile = key_with_profile(image, params=params, detector=detector)
    return result


def key_with_profile(
    image: RasterImage,
    params: KeyingParams = DEFAULT_KEYING,
    detector: Optional[KeyDetector] = None,
) -> Tuple[RasterImage, Optional[KeyProfile]]:
    try:
        image.validate()
    except ValueError as e:
        logger.warning("Keying skipped, malformed raster: %s", e)
        return _identity(image), None
    if image.is_empty():
        logger.debug("Keying skipped for zero-size raster")
        return image.copy(), None

    det = detector if detector is not None else _DEFAULT_DETECTOR
    profile = det.detect(image, params)

    rgb = image.pixels[..., :3].astype(np.int16)
    alpha = image.pixels[..., 3].copy()

    if profile.is_magenta_key:
        cut = hard_cut_mask(rgb, params)
        alpha[cut] = 0
        # despill only pixels that stay visible
        keep = ~cut & (image.pixels[..., 3] > 0)
        rgb = despill(rgb, keep, params)
    else:
        cut = reference_match_mask(rgb, profile.reference_color, params.fallback_tolerance)
        alpha[cut] = 0

    out = np.empty_like(image.pixels)
    out[..., :3] = np.clip(rgb, 0, 255).astype(np.uint8)
    out[..., 3] = alpha
    return RasterImage.from_array(out), profile


def key_encoded(data: bytes, params: KeyingParams = DEFAULT_KEYING) -> bytes:
    """
    Decode, key and re-encode as PNG. Undecodable bytes are returned unchanged.
    """
    try:
        raster = decode_image(data)
    except ValueError:
        logger.warning("Keying skipped, input bytes are not a decodable image")
        return data
    if raster.is_empty():
        return data
    return encode_png(key(raster, params=params))


def _identity(image: RasterImage) -> RasterImage:
    # pixels failed validation, so they may be any array-like (nested lists, wrong dtype)
    return RasterImage(width=image.width, height=image.height, pixels=np.array(image.pixels, copy=True))
