from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .composite import BackgroundSpec, ImageLayer, SolidColor, Transparent, composite
from .config import DEFAULT_KEYING, DEFAULT_SHADOW, KeyingParams, ShadowParams
from .contracts import ExportResult
from .io import load_raster, mirror_horizontal, save_png
from .isolate import IsolationAuthError, IsolationError, isolate
from .keying import KeyProfile, key_with_profile
from .raster import RasterImage

logger = logging.getLogger(__name__)

AUTH_FAILURE_MESSAGE = "API permission denied. Make sure the API key is valid."
GENERIC_FAILURE_MESSAGE = "Failed to process the image. Please try again."
INPUT_FAILURE_MESSAGE = "Only image files are supported."


@dataclass(frozen=True)
class StageTimings:
    load_s: float = 0.0
    isolate_s: float = 0.0
    key_s: float = 0.0
    composite_s: float = 0.0
    total_s: float = 0.0


def describe_background(background: BackgroundSpec) -> str:
    if isinstance(background, SolidColor):
        r, g, b = background.rgb
        return f"#{r:02x}{g:02x}{b:02x}"
    if isinstance(background, ImageLayer):
        return f"image(blur={background.blur_radius_px})"
    return "transparent"


def replace_background(
    image: RasterImage,
    background: BackgroundSpec = Transparent(),
    *,
    skip_isolation: bool = False,
    keying: KeyingParams = DEFAULT_KEYING,
    shadow: ShadowParams = DEFAULT_SHADOW,
) -> Tuple[RasterImage, Optional[KeyProfile]]:
    """
    In-memory chain: isolate -> key -> composite.

    Isolation errors propagate; keying and compositing do not fail for valid inputs.
    """
    keyed = image if skip_isolation else isolate(image)
    cutout, profile = key_with_profile(keyed, params=keying)
    return composite(cutout, background, shadow), profile


def _key_type(profile: Optional[KeyProfile]) -> Optional[str]:
    if profile is None:
        return None
    return "magenta" if profile.is_magenta_key else "reference"


def process_image_full(
    image_id: str,
    image_path: str,
    out_path: str,
    background: BackgroundSpec = Transparent(),
    *,
    skip_isolation: bool = False,
    mirror: bool = False,
) -> Tuple[ExportResult, StageTimings]:
    """
    Deterministic, linear pipeline:
      1) Load image (optionally mirrored, for camera captures)
      2) Isolate subject on magenta
      3) Key + despill
      4) Composite over background with drop shadow
      5) Save PNG

    Isolation and input failures are reported in the returned ExportResult, not raised.
    """
    t0 = time.perf_counter()
    base = dict(image_id=image_id, source_path=str(Path(image_path).resolve()), background=describe_background(background))

    # Load
    t_load0 = time.perf_counter()
    try:
        raw = load_raster(image_path)
    except ValueError as e:
        logger.warning("Skipping %s: %s", image_path, e)
        result = ExportResult(status="failed", failure_kind="input", message=INPUT_FAILURE_MESSAGE, detail=str(e), **base)
        return result, StageTimings(total_s=time.perf_counter() - t0)
    if mirror:
        raw = mirror_horizontal(raw)
    t_load1 = time.perf_counter()

    # Isolate
    t_iso0 = time.perf_counter()
    try:
        keyed = raw if skip_isolation else isolate(raw)
    except IsolationAuthError as e:
        logger.warning("Isolation rejected for %s: %s", image_id, e)
        result = ExportResult(status="failed", failure_kind="auth", message=AUTH_FAILURE_MESSAGE, detail=e.detail or str(e), **base)
        return result, StageTimings(load_s=t_load1 - t_load0, total_s=time.perf_counter() - t0)
    except IsolationError as e:
        logger.warning("Isolation failed for %s: %s", image_id, e)
        result = ExportResult(status="failed", failure_kind="generic", message=GENERIC_FAILURE_MESSAGE, detail=e.detail or str(e), **base)
        return result, StageTimings(load_s=t_load1 - t_load0, total_s=time.perf_counter() - t0)
    t_iso1 = time.perf_counter()

    # Key
    t_key0 = time.perf_counter()
    cutout, profile = key_with_profile(keyed)
    t_key1 = time.perf_counter()

    # Composite + save
    t_comp0 = time.perf_counter()
    final = composite(cutout, background)
    save_png(final, out_path)
    t_comp1 = time.perf_counter()

    result = ExportResult(
        status="ok",
        output_path=str(Path(out_path).resolve()),
        key_type=_key_type(profile),
        width=final.width,
        height=final.height,
        **base,
    )
    t1 = time.perf_counter()
    return result, StageTimings(
        load_s=t_load1 - t_load0,
        isolate_s=t_iso1 - t_iso0,
        key_s=t_key1 - t_key0,
        composite_s=t_comp1 - t_comp0,
        total_s=t1 - t0,
    )


def process_image(
    image_id: str,
    image_path: str,
    out_path: str,
    background: BackgroundSpec = Transparent(),
    **kwargs,
) -> ExportResult:
    result, _ = process_image_full(image_id, image_path, out_path, background, **kwargs)
    return result
