from __future__ import annotations

import base64
import io
from pathlib import Path
from typing import Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from .raster import RasterImage


def load_image(path: str) -> Image.Image:
    img = Image.open(path)
    img.load()
    return img


def load_raster(path: str) -> RasterImage:
    """
    Load any Pillow-readable file as RGBA.

    Raises ValueError for files that are not images or cannot be fully decoded.
    """
    try:
        img = load_image(path)
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Only image files are supported: {path}") from e
    return RasterImage.from_pil(img)


def decode_image(data: bytes) -> RasterImage:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError("Only image files are supported") from e
    return RasterImage.from_pil(img)


def encode_png(raster: RasterImage) -> bytes:
    buf = io.BytesIO()
    raster.to_pil().save(buf, format="PNG")
    return buf.getvalue()


def raster_to_base64_png(raster: RasterImage) -> str:
    return base64.b64encode(encode_png(raster)).decode("utf-8")


def save_png(raster: RasterImage, path: str) -> None:
    """
    Save as lossless RGBA PNG.
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    raster.to_pil().save(str(p), format="PNG", optimize=False)


def mirror_horizontal(raster: RasterImage) -> RasterImage:
    """Flip left/right so camera captures match the mirrored preview."""
    return RasterImage.from_array(np.ascontiguousarray(raster.pixels[:, ::-1, :]))


def parse_hex_color(value: str) -> Tuple[int, int, int]:
    """
    Parse "#rgb" or "#rrggbb" (leading '#' optional) into an (r, g, b) tuple.
    """
    s = value.strip().lstrip("#")
    if len(s) == 3:
        s = "".join(ch * 2 for ch in s)
    if len(s) != 6:
        raise ValueError(f"Invalid hex color: {value!r}")
    try:
        return int(s[0:2], 16), int(s[2:4], 16), int(s[4:6], 16)
    except ValueError as e:
        raise ValueError(f"Invalid hex color: {value!r}") from e


def safe_image_id_from_relpath(relpath: str) -> str:
    """
    Make a stable, filesystem-safe image id from a relative path.
    Example: "foo/bar/img 1.png" -> "foo__bar__img_1"
    """
    p = Path(relpath)
    stem = p.with_suffix("").as_posix()
    stem = stem.replace("/", "__")
    stem = "".join(ch if ch.isalnum() or ch in ("_", "-", ".") else "_" for ch in stem)
    return stem
