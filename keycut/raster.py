from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from PIL import Image


@dataclass(frozen=True, eq=False)
class RasterImage:
    """
    8-bit RGBA raster. `pixels` is a uint8 ndarray of shape (height, width, 4).

    Each stage treats its input as read-only and returns a new RasterImage.
    """

    width: int
    height: int
    pixels: np.ndarray

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "RasterImage":
        if arr.ndim != 3 or arr.shape[2] != 4:
            raise ValueError(f"Expected RGBA array (H,W,4), got shape={arr.shape}")
        pixels = np.ascontiguousarray(arr, dtype=np.uint8)
        return cls(width=int(pixels.shape[1]), height=int(pixels.shape[0]), pixels=pixels)

    @classmethod
    def from_bytes(cls, width: int, height: int, data: bytes) -> "RasterImage":
        """
        Build from a flat RGBA byte buffer of length width*height*4.
        """
        expected = int(width) * int(height) * 4
        if width < 0 or height < 0 or len(data) != expected:
            raise ValueError(f"RGBA buffer of {len(data)} bytes does not match {width}x{height}")
        arr = np.frombuffer(bytes(data), dtype=np.uint8).reshape(int(height), int(width), 4)
        return cls.from_array(arr.copy())

    @classmethod
    def from_pil(cls, img: Image.Image) -> "RasterImage":
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        return cls.from_array(np.array(img, dtype=np.uint8))

    @classmethod
    def blank(cls, width: int, height: int) -> "RasterImage":
        w, h = max(0, int(width)), max(0, int(height))
        return cls(width=w, height=h, pixels=np.zeros((h, w, 4), dtype=np.uint8))

    def validate(self) -> None:
        if not isinstance(self.pixels, np.ndarray) or self.pixels.dtype != np.uint8:
            raise ValueError("Raster pixels must be a uint8 ndarray")
        if self.pixels.shape != (self.height, self.width, 4):
            raise ValueError(f"Raster pixels shape {self.pixels.shape} does not match {self.width}x{self.height}")

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def copy(self) -> "RasterImage":
        return RasterImage(width=self.width, height=self.height, pixels=self.pixels.copy())

    def to_bytes(self) -> bytes:
        return self.pixels.tobytes()

    def to_pil(self) -> Image.Image:
        return Image.fromarray(self.pixels)

    def pixel(self, x: int, y: int):
        return tuple(int(v) for v in self.pixels[y, x])
