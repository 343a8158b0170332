"""
Centralized configuration constants for keying, compositing and subject isolation.

Ground rules:
- 8-bit RGBA in, 8-bit RGBA out
- Every tolerance lives here; keying/compositing take them via KeyingParams / ShadowParams
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Tuple

# Key detection on the sampled corner pixel (pure magenta expected from the service).
MAGENTA_DETECT_MIN_RB = 180
MAGENTA_DETECT_MAX_G = 80

# Hard cut. The |r - b| guard keeps warm skin / cool clothing tones that are high in only one channel.
HARD_CUT_MIN_RB = 120
HARD_CUT_MAX_G = 100
HARD_CUT_MAX_RB_DIFF = 60

# Despill clamps red/blue down to green + offset.
DESPILL_OFFSET = 20

# Per-channel tolerance around the sampled corner when the service ignored the magenta instruction.
FALLBACK_TOLERANCE = 60

# Drop shadow under the subject (canvas-style: blur is the shadowBlur value, sigma = blur / 2).
SHADOW_COLOR = (0, 0, 0)
SHADOW_OPACITY = 0.3
SHADOW_BLUR = 20
SHADOW_OFFSET = (0, 5)

MAX_BACKGROUND_BLUR = 40

ISOLATION_MODEL = "gemini-2.5-flash-image"
MAX_GEN_RETRIES = 1

ISOLATION_PROMPT = (
    "Extract the main subject from this image. "
    "Place the subject on a solid PURE MAGENTA background (Hex Color #FF00FF). "
    "Ensure hard edges if possible. "
    "Do NOT use a checkerboard pattern. "
    "Do NOT use white."
)

# Swatches offered for flat-color backgrounds.
PRESET_COLORS = [
    "#f44336", "#e91e63", "#9c27b0",
    "#673ab7", "#3f51b5", "#2196f3",
    "#03a9f4", "#00bcd4", "#009688",
    "#4caf50", "#8bc34a", "#cddc39",
    "#ffeb3b", "#ffc107", "#ff9800",
    "#ff5722", "#795548", "#9e9e9e",
    "#607d8b", "#000000", "#ffffff",
]


@dataclass(frozen=True)
class KeyingParams:
    magenta_detect_min_rb: int = MAGENTA_DETECT_MIN_RB
    magenta_detect_max_g: int = MAGENTA_DETECT_MAX_G
    hard_cut_min_rb: int = HARD_CUT_MIN_RB
    hard_cut_max_g: int = HARD_CUT_MAX_G
    hard_cut_max_rb_diff: int = HARD_CUT_MAX_RB_DIFF
    despill_offset: int = DESPILL_OFFSET
    fallback_tolerance: int = FALLBACK_TOLERANCE


@dataclass(frozen=True)
class ShadowParams:
    color: Tuple[int, int, int] = SHADOW_COLOR
    opacity: float = SHADOW_OPACITY
    blur: float = SHADOW_BLUR
    offset_x: int = SHADOW_OFFSET[0]
    offset_y: int = SHADOW_OFFSET[1]


DEFAULT_KEYING = KeyingParams()
DEFAULT_SHADOW = ShadowParams()


def get_api_key() -> str:
    return os.getenv("GEMINI_API_KEY", "")


def get_base_url() -> str:
    return os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com").rstrip("/")


def get_timeout_s() -> float:
    try:
        return float(os.getenv("GEMINI_TIMEOUT_S", "60"))
    except ValueError:
        return 60.0


def get_isolation_model() -> str:
    return os.getenv("KEYCUT_ISOLATION_MODEL", ISOLATION_MODEL)
