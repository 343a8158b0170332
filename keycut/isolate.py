from __future__ import annotations

import base64
import io
import logging
from typing import Optional

import requests
from PIL import Image

from .config import (
    ISOLATION_PROMPT,
    MAX_GEN_RETRIES,
    get_api_key,
    get_base_url,
    get_isolation_model,
    get_timeout_s,
)
from .io import raster_to_base64_png
from .raster import RasterImage

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_TEXT = "The model did not return a cutout. Make sure the subject is clearly visible."


class IsolationError(RuntimeError):
    """The service did not produce an image. `detail` holds its text reply, if any."""

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.detail = detail


class IsolationAuthError(IsolationError):
    pass


def _decode_image_part(part: dict) -> Optional[RasterImage]:
    """
    Best-effort decode of a Gemini image output part.
    """
    inline = part.get("inlineData") if isinstance(part, dict) else None
    if not isinstance(inline, dict):
        return None
    data = inline.get("data")
    if not (isinstance(data, str) and data):
        return None
    raw = base64.b64decode(data)
    img = Image.open(io.BytesIO(raw))
    img.load()
    return RasterImage.from_pil(img)


def _first_text(parts: list) -> str:
    for p in parts:
        if isinstance(p, dict) and p.get("text"):
            return str(p["text"])
    return ""


def _isolate_once(image: RasterImage) -> RasterImage:
    api_key = get_api_key()
    if not api_key:
        raise IsolationAuthError("Missing GEMINI_API_KEY")

    url = f"{get_base_url()}/v1beta/models/{get_isolation_model()}:generateContent"
    payload = {
        "contents": [
            {
                "role": "user",
                "parts": [
                    {"inlineData": {"mimeType": "image/png", "data": raster_to_base64_png(image)}},
                    {"text": ISOLATION_PROMPT},
                ],
            }
        ]
    }
    try:
        resp = requests.post(url, params={"key": api_key}, json=payload, timeout=get_timeout_s())
    except requests.RequestException as e:
        raise IsolationError(f"Isolation request failed: {type(e).__name__}") from e

    if resp.status_code in (401, 403):
        raise IsolationAuthError(f"Isolation request rejected with HTTP {resp.status_code}")
    try:
        resp.raise_for_status()
    except requests.HTTPError as e:
        raise IsolationError(f"Isolation request failed with HTTP {resp.status_code}") from e
    try:
        data = resp.json()
    except ValueError as e:
        raise IsolationError("Malformed response from image model") from e
    if not isinstance(data, dict):
        raise IsolationError("Malformed response from image model")

    candidates = data.get("candidates")
    first = candidates[0] if isinstance(candidates, list) and candidates else None
    if not isinstance(first, dict):
        raise IsolationError("No candidates returned from image model", detail=DEFAULT_FAILURE_TEXT)
    content = first.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        parts = []

    for p in parts:
        try:
            img = _decode_image_part(p)
        except (OSError, ValueError) as e:
            raise IsolationError("Image payload in model response could not be decoded") from e
        if img is not None:
            return img

    text = _first_text(parts)
    raise IsolationError("No image payload found in model response", detail=text or DEFAULT_FAILURE_TEXT)


def isolate(image: RasterImage) -> RasterImage:
    """
    Ask the image model to put the subject on pure magenta. Retries up to MAX_GEN_RETRIES.

    Raises IsolationAuthError for a missing or rejected key (never retried),
    IsolationError for everything else once retries are exhausted.
    """
    last_err: Optional[IsolationError] = None
    for attempt in range(MAX_GEN_RETRIES + 1):
        try:
            return _isolate_once(image)
        except IsolationAuthError:
            raise
        except IsolationError as e:
            logger.warning("Isolation attempt %d failed: %s", attempt + 1, e)
            last_err = e
    raise last_err
