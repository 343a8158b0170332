from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image

from keycut.composite import SolidColor, Transparent
from keycut.raster import RasterImage


def _write_dummy_image(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    img = Image.new("RGB", (32, 24), (200, 100, 50))
    img.save(str(path), format="PNG")


def _magenta_with_square(w: int = 160, h: int = 120) -> RasterImage:
    arr = np.zeros((h, w, 4), dtype=np.uint8)
    arr[...] = (255, 0, 255, 255)
    arr[55:65, 70:80] = (40, 90, 60, 255)
    return RasterImage.from_array(arr)


def test_pipeline_keys_and_composites_isolated_image(monkeypatch, tmp_path: Path):
    from keycut import pipeline as pipeline_mod

    # pipeline imports isolate directly, so patch it on the pipeline module.
    monkeypatch.setattr(pipeline_mod, "isolate", lambda _img: _magenta_with_square())

    img_path = tmp_path / "in" / "p.png"
    out_path = tmp_path / "out" / "p.png"
    _write_dummy_image(img_path)

    result, timings = pipeline_mod.process_image_full("p1", str(img_path), str(out_path), Transparent())

    assert result.status == "ok"
    assert result.key_type == "magenta"
    assert result.failure_kind is None
    assert (result.width, result.height) == (160, 120)
    assert out_path.exists()
    assert timings.total_s >= timings.key_s

    saved = np.array(Image.open(out_path).convert("RGBA"))
    assert saved[0, 0, 3] == 0
    assert tuple(saved[60, 75]) == (40, 90, 60, 255)


def test_pipeline_auth_failure_is_reported(monkeypatch, tmp_path: Path):
    from keycut import isolate as isolate_mod
    from keycut import pipeline as pipeline_mod

    def _reject(_img):
        raise isolate_mod.IsolationAuthError("Isolation request rejected with HTTP 403")

    monkeypatch.setattr(pipeline_mod, "isolate", _reject)

    img_path = tmp_path / "in" / "p.png"
    out_path = tmp_path / "out" / "p.png"
    _write_dummy_image(img_path)

    result = pipeline_mod.process_image("p2", str(img_path), str(out_path), SolidColor((255, 255, 255)))

    assert result.status == "failed"
    assert result.failure_kind == "auth"
    assert result.message == pipeline_mod.AUTH_FAILURE_MESSAGE
    assert result.background == "#ffffff"
    assert not out_path.exists()


def test_pipeline_generic_failure_keeps_service_text(monkeypatch, tmp_path: Path):
    from keycut import isolate as isolate_mod
    from keycut import pipeline as pipeline_mod

    def _refuse(_img):
        raise isolate_mod.IsolationError("No image payload found in model response", detail="No subject found.")

    monkeypatch.setattr(pipeline_mod, "isolate", _refuse)

    img_path = tmp_path / "in" / "p.png"
    _write_dummy_image(img_path)

    result = pipeline_mod.process_image("p3", str(img_path), str(tmp_path / "out" / "p.png"))

    assert result.failure_kind == "generic"
    assert result.message == pipeline_mod.GENERIC_FAILURE_MESSAGE
    assert result.detail == "No subject found."


def test_pipeline_skip_isolation_and_mirror(monkeypatch, tmp_path: Path):
    from keycut import pipeline as pipeline_mod

    def _unexpected(_img):
        raise AssertionError("isolate must not be called")

    monkeypatch.setattr(pipeline_mod, "isolate", _unexpected)

    arr = np.zeros((4, 80, 3), dtype=np.uint8)
    arr[...] = (255, 255, 255)
    arr[:, 0] = (10, 20, 30)  # left column is subject
    img_path = tmp_path / "in" / "keyed.png"
    img_path.parent.mkdir(parents=True)
    Image.fromarray(arr).save(str(img_path))
    out_path = tmp_path / "out" / "keyed.png"

    result, _ = pipeline_mod.process_image_full(
        "k1", str(img_path), str(out_path), Transparent(), skip_isolation=True, mirror=True
    )

    # Mirrored: subject column moved to the right edge, white corner becomes the key reference.
    assert result.status == "ok"
    assert result.key_type == "reference"
    saved = np.array(Image.open(out_path).convert("RGBA"))
    assert saved[0, 79, 3] == 255
    assert saved[0, 0, 3] == 0


def test_pipeline_non_image_input(tmp_path: Path):
    from keycut import pipeline as pipeline_mod

    bad = tmp_path / "in" / "notes.png"
    bad.parent.mkdir(parents=True)
    bad.write_text("not an image", encoding="utf-8")

    result = pipeline_mod.process_image("bad", str(bad), str(tmp_path / "out" / "bad.png"))

    assert result.status == "failed"
    assert result.failure_kind == "input"
    assert result.message == pipeline_mod.INPUT_FAILURE_MESSAGE


def test_replace_background_in_memory(monkeypatch):
    from keycut import pipeline as pipeline_mod

    monkeypatch.setattr(pipeline_mod, "isolate", lambda _img: _magenta_with_square())

    out, profile = pipeline_mod.replace_background(_magenta_with_square(), SolidColor((0, 0, 255)))

    assert profile is not None and profile.is_magenta_key
    assert out.pixel(0, 0) == (0, 0, 255, 255)
    assert out.pixel(75, 60) == (40, 90, 60, 255)


def test_pipeline_truncated_input_is_input_failure(tmp_path: Path):
    from keycut import pipeline as pipeline_mod

    rng = np.random.default_rng(0)
    noise = rng.integers(0, 256, size=(64, 64, 3), dtype=np.uint8)
    full = tmp_path / "full.png"
    Image.fromarray(noise).save(str(full))
    data = full.read_bytes()

    cut = tmp_path / "in" / "cut.png"
    cut.parent.mkdir(parents=True)
    cut.write_bytes(data[: len(data) // 2])
    out_path = tmp_path / "out" / "cut.png"

    result = pipeline_mod.process_image("cut", str(cut), str(out_path), skip_isolation=True)

    assert result.status == "failed"
    assert result.failure_kind == "input"
    assert result.message == pipeline_mod.INPUT_FAILURE_MESSAGE
    assert not out_path.exists()
