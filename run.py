from __future__ import annotations

import argparse
import json
import logging
import time
from pathlib import Path

from dotenv import load_dotenv
from tqdm import tqdm

from keycut.composite import ImageLayer, SolidColor, Transparent
from keycut.config import PRESET_COLORS
from keycut.io import load_raster, parse_hex_color, safe_image_id_from_relpath
from keycut.pipeline import process_image_full


def _iter_images(input_dir: Path):
    exts = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff"}
    for p in sorted(input_dir.rglob("*")):
        if p.is_file() and p.suffix.lower() in exts:
            yield p


def _background_from_args(value: str, blur: int):
    if value == "transparent":
        return Transparent()
    if value.startswith("preset:"):
        idx = int(value.split(":", 1)[1])
        if not 0 <= idx < len(PRESET_COLORS):
            raise ValueError(f"Preset index must be in 0..{len(PRESET_COLORS) - 1}, got {idx}")
        return SolidColor(parse_hex_color(PRESET_COLORS[idx]))
    if value.startswith("#"):
        return SolidColor(parse_hex_color(value))
    return ImageLayer(source=load_raster(value), blur_radius_px=blur)


def main() -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Subject cutout on magenta key + background replacement.")
    parser.add_argument("--input", type=str, help="Input directory containing images.")
    parser.add_argument("--output", type=str, help="Output directory for PNGs + manifest.jsonl.")
    parser.add_argument(
        "--background",
        default="transparent",
        type=str,
        help=(
            "'transparent' (default), a hex color like '#ffffff', 'preset:N' for a swatch from "
            "--list-presets, or a path to a backdrop image."
        ),
    )
    parser.add_argument("--blur", default=0, type=int, help="Backdrop image blur radius in px (0-40).")
    parser.add_argument("--skip-isolation", action="store_true", help="Inputs are already on a key color.")
    parser.add_argument("--mirror", action="store_true", help="Mirror inputs horizontally (camera captures).")
    parser.add_argument("--list-presets", action="store_true", help="Print the preset swatches and exit.")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    if args.list_presets:
        for i, color in enumerate(PRESET_COLORS):
            print(f"preset:{i}\t{color}")
        return 0
    if not args.input or not args.output:
        parser.error("--input and --output are required")

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    input_dir = Path(args.input)
    output_dir = Path(args.output)
    if not input_dir.exists():
        raise FileNotFoundError(f"Input dir not found: {input_dir}")

    try:
        background = _background_from_args(args.background, args.blur)
    except ValueError as e:
        parser.error(f"--background: {e}")

    images = list(_iter_images(input_dir))
    if not images:
        print(f"No images found under {input_dir}")
        return 0

    output_dir.mkdir(parents=True, exist_ok=True)
    manifest_path = output_dir / "manifest.jsonl"
    stats = {"total": 0, "ok": 0, "failed_auth": 0, "failed_generic": 0, "failed_input": 0}

    t0 = time.perf_counter()
    with open(manifest_path, "a", encoding="utf-8") as manifest_fp:
        for img_path in tqdm(images, desc="Cutting out", unit="img"):
            rel = img_path.relative_to(input_dir)
            image_id = safe_image_id_from_relpath(rel.as_posix())
            out_path = (output_dir / rel).with_suffix(".png")

            result, timings = process_image_full(
                image_id,
                str(img_path),
                str(out_path),
                background,
                skip_isolation=args.skip_isolation,
                mirror=args.mirror,
            )
            record = result.model_dump()
            record["total_s"] = round(timings.total_s, 3)
            manifest_fp.write(json.dumps(record, ensure_ascii=False) + "\n")
            manifest_fp.flush()

            stats["total"] += 1
            if result.status == "ok":
                stats["ok"] += 1
            else:
                stats[f"failed_{result.failure_kind}"] += 1
                tqdm.write(f"{img_path.name}: {result.message} {result.detail}".rstrip())

    t1 = time.perf_counter()
    print(
        "Done.\n"
        f"- total: {stats['total']}\n"
        f"- ok: {stats['ok']}\n"
        f"- failed: auth={stats['failed_auth']} generic={stats['failed_generic']} input={stats['failed_input']}\n"
        f"- elapsed_s: {t1 - t0:.2f}\n"
        f"- output: {output_dir.resolve()}\n"
        f"- manifest: {manifest_path.resolve()}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
