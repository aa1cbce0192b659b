"""
tile_extraction.py

Thumbnail-gated tile extraction for whole-slide images.

Full-resolution slides are too large to inspect pixel by pixel for every
tile. The slide's thumbnail is used as a cheap proxy instead:
  1) cut the slide into a fixed grid of square tiles
  2) look up each tile's footprint in the thumbnail and skip background
  3) downscale surviving tiles and write them as `{image_id}_{x}_{y}.png`

Tiles are processed on a bounded thread pool. Both rasters are shared
read-only between workers, and a failure in one tile never affects another.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

from tiling.background import is_background
from tiling.grid import iter_tile_coordinates, thumbnail_scale, tile_count, to_thumbnail_rect

logger = logging.getLogger(__name__)

OUT_DIR_ENV = "SLIDE_TILER_OUT_DIR"
DEFAULT_OUT_DIR = "patches"

STATUS_WRITTEN = "written"
STATUS_BACKGROUND = "background"
STATUS_FAILED = "failed"


class ImageDecodeError(ValueError):
    """An input file exists but could not be decoded as an image."""


@dataclass(frozen=True)
class TileSpec:
    size: int = 2048
    scale: float = 0.25
    threshold: float = 0.125

    def __post_init__(self) -> None:
        if self.size <= 0:
            raise ValueError(f"size must be positive, got {self.size}")
        if self.scale <= 0:
            raise ValueError(f"scale must be positive, got {self.scale}")
        if self.output_size < 1:
            raise ValueError(
                f"scale {self.scale} shrinks a {self.size}px tile below one pixel"
            )
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be in [0, 1], got {self.threshold}")

    @property
    def output_size(self) -> int:
        return int(self.size * self.scale)


@dataclass(frozen=True)
class TileResult:
    x: int
    y: int
    status: str
    path: Optional[str] = None  # set only for written tiles
    error: Optional[str] = None


def default_out_dir() -> str:
    return os.environ.get(OUT_DIR_ENV) or DEFAULT_OUT_DIR


def source_image_path(image_dir: str, image_id: str) -> str:
    return os.path.join(image_dir, f"{image_id}.png")


def thumbnail_image_path(thumbnail_dir: str, image_id: str) -> str:
    return os.path.join(thumbnail_dir, f"{image_id}_thumbnail.png")


def validate_image_id(image_id: str) -> str:
    """Reject ids that would place tiles outside the output directory."""
    if image_id in ("", ".", "..") or os.path.basename(image_id) != image_id:
        raise ValueError(f"image_id must be a bare file stem, got {image_id!r}")
    return image_id


def tile_filename(image_id: str, x: int, y: int) -> str:
    return f"{validate_image_id(image_id)}_{x}_{y}.png"


def load_rgb(image_path: str) -> np.ndarray:
    """
    Decode an image into a read-only RGB uint8 array (H, W, 3).

    Alpha is dropped; palette and grayscale inputs are expanded to RGB.
    """
    if not os.path.exists(image_path):
        raise FileNotFoundError(f"Image not found: {image_path}")
    try:
        with Image.open(image_path) as img:
            rgb = np.asarray(img.convert("RGB"))
    except Image.DecompressionBombError as e:
        raise ImageDecodeError(f"Image exceeds Pillow's pixel limit: {image_path}") from e
    except (UnidentifiedImageError, OSError) as e:
        raise ImageDecodeError(f"Could not decode image: {image_path}") from e
    rgb.setflags(write=False)
    return rgb


def process_tile(
    source: np.ndarray,
    thumbnail: np.ndarray,
    x: int,
    y: int,
    spec: TileSpec,
    image_id: str,
    out_dir: str,
) -> TileResult:
    """
    Classify one tile through the thumbnail and write it if it has content.

    Resize and write errors are logged and reported in the result rather
    than raised.
    """
    thumb_scale = thumbnail_scale(source.shape[1], thumbnail.shape[1])
    tx1, ty1, tx2, ty2 = to_thumbnail_rect(x, y, spec.size, thumb_scale)

    if is_background(thumbnail[ty1:ty2, tx1:tx2], spec.threshold):
        logger.debug("Tile (%d, %d) is background, skipping", x, y)
        return TileResult(x=x, y=y, status=STATUS_BACKGROUND)

    region = source[y : y + spec.size, x : x + spec.size]
    path = os.path.join(out_dir, tile_filename(image_id, x, y))

    try:
        tile = Image.fromarray(region).resize(
            (spec.output_size, spec.output_size),
            resample=Image.Resampling.BILINEAR,
        )
        tile.convert("RGBA").save(path, format="PNG")
    except (OSError, ValueError) as e:
        logger.error("Tile (%d, %d) failed: %s", x, y, e)
        return TileResult(x=x, y=y, status=STATUS_FAILED, error=str(e))

    return TileResult(x=x, y=y, status=STATUS_WRITTEN, path=path)


def extract_tiles(
    source: np.ndarray,
    thumbnail: np.ndarray,
    spec: TileSpec,
    image_id: str,
    out_dir: str,
    workers: Optional[int] = None,
) -> List[TileResult]:
    """
    Run `process_tile` for every grid coordinate and wait for all of them.

    Returns one result per coordinate, sorted by (x, y).
    """
    height, width = source.shape[:2]
    results: List[TileResult] = []

    with ThreadPoolExecutor(max_workers=workers or os.cpu_count()) as executor:
        futures = {
            executor.submit(process_tile, source, thumbnail, x, y, spec, image_id, out_dir): (x, y)
            for x, y in iter_tile_coordinates(width, height, spec.size)
        }

        for future in as_completed(futures):
            x, y = futures[future]
            try:
                results.append(future.result())
            except Exception as e:
                logger.exception("Unexpected error on tile (%d, %d)", x, y)
                results.append(TileResult(x=x, y=y, status=STATUS_FAILED, error=str(e)))

    results.sort(key=lambda r: (r.x, r.y))
    return results


def tile_image(
    image_dir: str,
    thumbnail_dir: str,
    image_id: str,
    out_dir: str,
    spec: Optional[TileSpec] = None,
    workers: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Tile one slide and return a JSON-serializable manifest of the run.

    Missing or undecodable inputs raise before any tile is written.
    """
    spec = spec or TileSpec()
    validate_image_id(image_id)
    source_path = source_image_path(image_dir, image_id)
    thumb_path = thumbnail_image_path(thumbnail_dir, image_id)

    source = load_rgb(source_path)
    thumbnail = load_rgb(thumb_path)
    return tile_arrays(source, thumbnail, image_id, out_dir, spec, workers, source_path, thumb_path)


def tile_arrays(
    source: np.ndarray,
    thumbnail: np.ndarray,
    image_id: str,
    out_dir: str,
    spec: TileSpec,
    workers: Optional[int] = None,
    source_path: Optional[str] = None,
    thumb_path: Optional[str] = None,
) -> Dict[str, Any]:
    """Tile already-decoded rasters; shared by the CLI and the HTTP API."""
    validate_image_id(image_id)
    os.makedirs(out_dir, exist_ok=True)
    expected = tile_count(source.shape[1], source.shape[0], spec.size)

    logger.info(
        "Tiling %s: %dx%d source, %dx%d thumbnail, %d tiles of %d",
        image_id,
        source.shape[1],
        source.shape[0],
        thumbnail.shape[1],
        thumbnail.shape[0],
        expected,
        spec.size,
    )
    results = extract_tiles(source, thumbnail, spec, image_id, out_dir, workers=workers)

    counts = {status: 0 for status in (STATUS_WRITTEN, STATUS_BACKGROUND, STATUS_FAILED)}
    for r in results:
        counts[r.status] += 1

    return {
        "image_id": image_id,
        "source_image": os.path.basename(source_path) if source_path else None,
        "thumbnail_image": os.path.basename(thumb_path) if thumb_path else None,
        "image_shape": {"height": int(source.shape[0]), "width": int(source.shape[1])},
        "thumbnail_shape": {"height": int(thumbnail.shape[0]), "width": int(thumbnail.shape[1])},
        "params": asdict(spec),
        "out_dir": out_dir,
        "tiles": [asdict(r) for r in results],
        "tile_count": expected,
        "written_count": counts[STATUS_WRITTEN],
        "background_count": counts[STATUS_BACKGROUND],
        "failed_count": counts[STATUS_FAILED],
    }


def main(argv: Optional[List[str]] = None) -> int:
    # -h is the background threshold, so help is long-form only.
    parser = argparse.ArgumentParser(
        description="Cut a slide into background-filtered, downscaled PNG tiles.",
        add_help=False,
    )
    parser.add_argument("--help", action="help", help="Show this message and exit.")
    parser.add_argument("-p", "--image_path", required=True, help="Directory holding {image_id}.png.")
    parser.add_argument(
        "-t", "--thumbnail_path", required=True, help="Directory holding {image_id}_thumbnail.png."
    )
    parser.add_argument("-i", "--image_id", required=True, help="Image stem shared by slide and thumbnail.")
    parser.add_argument("-s", "--size", type=int, default=2048, help="Tile size in full-resolution pixels.")
    parser.add_argument("-x", "--scale", type=float, default=0.25, help="Downscale factor for written tiles.")
    parser.add_argument(
        "-h", "--threshold", type=float, default=0.125, help="Background fraction at which a tile is skipped."
    )
    parser.add_argument("-o", "--out_dir", default=default_out_dir(), help="Directory to write tiles to.")
    parser.add_argument("-w", "--workers", type=int, default=None, help="Worker threads (default: CPU count).")
    parser.add_argument("--out_json", default=None, help="Where to write the run manifest JSON (optional).")
    parser.add_argument("--log_level", default=os.environ.get("LOG_LEVEL", "INFO"))
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.workers is not None and args.workers < 1:
        parser.error("--workers must be at least 1")
    try:
        spec = TileSpec(size=args.size, scale=args.scale, threshold=args.threshold)
    except ValueError as e:
        parser.error(str(e))
    try:
        validate_image_id(args.image_id)
    except ValueError as e:
        parser.error(str(e))

    # Local slides routinely exceed Pillow's decompression-bomb pixel limit.
    Image.MAX_IMAGE_PIXELS = None

    try:
        manifest = tile_image(
            image_dir=args.image_path,
            thumbnail_dir=args.thumbnail_path,
            image_id=args.image_id,
            out_dir=args.out_dir,
            spec=spec,
            workers=args.workers,
        )
    except (FileNotFoundError, ImageDecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.out_json:
        os.makedirs(os.path.dirname(args.out_json) or ".", exist_ok=True)
        with open(args.out_json, "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=2)
        print(f"Wrote manifest: {args.out_json}")

    print(
        f"Wrote {manifest['written_count']} of {manifest['tile_count']} tiles to {args.out_dir} "
        f"({manifest['background_count']} background, {manifest['failed_count']} failed)"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
