"""
api/app.py

Minimal REST API for slide tiling.

This service exposes a tiling endpoint that:
- accepts a full-resolution slide and its thumbnail (PNG uploads)
- skips tiles the thumbnail marks as background
- writes downscaled tiles to the configured output directory
- returns the run manifest (one entry per grid coordinate)

Uploads are size-checked from the PNG header before any pixel data is
decoded; the cap comes from SLIDE_TILER_MAX_UPLOAD_PIXELS.
"""

from __future__ import annotations

import os
from io import BytesIO
from typing import Any, Dict

import numpy as np
from fastapi import FastAPI, File, HTTPException, UploadFile
from PIL import Image

from tiling.tile_extraction import TileSpec, default_out_dir, tile_arrays, validate_image_id

MAX_UPLOAD_PIXELS_ENV = "SLIDE_TILER_MAX_UPLOAD_PIXELS"
DEFAULT_MAX_UPLOAD_PIXELS = 16384 * 16384

app = FastAPI(
    title="Slide Tiler API",
    description="Thumbnail-gated tile extraction for whole-slide images.",
    version="0.1.0",
)


def max_upload_pixels() -> int:
    return int(os.environ.get(MAX_UPLOAD_PIXELS_ENV) or DEFAULT_MAX_UPLOAD_PIXELS)


def _read_png_bytes(file_bytes: bytes, field: str) -> np.ndarray:
    try:
        img = Image.open(BytesIO(file_bytes))
    except Image.DecompressionBombError as e:
        raise HTTPException(status_code=413, detail=f"'{field}' image is too large") from e
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Invalid image file for '{field}'") from e

    width, height = img.size
    if width * height > max_upload_pixels():
        raise HTTPException(
            status_code=413,
            detail=f"'{field}' image is {width}x{height}, over the {max_upload_pixels()} pixel limit",
        )

    try:
        rgb = np.asarray(img.convert("RGB"))
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Invalid image file for '{field}'") from e
    rgb.setflags(write=False)
    return rgb


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/tile")
def tile(
    image_id: str,
    source: UploadFile = File(...),
    thumbnail: UploadFile = File(...),
    size: int = 2048,
    scale: float = 0.25,
    threshold: float = 0.125,
) -> Dict[str, Any]:
    """
    Returns:
      - tiles: per-coordinate status (written / background / failed)
      - written_count, background_count, failed_count
      - out_dir: where the tiles were written
    """
    for field, upload in (("source", source), ("thumbnail", thumbnail)):
        if upload.content_type != "image/png":
            raise HTTPException(status_code=400, detail=f"'{field}' must be a PNG upload")

    try:
        validate_image_id(image_id)
        spec = TileSpec(size=size, scale=scale, threshold=threshold)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    source_arr = _read_png_bytes(source.file.read(), "source")
    thumb_arr = _read_png_bytes(thumbnail.file.read(), "thumbnail")

    return tile_arrays(
        source_arr,
        thumb_arr,
        image_id=image_id,
        out_dir=default_out_dir(),
        spec=spec,
        source_path=source.filename,
        thumb_path=thumbnail.filename,
    )
