"""
Grid geometry: tile corners in full-resolution space and their thumbnail
counterparts.
"""

from __future__ import annotations

from typing import Iterator, Tuple


def iter_tile_coordinates(width: int, height: int, size: int) -> Iterator[Tuple[int, int]]:
    """
    Yield (x, y) top-left corners of a non-overlapping grid, x outer.

    Strips narrower than `size` at the right and bottom edges are dropped.
    """
    if size <= 0:
        raise ValueError(f"size must be positive, got {size}")
    for x in range(0, width - size + 1, size):
        for y in range(0, height - size + 1, size):
            yield x, y


def tile_count(width: int, height: int, size: int) -> int:
    if size <= 0:
        raise ValueError(f"size must be positive, got {size}")
    if width < size or height < size:
        return 0
    return (width // size) * (height // size)


def thumbnail_scale(source_width: int, thumbnail_width: int) -> float:
    if source_width <= 0:
        raise ValueError(f"source width must be positive, got {source_width}")
    return float(thumbnail_width) / float(source_width)


def to_thumbnail_rect(
    x: int,
    y: int,
    size: int,
    thumb_scale: float,
) -> Tuple[int, int, int, int]:
    """
    Map a full-resolution tile to (x1, y1, x2, y2) in thumbnail space.

    x, y and size are scaled independently and truncated toward zero, so
    x=2048, size=2048 at scale 0.1 gives x1=204 and a side of 204.
    """
    tx = int(x * thumb_scale)
    ty = int(y * thumb_scale)
    ts = int(size * thumb_scale)
    return tx, ty, tx + ts, ty + ts
