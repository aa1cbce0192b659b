"""
background.py

Background rejection for slide tiles.

Scanned slides are mostly empty glass (near-white) with the occasional
black scanner margin. A region is treated as background when enough of its
pixels are extreme in all three channels.
"""

from __future__ import annotations

import numpy as np

WHITE_THRESHOLD = 240
BLACK_THRESHOLD = 15


def _check_rgb(region: np.ndarray) -> None:
    if region.ndim != 3 or region.shape[2] != 3:
        raise ValueError("Expected RGB region array (H, W, 3)")


def background_fraction(region: np.ndarray) -> float:
    """
    Fraction of pixels that are near-white or near-black across all channels.

    Bounds are half-open: a region of width W contributes exactly W columns.
    An empty region has no informative pixels and reports 1.0.
    """
    _check_rgb(region)
    total = region.shape[0] * region.shape[1]
    if total == 0:
        return 1.0

    white = (region >= WHITE_THRESHOLD).all(axis=2)
    black = (region <= BLACK_THRESHOLD).all(axis=2)
    return float((white | black).sum()) / float(total)


def is_background(region: np.ndarray, threshold: float) -> bool:
    """True when at least `threshold` of the region is white or black."""
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"threshold must be in [0, 1], got {threshold}")
    return background_fraction(region) >= threshold
