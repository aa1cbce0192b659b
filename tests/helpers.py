"""Image fixtures shared by the tiler tests."""

import os

import numpy as np
from PIL import Image


def white(height, width):
    return np.full((height, width, 3), 255, dtype=np.uint8)


def noise(height, width, seed=0):
    rng = np.random.default_rng(seed)
    # Mid-range values so no pixel counts as white or black.
    return rng.integers(40, 200, size=(height, width, 3), dtype=np.uint8)


def downscale(rgb, factor):
    h, w = rgb.shape[:2]
    img = Image.fromarray(rgb).resize((w // factor, h // factor), resample=Image.Resampling.BILINEAR)
    return np.asarray(img)


def write_png(path, rgb):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    Image.fromarray(rgb).save(path, format="PNG")
    return path


def write_slide(root, image_id, source, thumbnail):
    """Lay out `{root}/images/{id}.png` and `{root}/thumbs/{id}_thumbnail.png`."""
    image_dir = os.path.join(root, "images")
    thumb_dir = os.path.join(root, "thumbs")
    write_png(os.path.join(image_dir, f"{image_id}.png"), source)
    write_png(os.path.join(thumb_dir, f"{image_id}_thumbnail.png"), thumbnail)
    return image_dir, thumb_dir
