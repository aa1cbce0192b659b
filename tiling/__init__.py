"""
Tiling utilities for whole-slide image preprocessing.

Includes thumbnail-gated background rejection and fixed-grid tile
extraction so large slides can be cut into model-sized PNG tiles.
"""
