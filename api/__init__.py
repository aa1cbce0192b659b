"""HTTP surface for the slide tiler."""
