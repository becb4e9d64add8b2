"""
Global Height Blending

Combines per-segment terrain height fields into one image-sized raster.
"""

import numpy as np
from typing import Sequence

from ..data_models import AnalyzedSegment


def blend_height_fields(width: int,
                        height: int,
                        segments: Sequence[AnalyzedSegment],
                        base_height: float = 0.02) -> np.ndarray:
    """
    Blend terrain height fields into a global height map.

    The raster starts at ``base_height``; each field is written at its box
    offset taking the maximum of the existing and new heights. Parts of a
    field falling outside the image are clipped.

    Args:
        width: Image width in pixels
        height: Image height in pixels
        segments: Analyzed segments; those without a height map are skipped
        base_height: Normalized height of uncovered ground

    Returns:
        (height, width) float32 height map
    """
    if width <= 0 or height <= 0:
        raise ValueError("Height map dimensions must be positive")

    combined = np.full((height, width), base_height, dtype=np.float32)

    for segment in segments:
        field = segment.height_map
        if field is None or field.size == 0:
            continue

        x0, y0, _, _ = segment.segment.bounding_box.pixel_region(width, height)
        rows = min(field.shape[0], height - y0)
        cols = min(field.shape[1], width - x0)
        if rows <= 0 or cols <= 0:
            continue

        window = combined[y0:y0 + rows, x0:x0 + cols]
        np.maximum(window, field[:rows, :cols], out=window)

    return combined
