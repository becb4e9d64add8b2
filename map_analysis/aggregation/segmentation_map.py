"""
Segmentation Map Rendering

Colors every segment's mask foreground into one RGBA raster.
"""

import colorsys
import numpy as np
from typing import Sequence, Tuple

from ..data_models import AnalyzedSegment

GOLDEN_RATIO_CONJUGATE = 0.6180339887


def segment_color(index: int,
                  is_terrain: bool,
                  saturation: float = 0.7,
                  value: float = 0.9,
                  terrain_blend: float = 0.3,
                  earth_tone: Sequence[float] = (0.55, 0.42, 0.28)) -> Tuple[float, float, float]:
    """
    Distinct color for the segment at ``index``.

    Hues step by the golden ratio so neighbouring indices stay far apart;
    terrain colors are pulled toward an earth tone.

    Returns:
        RGB floats in [0, 1]
    """
    hue = (index * GOLDEN_RATIO_CONJUGATE) % 1.0
    rgb = np.array(colorsys.hsv_to_rgb(hue, saturation, value))

    if is_terrain:
        rgb = rgb * (1.0 - terrain_blend) + np.asarray(earth_tone, dtype=np.float64) * terrain_blend

    r, g, b = np.clip(rgb, 0.0, 1.0)
    return float(r), float(g), float(b)


def render_segmentation_map(width: int,
                            height: int,
                            segments: Sequence[AnalyzedSegment],
                            saturation: float = 0.7,
                            value: float = 0.9,
                            alpha: float = 0.8,
                            terrain_blend: float = 0.3,
                            earth_tone: Sequence[float] = (0.55, 0.42, 0.28)) -> np.ndarray:
    """
    Render the global segmentation raster.

    Pixels outside every mask stay fully transparent. Where masks overlap
    the later segment overwrites the earlier one.

    Args:
        width: Image width in pixels
        height: Image height in pixels
        segments: Analyzed segments in drawing order

    Returns:
        (height, width, 4) uint8 RGBA raster
    """
    if width <= 0 or height <= 0:
        raise ValueError("Segmentation map dimensions must be positive")

    raster = np.zeros((height, width, 4), dtype=np.uint8)
    alpha_byte = int(round(np.clip(alpha, 0.0, 1.0) * 255))

    for index, analyzed in enumerate(segments):
        segment = analyzed.segment
        x0, y0, _, _ = segment.bounding_box.pixel_region(width, height)

        rows = min(segment.mask.shape[0], height - y0)
        cols = min(segment.mask.shape[1], width - x0)
        if rows <= 0 or cols <= 0:
            continue

        r, g, b = segment_color(index, analyzed.is_terrain, saturation, value,
                                terrain_blend, earth_tone)
        rgba = np.array([round(r * 255), round(g * 255), round(b * 255), alpha_byte], dtype=np.uint8)

        foreground = segment.mask[:rows, :cols] > 0
        raster[y0:y0 + rows, x0:x0 + cols][foreground] = rgba

    return raster
