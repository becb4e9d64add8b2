"""
Object Placement Estimation

Derives position, scale, rotation and confidence for non-terrain segments
so a scene consumer can place matching objects on the map.
"""

import math
import numpy as np
from typing import List, Optional, Sequence
import logging

from ..data_models import AnalyzedSegment
from ..utils.config_manager import ConfigManager

# Relative covariance difference below which a mask counts as isotropic
ISOTROPY_TOLERANCE = 1e-9


def principal_axis_angle(mask: np.ndarray) -> float:
    """
    Orientation of a mask's foreground from second-order moments.

    Args:
        mask: Single-channel mask, non-zero = foreground

    Returns:
        Angle in degrees in (-90, 90]; 0 for fewer than two foreground
        pixels or an isotropic foreground
    """
    ys, xs = np.nonzero(mask)
    if xs.size < 2:
        return 0.0

    xs = xs.astype(np.float64) - xs.mean()
    ys = ys.astype(np.float64) - ys.mean()

    sxx = float(np.mean(xs * xs))
    syy = float(np.mean(ys * ys))
    sxy = float(np.mean(xs * ys))

    scale = max(sxx + syy, 1e-12)
    if abs(sxx - syy) / scale < ISOTROPY_TOLERANCE and abs(sxy) / scale < ISOTROPY_TOLERANCE:
        return 0.0

    return math.degrees(0.5 * math.atan2(2.0 * sxy, sxx - syy))


class ObjectPlacementEstimator:
    """Placement parameters for discrete (non-terrain) objects."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        """
        Initialize placement estimator.

        Args:
            config_manager: Configuration manager instance
        """
        self.config = config_manager or ConfigManager()
        self.logger = logging.getLogger(__name__)

        placement_config = self.config.get_placement_params()

        self.min_scale = placement_config.get('min_scale', 0.5)
        self.max_scale = placement_config.get('max_scale', 3.0)
        self.scale_reference_ratio = placement_config.get('scale_reference_ratio', 0.25)
        self.reference_area_ratio = placement_config.get('reference_area_ratio', 0.01)
        self.min_penalty = placement_config.get('min_penalty', 0.25)

        if self.scale_reference_ratio <= 0 or self.reference_area_ratio <= 0:
            raise ValueError("Placement reference ratios must be positive")

        self.logger.info(f"Placement estimator initialized: scale range "
                         f"[{self.min_scale}, {self.max_scale}]")

    def estimate(self,
                 segments: Sequence[AnalyzedSegment],
                 image_width: int,
                 image_height: int) -> List[AnalyzedSegment]:
        """
        Estimate placement for every non-terrain segment.

        Args:
            segments: Classified segments
            image_width: Image width in pixels
            image_height: Image height in pixels

        Returns:
            The non-terrain segments, updated in place
        """
        if image_width <= 0 or image_height <= 0:
            raise ValueError("Image dimensions must be positive")

        objects = [segment for segment in segments if not segment.is_terrain]
        for segment in objects:
            self.estimate_segment(segment, image_width, image_height)

        self.logger.info(f"Estimated placement for {len(objects)} objects")

        return objects

    def estimate_segment(self,
                         segment: AnalyzedSegment,
                         image_width: int,
                         image_height: int) -> None:
        box = segment.segment.bounding_box
        cx, cy = box.center

        segment.normalized_position = (
            float(np.clip(cx / image_width, 0.0, 1.0)),
            float(np.clip(cy / image_height, 0.0, 1.0)),
        )

        area_ratio = box.area / float(image_width * image_height)
        segment.estimated_scale = self.scale_for_area(area_ratio)
        segment.estimated_rotation = principal_axis_angle(segment.segment.mask)
        segment.placement_confidence = self.placement_confidence(
            segment.segment.confidence,
            segment.classification_confidence,
            area_ratio,
            box.aspect_ratio,
        )

        self.logger.debug(f"{segment.id}: pos={segment.normalized_position} "
                          f"scale={segment.estimated_scale:.2f} rot={segment.estimated_rotation:.1f}")

    def scale_for_area(self, area_ratio: float) -> float:
        """Linear map from area ratio to the configured scale range."""
        t = float(np.clip(area_ratio / self.scale_reference_ratio, 0.0, 1.0))
        return self.min_scale + (self.max_scale - self.min_scale) * t

    def placement_confidence(self,
                             detection_confidence: float,
                             classification_confidence: float,
                             area_ratio: float,
                             aspect_ratio: float) -> float:
        """
        Combined placement confidence in [0, 1].

        Objects far from the reference size or far from square are
        penalized, down to ``min_penalty``.
        """
        if area_ratio <= 0:
            area_factor = 0.0
        else:
            r = area_ratio / self.reference_area_ratio
            area_factor = max(self.min_penalty, min(r, 1.0 / r) ** 0.25)

        if aspect_ratio <= 0:
            aspect_factor = 0.0
        else:
            aspect_factor = max(self.min_penalty, min(aspect_ratio, 1.0 / aspect_ratio) ** 0.5)

        confidence = detection_confidence * classification_confidence * area_factor * aspect_factor
        return float(np.clip(confidence, 0.0, 1.0))
