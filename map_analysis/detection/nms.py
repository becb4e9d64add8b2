"""
Non-Maximum Suppression

Greedy per-class suppression of overlapping detections.
"""

import logging
from typing import List, Optional, Sequence

from ..data_models import DetectedObject
from ..utils.config_manager import ConfigManager


class NonMaximumSuppressor:
    """Removes duplicate same-class detections."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        """
        Initialize suppressor.

        Args:
            config_manager: Configuration manager instance
        """
        self.config = config_manager or ConfigManager()
        self.logger = logging.getLogger(__name__)

        self.iou_threshold = self.config.get('analysis.nms_threshold', 0.45)

    def set_threshold(self, iou_threshold: float) -> None:
        if not 0.0 <= iou_threshold <= 1.0:
            raise ValueError("IoU threshold must be within [0, 1]")
        self.iou_threshold = iou_threshold

    def suppress(self,
                 detections: Sequence[DetectedObject],
                 iou_threshold: Optional[float] = None,
                 max_detections: Optional[int] = None) -> List[DetectedObject]:
        """
        Apply greedy non-maximum suppression.

        Candidates are ranked by confidence (ties keep input order). A kept
        candidate suppresses lower-ranked candidates of the same class whose
        IoU with it exceeds the threshold; retained same-class pairs therefore
        have IoU <= threshold.

        Args:
            detections: Unsorted candidates
            iou_threshold: Overlap threshold (instance default if None)
            max_detections: Keep at most this many (highest confidence first)

        Returns:
            Kept detections in selection order
        """
        threshold = self.iou_threshold if iou_threshold is None else iou_threshold
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("IoU threshold must be within [0, 1]")

        # sorted() is stable, so equal confidences keep their input order
        ranked = sorted(detections, key=lambda det: det.confidence, reverse=True)
        suppressed = [False] * len(ranked)
        kept = []

        for i, candidate in enumerate(ranked):
            if suppressed[i]:
                continue

            kept.append(candidate)
            if max_detections is not None and len(kept) >= max_detections:
                break

            for j in range(i + 1, len(ranked)):
                if suppressed[j] or ranked[j].class_id != candidate.class_id:
                    continue
                if candidate.bounding_box.iou(ranked[j].bounding_box) > threshold:
                    suppressed[j] = True

        self.logger.debug(f"NMS kept {len(kept)} of {len(ranked)} detections (iou>{threshold:.2f})")

        return kept
