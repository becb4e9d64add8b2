"""
YOLO Detection Decoder

Decodes raw detection-model output into DetectedObject candidates. Detects
the tensor orientation automatically and falls back to a deterministic
synthetic grid when the output is missing or malformed.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Optional, List, Sequence
import logging

from ..data_models import DetectedObject
from ..exceptions import TensorShapeMismatchError
from ..geometry import BoundingBox
from ..utils.config_manager import ConfigManager

# Layout per candidate: cx, cy, w, h, objectness, class scores...
BOX_FIELDS = 5


@dataclass
class DecodeResult:
    """Decoder output plus layout and fallback information."""
    detections: List[DetectedObject] = field(default_factory=list)
    transposed: bool = False
    fallback_reason: Optional[str] = None

    @property
    def used_fallback(self) -> bool:
        return self.fallback_reason is not None


class DetectionDecoder:
    """Converts [1, A, B] detection tensors into scored detections."""

    def __init__(self,
                 config_manager: Optional[ConfigManager] = None,
                 labels: Optional[Sequence[str]] = None):
        """
        Initialize detection decoder.

        Args:
            config_manager: Configuration manager instance
            labels: Class labels indexed by class id. If None, loaded from config.
        """
        self.config = config_manager or ConfigManager()
        self.logger = logging.getLogger(__name__)

        det_config = self.config.get_detection_params()

        self.input_size = det_config.get('input_size', 640)
        self.normalized_coordinates = det_config.get('normalized_coordinates', True)

        # Objectness gate = max(floor, threshold * ratio)
        self.objectness_floor = det_config.get('objectness_floor', 0.1)
        self.objectness_ratio = det_config.get('objectness_ratio', 0.5)

        self.fallback_grid_size = det_config.get('fallback_grid_size', 4)
        self.fallback_seed = det_config.get('fallback_seed', 1337)

        self.labels = list(labels) if labels is not None else self.config.load_labels()
        self.confidence_threshold = self.config.get('analysis.confidence_threshold', 0.5)

        self.logger.info(f"Detection decoder initialized: {len(self.labels)} labels, "
                         f"input_size={self.input_size}")

    def class_name(self, class_id: int) -> str:
        """Label for a class id, synthesized when no label exists."""
        if 0 <= class_id < len(self.labels):
            return self.labels[class_id]
        return f"class_{class_id}"

    def objectness_gate(self, confidence_threshold: float) -> float:
        """Minimum objectness a candidate needs before class weighting."""
        return max(self.objectness_floor, confidence_threshold * self.objectness_ratio)

    def decode(self,
               output: Optional[np.ndarray],
               image_width: int,
               image_height: int,
               confidence_threshold: Optional[float] = None) -> DecodeResult:
        """
        Decode a detection tensor.

        Args:
            output: Raw model output with logical shape [1, A, B], or None
            image_width: Source image width in pixels
            image_height: Source image height in pixels
            confidence_threshold: Final confidence threshold (config default if None)

        Returns:
            DecodeResult with detections in candidate order
        """
        if image_width <= 0 or image_height <= 0:
            raise ValueError("Image dimensions must be positive")

        threshold = self.confidence_threshold if confidence_threshold is None else confidence_threshold

        if output is None:
            reason = "detection output tensor is missing"
            self.logger.warning(f"{reason}; emitting synthetic detections")
            return DecodeResult(
                detections=self.synthetic_detections(image_width, image_height, threshold),
                fallback_reason=reason,
            )

        try:
            candidates, transposed = self._orient(np.asarray(output, dtype=np.float32))
        except TensorShapeMismatchError as e:
            self.logger.warning(f"{e}; emitting synthetic detections")
            return DecodeResult(
                detections=self.synthetic_detections(image_width, image_height, threshold),
                fallback_reason=str(e),
            )

        detections = self._decode_candidates(candidates, image_width, image_height, threshold)

        self.logger.debug(f"Decoded {len(detections)} of {candidates.shape[0]} candidates "
                          f"(transposed={transposed}, threshold={threshold:.2f})")

        return DecodeResult(detections=detections, transposed=transposed)

    def _orient(self, output: np.ndarray):
        """
        Bring the tensor into (detections, features) layout.

        Returns:
            Tuple of (candidates array, transposed flag)
        """
        if output.ndim != 3:
            raise TensorShapeMismatchError(
                f"Detection output must have rank 3, got shape {output.shape}"
            )

        dim_a, dim_b = output.shape[1], output.shape[2]
        if dim_a > dim_b:
            candidates, transposed = output[0], False
        else:
            candidates, transposed = output[0].T, True

        if candidates.shape[1] < BOX_FIELDS + 1:
            raise TensorShapeMismatchError(
                f"Detection output needs at least {BOX_FIELDS + 1} features per candidate, "
                f"got shape {output.shape}"
            )

        return candidates, transposed

    def _decode_candidates(self,
                           candidates: np.ndarray,
                           image_width: int,
                           image_height: int,
                           threshold: float) -> List[DetectedObject]:
        """Apply both confidence gates and convert boxes to image space."""
        num_classes = candidates.shape[1] - BOX_FIELDS
        gate = self.objectness_gate(threshold)

        if self.normalized_coordinates:
            scale_x, scale_y = float(image_width), float(image_height)
        else:
            scale_x = image_width / float(self.input_size)
            scale_y = image_height / float(self.input_size)

        detections = []

        for row in candidates:
            obj_conf = float(row[4])
            if obj_conf < gate:
                continue

            # Find class with highest score
            best_class_id = -1
            best_class_score = 0.0
            for class_id in range(num_classes):
                score = float(row[BOX_FIELDS + class_id])
                if score > best_class_score:
                    best_class_score = score
                    best_class_id = class_id

            if best_class_id < 0:
                continue

            final_confidence = obj_conf * best_class_score
            if final_confidence < threshold:
                continue

            cx = float(row[0]) * scale_x
            cy = float(row[1]) * scale_y
            w = float(row[2]) * scale_x
            h = float(row[3]) * scale_y

            if w <= 0 or h <= 0:
                continue

            box = BoundingBox(x=cx - w / 2.0, y=cy - h / 2.0, width=w, height=h)
            box = box.clamp(image_width, image_height)

            if box.width <= 0 or box.height <= 0:
                continue

            class_name = self.class_name(best_class_id)
            class_scores = {
                self.class_name(class_id): float(row[BOX_FIELDS + class_id])
                for class_id in range(num_classes)
            }

            box.confidence = min(1.0, final_confidence)
            box.class_id = best_class_id
            box.class_name = class_name

            detections.append(DetectedObject(
                bounding_box=box,
                class_id=best_class_id,
                class_name=class_name,
                confidence=min(1.0, final_confidence),
                class_scores=class_scores,
            ))

        return detections

    def synthetic_detections(self,
                             image_width: int,
                             image_height: int,
                             confidence_threshold: Optional[float] = None) -> List[DetectedObject]:
        """
        Deterministic grid of placeholder detections.

        One detection per grid cell with pseudo-random class, size and
        confidence drawn from a fixed seed, so repeated runs agree.

        Args:
            image_width: Image width in pixels
            image_height: Image height in pixels
            confidence_threshold: Confidences are drawn at or above this value

        Returns:
            List of synthetic DetectedObject
        """
        threshold = self.confidence_threshold if confidence_threshold is None else confidence_threshold
        rng = np.random.default_rng(self.fallback_seed)

        grid = self.fallback_grid_size
        cell_w = image_width / float(grid)
        cell_h = image_height / float(grid)
        num_classes = max(1, len(self.labels))

        low = min(max(threshold, 0.5), 1.0)
        high = max(low, 0.95)
        detections = []

        for gy in range(grid):
            for gx in range(grid):
                class_id = int(rng.integers(0, num_classes))
                size = rng.uniform(0.3, 0.8)
                confidence = float(rng.uniform(low, high))

                w = cell_w * size
                h = cell_h * size
                cx = (gx + 0.5) * cell_w
                cy = (gy + 0.5) * cell_h

                class_name = self.class_name(class_id)
                box = BoundingBox(
                    x=cx - w / 2.0, y=cy - h / 2.0, width=w, height=h,
                    confidence=confidence, class_id=class_id, class_name=class_name,
                ).clamp(image_width, image_height)

                if box.width <= 0 or box.height <= 0:
                    continue

                detections.append(DetectedObject(
                    bounding_box=box,
                    class_id=class_id,
                    class_name=class_name,
                    confidence=confidence,
                    class_scores={class_name: confidence},
                    synthetic=True,
                ))

        return detections
