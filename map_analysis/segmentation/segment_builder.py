"""
Segment Builder

Turns surviving detections into ImageSegments with a foreground mask per
box. Masks come from a point-prompted segmentation model when one is
available and fall back to the solid box rectangle otherwise.
"""

import numpy as np
from typing import List, Optional, Sequence
import logging

from ..data_models import DetectedObject, ImageSegment, RunReport
from ..exceptions import MapAnalysisError, SegmentExtractionError
from ..inference.engine import InferenceEngine, SEGMENTATION_MODEL, run_model
from ..utils.class_keywords import is_terrain_class
from ..utils.concurrency import map_bounded
from ..utils.config_manager import ConfigManager
from ..utils.raster import image_to_tensor, resize_field, squeeze_to_2d

STAGE = "segmentation"

MASK_SOURCE_MODEL = "model"
MASK_SOURCE_BOX = "bounding_box"


class SegmentBuilder:
    """Creates one ImageSegment per detection."""

    def __init__(self,
                 config_manager: Optional[ConfigManager] = None,
                 inference_engine: Optional[InferenceEngine] = None):
        """
        Initialize segment builder.

        Args:
            config_manager: Configuration manager instance
            inference_engine: Engine hosting the segmentation model
        """
        self.config = config_manager or ConfigManager()
        self.engine = inference_engine
        self.logger = logging.getLogger(__name__)

        seg_config = self.config.get_segmentation_params()

        self.enabled = seg_config.get('enabled', True)
        self.input_size = seg_config.get('input_size', 1024)
        self.mask_threshold = seg_config.get('mask_threshold', 0.5)

        if self.input_size <= 0:
            raise ValueError("segmentation.input_size must be positive")

        self.logger.info(f"Segment builder initialized: enabled={self.enabled}, "
                         f"input_size={self.input_size}")

    def model_available(self, use_high_quality: bool = True) -> bool:
        return (self.enabled and use_high_quality
                and self.engine is not None and self.engine.has_model(SEGMENTATION_MODEL))

    async def build(self,
                    image: np.ndarray,
                    detections: Sequence[DetectedObject],
                    report: Optional[RunReport] = None,
                    use_high_quality: bool = True,
                    max_concurrency: int = 1,
                    yield_every: int = 5,
                    checkpoint=None) -> List[ImageSegment]:
        """
        Build segments for a list of detections.

        Args:
            image: RGB uint8 image
            detections: Detections surviving NMS
            report: Run report receiving recovered failures
            use_high_quality: Use the segmentation model when available
            max_concurrency: Maximum segments processed at once
            yield_every: Yield to the event loop after this many segments
            checkpoint: Cancellation check invoked before each segment

        Returns:
            One segment per detection, in detection order
        """
        report = report if report is not None else RunReport()
        use_model = self.model_available(use_high_quality)

        if not use_model:
            self.logger.debug("Segmentation model not used; masks are box rectangles")

        # One shared tensor for every point prompt
        tensor = image_to_tensor(image, self.input_size) if use_model and detections else None

        async def build_one(index: int, detection: DetectedObject) -> ImageSegment:
            return await self.build_segment(image, detection, index, report,
                                            use_model=use_model, tensor=tensor)

        segments = await map_bounded(build_one, detections, max_concurrency, yield_every, checkpoint)

        model_masks = sum(1 for s in segments if s.metadata.get('mask_source') == MASK_SOURCE_MODEL)
        self.logger.info(f"Built {len(segments)} segments ({model_masks} model masks)")

        return segments

    async def build_segment(self,
                            image: np.ndarray,
                            detection: DetectedObject,
                            index: int,
                            report: RunReport,
                            use_model: bool = False,
                            tensor: Optional[np.ndarray] = None) -> ImageSegment:
        """Build the segment for a single detection."""
        height, width = image.shape[:2]
        segment_id = f"segment-{index}"
        box = detection.bounding_box

        mask = None
        mask_source = MASK_SOURCE_BOX

        if use_model:
            try:
                mask = await self._predict_mask(image, detection, tensor)
                mask_source = MASK_SOURCE_MODEL
            except MapAnalysisError as e:
                report.record_failure(STAGE, e, segment_id, self.logger)
            except ValueError as e:
                report.record_failure(STAGE, SegmentExtractionError(str(e)), segment_id, self.logger)

        if mask is None:
            mask = self.rectangle_mask(box, width, height)

        return ImageSegment(
            id=segment_id,
            bounding_box=box,
            mask=mask,
            confidence=detection.confidence,
            class_name=detection.class_name,
            class_id=detection.class_id,
            area=float(np.count_nonzero(mask)),
            is_terrain=is_terrain_class(detection.class_name),
            metadata={
                'mask_source': mask_source,
                'class_scores': dict(detection.class_scores),
                'detection_index': index,
                'synthetic': detection.synthetic,
            },
        )

    async def _predict_mask(self,
                            image: np.ndarray,
                            detection: DetectedObject,
                            tensor: Optional[np.ndarray]) -> np.ndarray:
        """
        Run the point-prompted segmentation model for one box.

        Raises:
            SegmentExtractionError: If the model mask has no foreground in the box
        """
        height, width = image.shape[:2]
        if tensor is None:
            tensor = image_to_tensor(image, self.input_size)

        cx, cy = detection.bounding_box.center
        point = np.array([[[cx / width, cy / height]]], dtype=np.float32)

        outputs = await run_model(self.engine, SEGMENTATION_MODEL,
                                  {'image': tensor, 'point': point}, required_output='mask')

        field = resize_field(squeeze_to_2d(outputs['mask']), width, height)

        x0, y0, x1, y1 = detection.bounding_box.pixel_region(width, height)
        region = field[y0:y1, x0:x1]
        mask = np.where(region > self.mask_threshold, 255, 0).astype(np.uint8)

        if mask.size == 0 or not np.any(mask):
            raise SegmentExtractionError(
                f"Segmentation mask for '{detection.class_name}' has no foreground inside its box"
            )

        return mask

    @staticmethod
    def rectangle_mask(box, image_width: int, image_height: int) -> np.ndarray:
        """Solid foreground mask covering the box's pixel region."""
        x0, y0, x1, y1 = box.pixel_region(image_width, image_height)
        return np.full((max(1, y1 - y0), max(1, x1 - x0)), 255, dtype=np.uint8)
