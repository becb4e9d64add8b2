"""
Segment Classifier

Two-step classification of each segment: a terrain / non-terrain decision
followed by a detailed class from the terrain or object label table.
Both steps fall back to the detection's own class when their model is
unavailable.
"""

import numpy as np
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from ..data_models import AnalyzedSegment, ImageSegment, RunReport
from ..exceptions import InferenceFailureError, MapAnalysisError
from ..inference.engine import (InferenceEngine, TERRAIN_CLASSIFIER_MODEL,
                                DETAIL_CLASSIFIER_MODEL, run_model)
from ..utils.concurrency import map_bounded
from ..utils.config_manager import ConfigManager
from ..utils.raster import IMAGENET_MEAN, IMAGENET_STD, crop_region, image_to_tensor

STAGE = "classification"


class SegmentClassifier:
    """Refines terrain membership and assigns a detailed class."""

    def __init__(self,
                 config_manager: Optional[ConfigManager] = None,
                 inference_engine: Optional[InferenceEngine] = None):
        """
        Initialize segment classifier.

        Args:
            config_manager: Configuration manager instance
            inference_engine: Engine hosting the classifier models
        """
        self.config = config_manager or ConfigManager()
        self.engine = inference_engine
        self.logger = logging.getLogger(__name__)

        cls_config = self.config.get_classification_params()

        self.terrain_input_size = cls_config.get('terrain_input_size', 224)
        self.detail_input_size = cls_config.get('detail_input_size', 224)
        self.terrain_class_count = cls_config.get('terrain_class_count', 10)
        self.object_class_count = cls_config.get('object_class_count', 20)
        self.feature_count = cls_config.get('feature_count', 10)

        self.terrain_labels = list(cls_config.get('terrain_labels') or [])
        self.object_labels = list(cls_config.get('object_labels') or [])

        if self.terrain_class_count < 1 or self.object_class_count < 1:
            raise ValueError("Classifier class counts must be at least 1")

        self.logger.info(f"Segment classifier initialized: "
                         f"{self.terrain_class_count} terrain / {self.object_class_count} object classes")

    def _has(self, model_name: str) -> bool:
        return self.engine is not None and self.engine.has_model(model_name)

    async def classify(self,
                       image: np.ndarray,
                       segments: Sequence[ImageSegment],
                       report: Optional[RunReport] = None,
                       max_concurrency: int = 1,
                       yield_every: int = 5,
                       checkpoint=None,
                       on_item_done=None) -> List[AnalyzedSegment]:
        """
        Classify every segment.

        Args:
            image: RGB uint8 image
            segments: Segments from the segment builder
            report: Run report receiving recovered failures
            max_concurrency: Maximum segments processed at once
            yield_every: Yield to the event loop after this many segments
            checkpoint: Cancellation check invoked before each segment
            on_item_done: Called with the number of finished segments

        Returns:
            One AnalyzedSegment per input segment, in input order
        """
        report = report if report is not None else RunReport()
        finished = [0]

        async def classify_one(index: int, segment: ImageSegment) -> AnalyzedSegment:
            analyzed = await self.classify_segment(image, segment, report)
            finished[0] += 1
            if on_item_done is not None:
                on_item_done(finished[0])
            return analyzed

        analyzed = await map_bounded(classify_one, segments, max_concurrency, yield_every, checkpoint)

        terrain_count = sum(1 for a in analyzed if a.is_terrain)
        self.logger.info(f"Classified {len(analyzed)} segments ({terrain_count} terrain)")

        return analyzed

    async def classify_segment(self,
                               image: np.ndarray,
                               segment: ImageSegment,
                               report: RunReport) -> AnalyzedSegment:
        """Run both classification steps for one segment."""
        crop = crop_region(image, segment.bounding_box)

        is_terrain, confidence = await self._classify_terrain(crop, segment, report)

        analyzed = AnalyzedSegment(
            segment=segment,
            is_terrain=is_terrain,
            classification_confidence=confidence,
            object_type=segment.class_name,
            detailed_classification=segment.class_name,
        )

        await self._classify_detail(crop, analyzed, report)

        self.logger.debug(f"{segment.id}: terrain={analyzed.is_terrain} "
                          f"type={analyzed.detailed_classification} conf={confidence:.2f}")

        return analyzed

    async def _classify_terrain(self,
                                crop: np.ndarray,
                                segment: ImageSegment,
                                report: RunReport) -> Tuple[bool, float]:
        """Terrain decision: model scores when available, keywords otherwise."""
        if not self._has(TERRAIN_CLASSIFIER_MODEL):
            return segment.is_terrain, segment.confidence

        tensor = image_to_tensor(crop, self.terrain_input_size, IMAGENET_MEAN, IMAGENET_STD)

        try:
            outputs = await run_model(self.engine, TERRAIN_CLASSIFIER_MODEL,
                                      {'image': tensor}, required_output='output')
            scores = np.asarray(outputs['output'], dtype=np.float32).ravel()
            if scores.size < 2:
                raise InferenceFailureError(
                    f"Terrain classifier returned {scores.size} scores, expected 2"
                )
        except MapAnalysisError as e:
            report.record_failure(STAGE, e, segment.id, self.logger)
            return segment.is_terrain, segment.confidence

        terrain_score, non_terrain_score = float(scores[0]), float(scores[1])
        return terrain_score > non_terrain_score, max(terrain_score, non_terrain_score)

    async def _classify_detail(self,
                               crop: np.ndarray,
                               analyzed: AnalyzedSegment,
                               report: RunReport) -> None:
        """Detailed class from the label table matching the terrain decision."""
        if not self._has(DETAIL_CLASSIFIER_MODEL):
            return

        tensor = image_to_tensor(crop, self.detail_input_size, IMAGENET_MEAN, IMAGENET_STD)

        try:
            outputs = await run_model(self.engine, DETAIL_CLASSIFIER_MODEL, {'image': tensor})
            logits = self._detail_scores(outputs)
            if logits.size == 0:
                raise InferenceFailureError("Detail classifier returned no scores")
        except MapAnalysisError as e:
            report.record_failure(STAGE, e, analyzed.id, self.logger)
            return

        class_count = self.terrain_class_count if analyzed.is_terrain else self.object_class_count
        class_count = min(class_count, logits.size)

        best = int(np.argmax(logits[:class_count]))
        label = self.detail_label(best, analyzed.is_terrain)

        analyzed.object_type = label
        analyzed.detailed_classification = label
        analyzed.metadata['detail_score'] = float(logits[best])

        if 'features' in outputs:
            analyzed.features.update(self.extract_features(outputs['features']))

    @staticmethod
    def _detail_scores(outputs: Dict[str, np.ndarray]) -> np.ndarray:
        """Class scores under 'logits', 'output', or the only non-feature output."""
        for name in ('logits', 'output'):
            if name in outputs:
                return np.asarray(outputs[name], dtype=np.float32).ravel()

        candidates = [name for name in outputs if name != 'features']
        if len(candidates) != 1:
            raise InferenceFailureError(
                f"Detail classifier outputs {sorted(outputs)} contain no class scores"
            )
        return np.asarray(outputs[candidates[0]], dtype=np.float32).ravel()

    def detail_label(self, index: int, is_terrain: bool) -> str:
        labels = self.terrain_labels if is_terrain else self.object_labels
        if 0 <= index < len(labels):
            return labels[index]
        return f"{'terrain' if is_terrain else 'object'}_{index}"

    def extract_features(self, features: np.ndarray) -> Dict[str, float]:
        """First ``feature_count`` auxiliary values keyed f0, f1, ..."""
        values = np.asarray(features, dtype=np.float32).ravel()[:self.feature_count]
        return {f"f{i}": float(value) for i, value in enumerate(values)}
