"""
Map Analysis Pipeline

Runs detection, suppression, segmentation, classification, description,
height estimation, placement and aggregation over one map image. Model and
service failures are recovered inside each stage; only invalid input,
a concurrent run and cancellation abort a run.
"""

import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging

import numpy as np

from ..aggregation.result_aggregator import ResultAggregator
from ..classification.segment_classifier import SegmentClassifier
from ..data_models import AnalysisResults, DetectedObject, RunReport
from ..detection.nms import NonMaximumSuppressor
from ..detection.yolo_decoder import DetectionDecoder
from ..enhancement.description_enhancer import DescriptionEnhancer
from ..enhancement.service import TextEnhancementService
from ..exceptions import (AlreadyInProgressError, AnalysisCancelledError, MapAnalysisError,
                          ModelUnavailableError, TensorShapeMismatchError)
from ..inference.engine import DETECTION_MODEL, InferenceEngine, NullInferenceEngine, run_model
from ..placement.placement_estimator import ObjectPlacementEstimator
from ..segmentation.segment_builder import SegmentBuilder
from ..terrain.height_estimator import TerrainHeightEstimator
from ..utils.config_manager import ConfigManager
from ..utils.raster import enhance_contrast, image_to_tensor, to_rgb_uint8

ProgressCallback = Callable[[str, float], Any]

# Progress fractions reported at stage boundaries
PROGRESS_DETECTION = 0.1
PROGRESS_SEGMENTATION = 0.2
PROGRESS_CLASSIFICATION_START = 0.3
PROGRESS_ENHANCEMENT = 0.6
PROGRESS_TERRAIN = 0.7
PROGRESS_PLACEMENT = 0.8
PROGRESS_FINALIZE = 0.9
PROGRESS_DONE = 1.0


class MapAnalyzer:
    """
    Map image analysis pipeline.

    One analyzer runs one analysis at a time; start another analyzer for
    parallel runs.
    """

    def __init__(self,
                 config_manager: Optional[ConfigManager] = None,
                 inference_engine: Optional[InferenceEngine] = None,
                 enhancement_service: Optional[TextEnhancementService] = None,
                 seed: Optional[int] = None):
        """
        Initialize the pipeline and all of its stages.

        Args:
            config_manager: Configuration manager instance
            inference_engine: Engine hosting the models (no models if None)
            enhancement_service: Text service for description enhancement
            seed: Seed for synthetic height fields (config value if None)
        """
        self.config = config_manager or ConfigManager()
        self.engine = inference_engine or NullInferenceEngine()
        self.logger = logging.getLogger(__name__)

        analysis = self.config.get_analysis_params()
        self.seed = seed if seed is not None else analysis.get('seed')

        self.decoder = DetectionDecoder(self.config)
        self.suppressor = NonMaximumSuppressor(self.config)
        self.segment_builder = SegmentBuilder(self.config, self.engine)
        self.classifier = SegmentClassifier(self.config, self.engine)
        self.enhancer = DescriptionEnhancer(self.config, enhancement_service)
        self.height_estimator = TerrainHeightEstimator(self.config, self.engine, self.seed)
        self.placement_estimator = ObjectPlacementEstimator(self.config)
        self.aggregator = ResultAggregator(self.config)

        self._running = False
        self._cancel_requested = False

        self.logger.info("Map analyzer initialized")

    @property
    def is_running(self) -> bool:
        return self._running

    def cancel(self) -> None:
        """Request cooperative cancellation of the current run."""
        if self._running:
            self.logger.info("Cancellation requested")
            self._cancel_requested = True

    def _checkpoint(self) -> None:
        if self._cancel_requested:
            raise AnalysisCancelledError("Analysis was cancelled")

    def _report_progress(self, callback: Optional[ProgressCallback], stage: str, fraction: float) -> None:
        if callback is None:
            return
        try:
            callback(stage, fraction)
        except Exception as e:
            self.logger.warning(f"Progress callback failed at '{stage}': {e}")

    @contextmanager
    def _timed(self, report: RunReport, stage: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            report.stage_timings[stage] = time.perf_counter() - start

    def _run_settings(self) -> Dict[str, Any]:
        analysis = self.config.get_analysis_params()
        return {
            'confidence_threshold': float(analysis.get('confidence_threshold', 0.5)),
            'nms_threshold': float(analysis.get('nms_threshold', 0.45)),
            'use_high_quality': bool(analysis.get('use_high_quality', True)),
            'max_objects_to_process': int(analysis.get('max_objects_to_process', 100)),
            'max_concurrent_segments': int(analysis.get('max_concurrent_segments', 4)),
            'yield_every': int(analysis.get('yield_every', 5)),
        }

    async def analyze(self,
                      image: np.ndarray,
                      progress_callback: Optional[ProgressCallback] = None,
                      detections: Optional[Sequence[DetectedObject]] = None) -> AnalysisResults:
        """
        Analyze one map image.

        Args:
            image: Map image (grayscale, RGB or RGBA; uint8 or float in [0, 1])
            progress_callback: Called with (stage label, fraction in [0, 1])
            detections: Pre-computed detections; skips the detection model

        Returns:
            Frozen AnalysisResults

        Raises:
            AlreadyInProgressError: If this analyzer is already running
            InvalidInputError: If the image is None, empty or malformed
            AnalysisCancelledError: If cancel() was called during the run
        """
        if self._running:
            raise AlreadyInProgressError("An analysis is already in progress on this analyzer")

        rgb = to_rgb_uint8(image)

        self._running = True
        self._cancel_requested = False
        try:
            return await self._run(rgb, progress_callback, detections)
        finally:
            self._running = False
            self._cancel_requested = False

    async def _run(self,
                   image: np.ndarray,
                   progress_callback: Optional[ProgressCallback],
                   injected: Optional[Sequence[DetectedObject]]) -> AnalysisResults:
        start = time.perf_counter()
        report = RunReport()
        settings = self._run_settings()
        height, width = image.shape[:2]

        self.logger.info(f"Analyzing {width}x{height} map image")

        concurrency = dict(
            max_concurrency=settings['max_concurrent_segments'],
            yield_every=settings['yield_every'],
            checkpoint=self._checkpoint,
        )

        with self._timed(report, 'preprocessing'):
            prepared = self.preprocess(image)

        # 1. Detection
        self._checkpoint()
        self._report_progress(progress_callback, 'detection', PROGRESS_DETECTION)
        with self._timed(report, 'detection'):
            if injected is not None:
                candidates = [d for d in injected if d.confidence >= settings['confidence_threshold']]
            else:
                candidates = await self.detect(prepared, report, settings['confidence_threshold'])

            detections = self.suppressor.suppress(candidates,
                                                  iou_threshold=settings['nms_threshold'],
                                                  max_detections=settings['max_objects_to_process'])

        self.logger.info(f"{len(detections)} detections after NMS ({len(candidates)} candidates)")

        # 2. Segmentation
        self._checkpoint()
        self._report_progress(progress_callback, 'segmentation', PROGRESS_SEGMENTATION)
        with self._timed(report, 'segmentation'):
            segments = await self.segment_builder.build(
                prepared, detections, report,
                use_high_quality=settings['use_high_quality'], **concurrency)

        # 3. Classification
        self._checkpoint()
        self._report_progress(progress_callback, 'classification', PROGRESS_CLASSIFICATION_START)
        total = max(1, len(segments))

        def on_classified(done: int) -> None:
            span = PROGRESS_ENHANCEMENT - PROGRESS_CLASSIFICATION_START
            self._report_progress(progress_callback, 'classification',
                                  PROGRESS_CLASSIFICATION_START + span * done / total)

        with self._timed(report, 'classification'):
            analyzed = await self.classifier.classify(prepared, segments, report,
                                                      on_item_done=on_classified, **concurrency)

        # 4. Descriptions
        self._checkpoint()
        self._report_progress(progress_callback, 'enhancement', PROGRESS_ENHANCEMENT)
        with self._timed(report, 'enhancement'):
            self.enhancer.describe_all(analyzed, width, height)
            await self.enhancer.enhance(analyzed, report, checkpoint=self._checkpoint)

        # 5. Terrain heights
        self._checkpoint()
        self._report_progress(progress_callback, 'terrain', PROGRESS_TERRAIN)
        with self._timed(report, 'terrain'):
            await self.height_estimator.estimate(prepared, analyzed, report, **concurrency)

        # 6. Object placement
        self._checkpoint()
        self._report_progress(progress_callback, 'placement', PROGRESS_PLACEMENT)
        with self._timed(report, 'placement'):
            self.placement_estimator.estimate(analyzed, width, height)

        # 7. Aggregation
        self._checkpoint()
        self._report_progress(progress_callback, 'finalize', PROGRESS_FINALIZE)
        with self._timed(report, 'aggregation'):
            results = self.aggregator.aggregate(
                width, height, analyzed, report,
                settings={
                    'confidence_threshold': settings['confidence_threshold'],
                    'nms_threshold': settings['nms_threshold'],
                    'use_high_quality': settings['use_high_quality'],
                },
                elapsed_seconds=time.perf_counter() - start,
            )

        self._report_progress(progress_callback, 'done', PROGRESS_DONE)

        self.logger.info(f"Analysis completed in {time.perf_counter() - start:.2f}s: "
                         f"{len(results.terrain_modifications)} terrain features, "
                         f"{len(results.object_placements)} objects, "
                         f"{len(report.failures)} recovered failures")

        return results

    def preprocess(self, image: np.ndarray) -> np.ndarray:
        """Contrast enhancement ahead of detection."""
        params = self.config.get_preprocessing_params()
        if not params.get('enabled', True):
            return image
        return enhance_contrast(image, float(params.get('contrast_gain', 1.2)))

    async def detect(self,
                     image: np.ndarray,
                     report: RunReport,
                     confidence_threshold: float) -> List[DetectedObject]:
        """
        Run the detection model and decode its output.

        Falls back to the decoder's synthetic grid when the model is missing,
        fails or returns a malformed tensor.
        """
        height, width = image.shape[:2]
        output = None

        if self.engine.has_model(DETECTION_MODEL):
            tensor = image_to_tensor(image, self.decoder.input_size)
            try:
                outputs = await run_model(self.engine, DETECTION_MODEL, {'image': tensor},
                                          required_output='output')
                output = outputs['output']
            except MapAnalysisError as e:
                report.record_failure('detection', e, logger=self.logger)
        else:
            report.record_failure('detection',
                                  ModelUnavailableError(f"No model loaded for '{DETECTION_MODEL}'"),
                                  logger=self.logger)

        result = self.decoder.decode(output, width, height, confidence_threshold)

        if result.used_fallback:
            report.flags['detection_fallback'] = True
            if output is not None:
                report.record_failure('detection', TensorShapeMismatchError(result.fallback_reason),
                                      logger=self.logger)

        return result.detections
