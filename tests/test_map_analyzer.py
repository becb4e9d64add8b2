"""
End-to-end tests for the map analysis pipeline
"""

import asyncio

import pytest
import numpy as np

from map_analysis.enhancement.service import CallableEnhancementService
from map_analysis.exceptions import AlreadyInProgressError, AnalysisCancelledError, InvalidInputError
from map_analysis.inference.engine import (CallableInferenceEngine, DETECTION_MODEL, HEIGHT_MODEL,
                                           SEGMENTATION_MODEL)
from map_analysis.pipeline.map_analyzer import MapAnalyzer

from conftest import make_detection

NUM_FEATURES = 5 + 24
NUM_ROWS = 40


def detection_tensor(*candidates):
    """Detection output with the given (cx, cy, w, h, obj, class_id, score) candidates."""
    tensor = np.zeros((1, NUM_ROWS, NUM_FEATURES), dtype=np.float32)
    for row, (cx, cy, w, h, obj, class_id, score) in enumerate(candidates):
        tensor[0, row, :5] = (cx, cy, w, h, obj)
        tensor[0, row, 5 + class_id] = score
    return tensor


class TestMapAnalyzer:
    """Test suite for MapAnalyzer."""

    @pytest.fixture
    def analyzer(self, config_manager):
        """Fixture providing an analyzer without models."""
        return MapAnalyzer(config_manager, seed=5)

    @pytest.mark.asyncio
    async def test_single_tree_scenario(self, analyzer, blank_image, tree_detection):
        """64x64 blank image with one tree detection yields one object placement."""
        results = await analyzer.analyze(blank_image, detections=[tree_detection])

        assert len(results.segments) == 1
        assert results.segments[0].is_terrain is False
        assert results.terrain_modifications == ()
        assert len(results.object_placements) == 1

        placement = results.object_placements[0]
        assert placement.object_type == "tree"
        assert placement.position.x == pytest.approx(20 / 64)
        assert placement.position.y == pytest.approx(20 / 64)
        assert results.height_map.shape == (64, 64)
        assert results.segmentation_map.shape == (64, 64, 4)

    @pytest.mark.asyncio
    async def test_overlapping_same_class_boxes(self, analyzer, blank_image):
        """Two same-class boxes with IoU 0.9 leave only the higher-confidence one."""
        low = make_detection(0, 0, 50, 50, class_name="house", class_id=7, confidence=0.6)
        high = make_detection(0, 0, 50, 45, class_name="house", class_id=7, confidence=0.8)

        results = await analyzer.analyze(blank_image, detections=[low, high])

        assert len(results.object_placements) == 1
        assert results.object_placements[0].bounding_box.height == 45

    @pytest.mark.asyncio
    async def test_nothing_survives(self, config_manager, blank_image):
        """A well-formed but empty detection output gives empty, valid results."""
        engine = CallableInferenceEngine({DETECTION_MODEL: lambda inputs: detection_tensor()})
        analyzer = MapAnalyzer(config_manager, engine)

        results = await analyzer.analyze(blank_image)

        assert results.object_placements == ()
        assert results.terrain_modifications == ()
        assert results.height_map.shape == (64, 64)
        assert np.allclose(results.height_map, 0.02)
        assert results.segmentation_map.shape == (64, 64, 4)
        assert not results.segmentation_map.any()
        assert results.metadata['detection_fallback'] is False

    @pytest.mark.asyncio
    async def test_injected_detections_below_threshold(self, analyzer, blank_image):
        weak = make_detection(10, 10, 20, 20, confidence=0.3)

        results = await analyzer.analyze(blank_image, detections=[weak])

        assert results.segments == ()

    @pytest.mark.asyncio
    async def test_detection_model_terrain(self, config_manager, sample_map_image):
        # mountain is label 13
        tensor = detection_tensor((0.25, 0.3, 0.4, 0.4, 0.9, 13, 0.9),
                                  (0.72, 0.74, 0.2, 0.25, 0.9, 6, 0.8))
        engine = CallableInferenceEngine({DETECTION_MODEL: lambda inputs: tensor})
        analyzer = MapAnalyzer(config_manager, engine, seed=1)

        results = await analyzer.analyze(sample_map_image)

        assert len(results.terrain_modifications) == 1
        assert results.terrain_modifications[0].terrain_type == "mountain"
        assert [p.object_type for p in results.object_placements] == ["building"]
        assert results.metadata['detected_terrain_types'] == ["mountain"]
        assert results.height_map.max() > 0.4
        assert results.metadata['failures'] == []

    @pytest.mark.asyncio
    async def test_missing_detection_model_uses_synthetic_grid(self, analyzer, blank_image):
        results = await analyzer.analyze(blank_image)

        assert results.metadata['detection_fallback'] is True
        assert len(results.segments) > 0
        assert results.metadata['failures'][0]['kind'] == "ModelUnavailableError"

    @pytest.mark.asyncio
    async def test_malformed_detection_tensor(self, config_manager, blank_image):
        engine = CallableInferenceEngine({DETECTION_MODEL: lambda inputs: np.zeros((4, 4))})
        analyzer = MapAnalyzer(config_manager, engine)

        results = await analyzer.analyze(blank_image)

        assert results.metadata['detection_fallback'] is True
        kinds = [failure['kind'] for failure in results.metadata['failures']]
        assert "TensorShapeMismatchError" in kinds

    @pytest.mark.asyncio
    async def test_seeded_runs_match(self, config_manager, blank_image):
        mountain = make_detection(8, 8, 40, 40, class_name="mountain", class_id=13)

        first = await MapAnalyzer(config_manager, seed=9).analyze(blank_image, detections=[mountain])
        second = await MapAnalyzer(config_manager, seed=9).analyze(blank_image, detections=[mountain])

        np.testing.assert_array_equal(first.height_map, second.height_map)

    @pytest.mark.asyncio
    async def test_model_failures_do_not_abort(self, config_manager, blank_image, tree_detection):
        def broken(inputs):
            raise RuntimeError("device lost")

        engine = CallableInferenceEngine({SEGMENTATION_MODEL: broken, HEIGHT_MODEL: broken})
        analyzer = MapAnalyzer(config_manager, engine)
        mountain = make_detection(30, 30, 20, 20, class_name="mountain", class_id=13)

        results = await analyzer.analyze(blank_image, detections=[tree_detection, mountain])

        assert len(results.object_placements) == 1
        assert len(results.terrain_modifications) == 1
        stages = {failure['stage'] for failure in results.metadata['failures']}
        assert stages == {"segmentation", "height_estimation"}

    @pytest.mark.asyncio
    async def test_enhanced_descriptions_in_placements(self, config_manager, blank_image, tree_detection):
        service = CallableEnhancementService(lambda prompt: "A tall oak.")
        analyzer = MapAnalyzer(config_manager, enhancement_service=service)

        results = await analyzer.analyze(blank_image, detections=[tree_detection])

        assert results.object_placements[0].metadata['description'] == "A tall oak."

    @pytest.mark.asyncio
    async def test_already_in_progress(self, config_manager, blank_image, tree_detection):
        async def slow_mask(inputs):
            await asyncio.sleep(0.02)
            return np.ones((64, 64), dtype=np.float32)

        analyzer = MapAnalyzer(config_manager, CallableInferenceEngine({SEGMENTATION_MODEL: slow_mask}))

        outcomes = await asyncio.gather(
            analyzer.analyze(blank_image, detections=[tree_detection]),
            analyzer.analyze(blank_image, detections=[tree_detection]),
            return_exceptions=True,
        )

        assert len(outcomes[0].segments) == 1
        assert isinstance(outcomes[1], AlreadyInProgressError)
        assert not analyzer.is_running

    @pytest.mark.asyncio
    @pytest.mark.parametrize("image", [None, np.zeros((0, 0, 3), dtype=np.uint8),
                                       np.zeros((8, 8, 5), dtype=np.uint8), [[0, 1], [1, 0]]])
    async def test_invalid_input(self, analyzer, image):
        with pytest.raises(InvalidInputError):
            await analyzer.analyze(image)

        assert not analyzer.is_running

    @pytest.mark.asyncio
    async def test_grayscale_float_input(self, analyzer, tree_detection):
        image = np.random.default_rng(0).random((64, 64)).astype(np.float32)

        results = await analyzer.analyze(image, detections=[tree_detection])

        assert results.height_map.shape == (64, 64)
        assert len(results.object_placements) == 1

    @pytest.mark.asyncio
    async def test_cancellation(self, analyzer, blank_image, tree_detection):
        def on_progress(stage, fraction):
            if stage == "segmentation":
                analyzer.cancel()

        with pytest.raises(AnalysisCancelledError):
            await analyzer.analyze(blank_image, progress_callback=on_progress,
                                   detections=[tree_detection])

        assert not analyzer.is_running

        # The analyzer is reusable after a cancelled run
        results = await analyzer.analyze(blank_image, detections=[tree_detection])
        assert len(results.object_placements) == 1

    @pytest.mark.asyncio
    async def test_progress_events(self, analyzer, blank_image, tree_detection):
        events = []

        await analyzer.analyze(blank_image, progress_callback=lambda s, f: events.append((s, f)),
                               detections=[tree_detection])

        stages = [stage for stage, _ in events]
        fractions = [fraction for _, fraction in events]

        assert stages[0] == "detection" and fractions[0] == pytest.approx(0.1)
        assert stages[-1] == "done" and fractions[-1] == pytest.approx(1.0)
        for label in ("segmentation", "classification", "enhancement", "terrain", "placement", "finalize"):
            assert label in stages
        assert fractions == sorted(fractions)

    @pytest.mark.asyncio
    async def test_progress_callback_errors_ignored(self, analyzer, blank_image, tree_detection):
        def broken_callback(stage, fraction):
            raise RuntimeError("UI closed")

        results = await analyzer.analyze(blank_image, progress_callback=broken_callback,
                                         detections=[tree_detection])

        assert len(results.object_placements) == 1

    @pytest.mark.asyncio
    async def test_stage_timings_recorded(self, analyzer, blank_image, tree_detection):
        results = await analyzer.analyze(blank_image, detections=[tree_detection])

        timings = results.metadata['stage_timings']
        for stage in ("detection", "segmentation", "classification", "terrain", "placement"):
            assert timings[stage] >= 0.0
        assert results.metadata['elapsed_seconds'] >= 0.0
