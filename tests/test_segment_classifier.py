"""
Tests for the segment classifier
"""

import pytest
import numpy as np

from map_analysis.classification.segment_classifier import SegmentClassifier
from map_analysis.data_models import RunReport
from map_analysis.inference.engine import (CallableInferenceEngine, DETAIL_CLASSIFIER_MODEL,
                                           TERRAIN_CLASSIFIER_MODEL)

from conftest import make_segment


class TestSegmentClassifier:
    """Test suite for SegmentClassifier."""

    @pytest.fixture
    def segments(self):
        """Fixture providing a terrain and a non-terrain segment."""
        return [
            make_segment(5, 5, 20, 20, class_name="mountain", class_id=13, confidence=0.7,
                         is_terrain=True, index=0),
            make_segment(30, 30, 10, 10, class_name="house", class_id=7, confidence=0.8, index=1),
        ]

    @pytest.mark.asyncio
    async def test_fallback_uses_detection(self, config_manager, blank_image, segments):
        """Without models the detection class and confidence carry through."""
        classifier = SegmentClassifier(config_manager)

        analyzed = await classifier.classify(blank_image, segments)

        assert [a.is_terrain for a in analyzed] == [True, False]
        assert [a.object_type for a in analyzed] == ["mountain", "house"]
        assert [a.detailed_classification for a in analyzed] == ["mountain", "house"]
        assert [a.classification_confidence for a in analyzed] == [0.7, 0.8]
        assert analyzed[0].segment is segments[0]

    @pytest.mark.asyncio
    async def test_terrain_model_overrides_keywords(self, config_manager, blank_image, segments):
        received = []

        def terrain_model(inputs):
            received.append(inputs['image'])
            return np.array([[0.2, 0.8]], dtype=np.float32)

        engine = CallableInferenceEngine({TERRAIN_CLASSIFIER_MODEL: terrain_model})
        classifier = SegmentClassifier(config_manager, engine)

        analyzed = await classifier.classify(blank_image, segments[:1])

        assert analyzed[0].is_terrain is False
        assert analyzed[0].classification_confidence == pytest.approx(0.8)
        assert received[0].shape == (1, 3, 224, 224)

    @pytest.mark.asyncio
    async def test_detail_model_labels(self, config_manager, blank_image, segments):
        def detail_model(inputs):
            logits = np.zeros(20, dtype=np.float32)
            logits[3] = 5.0
            return {'logits': logits, 'features': np.arange(12, dtype=np.float32)}

        engine = CallableInferenceEngine({DETAIL_CLASSIFIER_MODEL: detail_model})
        classifier = SegmentClassifier(config_manager, engine)

        terrain, house = await classifier.classify(blank_image, segments)

        assert terrain.detailed_classification == "forest"
        assert terrain.object_type == "forest"
        # No object label table is configured
        assert house.detailed_classification == "object_3"
        assert house.features == {f"f{i}": float(i) for i in range(10)}
        assert house.metadata['detail_score'] == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_detail_argmax_bounded_by_class_count(self, config_manager, blank_image, segments):
        def detail_model(inputs):
            logits = np.zeros(15, dtype=np.float32)
            logits[12] = 9.0
            logits[1] = 2.0
            return logits

        engine = CallableInferenceEngine({DETAIL_CLASSIFIER_MODEL: detail_model})
        classifier = SegmentClassifier(config_manager, engine)

        terrain = (await classifier.classify(blank_image, segments[:1]))[0]

        # Terrain uses only the first 10 scores
        assert terrain.detailed_classification == "hill"

    @pytest.mark.asyncio
    async def test_detail_scores_under_default_output_name(self, config_manager, blank_image, segments):
        def detail_model(inputs):
            logits = np.zeros(20, dtype=np.float32)
            logits[3] = 5.0
            return {'output': logits, 'features': np.arange(12, dtype=np.float32)}

        engine = CallableInferenceEngine({DETAIL_CLASSIFIER_MODEL: detail_model})
        classifier = SegmentClassifier(config_manager, engine)
        report = RunReport()

        house = (await classifier.classify(blank_image, segments[1:], report))[0]

        assert house.detailed_classification == "object_3"
        assert house.features == {f"f{i}": float(i) for i in range(10)}
        assert report.failures == []

    @pytest.mark.asyncio
    async def test_detail_without_scores_recorded(self, config_manager, blank_image, segments):
        engine = CallableInferenceEngine({
            DETAIL_CLASSIFIER_MODEL: lambda inputs: {'features': np.ones(4), 'aux': np.ones(2),
                                                     'extra': np.ones(2)},
        })
        classifier = SegmentClassifier(config_manager, engine)
        report = RunReport()

        house = (await classifier.classify(blank_image, segments[1:], report))[0]

        assert house.detailed_classification == "house"
        assert report.failure_kinds() == ["InferenceFailureError"]

    @pytest.mark.asyncio
    async def test_malformed_terrain_scores_recorded(self, config_manager, blank_image, segments):
        engine = CallableInferenceEngine({TERRAIN_CLASSIFIER_MODEL: lambda inputs: np.array([0.9])})
        classifier = SegmentClassifier(config_manager, engine)
        report = RunReport()

        analyzed = await classifier.classify(blank_image, segments, report)

        assert [a.is_terrain for a in analyzed] == [True, False]
        assert report.failure_kinds() == ["InferenceFailureError", "InferenceFailureError"]
        assert {f.segment_id for f in report.failures} == {"segment-0", "segment-1"}

    @pytest.mark.asyncio
    async def test_item_progress_reported(self, config_manager, blank_image, segments):
        classifier = SegmentClassifier(config_manager)
        counts = []

        await classifier.classify(blank_image, segments, on_item_done=counts.append)

        assert counts == [1, 2]

    def test_detail_label_lookup(self, config_manager):
        classifier = SegmentClassifier(config_manager)

        assert classifier.detail_label(0, True) == "mountain"
        assert classifier.detail_label(42, True) == "terrain_42"
        assert classifier.detail_label(2, False) == "object_2"

    def test_invalid_class_count(self, config_manager):
        config_manager.config['classification']['terrain_class_count'] = 0

        with pytest.raises(ValueError, match="class counts"):
            SegmentClassifier(config_manager)
