"""
Pytest configuration and fixtures for map analysis tests.
"""

import pytest
import numpy as np

from map_analysis.data_models import AnalyzedSegment, DetectedObject, ImageSegment
from map_analysis.geometry import BoundingBox
from map_analysis.utils.config_manager import ConfigManager


def make_detection(x, y, width, height, class_name="tree", class_id=5, confidence=0.9):
    """Build a DetectedObject with a matching bounding box."""
    box = BoundingBox(x=x, y=y, width=width, height=height,
                      confidence=confidence, class_id=class_id, class_name=class_name)
    return DetectedObject(
        bounding_box=box,
        class_id=class_id,
        class_name=class_name,
        confidence=confidence,
        class_scores={class_name: confidence},
    )


def make_segment(x, y, width, height, class_name="tree", class_id=5, confidence=0.9,
                 is_terrain=False, mask=None, index=0):
    """Build an ImageSegment with a solid (or given) mask."""
    box = BoundingBox(x=x, y=y, width=width, height=height,
                      confidence=confidence, class_id=class_id, class_name=class_name)
    if mask is None:
        mask = np.full((int(height), int(width)), 255, dtype=np.uint8)
    return ImageSegment(
        id=f"segment-{index}",
        bounding_box=box,
        mask=mask,
        confidence=confidence,
        class_name=class_name,
        class_id=class_id,
        area=float(np.count_nonzero(mask)),
        is_terrain=is_terrain,
        metadata={'mask_source': 'bounding_box', 'class_scores': {class_name: confidence},
                  'detection_index': index},
    )


def make_analyzed(segment, object_type=None, classification_confidence=None):
    """Wrap a segment the way the classifier fallback does."""
    name = object_type or segment.class_name
    return AnalyzedSegment(
        segment=segment,
        is_terrain=segment.is_terrain,
        classification_confidence=(segment.confidence if classification_confidence is None
                                   else classification_confidence),
        object_type=name,
        detailed_classification=name,
    )


def encode_candidates(rows, transposed=False):
    """Pack candidate rows [cx, cy, w, h, obj, scores...] into a [1, A, B] tensor."""
    tensor = np.asarray(rows, dtype=np.float32)[np.newaxis, ...]
    if transposed:
        tensor = np.ascontiguousarray(tensor.transpose(0, 2, 1))
    return tensor


@pytest.fixture
def config_manager():
    """Fixture providing a configuration manager instance."""
    return ConfigManager()


@pytest.fixture
def blank_image():
    """Fixture providing a 64x64 black RGB map image."""
    return np.zeros((64, 64, 3), dtype=np.uint8)


@pytest.fixture
def sample_map_image():
    """Fixture providing a synthetic map with a green field, a lake and a building."""
    height, width = 128, 160
    image = np.full((height, width, 3), (110, 160, 80), dtype=np.uint8)

    # Lake
    yy, xx = np.mgrid[0:height, 0:width]
    lake = (xx - 40) ** 2 / 400.0 + (yy - 40) ** 2 / 225.0 <= 1.0
    image[lake] = (40, 90, 180)

    # Building
    image[80:110, 100:130] = (150, 150, 150)

    return image


@pytest.fixture
def tree_detection():
    """Fixture providing the single tree detection at (10, 10, 20, 20)."""
    return make_detection(10, 10, 20, 20, class_name="tree", class_id=5, confidence=0.9)
