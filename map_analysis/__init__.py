"""
Map Analysis Pipeline

Turns a raster map image into terrain features and placeable object
descriptors by fusing independent inference stages into one
fallback-tolerant result.

This package implements:
- YOLO tensor decoding with layout auto-detection and per-class NMS
- Point-prompted segmentation masks with rectangular fallbacks
- Two-step terrain / detailed classification
- Height field estimation with fractal-noise fallbacks and max blending
- PCA-based object orientation and placement confidence
- Segmentation map rendering and result aggregation
"""

__version__ = "1.0.0"
__author__ = "Map Analysis Team"

from .geometry import BoundingBox, compute_iou
from .detection import DetectionDecoder, DecodeResult, NonMaximumSuppressor
from .segmentation import SegmentBuilder
from .classification import SegmentClassifier
from .terrain import TerrainHeightEstimator, blend_height_fields
from .placement import ObjectPlacementEstimator
from .enhancement import DescriptionEnhancer, TextEnhancementService, CallableEnhancementService
from .aggregation import ResultAggregator
from .inference import InferenceEngine, NullInferenceEngine, CallableInferenceEngine
from .pipeline import MapAnalyzer
from .data_models import (
    DetectedObject, ImageSegment, AnalyzedSegment, TerrainModification,
    PlacementPosition, ObjectPlacement, ObjectGroup, StageFailure, RunReport,
    AnalysisResults
)

__all__ = [
    # Geometry
    'BoundingBox', 'compute_iou',
    # Stages
    'DetectionDecoder', 'DecodeResult', 'NonMaximumSuppressor', 'SegmentBuilder',
    'SegmentClassifier', 'TerrainHeightEstimator', 'blend_height_fields',
    'ObjectPlacementEstimator', 'DescriptionEnhancer', 'ResultAggregator',
    # Collaborators
    'InferenceEngine', 'NullInferenceEngine', 'CallableInferenceEngine',
    'TextEnhancementService', 'CallableEnhancementService',
    # Pipeline
    'MapAnalyzer',
    # Data Models
    'DetectedObject', 'ImageSegment', 'AnalyzedSegment', 'TerrainModification',
    'PlacementPosition', 'ObjectPlacement', 'ObjectGroup', 'StageFailure',
    'RunReport', 'AnalysisResults'
]
