"""
Inference Module

Collaborator interface for running detection, segmentation, classification
and height models.
"""

from .engine import (
    InferenceEngine, NullInferenceEngine, CallableInferenceEngine, run_model,
    DETECTION_MODEL, SEGMENTATION_MODEL, TERRAIN_CLASSIFIER_MODEL,
    DETAIL_CLASSIFIER_MODEL, HEIGHT_MODEL
)

__all__ = [
    'InferenceEngine', 'NullInferenceEngine', 'CallableInferenceEngine', 'run_model',
    'DETECTION_MODEL', 'SEGMENTATION_MODEL', 'TERRAIN_CLASSIFIER_MODEL',
    'DETAIL_CLASSIFIER_MODEL', 'HEIGHT_MODEL'
]
