"""
Object Detection Module

Decodes detection-model tensors and removes duplicate detections.
"""

from .yolo_decoder import DetectionDecoder, DecodeResult
from .nms import NonMaximumSuppressor

__all__ = ['DetectionDecoder', 'DecodeResult', 'NonMaximumSuppressor']
