"""
Aggregation Module

Final result assembly and segmentation map rendering.
"""

from .result_aggregator import ResultAggregator
from .segmentation_map import render_segmentation_map, segment_color

__all__ = ['ResultAggregator', 'render_segmentation_map', 'segment_color']
