"""
Terrain Module

Per-segment height fields, topology features and the global height map.
"""

from .height_estimator import TerrainHeightEstimator
from .height_blender import blend_height_fields

__all__ = ['TerrainHeightEstimator', 'blend_height_fields']
