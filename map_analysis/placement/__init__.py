"""
Placement Module

Position, scale, rotation and confidence for discrete map objects.
"""

from .placement_estimator import ObjectPlacementEstimator, principal_axis_angle

__all__ = ['ObjectPlacementEstimator', 'principal_axis_angle']
