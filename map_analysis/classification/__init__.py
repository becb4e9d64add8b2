"""
Classification Module

Terrain / non-terrain refinement and detailed segment classes.
"""

from .segment_classifier import SegmentClassifier

__all__ = ['SegmentClassifier']
