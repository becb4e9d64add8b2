"""
Segmentation Module

Builds per-detection foreground masks.
"""

from .segment_builder import SegmentBuilder

__all__ = ['SegmentBuilder']
