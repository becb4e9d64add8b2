"""
Pipeline Module

Orchestrates all analysis stages over one map image.
"""

from .map_analyzer import MapAnalyzer

__all__ = ['MapAnalyzer']
