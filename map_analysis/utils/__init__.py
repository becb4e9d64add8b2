"""
Utility Functions and Helpers

Common utilities for the map analysis pipeline.
"""

from .config_manager import ConfigManager
from .noise import fractal_noise, perlin_noise
from .class_keywords import is_terrain_class, is_man_made_class
from .concurrency import map_bounded

__all__ = [
    'ConfigManager', 'fractal_noise', 'perlin_noise',
    'is_terrain_class', 'is_man_made_class', 'map_bounded'
]
