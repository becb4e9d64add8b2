"""
Description Module

Rule-based segment descriptions and external text enhancement.
"""

from .description_enhancer import DescriptionEnhancer
from .service import TextEnhancementService, CallableEnhancementService

__all__ = ['DescriptionEnhancer', 'TextEnhancementService', 'CallableEnhancementService']
