"""
Segment Descriptions

Builds a short rule-based description for every analyzed segment and
optionally asks an external text service for a richer one, under a
concurrency cap and a per-request timeout.
"""

import asyncio
from typing import List, Optional, Sequence
import logging

from ..data_models import AnalyzedSegment, RunReport
from ..exceptions import ExternalServiceError, ExternalServiceTimeoutError
from ..utils.class_keywords import is_man_made_class
from ..utils.concurrency import map_bounded
from ..utils.config_manager import ConfigManager
from .service import TextEnhancementService

STAGE = "enhancement"

# (minimum relative area, size word), largest first
SIZE_CLASSES = (
    (0.25, "very large"),
    (0.1, "large"),
    (0.01, "medium-sized"),
)


def size_word(relative_area: float) -> str:
    for threshold, word in SIZE_CLASSES:
        if relative_area > threshold:
            return word
    return "small"


def position_phrase(nx: float, ny: float) -> str:
    """Position phrase for normalized image coordinates (y grows downward)."""
    if nx < 0.33:
        horizontal = "on the left"
    elif nx > 0.66:
        horizontal = "on the right"
    else:
        horizontal = "in the center"

    if ny < 0.33:
        vertical = "top"
    elif ny > 0.66:
        vertical = "bottom"
    else:
        vertical = "middle"

    return f"{horizontal} of the {vertical}"


class DescriptionEnhancer:
    """Short descriptions plus optional external enhancement."""

    def __init__(self,
                 config_manager: Optional[ConfigManager] = None,
                 service: Optional[TextEnhancementService] = None):
        """
        Initialize description enhancer.

        Args:
            config_manager: Configuration manager instance
            service: Text service used for enhancement; None disables it
        """
        self.config = config_manager or ConfigManager()
        self.service = service
        self.logger = logging.getLogger(__name__)

        enh_config = self.config.get_enhancement_params()

        self.enabled = enh_config.get('enabled', True)
        self.timeout_seconds = float(enh_config.get('timeout_seconds', 5.0))
        self.max_concurrent_requests = int(enh_config.get('max_concurrent_requests', 5))

        self.logger.info(f"Description enhancer initialized: service="
                         f"{'yes' if service is not None else 'no'}, timeout={self.timeout_seconds}s")

    @property
    def active(self) -> bool:
        return self.enabled and self.service is not None

    def describe(self, segment: AnalyzedSegment, image_width: int, image_height: int) -> str:
        """
        Rule-based description from relative size and position.

        Args:
            segment: Analyzed segment
            image_width: Image width in pixels
            image_height: Image height in pixels

        Returns:
            One-sentence description
        """
        box = segment.segment.bounding_box
        relative_area = box.area / float(max(1, image_width * image_height))
        cx, cy = box.center

        size = size_word(relative_area)
        position = position_phrase(cx / max(1, image_width), cy / max(1, image_height))

        if segment.is_terrain:
            return f"A {size} {segment.object_type} terrain feature {position} of the map."
        return f"A {size} {segment.object_type} {position} of the map."

    def describe_all(self,
                     segments: Sequence[AnalyzedSegment],
                     image_width: int,
                     image_height: int) -> None:
        for segment in segments:
            segment.short_description = self.describe(segment, image_width, image_height)

    def build_prompt(self, segment: AnalyzedSegment) -> str:
        """Prompt tailored to terrain, man-made or other objects."""
        name = segment.detailed_classification or segment.object_type

        if segment.is_terrain:
            lines = [
                "You are a terrain analysis expert who describes geographical features.",
                "Describe the following terrain feature in detail:",
                f"Feature: {name}",
                f"Basic Description: {segment.short_description}",
                "Cover typical elevation, formation process, vegetation and appearance.",
                "Use 2-3 sentences in a professional tone.",
            ]
        elif is_man_made_class(name) or is_man_made_class(segment.segment.class_name):
            lines = [
                "You are a 3D modeling expert who describes man-made objects for realistic rendering.",
                "Describe the following object for 3D model generation:",
                f"Object: {name}",
                f"Basic Description: {segment.short_description}",
                "Cover materials, dimensions, colors and notable features.",
                "Use 2-3 sentences, technical but accessible.",
            ]
        else:
            lines = [
                "You are an expert in environmental detail who describes natural elements.",
                "Describe the following object in detail:",
                f"Object: {name}",
                f"Basic Description: {segment.short_description}",
                "Cover appearance, typical size and surroundings.",
                "Use 2-3 sentences.",
            ]

        return "\n".join(lines)

    async def enhance(self,
                      segments: Sequence[AnalyzedSegment],
                      report: Optional[RunReport] = None,
                      checkpoint=None) -> List[AnalyzedSegment]:
        """
        Request enhanced descriptions for all segments.

        Failed or timed-out requests keep the short description and are
        recorded in the run report.

        Args:
            segments: Segments with short descriptions
            report: Run report receiving recovered failures
            checkpoint: Cancellation check invoked before each request

        Returns:
            The segments, updated in place
        """
        report = report if report is not None else RunReport()
        if not self.active or not segments:
            return list(segments)

        async def enhance_one(index: int, segment: AnalyzedSegment) -> None:
            segment.enhanced_description = await self.enhance_segment(segment, report)

        await map_bounded(enhance_one, segments, self.max_concurrent_requests, checkpoint=checkpoint)

        enhanced = sum(1 for s in segments if s.enhanced_description != s.short_description)
        self.logger.info(f"Enhanced {enhanced} of {len(segments)} descriptions")

        return list(segments)

    async def enhance_segment(self, segment: AnalyzedSegment, report: RunReport) -> str:
        """Enhanced description for one segment, or its short description on failure."""
        prompt = self.build_prompt(segment)

        try:
            text = await asyncio.wait_for(self.service.enhance(prompt), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            report.record_failure(
                STAGE,
                ExternalServiceTimeoutError(f"Enhancement timed out after {self.timeout_seconds}s"),
                segment.id, self.logger,
            )
            return segment.short_description
        except asyncio.CancelledError:
            raise
        except Exception as e:
            report.record_failure(STAGE, ExternalServiceError(str(e)), segment.id, self.logger)
            return segment.short_description

        text = (text or "").strip()
        return text or segment.short_description
