"""
Result Aggregation

Assembles the final AnalysisResults from analyzed segments: the global
height and segmentation rasters, terrain modifications, object placements,
object groups and run metadata.
"""

import numpy as np
from collections import OrderedDict
from dataclasses import asdict
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Sequence
import logging

from ..data_models import (AnalysisResults, AnalyzedSegment, ObjectGroup, ObjectPlacement,
                           PlacementPosition, RunReport, TerrainModification)
from ..terrain.height_blender import blend_height_fields
from ..utils.config_manager import ConfigManager
from .segmentation_map import render_segmentation_map


class ResultAggregator:
    """Builds immutable analysis results for one run."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        """
        Initialize aggregator.

        Args:
            config_manager: Configuration manager instance
        """
        self.config = config_manager or ConfigManager()
        self.logger = logging.getLogger(__name__)

        height_config = self.config.get_height_params()
        self.max_height = float(height_config.get('max_terrain_height', 100.0))
        self.terrain_size = float(height_config.get('terrain_size', 500.0))
        self.global_base_height = float(height_config.get('global_base_height', 0.02))
        self.blend_radius_ratio = float(height_config.get('blend_radius_ratio', 0.1))

        self.visualization = dict(self.config.get_visualization_params())

    def aggregate(self,
                  image_width: int,
                  image_height: int,
                  segments: Sequence[AnalyzedSegment],
                  report: Optional[RunReport] = None,
                  settings: Optional[Dict[str, Any]] = None,
                  elapsed_seconds: float = 0.0) -> AnalysisResults:
        """
        Aggregate analyzed segments into final results.

        Args:
            image_width: Image width in pixels
            image_height: Image height in pixels
            segments: All analyzed segments in pipeline order
            report: Run report with failures, timings and flags
            settings: Snapshot of run settings to include in metadata
            elapsed_seconds: Total run time so far

        Returns:
            Frozen AnalysisResults with read-only rasters
        """
        if image_width <= 0 or image_height <= 0:
            raise ValueError("Image dimensions must be positive")

        report = report if report is not None else RunReport()
        terrain = [s for s in segments if s.is_terrain]
        objects = [s for s in segments if not s.is_terrain]

        height_map = blend_height_fields(image_width, image_height, terrain, self.global_base_height)
        segmentation_map = render_segmentation_map(
            image_width, image_height, segments,
            saturation=self.visualization.get('saturation', 0.7),
            value=self.visualization.get('value', 0.9),
            alpha=self.visualization.get('alpha', 0.8),
            terrain_blend=self.visualization.get('terrain_blend', 0.3),
            earth_tone=self.visualization.get('earth_tone', (0.55, 0.42, 0.28)),
        )

        modifications = [self.build_modification(s, image_width, image_height) for s in terrain]
        placements = [self.build_placement(s, height_map, image_width, image_height) for s in objects]
        groups = self.group_placements(placements)

        metadata = self.build_metadata(image_width, image_height, segments, report,
                                       settings or {}, elapsed_seconds)

        height_map.setflags(write=False)
        segmentation_map.setflags(write=False)
        for segment in segments:
            segment.segment.mask.setflags(write=False)

        self.logger.info(f"Aggregated {len(modifications)} terrain modifications, "
                         f"{len(placements)} placements in {len(groups)} groups")

        return AnalysisResults(
            height_map=height_map,
            segmentation_map=segmentation_map,
            segments=tuple(s.segment for s in segments),
            terrain_modifications=tuple(modifications),
            object_placements=tuple(placements),
            object_groups=tuple(groups),
            metadata=MappingProxyType(metadata),
        )

    def build_modification(self,
                           segment: AnalyzedSegment,
                           image_width: int,
                           image_height: int) -> TerrainModification:
        bounds = segment.segment.bounding_box.normalized(image_width, image_height)
        height_map = segment.height_map
        if height_map is None:
            height_map = np.zeros((1, 1), dtype=np.float32)
        height_map = np.array(height_map, dtype=np.float32)
        height_map.setflags(write=False)

        return TerrainModification(
            bounds=bounds,
            height_map=height_map,
            base_height=float(np.clip(segment.estimated_height / self.max_height, 0.0, 1.0)),
            terrain_type=segment.detailed_classification or segment.object_type,
            description=segment.description,
            blend_radius=self.blend_radius_ratio * min(bounds.width, bounds.height),
            slope=float(segment.topology_features.get('slope', 0.0)),
            roughness=float(segment.topology_features.get('roughness', 0.0)),
        )

    def build_placement(self,
                        segment: AnalyzedSegment,
                        height_map: np.ndarray,
                        image_width: int,
                        image_height: int) -> ObjectPlacement:
        nx, ny = segment.normalized_position
        row = min(image_height - 1, max(0, int(ny * image_height)))
        col = min(image_width - 1, max(0, int(nx * image_width)))
        elevation = float(height_map[row, col]) * self.max_height

        return ObjectPlacement(
            object_type=segment.object_type,
            position=PlacementPosition(x=nx, y=ny, height=elevation),
            rotation=segment.estimated_rotation,
            scale=segment.estimated_scale,
            confidence=segment.placement_confidence,
            bounding_box=segment.segment.bounding_box,
            metadata={
                'segment_id': segment.id,
                'description': segment.description,
                'detailed_classification': segment.detailed_classification,
                'class_scores': dict(segment.segment.metadata.get('class_scores', {})),
                'world_position': (nx * self.terrain_size, elevation, ny * self.terrain_size),
            },
        )

    @staticmethod
    def group_placements(placements: Sequence[ObjectPlacement]) -> List[ObjectGroup]:
        """Group placement indices by object type, in first-seen order."""
        grouped = OrderedDict()
        for index, placement in enumerate(placements):
            grouped.setdefault(placement.object_type, []).append(index)
        return [ObjectGroup(object_type=name, placement_indices=tuple(indices))
                for name, indices in grouped.items()]

    @staticmethod
    def build_metadata(image_width: int,
                       image_height: int,
                       segments: Sequence[AnalyzedSegment],
                       report: RunReport,
                       settings: Dict[str, Any],
                       elapsed_seconds: float) -> Dict[str, Any]:
        terrain_types = sorted({s.detailed_classification for s in segments if s.is_terrain})
        terrain_count = sum(1 for s in segments if s.is_terrain)

        metadata = {
            'image_width': image_width,
            'image_height': image_height,
            'total_segments': len(segments),
            'terrain_segments': terrain_count,
            'object_segments': len(segments) - terrain_count,
            'elapsed_seconds': float(elapsed_seconds),
            'stage_timings': dict(report.stage_timings),
            'failures': [asdict(failure) for failure in report.failures],
            'detection_fallback': bool(report.flags.get('detection_fallback', False)),
            'detected_terrain_types': terrain_types,
        }
        metadata.update(settings)
        return metadata
