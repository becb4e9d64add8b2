"""
Data Models for the Map Analysis Pipeline

Defines all data structures handed from one pipeline stage to the next.
"""

import logging
from dataclasses import dataclass, field
from typing import Tuple, Dict, List, Any, Mapping, Optional
import numpy as np

from .geometry import BoundingBox


@dataclass(frozen=True)
class DetectedObject:
    """Detection produced by the decoder; immutable after creation."""
    bounding_box: BoundingBox
    class_id: int
    class_name: str
    confidence: float  # in [0, 1]
    class_scores: Dict[str, float] = field(default_factory=dict)
    synthetic: bool = False  # True for fallback-grid detections


@dataclass
class ImageSegment:
    """Detected region with a foreground mask sized to its box."""
    id: str
    bounding_box: BoundingBox
    mask: np.ndarray  # uint8 (rows, cols) covering the box pixel region, 255 = foreground
    confidence: float
    class_name: str
    class_id: int
    area: float  # foreground pixel count
    is_terrain: bool
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AnalyzedSegment:
    """Segment enriched by classification, height and placement stages."""
    segment: ImageSegment
    is_terrain: bool
    classification_confidence: float
    object_type: str
    detailed_classification: str
    features: Dict[str, float] = field(default_factory=dict)
    topology_features: Dict[str, float] = field(default_factory=dict)  # slope, roughness, elevation
    height_map: Optional[np.ndarray] = None  # float32 in [0, 1], terrain only
    estimated_height: float = 0.0
    normalized_position: Tuple[float, float] = (0.0, 0.0)
    estimated_rotation: float = 0.0  # degrees about the vertical axis
    estimated_scale: float = 1.0
    placement_confidence: float = 0.0
    short_description: str = ""
    enhanced_description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.segment.id

    @property
    def description(self) -> str:
        return self.enhanced_description or self.short_description


@dataclass(frozen=True)
class TerrainModification:
    """Terrain feature ready to be applied to a terrain height field."""
    bounds: BoundingBox  # normalized [0, 1] map space
    height_map: np.ndarray
    base_height: float
    terrain_type: str
    description: str
    blend_radius: float
    slope: float  # degrees
    roughness: float


@dataclass(frozen=True)
class PlacementPosition:
    """Normalized map position plus estimated elevation."""
    x: float
    y: float
    height: float


@dataclass(frozen=True)
class ObjectPlacement:
    """Placeable object descriptor derived from a non-terrain segment."""
    object_type: str
    position: PlacementPosition
    rotation: float  # degrees
    scale: float
    confidence: float
    bounding_box: BoundingBox
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ObjectGroup:
    """Placements sharing an object type, for instancing."""
    object_type: str
    placement_indices: Tuple[int, ...]


@dataclass(frozen=True)
class StageFailure:
    """Locally recovered failure recorded during a run."""
    stage: str
    kind: str
    message: str
    segment_id: Optional[str] = None


@dataclass
class RunReport:
    """Per-run accumulator for failures, stage timings and flags."""
    failures: List[StageFailure] = field(default_factory=list)
    stage_timings: Dict[str, float] = field(default_factory=dict)
    flags: Dict[str, Any] = field(default_factory=dict)

    def record_failure(self,
                       stage: str,
                       error: BaseException,
                       segment_id: Optional[str] = None,
                       logger: Optional[logging.Logger] = None) -> StageFailure:
        """
        Record a recovered failure and log it as a warning.

        Args:
            stage: Pipeline stage label
            error: Exception that triggered the fallback
            segment_id: Segment the failure belongs to, if any
            logger: Logger to report through

        Returns:
            The recorded failure
        """
        failure = StageFailure(
            stage=stage,
            kind=type(error).__name__,
            message=str(error),
            segment_id=segment_id,
        )
        self.failures.append(failure)

        log = logger or logging.getLogger(__name__)
        target = f" (segment {segment_id})" if segment_id else ""
        log.warning(f"{stage}: {failure.kind}{target}: {failure.message}; using fallback")

        return failure

    def failure_kinds(self) -> List[str]:
        return [failure.kind for failure in self.failures]


@dataclass(frozen=True)
class AnalysisResults:
    """Final, read-only output of one pipeline run."""
    height_map: np.ndarray  # float32 (H, W), normalized heights
    segmentation_map: np.ndarray  # uint8 (H, W, 4) RGBA
    segments: Tuple[ImageSegment, ...]
    terrain_modifications: Tuple[TerrainModification, ...]
    object_placements: Tuple[ObjectPlacement, ...]
    object_groups: Tuple[ObjectGroup, ...]
    metadata: Mapping[str, Any]  # read-only view

    def summary(self) -> Dict[str, Any]:
        """JSON-friendly summary of features and placements."""
        return {
            'metadata': dict(self.metadata),
            'terrain_modifications': [
                {
                    'terrain_type': mod.terrain_type,
                    'bounds': [mod.bounds.x, mod.bounds.y, mod.bounds.width, mod.bounds.height],
                    'base_height': mod.base_height,
                    'blend_radius': mod.blend_radius,
                    'slope': mod.slope,
                    'roughness': mod.roughness,
                    'description': mod.description,
                }
                for mod in self.terrain_modifications
            ],
            'object_placements': [
                {
                    'object_type': placement.object_type,
                    'position': [placement.position.x, placement.position.y, placement.position.height],
                    'rotation': placement.rotation,
                    'scale': placement.scale,
                    'confidence': placement.confidence,
                    'bounding_box': [
                        placement.bounding_box.x, placement.bounding_box.y,
                        placement.bounding_box.width, placement.bounding_box.height,
                    ],
                    'description': placement.metadata.get('description', ''),
                }
                for placement in self.object_placements
            ],
            'object_groups': [
                {'object_type': group.object_type, 'placements': list(group.placement_indices)}
                for group in self.object_groups
            ],
        }
