"""
Terrain Height Estimation

Estimates a per-pixel height field and topology features (slope,
roughness, elevation) for every terrain segment. Uses the height
regression model when it is available and otherwise synthesizes a field
from a per-type base height and fractal noise.
"""

import numpy as np
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from ..data_models import AnalyzedSegment, RunReport
from ..exceptions import InferenceFailureError, MapAnalysisError
from ..inference.engine import HEIGHT_MODEL, InferenceEngine, run_model
from ..utils.class_keywords import tokenize
from ..utils.concurrency import map_bounded
from ..utils.config_manager import ConfigManager
from ..utils.noise import fractal_noise
from ..utils.raster import crop_region, image_to_tensor, resize_field, squeeze_to_2d

STAGE = "height_estimation"

DEFAULT_TYPE_HEIGHTS = {
    'mountain': (75.0, 15.0),
    'hill': (20.0, 5.0),
    'water': (-2.0, 0.5),
    'forest': (10.0, 3.0),
    'default': (3.0, 1.5),
}


class TerrainHeightEstimator:
    """Height fields and topology features for terrain segments."""

    def __init__(self,
                 config_manager: Optional[ConfigManager] = None,
                 inference_engine: Optional[InferenceEngine] = None,
                 seed: Optional[int] = None):
        """
        Initialize height estimator.

        Args:
            config_manager: Configuration manager instance
            inference_engine: Engine hosting the height model
            seed: Seed for the synthetic fallback fields (random if None)
        """
        self.config = config_manager or ConfigManager()
        self.engine = inference_engine
        self.seed = seed
        self.logger = logging.getLogger(__name__)

        height_config = self.config.get_height_params()

        self.input_size = height_config.get('input_size', 256)
        self.max_height = float(height_config.get('max_terrain_height', 100.0))
        self.terrain_size = float(height_config.get('terrain_size', 500.0))

        # Fractal noise parameters for synthetic fields
        self.noise_scale = height_config.get('noise_scale', 4.0)
        self.noise_octaves = height_config.get('noise_octaves', 4)
        self.noise_persistence = height_config.get('noise_persistence', 0.5)
        self.noise_lacunarity = height_config.get('noise_lacunarity', 2.0)
        self.noise_amplitude = height_config.get('noise_amplitude', 0.15)

        self.type_heights = self._load_type_heights(height_config.get('type_heights'))

        self.logger.info(f"Height estimator initialized: max_height={self.max_height}, "
                         f"terrain_size={self.terrain_size}, {len(self.type_heights)} terrain types")

    @staticmethod
    def _load_type_heights(table) -> Dict[str, Tuple[float, float]]:
        if not table:
            return dict(DEFAULT_TYPE_HEIGHTS)

        type_heights = {}
        for name, entry in table.items():
            if not isinstance(entry, (list, tuple)) or len(entry) != 2:
                raise ValueError(
                    f"height.type_heights.{name} must be a [base, spread] pair, got {entry!r}"
                )
            try:
                base, spread = float(entry[0]), float(entry[1])
            except (TypeError, ValueError):
                raise ValueError(f"height.type_heights.{name} values must be numbers, got {entry!r}")
            if spread < 0:
                raise ValueError(f"height.type_heights.{name} spread must be non-negative")
            type_heights[str(name).lower()] = (base, spread)

        type_heights.setdefault('default', DEFAULT_TYPE_HEIGHTS['default'])
        return type_heights

    def type_height(self, *names: str) -> Tuple[float, float]:
        """
        Base height and spread for the first name with a matching token.

        Args:
            names: Candidate class names, most specific first

        Returns:
            (base_height, spread) in world units
        """
        for name in names:
            tokens = tokenize(name)
            for key, value in self.type_heights.items():
                if key != 'default' and key in tokens:
                    return value
        return self.type_heights['default']

    async def estimate(self,
                       image: np.ndarray,
                       segments: Sequence[AnalyzedSegment],
                       report: Optional[RunReport] = None,
                       max_concurrency: int = 1,
                       yield_every: int = 5,
                       checkpoint=None) -> List[AnalyzedSegment]:
        """
        Estimate heights for the terrain segments of a run.

        Non-terrain segments are left untouched.

        Args:
            image: RGB uint8 image
            segments: Classified segments
            report: Run report receiving recovered failures
            max_concurrency: Maximum segments processed at once
            yield_every: Yield to the event loop after this many segments
            checkpoint: Cancellation check invoked before each segment

        Returns:
            The terrain segments, updated in place
        """
        report = report if report is not None else RunReport()
        terrain = [segment for segment in segments if segment.is_terrain]

        # Independent stream per segment keeps results order-independent
        streams = np.random.SeedSequence(self.seed).spawn(len(terrain))

        async def estimate_one(index: int, segment: AnalyzedSegment) -> AnalyzedSegment:
            rng = np.random.default_rng(streams[index])
            await self.estimate_segment(image, segment, report, rng)
            return segment

        updated = await map_bounded(estimate_one, terrain, max_concurrency, yield_every, checkpoint)

        self.logger.info(f"Estimated heights for {len(updated)} terrain segments")

        return updated

    async def estimate_segment(self,
                               image: np.ndarray,
                               segment: AnalyzedSegment,
                               report: RunReport,
                               rng: Optional[np.random.Generator] = None) -> None:
        """Fill height map, estimated height and topology features of one segment."""
        rng = rng if rng is not None else np.random.default_rng(self.seed)
        image_height, image_width = image.shape[:2]

        x0, y0, x1, y1 = segment.segment.bounding_box.pixel_region(image_width, image_height)
        region_w = max(1, x1 - x0)
        region_h = max(1, y1 - y0)

        field = None
        source = "model"

        if self.engine is not None and self.engine.has_model(HEIGHT_MODEL):
            try:
                field = await self._predict_field(image, segment, region_w, region_h)
            except MapAnalysisError as e:
                report.record_failure(STAGE, e, segment.id, self.logger)
            except ValueError as e:
                report.record_failure(STAGE, InferenceFailureError(str(e)), segment.id, self.logger)

        if field is not None:
            estimated_height = float(np.mean(field)) * self.max_height
        else:
            source = "synthetic"
            estimated_height, field = self.synthetic_field(segment, region_w, region_h, rng)

        segment.height_map = field.astype(np.float32)
        segment.estimated_height = estimated_height
        segment.topology_features.update({
            'slope': self.compute_slope(field, image_width),
            'roughness': self.compute_roughness(field),
            'elevation': estimated_height,
        })
        segment.metadata['height_source'] = source

        self.logger.debug(f"{segment.id}: height={estimated_height:.2f} ({source})")

    async def _predict_field(self,
                             image: np.ndarray,
                             segment: AnalyzedSegment,
                             region_w: int,
                             region_h: int) -> np.ndarray:
        crop = crop_region(image, segment.segment.bounding_box)
        tensor = image_to_tensor(crop, self.input_size)

        outputs = await run_model(self.engine, HEIGHT_MODEL, {'image': tensor}, required_output='height')

        field = np.clip(squeeze_to_2d(outputs['height']), 0.0, 1.0)
        return resize_field(field, region_w, region_h)

    def synthetic_field(self,
                        segment: AnalyzedSegment,
                        region_w: int,
                        region_h: int,
                        rng: np.random.Generator) -> Tuple[float, np.ndarray]:
        """
        Fallback height: per-type base with bounded spread, plus noise detail.

        Returns:
            Tuple of (estimated height in world units, field in [0, 1])
        """
        base, spread = self.type_height(segment.detailed_classification, segment.object_type)
        estimated_height = base + (float(rng.uniform(-spread, spread)) if spread > 0 else 0.0)

        base_norm = float(np.clip(estimated_height / self.max_height, 0.0, 1.0))
        noise = fractal_noise(region_w, region_h,
                              scale=self.noise_scale,
                              octaves=self.noise_octaves,
                              persistence=self.noise_persistence,
                              lacunarity=self.noise_lacunarity,
                              rng=rng)

        field = np.clip(base_norm + self.noise_amplitude * (noise - 0.5), 0.0, 1.0)
        return estimated_height, field.astype(np.float32)

    def compute_slope(self, field: np.ndarray, image_width: int) -> float:
        """
        Mean slope in degrees between adjacent pixels.

        Heights are scaled by the maximum terrain height and the horizontal
        spacing of one pixel is ``terrain_size / image_width``.
        """
        spacing = self.terrain_size / max(1, image_width)
        diffs = []
        if field.shape[1] > 1:
            diffs.append(np.abs(np.diff(field, axis=1)).ravel())
        if field.shape[0] > 1:
            diffs.append(np.abs(np.diff(field, axis=0)).ravel())
        if not diffs:
            return 0.0

        rise = np.concatenate(diffs) * self.max_height
        return float(np.mean(np.degrees(np.arctan(rise / spacing))))

    def compute_roughness(self, field: np.ndarray) -> float:
        """Mean absolute difference between second neighbours, in world units."""
        diffs = []
        if field.shape[1] > 2:
            diffs.append(np.abs(field[:, 2:] - field[:, :-2]).ravel())
        if field.shape[0] > 2:
            diffs.append(np.abs(field[2:, :] - field[:-2, :]).ravel())
        if not diffs:
            return 0.0

        return float(np.mean(np.concatenate(diffs)) * self.max_height)
