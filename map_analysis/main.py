"""
Main entry point for the Map Analysis Pipeline

Analyzes one map image and writes the height map, segmentation map and a
JSON summary to an output directory.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import cv2
import numpy as np

from map_analysis.pipeline import MapAnalyzer
from map_analysis.utils.config_manager import ConfigManager


def main(argv=None):
    """Main entry point for the map analysis pipeline."""
    parser = argparse.ArgumentParser(
        description="Map Analysis Pipeline: terrain features and object placements from a map image"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file"
    )

    parser.add_argument(
        "--image",
        type=str,
        required=True,
        help="Map image to analyze"
    )

    parser.add_argument(
        "--output-dir",
        type=str,
        default="output",
        help="Output directory for results"
    )

    parser.add_argument(
        "--confidence",
        type=float,
        help="Detection confidence threshold (overrides config)"
    )

    parser.add_argument(
        "--nms",
        type=float,
        help="NMS IoU threshold (overrides config)"
    )

    parser.add_argument(
        "--seed",
        type=int,
        help="Seed for synthetic height fields"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    logger = logging.getLogger("map_analysis")

    # Load configuration
    try:
        config = ConfigManager(args.config)
        if args.confidence is not None:
            config.set('analysis.confidence_threshold', args.confidence)
        if args.nms is not None:
            config.set('analysis.nms_threshold', args.nms)
        logger.info(f"Loaded configuration from: {config.config_path}")
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Error loading configuration: {e}")
        return 1

    image_path = Path(args.image)
    if not image_path.exists():
        logger.error(f"Image does not exist: {args.image}")
        return 1

    image = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
    if image is None:
        logger.error(f"Could not read image: {args.image}")
        return 1
    image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

    output_path = Path(args.output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    analyzer = MapAnalyzer(config, seed=args.seed)

    def on_progress(stage, fraction):
        logger.info(f"[{fraction * 100:5.1f}%] {stage}")

    results = asyncio.run(analyzer.analyze(image, progress_callback=on_progress))

    # 16-bit height map keeps the blend's precision
    height_png = np.round(np.clip(results.height_map, 0.0, 1.0) * 65535).astype(np.uint16)
    cv2.imwrite(str(output_path / "height_map.png"), height_png)

    segmentation_bgra = cv2.cvtColor(results.segmentation_map, cv2.COLOR_RGBA2BGRA)
    cv2.imwrite(str(output_path / "segmentation_map.png"), segmentation_bgra)

    with open(output_path / "analysis_summary.json", 'w') as file:
        json.dump(results.summary(), file, indent=2)

    logger.info(f"Results written to {output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
