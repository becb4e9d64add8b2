"""
Configuration Management System

Handles loading, validation, and management of pipeline parameters.
"""

import yaml
from typing import Dict, Any, List, Optional
from pathlib import Path


class ConfigManager:
    """Manages configuration parameters for the map analysis pipeline."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to configuration file. If None, uses default config.
        """
        self.config_path = config_path or self._get_default_config_path()
        self.config = self._load_config()
        self._validate_config()

    def _get_default_config_path(self) -> str:
        """Get path to default configuration file."""
        package_dir = Path(__file__).parent.parent
        return str(package_dir / "config" / "default_config.yaml")

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        try:
            with open(self.config_path, 'r') as file:
                config = yaml.safe_load(file)
            return config or {}
        except FileNotFoundError:
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ValueError(f"Error parsing configuration file: {e}")

    def _validate_config(self) -> None:
        """Validate configuration parameters for consistency and feasibility."""
        analysis = self.config.get('analysis', {})
        for key in ('confidence_threshold', 'nms_threshold'):
            value = float(analysis.get(key, 0.5))
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"analysis.{key} must be within [0, 1]")

        if int(analysis.get('max_objects_to_process', 100)) < 1:
            raise ValueError("analysis.max_objects_to_process must be at least 1")
        if int(analysis.get('max_concurrent_segments', 4)) < 1:
            raise ValueError("analysis.max_concurrent_segments must be at least 1")
        if int(analysis.get('yield_every', 5)) < 1:
            raise ValueError("analysis.yield_every must be at least 1")

        # Validate detection gates
        det = self.config.get('detection', {})
        if int(det.get('input_size', 640)) <= 0:
            raise ValueError("detection.input_size must be positive")
        if int(det.get('fallback_grid_size', 4)) < 1:
            raise ValueError("detection.fallback_grid_size must be at least 1")

        # Validate height ranges
        height = self.config.get('height', {})
        if float(height.get('max_terrain_height', 100.0)) <= 0:
            raise ValueError("height.max_terrain_height must be positive")
        if float(height.get('terrain_size', 500.0)) <= 0:
            raise ValueError("height.terrain_size must be positive")
        base = float(height.get('global_base_height', 0.02))
        if not 0.0 <= base <= 1.0:
            raise ValueError("height.global_base_height must be within [0, 1]")

        # Validate placement scale range
        placement = self.config.get('placement', {})
        min_scale = float(placement.get('min_scale', 0.5))
        max_scale = float(placement.get('max_scale', 3.0))
        if min_scale <= 0 or min_scale >= max_scale:
            raise ValueError("placement.min_scale must be positive and less than max_scale")
        if not 0.0 <= float(placement.get('min_penalty', 0.25)) <= 1.0:
            raise ValueError("placement.min_penalty must be within [0, 1]")

        # Validate enhancement limits
        enh = self.config.get('enhancement', {})
        if float(enh.get('timeout_seconds', 5.0)) <= 0:
            raise ValueError("enhancement.timeout_seconds must be positive")
        if int(enh.get('max_concurrent_requests', 5)) < 1:
            raise ValueError("enhancement.max_concurrent_requests must be at least 1")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'analysis.confidence_threshold')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'analysis.nms_threshold')
            value: Value to set
        """
        keys = key.split('.')
        config_ref = self.config

        for k in keys[:-1]:
            if k not in config_ref:
                config_ref[k] = {}
            config_ref = config_ref[k]

        config_ref[keys[-1]] = value
        self._validate_config()

    def save(self, output_path: Optional[str] = None) -> None:
        """
        Save current configuration to file.

        Args:
            output_path: Path to save configuration. If None, overwrites current file.
        """
        save_path = output_path or self.config_path

        with open(save_path, 'w') as file:
            yaml.dump(self.config, file, default_flow_style=False, indent=2)

    def load_labels(self) -> List[str]:
        """
        Get detection class labels.

        Reads ``detection.labels_path`` (one label per line) when set,
        otherwise returns the inline ``detection.labels`` list.

        Returns:
            List of class labels indexed by class id
        """
        labels_path = self.get('detection.labels_path')
        if labels_path:
            with open(labels_path, 'r') as file:
                return [line.strip() for line in file if line.strip()]
        return list(self.get('detection.labels', []) or [])

    def get_analysis_params(self) -> Dict[str, Any]:
        """Get run-level analysis parameters as a dictionary."""
        return self.config.get('analysis', {})

    def get_preprocessing_params(self) -> Dict[str, Any]:
        """Get image preprocessing parameters as a dictionary."""
        return self.config.get('preprocessing', {})

    def get_detection_params(self) -> Dict[str, Any]:
        """Get detection decoder parameters as a dictionary."""
        return self.config.get('detection', {})

    def get_segmentation_params(self) -> Dict[str, Any]:
        """Get segmentation parameters as a dictionary."""
        return self.config.get('segmentation', {})

    def get_classification_params(self) -> Dict[str, Any]:
        """Get segment classifier parameters as a dictionary."""
        return self.config.get('classification', {})

    def get_height_params(self) -> Dict[str, Any]:
        """Get terrain height estimation parameters as a dictionary."""
        return self.config.get('height', {})

    def get_placement_params(self) -> Dict[str, Any]:
        """Get object placement parameters as a dictionary."""
        return self.config.get('placement', {})

    def get_enhancement_params(self) -> Dict[str, Any]:
        """Get text enhancement parameters as a dictionary."""
        return self.config.get('enhancement', {})

    def get_visualization_params(self) -> Dict[str, Any]:
        """Get segmentation map rendering parameters as a dictionary."""
        return self.config.get('visualization', {})
