#!/usr/bin/env python3
"""
Configuration Management Module
Handles loading and validating recognition configuration files

Created: 2025
"""

import copy
import json
import logging
import os
import shutil
from datetime import datetime
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "features": {
        "detector": "ORB",
        "extractor": "ORB",
        "max_keypoints": 2000
    },
    "matching": {
        "ratio": 0.8,
        "cross_check": False
    },
    "detection": {
        "min_match_score": 0.07,
        "min_inliers": 8,
        "min_target_area": 0.05,
        "max_instance_overlap": 0.5,
        "ransac_reprojection_threshold": 3.0,
        "max_rounds": None
    },
    "paths": {
        "reference_images_dir": "imgs/references",
        "reference_analysis_dir": "imgs/references/analysis",
        "reference_list": "imgs/references/referencesList.txt",
        "test_images_dir": "imgs/testDB",
        "test_output_dir": "imgs/testDB/results",
        "test_list": "imgs/testDB/testList.txt"
    },
    "mask": {
        "suffix": "_mask",
        "extension": ".png",
        "binary_threshold": 127
    },
    "preprocessing": {
        "max_image_size": 0,
        "equalize": False,
        "denoise": False
    },
    "workers": None,
    "save_reference_keypoints": True
}


class ConfigManager:
    """Configuration manager for the target recognition system"""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager
        Args:
            config_path: Path to configuration file
        """
        self.config_path = config_path or "config.json"
        self.config = self._get_default_config()

        if os.path.exists(self.config_path):
            self.load_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration"""
        return copy.deepcopy(DEFAULT_CONFIG)

    def load_config(self) -> bool:
        """
        Load configuration from file
        Returns:
            True if loaded successfully
        """
        try:
            with open(self.config_path, 'r') as f:
                loaded_config = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Error loading configuration %s: %s", self.config_path, e)
            return False

        if not isinstance(loaded_config, dict):
            logger.error("Configuration %s must contain a JSON object", self.config_path)
            return False

        # Update default config with loaded values
        self._deep_update(self.config, loaded_config)

        logger.info("Configuration loaded from %s", self.config_path)
        return True

    def save_config(self) -> bool:
        """
        Save current configuration to file, keeping a timestamped backup of the old one
        Returns:
            True if saved successfully
        """
        try:
            if os.path.exists(self.config_path):
                timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
                backup_path = f"{self.config_path}.backup.{timestamp}"
                shutil.copy2(self.config_path, backup_path)
                logger.info("Backup created: %s", backup_path)

            with open(self.config_path, 'w') as f:
                json.dump(self.config, f, indent=2)
        except OSError as e:
            logger.error("Error saving configuration %s: %s", self.config_path, e)
            return False

        logger.info("Configuration saved to %s", self.config_path)
        return True

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value
        Args:
            key: Configuration key (supports dot notation, e.g., 'detection.min_inliers')
            default: Default value if key not found
        Returns:
            Configuration value or default
        """
        keys = key.split('.')
        value = self.config

        try:
            for k in keys:
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any):
        """
        Set configuration value
        Args:
            key: Configuration key (supports dot notation)
            value: Value to set
        """
        keys = key.split('.')
        config = self.config

        # Navigate to parent of target key
        for k in keys[:-1]:
            if k not in config or not isinstance(config[k], dict):
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def _deep_update(self, base_dict: Dict, update_dict: Dict):
        """
        Deep update dictionary
        Args:
            base_dict: Base dictionary to update
            update_dict: Dictionary with updates
        """
        for key, value in update_dict.items():
            if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
                self._deep_update(base_dict[key], value)
            else:
                base_dict[key] = value

    @property
    def configuration_tag(self) -> str:
        """Tag embedded in output filenames, e.g. ``ORB_ORB_BruteForce``"""
        return "{}_{}_BruteForce".format(
            self.get('features.detector', 'ORB'),
            self.get('features.extractor', 'ORB'),
        )

    def validation_errors(self) -> List[str]:
        errors = []

        if not 0 <= self.get('detection.min_match_score', 0) <= 1:
            errors.append("detection.min_match_score must be between 0 and 1")

        if not 0 <= self.get('detection.min_target_area', 0) <= 1:
            errors.append("detection.min_target_area must be between 0 and 1")

        if not 0 <= self.get('detection.max_instance_overlap', 0) <= 1:
            errors.append("detection.max_instance_overlap must be between 0 and 1")

        if self.get('detection.min_inliers', 0) < 0:
            errors.append("detection.min_inliers must not be negative")

        if self.get('detection.ransac_reprojection_threshold', 0) <= 0:
            errors.append("detection.ransac_reprojection_threshold must be positive")

        max_rounds = self.get('detection.max_rounds')
        if max_rounds is not None and max_rounds <= 0:
            errors.append("detection.max_rounds must be positive or null")

        if not 0 < self.get('matching.ratio', 0) <= 1:
            errors.append("matching.ratio must be in (0, 1]")

        if not 0 <= self.get('mask.binary_threshold', 0) <= 255:
            errors.append("mask.binary_threshold must be between 0 and 255")

        workers = self.get('workers')
        if workers is not None and workers <= 0:
            errors.append("workers must be positive or null")

        return errors

    def validate_config(self) -> bool:
        """
        Validate configuration values
        Returns:
            True if configuration is valid
        """
        errors = self.validation_errors()

        reference_dir = self.get('paths.reference_images_dir')
        if reference_dir and not os.path.isdir(reference_dir):
            logger.warning("Reference images directory does not exist: %s", reference_dir)

        if errors:
            logger.error("Configuration validation errors:")
            for error in errors:
                logger.error("  - %s", error)
            return False

        return True

    def print_config(self):
        """Print current configuration"""
        print("=== Current Configuration ===")
        self._print_dict(self.config, indent=0)

    def _print_dict(self, d: Dict, indent: int):
        """Recursively print dictionary"""
        for key, value in d.items():
            if isinstance(value, dict):
                print("  " * indent + f"{key}:")
                self._print_dict(value, indent + 1)
            else:
                print("  " * indent + f"{key}: {value}")
