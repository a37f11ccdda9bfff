#!/usr/bin/env python3
"""
Keypoint-based Target Recognition
Init file for the target_recognition package

Created: 2025
"""

from .config_manager import ConfigManager
from .evaluation import EvaluationHarness, EvaluationRecord, EvaluationReport
from .exceptions import (
    ConfigurationFailure,
    DegenerateTransform,
    InsufficientFeatures,
    LoadFailure,
    RecognitionError,
)
from .image_preprocessor import ImagePreprocessor
from .recognition_engine import RecognitionEngine, select_best_candidate
from .target_detector import TargetMatcher, build_target_model
from .types import MatchResult, ReferenceEntry, TargetModel, TestEntry

__version__ = "1.0.0"

__all__ = [
    'ConfigManager',
    'ConfigurationFailure',
    'DegenerateTransform',
    'EvaluationHarness',
    'EvaluationRecord',
    'EvaluationReport',
    'ImagePreprocessor',
    'InsufficientFeatures',
    'LoadFailure',
    'MatchResult',
    'RecognitionEngine',
    'RecognitionError',
    'ReferenceEntry',
    'TargetMatcher',
    'TargetModel',
    'TestEntry',
    'build_target_model',
    'select_best_candidate',
]
