#!/usr/bin/env python3
"""
Feature Detection, Description and Matching Module
OpenCV-backed keypoint detectors, descriptor extractors and a ratio-test matcher

Created: 2025
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import cv2
import numpy as np

DEFAULT_MAX_KEYPOINTS = 2000
DEFAULT_RATIO = 0.8


# name -> (cv2 factory attribute, keyword arguments for a keypoint budget)
_DETECTORS = {
    "ORB": ("ORB_create", lambda max_keypoints: {"nfeatures": max_keypoints}),
    "SIFT": ("SIFT_create", lambda max_keypoints: {"nfeatures": max_keypoints}),
    "AKAZE": ("AKAZE_create", lambda max_keypoints: {}),
    "BRISK": ("BRISK_create", lambda max_keypoints: {}),
    "FAST": ("FastFeatureDetector_create", lambda max_keypoints: {}),
    "GFTT": ("GFTTDetector_create", lambda max_keypoints: {"maxCorners": max_keypoints}),
}

# FAST and GFTT only locate keypoints
_EXTRACTORS = {name: entry for name, entry in _DETECTORS.items() if name not in ("FAST", "GFTT")}


def _instantiate(kind: str, name: str, table, max_keypoints: int):
    entry = table.get(name.upper())
    if entry is None:
        raise ValueError(f"Unsupported {kind}: {name}")

    attribute, options = entry
    factory = getattr(cv2, attribute, None)
    if factory is None:
        raise ValueError(f"{kind.capitalize()} {name} is not available in this OpenCV build (no cv2.{attribute})")
    return factory(**options(max_keypoints))


def create_feature_detector(name: str = "ORB", max_keypoints: int = DEFAULT_MAX_KEYPOINTS):
    """
    Create a keypoint detector exposing ``detect(image, mask)``
    Args:
        name: Algorithm name (ORB, SIFT, AKAZE, BRISK, FAST, GFTT)
        max_keypoints: Upper bound on keypoints where the algorithm supports it
    Returns:
        OpenCV Feature2D instance
    Raises:
        ValueError: unknown name, or the factory is missing from the installed OpenCV
    """
    return _instantiate("feature detector", name, _DETECTORS, max_keypoints)


def create_descriptor_extractor(name: str = "ORB", max_keypoints: int = DEFAULT_MAX_KEYPOINTS):
    """
    Create a descriptor extractor exposing ``compute(image, keypoints)``
    Args:
        name: Algorithm name (ORB, SIFT, AKAZE, BRISK)
        max_keypoints: Forwarded to the underlying factory
    Returns:
        OpenCV Feature2D instance
    Raises:
        ValueError: unknown name, or the factory is missing from the installed OpenCV
    """
    return _instantiate("descriptor extractor", name, _EXTRACTORS, max_keypoints)


def supported_detectors() -> List[str]:
    return sorted(_DETECTORS)


def supported_extractors() -> List[str]:
    return sorted(_EXTRACTORS)


def detect_and_compute(image: np.ndarray, detector, extractor, mask: Optional[np.ndarray] = None):
    """Detect keypoints and compute their descriptors, dropping any the extractor rejects."""
    keypoints = detector.detect(image, mask)
    if not keypoints:
        return [], None

    keypoints, descriptors = extractor.compute(image, keypoints)
    if descriptors is None or not keypoints:
        return [], None

    return list(keypoints), descriptors


class RatioTestMatcher:
    """Brute-force k-NN descriptor matcher with Lowe's ratio test.

    ``match(query_descriptors, train_descriptors)`` returns at most one
    ``cv2.DMatch`` per train descriptor, keeping the closest query descriptor
    when several claim the same one.
    """

    name = "BruteForce"

    def __init__(self, ratio: float = DEFAULT_RATIO, cross_check: bool = False) -> None:
        self.ratio = ratio
        self.cross_check = cross_check

    @staticmethod
    def norm_for(descriptors: np.ndarray) -> int:
        """Hamming distance for binary descriptors, L2 for floating point ones."""
        if descriptors.dtype == np.uint8:
            return cv2.NORM_HAMMING
        return cv2.NORM_L2

    @staticmethod
    def _matcher(norm: int) -> cv2.DescriptorMatcher:
        # a fresh matcher per call keeps concurrent matching free of shared state
        return cv2.BFMatcher(norm, crossCheck=False)

    def match(self, query_descriptors: Optional[np.ndarray], train_descriptors: Optional[np.ndarray]) -> List[cv2.DMatch]:
        if query_descriptors is None or train_descriptors is None:
            return []
        if len(query_descriptors) == 0 or len(train_descriptors) == 0:
            return []

        matcher = self._matcher(self.norm_for(query_descriptors))
        knn_matches = matcher.knnMatch(query_descriptors, train_descriptors, k=2)

        good: List[cv2.DMatch] = []
        for candidates in knn_matches:
            if not candidates:
                continue
            if len(candidates) == 1:
                good.append(candidates[0])
                continue
            best, second = candidates[0], candidates[1]
            # ratio 1.0 disables the test and keeps the plain nearest neighbour
            if self.ratio >= 1.0 or best.distance < self.ratio * second.distance:
                good.append(best)

        if self.cross_check:
            good = self._symmetric_filter(matcher, good, query_descriptors, train_descriptors)

        return self._unique_train(good)

    @staticmethod
    def _symmetric_filter(matcher, matches: Sequence[cv2.DMatch], query_descriptors, train_descriptors) -> List[cv2.DMatch]:
        reverse = matcher.match(train_descriptors, query_descriptors)
        reverse_pairs = {(m.trainIdx, m.queryIdx) for m in reverse}
        return [m for m in matches if (m.queryIdx, m.trainIdx) in reverse_pairs]

    @staticmethod
    def _unique_train(matches: Sequence[cv2.DMatch]) -> List[cv2.DMatch]:
        best_by_train: Dict[int, cv2.DMatch] = {}
        for m in matches:
            current = best_by_train.get(m.trainIdx)
            if current is None or m.distance < current.distance:
                best_by_train[m.trainIdx] = m
        return sorted(best_by_train.values(), key=lambda m: m.queryIdx)
