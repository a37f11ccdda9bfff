#!/usr/bin/env python3
"""
Target Detector Module
Builds per-target recognition models from a reference image and its ROI mask
and matches them against query image features

Created: 2025
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .exceptions import LoadFailure, RecognitionError
from .features import detect_and_compute
from .geometry import (
    DEFAULT_REPROJECTION_THRESHOLD,
    fit_robust_transform,
    mask_contour,
    project_contour,
)
from .types import Color, MatchResult, TargetModel

logger = logging.getLogger(__name__)

MASK_BINARY_THRESHOLD = 127


def binarize_mask(mask: np.ndarray, threshold: int = MASK_BINARY_THRESHOLD) -> np.ndarray:
    """Map mask pixels above ``threshold`` to 255 and everything else to 0."""
    if mask.ndim == 3:
        mask = cv2.cvtColor(mask, cv2.COLOR_BGR2GRAY)
    _, binary = cv2.threshold(mask, threshold, 255, cv2.THRESH_BINARY)
    return binary


def build_target_model(
    reference_image: np.ndarray,
    roi_mask: np.ndarray,
    target_id: int,
    detector,
    extractor,
    display_color: Color = (0, 255, 0),
    name: str = "",
    mask_threshold: int = MASK_BINARY_THRESHOLD,
) -> TargetModel:
    """
    Build the recognition model of one reference target
    Args:
        reference_image: Grayscale reference image
        roi_mask: Mask with the same size as the image, non-zero marks the target
        target_id: Positive identifier of the target (e.g. banknote value)
        detector: Object exposing ``detect(image, mask)``
        extractor: Object exposing ``compute(image, keypoints)``
        display_color: BGR color used when drawing results
        name: Reference name, usually the image filename
        mask_threshold: Mask pixels above this value are foreground
    Returns:
        Immutable TargetModel holding only keypoints inside the mask
    Raises:
        LoadFailure: image or mask is missing or their sizes differ
    """
    if reference_image is None or reference_image.size == 0:
        raise LoadFailure(f"Empty reference image for target {name or target_id}")
    if roi_mask is None or roi_mask.size == 0:
        raise LoadFailure(f"Empty ROI mask for target {name or target_id}")
    if reference_image.shape[:2] != roi_mask.shape[:2]:
        raise LoadFailure(
            f"Mask size {roi_mask.shape[:2]} differs from image size {reference_image.shape[:2]} "
            f"for target {name or target_id}"
        )
    if target_id <= 0:
        raise ValueError(f"Target id must be positive, got {target_id}")

    mask = binarize_mask(roi_mask, mask_threshold)

    keypoints, descriptors = detect_and_compute(reference_image, detector, extractor)
    kept_keypoints, kept_descriptors = filter_keypoints_by_mask(keypoints, descriptors, mask)

    logger.debug(
        "Target %s (%s): kept %d of %d keypoints inside ROI",
        target_id, name, len(kept_keypoints), len(keypoints),
    )

    return TargetModel(
        target_id=int(target_id),
        keypoints=tuple(kept_keypoints),
        descriptors=kept_descriptors,
        contour=mask_contour(mask),
        display_color=tuple(int(c) for c in display_color),
        name=name,
        image=reference_image,
    )


def filter_keypoints_by_mask(
    keypoints: Sequence[cv2.KeyPoint],
    descriptors: Optional[np.ndarray],
    mask: np.ndarray,
) -> Tuple[List[cv2.KeyPoint], Optional[np.ndarray]]:
    """Keep keypoints whose location lies on mask foreground, preserving order."""
    if not keypoints or descriptors is None:
        return [], None

    height, width = mask.shape[:2]
    keep: List[int] = []
    for index, keypoint in enumerate(keypoints):
        x = int(round(keypoint.pt[0]))
        y = int(round(keypoint.pt[1]))
        if 0 <= x < width and 0 <= y < height and mask[y, x] > 0:
            keep.append(index)

    if not keep:
        return [], None

    return [keypoints[i] for i in keep], descriptors[keep]


class TargetMatcher:
    """Match one TargetModel against query keypoints and validate the match geometrically."""

    def __init__(
        self,
        model: TargetModel,
        matcher,
        reprojection_threshold: float = DEFAULT_REPROJECTION_THRESHOLD,
    ) -> None:
        self.model = model
        self.matcher = matcher
        self.reprojection_threshold = reprojection_threshold

    def _empty_result(self) -> MatchResult:
        return MatchResult(
            target_id=self.model.target_id,
            display_color=self.model.display_color,
            model_name=self.model.name,
        )

    def analyze(self, query_keypoints: Sequence[cv2.KeyPoint], query_descriptors: Optional[np.ndarray]) -> MatchResult:
        """
        Score the target against the current query features
        Args:
            query_keypoints: Query keypoints of the current detection round
            query_descriptors: Descriptors aligned with ``query_keypoints``
        Returns:
            MatchResult; score is 0 with an empty contour when no transform fits
        """
        model = self.model
        if model.keypoint_count == 0 or query_descriptors is None or len(query_keypoints) == 0:
            return self._empty_result()

        # each target descriptor looks for its nearest query descriptor
        matches = self.matcher.match(model.descriptors, query_descriptors)
        if len(matches) < 4:
            return self._empty_result()

        target_points = np.float32([model.keypoints[m.queryIdx].pt for m in matches])
        query_points = np.float32([query_keypoints[m.trainIdx].pt for m in matches])

        try:
            homography, inlier_mask = fit_robust_transform(
                target_points, query_points, self.reprojection_threshold
            )
        except RecognitionError as exc:
            logger.debug("Target %s (%s): %s", model.target_id, model.name, exc)
            return self._empty_result()

        inliers = tuple(
            (int(m.trainIdx), int(m.queryIdx))
            for m, is_inlier in zip(matches, inlier_mask)
            if is_inlier
        )

        return MatchResult(
            target_id=model.target_id,
            score=len(inliers) / float(model.keypoint_count),
            inliers=inliers,
            contour=project_contour(model.contour, homography),
            display_color=model.display_color,
            model_name=model.name,
            inlier_query_points=query_points[inlier_mask],
            inlier_target_points=target_points[inlier_mask],
        )
