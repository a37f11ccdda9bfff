"""Robust homography fitting and contour checks used to validate matches."""

from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np

from .exceptions import DegenerateTransform, InsufficientFeatures

MIN_TRANSFORM_POINTS = 4
DEFAULT_REPROJECTION_THRESHOLD = 3.0
# |det| of the affine part below this collapses the target to a line or point
MIN_HOMOGRAPHY_DETERMINANT = 1e-6


def fit_robust_transform(
    source_points: np.ndarray,
    destination_points: np.ndarray,
    reprojection_threshold: float = DEFAULT_REPROJECTION_THRESHOLD,
    min_points: int = MIN_TRANSFORM_POINTS,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Fit a homography mapping source to destination points with RANSAC
    Args:
        source_points: Nx2 points in reference image coordinates
        destination_points: Nx2 points in query image coordinates
        reprojection_threshold: Maximum reprojection error (pixels) for an inlier
        min_points: Minimum number of correspondences required
    Returns:
        (homography, inlier_mask) with ``inlier_mask`` a boolean array of length N
    Raises:
        InsufficientFeatures: fewer than ``min_points`` correspondences
        DegenerateTransform: RANSAC failed or produced a singular transform
    """
    source = np.asarray(source_points, dtype=np.float32).reshape(-1, 2)
    destination = np.asarray(destination_points, dtype=np.float32).reshape(-1, 2)

    if len(source) != len(destination):
        raise ValueError("source and destination point counts differ")
    if len(source) < max(min_points, MIN_TRANSFORM_POINTS):
        raise InsufficientFeatures(f"{len(source)} correspondences, need {min_points}")

    homography, mask = cv2.findHomography(source, destination, cv2.RANSAC, reprojection_threshold)
    if homography is None or mask is None:
        raise DegenerateTransform("RANSAC did not find a homography")
    if not np.all(np.isfinite(homography)):
        raise DegenerateTransform("homography has non-finite entries")
    if abs(float(np.linalg.det(homography[:2, :2]))) < MIN_HOMOGRAPHY_DETERMINANT:
        raise DegenerateTransform("homography is singular")

    return homography, mask.ravel().astype(bool)


def project_contour(contour: np.ndarray, homography: np.ndarray) -> np.ndarray:
    """Map an Nx2 contour through a homography; returns an Nx2 float32 array."""
    points = np.asarray(contour, dtype=np.float32).reshape(-1, 1, 2)
    if len(points) == 0:
        return np.empty((0, 2), dtype=np.float32)
    projected = cv2.perspectiveTransform(points, homography)
    return projected.reshape(-1, 2)


def contour_area_fraction(contour: np.ndarray, image_shape: Tuple[int, ...]) -> float:
    """Area of a contour as a fraction of the image area."""
    height, width = image_shape[:2]
    image_area = float(width * height)
    if image_area <= 0 or len(contour) < 3:
        return 0.0
    points = np.asarray(contour, dtype=np.float32).reshape(-1, 1, 2)
    return float(cv2.contourArea(points)) / image_area


def is_simple_convex(contour: np.ndarray) -> bool:
    """True for a non-self-intersecting convex polygon with at least 3 vertices."""
    if len(contour) < 3:
        return False
    points = np.asarray(contour, dtype=np.float32).reshape(-1, 1, 2)
    if not np.all(np.isfinite(points)):
        return False
    return bool(cv2.isContourConvex(points))


def contour_overlap(first: np.ndarray, second: np.ndarray) -> float:
    """Intersection over union of two convex contours, 0 when either is degenerate."""
    if len(first) < 3 or len(second) < 3:
        return 0.0
    a = np.asarray(first, dtype=np.float32).reshape(-1, 1, 2)
    b = np.asarray(second, dtype=np.float32).reshape(-1, 1, 2)
    area_a = float(cv2.contourArea(a))
    area_b = float(cv2.contourArea(b))
    if area_a <= 0 or area_b <= 0:
        return 0.0

    intersection, _ = cv2.intersectConvexConvex(a, b)
    intersection = max(0.0, float(intersection))
    union = area_a + area_b - intersection
    return intersection / union if union > 0 else 0.0


def mask_contour(mask: np.ndarray) -> np.ndarray:
    """
    Boundary of a binary mask's foreground as a convex polygon
    Args:
        mask: Single channel mask, non-zero pixels are foreground
    Returns:
        Nx2 float32 convex hull of all foreground contours, or the full image
        rectangle when the mask has no foreground
    """
    height, width = mask.shape[:2]
    contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    contours = [c for c in contours if len(c) > 0]
    if not contours:
        return image_rectangle((height, width))

    hull = cv2.convexHull(np.vstack(contours))
    if len(hull) < 3:
        return image_rectangle((height, width))
    return hull.reshape(-1, 2).astype(np.float32)


def image_rectangle(image_shape: Tuple[int, ...]) -> np.ndarray:
    height, width = image_shape[:2]
    return np.array(
        [[0, 0], [width - 1, 0], [width - 1, height - 1], [0, height - 1]],
        dtype=np.float32,
    )


def clamp_bounding_box(contour: np.ndarray, image_shape: Tuple[int, ...]) -> Optional[Tuple[int, int, int, int]]:
    """Bounding box of a contour clipped to the image, or None if it falls outside."""
    if len(contour) == 0:
        return None
    height, width = image_shape[:2]
    points = np.asarray(contour, dtype=np.float32).reshape(-1, 2)
    if not np.all(np.isfinite(points)):
        return None
    x1 = int(max(0, np.floor(points[:, 0].min())))
    y1 = int(max(0, np.floor(points[:, 1].min())))
    x2 = int(min(width, np.ceil(points[:, 0].max())))
    y2 = int(min(height, np.ceil(points[:, 1].max())))
    if x2 <= x1 or y2 <= y1:
        return None
    return x1, y1, x2 - x1, y2 - y1
