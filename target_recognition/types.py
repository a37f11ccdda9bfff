"""Shared data structures for reference targets and detection results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

Color = Tuple[int, int, int]
Correspondence = Tuple[int, int]


def _arrays_equal(first: Optional[np.ndarray], second: Optional[np.ndarray]) -> bool:
    if first is None or second is None:
        return first is second
    return np.array_equal(first, second)


def _keypoint_signature(keypoints: Sequence[cv2.KeyPoint]) -> Tuple:
    return tuple((kp.pt, kp.size, kp.angle, kp.response, kp.octave) for kp in keypoints)


@dataclass(frozen=True)
class TargetModel:
    """Keypoints and descriptors of one reference target, restricted to its ROI.

    ``contour`` is the target boundary in reference image coordinates and
    ``image`` is kept only for drawing inlier matches. Arrays and keypoints are
    compared by value in ``==`` but left out of the hash.
    """

    target_id: int
    keypoints: Tuple[cv2.KeyPoint, ...] = field(compare=False)
    descriptors: Optional[np.ndarray] = field(compare=False)
    contour: np.ndarray = field(compare=False)
    display_color: Color = (0, 255, 0)
    name: str = ""
    image: Optional[np.ndarray] = field(default=None, repr=False, compare=False)

    def __eq__(self, other):
        if other.__class__ is not self.__class__:
            return NotImplemented
        return (
            (self.target_id, self.display_color, self.name) == (other.target_id, other.display_color, other.name)
            and _keypoint_signature(self.keypoints) == _keypoint_signature(other.keypoints)
            and _arrays_equal(self.descriptors, other.descriptors)
            and _arrays_equal(self.contour, other.contour)
        )

    @property
    def keypoint_count(self) -> int:
        return len(self.keypoints)


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching one target model against the current query features.

    ``inliers`` holds ``(query_index, target_index)`` pairs; query indices refer
    to the working keypoint set of the round that produced the result, so the
    matching coordinates are also kept in ``inlier_query_points`` and
    ``inlier_target_points``.
    """

    target_id: int
    score: float = 0.0
    inliers: Tuple[Correspondence, ...] = ()
    contour: np.ndarray = field(
        default_factory=lambda: np.empty((0, 2), dtype=np.float32), compare=False
    )
    display_color: Color = (0, 255, 0)
    model_name: str = ""
    inlier_query_points: np.ndarray = field(
        default_factory=lambda: np.empty((0, 2), dtype=np.float32), repr=False, compare=False
    )
    inlier_target_points: np.ndarray = field(
        default_factory=lambda: np.empty((0, 2), dtype=np.float32), repr=False, compare=False
    )

    def __eq__(self, other):
        if other.__class__ is not self.__class__:
            return NotImplemented
        scalars = (self.target_id, self.score, tuple(self.inliers), self.display_color, self.model_name)
        other_scalars = (other.target_id, other.score, tuple(other.inliers), other.display_color, other.model_name)
        return (
            scalars == other_scalars
            and _arrays_equal(self.contour, other.contour)
            and _arrays_equal(self.inlier_query_points, other.inlier_query_points)
            and _arrays_equal(self.inlier_target_points, other.inlier_target_points)
        )

    @property
    def has_contour(self) -> bool:
        return len(self.contour) >= 3

    def query_indices(self) -> List[int]:
        return [query_idx for query_idx, _ in self.inliers]


@dataclass
class ReferenceEntry:
    """One line of the reference list."""

    filename: str
    target_id: int
    color: Color
    image_path: str = ""
    mask_path: str = ""


@dataclass
class TestEntry:
    """One test image and the ids expected in it.

    ``image`` may hold an already loaded image instead of reading ``image_path``.
    """

    filename: str
    expected: List[int] = field(default_factory=list)
    image_path: str = ""
    image: Optional[np.ndarray] = field(default=None, repr=False, compare=False)

    __test__ = False
