"""Pytest configuration and shared fixtures for the target recognition tests.

Synthetic reference targets are random textures (filled shapes on a blurred
canvas) that ORB finds plenty of keypoints on; query scenes paste them onto a
flat background that produces none.
"""
import logging
import sys
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import cv2
import numpy as np
import pytest

# Add the project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from target_recognition.features import RatioTestMatcher, create_descriptor_extractor, create_feature_detector
from target_recognition.geometry import image_rectangle
from target_recognition.recognition_engine import RecognitionEngine
from target_recognition.types import TargetModel


# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

REFERENCE_SIZE = (240, 320)  # height, width
BACKGROUND_LEVEL = 128


def make_texture(seed: int, size: Tuple[int, int] = REFERENCE_SIZE) -> np.ndarray:
    """Deterministic grayscale texture rich in corners."""
    rng = np.random.default_rng(seed)
    height, width = size
    image = np.full((height, width), 60, dtype=np.uint8)

    for _ in range(120):
        color = int(rng.integers(0, 256))
        if rng.random() < 0.5:
            x1, y1 = int(rng.integers(0, width)), int(rng.integers(0, height))
            w, h = int(rng.integers(8, 40)), int(rng.integers(8, 40))
            cv2.rectangle(image, (x1, y1), (x1 + w, y1 + h), color, -1)
        else:
            center = (int(rng.integers(0, width)), int(rng.integers(0, height)))
            cv2.circle(image, center, int(rng.integers(4, 20)), color, -1)

    return cv2.GaussianBlur(image, (3, 3), 0)


def paste(scene: np.ndarray, patch: np.ndarray, top_left: Tuple[int, int]) -> None:
    x, y = top_left
    h, w = patch.shape[:2]
    scene[y:y + h, x:x + w] = patch


def make_scene(patches: Sequence[Tuple[np.ndarray, Tuple[int, int]]], size: Tuple[int, int]) -> np.ndarray:
    scene = np.full(size, BACKGROUND_LEVEL, dtype=np.uint8)
    for patch, top_left in patches:
        paste(scene, patch, top_left)
    return scene


def full_mask(size: Tuple[int, int] = REFERENCE_SIZE) -> np.ndarray:
    return np.full(size, 255, dtype=np.uint8)


class FakeFeature2D:
    """Detector/extractor returning canned keypoints and descriptors."""

    def __init__(self, keypoints, descriptors):
        self.keypoints = list(keypoints)
        self.descriptors = descriptors

    def detect(self, image, mask=None):
        return list(self.keypoints)

    def compute(self, image, keypoints):
        return list(keypoints), self.descriptors


class EqualityMatcher:
    """Match descriptor rows holding the same value; first query row wins."""

    def __init__(self):
        self.calls = 0

    def match(self, query_descriptors, train_descriptors) -> List[cv2.DMatch]:
        self.calls += 1
        if query_descriptors is None or train_descriptors is None:
            return []
        positions: Dict[float, int] = {}
        for train_idx, row in enumerate(train_descriptors):
            positions.setdefault(float(row[0]), train_idx)
        matches = []
        for query_idx, row in enumerate(query_descriptors):
            train_idx = positions.get(float(row[0]))
            if train_idx is not None:
                matches.append(cv2.DMatch(query_idx, train_idx, 0.0))
        return matches


def grid_points(count: int, columns: int = 10, spacing: float = 9.0, origin: float = 5.0) -> np.ndarray:
    return np.float32([
        [origin + (i % columns) * spacing, origin + (i // columns) * spacing]
        for i in range(count)
    ])


def synthetic_model(target_id: int, count: int, first_value: int, size: int = 100) -> TargetModel:
    """Model whose descriptor rows are consecutive integers starting at ``first_value``."""
    points = grid_points(count)
    return TargetModel(
        target_id=target_id,
        keypoints=tuple(cv2.KeyPoint(float(x), float(y), 5.0) for x, y in points),
        descriptors=np.arange(first_value, first_value + count, dtype=np.float32).reshape(-1, 1),
        contour=image_rectangle((size, size)),
        name=f"target_{target_id}.png",
    )


def query_from_model(model: TargetModel, indices: Sequence[int], scale: float, offset: Tuple[float, float]):
    """Query keypoints/descriptors for the model keypoints ``indices`` under scale + translation."""
    keypoints = []
    rows = []
    for i in indices:
        x, y = model.keypoints[i].pt
        keypoints.append(cv2.KeyPoint(float(x * scale + offset[0]), float(y * scale + offset[1]), 5.0))
        rows.append(model.descriptors[i, 0])
    return keypoints, np.float32(rows).reshape(-1, 1)


def noise_query(count: int, first_value: float, seed: int = 3, extent: float = 400.0):
    rng = np.random.default_rng(seed)
    keypoints = [
        cv2.KeyPoint(float(x), float(y), 5.0)
        for x, y in rng.uniform(0, extent, size=(count, 2))
    ]
    rows = np.arange(first_value, first_value + count, dtype=np.float32).reshape(-1, 1)
    return keypoints, rows


@pytest.fixture
def equality_matcher():
    return EqualityMatcher()


@pytest.fixture
def synthetic_engine(equality_matcher):
    """Engine over target 1 (50 keypoints) and target 2 (30 keypoints) with fake matching."""
    engine = RecognitionEngine(
        feature_detector=FakeFeature2D([], None),
        descriptor_extractor=FakeFeature2D([], None),
        descriptor_matcher=equality_matcher,
        workers=4,
    )
    engine.set_models([synthetic_model(1, 50, 0), synthetic_model(2, 30, 1000)])
    return engine


@pytest.fixture(scope="session")
def texture_a():
    return make_texture(seed=11)


@pytest.fixture(scope="session")
def texture_b():
    return make_texture(seed=29)


def orb_engine(ratio: float = 0.8, **kwargs) -> RecognitionEngine:
    return RecognitionEngine(
        feature_detector=create_feature_detector("ORB", 3000),
        descriptor_extractor=create_descriptor_extractor("ORB", 3000),
        descriptor_matcher=RatioTestMatcher(ratio=ratio),
        workers=4,
        **kwargs,
    )


@pytest.fixture
def reference_dir(tmp_path, texture_a, texture_b):
    """Reference images with masks and a reference list on disk."""
    refs = tmp_path / "references"
    refs.mkdir()
    cv2.imwrite(str(refs / "note_5.png"), texture_a)
    cv2.imwrite(str(refs / "note_5_mask.png"), full_mask())
    cv2.imwrite(str(refs / "note_10.png"), texture_b)
    cv2.imwrite(str(refs / "note_10_mask.png"), full_mask())
    (refs / "references.txt").write_text(
        "note_5.png : 5 : 255 0 0\n"
        "note_10.png : 10 : 0 255 0\n"
    )
    return refs
