#!/usr/bin/env python3
"""
Recognition Engine Module
Owns the database of target models and runs greedy multi-instance detection:
each round matches every target against the remaining query features, keeps
the best geometrically valid candidate and removes its inliers before the
next round.

Candidate scoring runs in a thread pool; the winner is then chosen by a
sequential reduction (highest score, ties to the lowest target id and then
to the earliest model in the database), so the result does not depend on
thread scheduling.

Created: 2025
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .exceptions import RecognitionError
from .features import (
    RatioTestMatcher,
    create_descriptor_extractor,
    create_feature_detector,
    detect_and_compute,
)
from .geometry import (
    DEFAULT_REPROJECTION_THRESHOLD,
    MIN_TRANSFORM_POINTS,
    contour_area_fraction,
    contour_overlap,
    is_simple_convex,
)
from .image_preprocessor import ImagePreprocessor
from .list_parser import MASK_EXTENSION, MASK_SUFFIX, load_reference_list
from .rendering import (
    NONTARGET_KEYPOINT_COLOR,
    TARGET_KEYPOINT_COLOR,
    draw_detection,
    draw_inlier_matches,
    draw_keypoints,
)
from .target_detector import MASK_BINARY_THRESHOLD, TargetMatcher, build_target_model
from .types import MatchResult, ReferenceEntry, TargetModel

logger = logging.getLogger(__name__)

DEFAULT_MIN_MATCH_SCORE = 0.07
DEFAULT_MIN_INLIERS = 8
DEFAULT_MIN_TARGET_AREA = 0.05
DEFAULT_MAX_INSTANCE_OVERLAP = 0.5
IMAGE_OUTPUT_EXTENSION = ".png"


def format_elapsed(seconds: float) -> str:
    minutes, secs = divmod(seconds, 60.0)
    if minutes >= 1:
        return f"{int(minutes)}m {secs:.2f}s"
    return f"{secs * 1000.0:.1f} ms" if secs < 1 else f"{secs:.3f} s"


class DetectionSession:
    """Working copy of the query features for one ``detect`` call."""

    def __init__(self, keypoints: Sequence[cv2.KeyPoint], descriptors: Optional[np.ndarray]) -> None:
        self.keypoints: List[cv2.KeyPoint] = list(keypoints)
        self.descriptors = None if descriptors is None else np.array(descriptors, copy=True)

    @property
    def keypoint_count(self) -> int:
        return len(self.keypoints)

    def claim(self, query_indices: Iterable[int], tolerance: float = 0.0) -> int:
        """
        Remove a winner's inlier keypoints and every other keypoint lying within
        ``tolerance`` pixels of one of them
        Args:
            query_indices: Inlier indices into the current keypoints
            tolerance: Radius in pixels, 0 removes only the given indices
        Returns:
            Number of keypoints removed
        """
        indices = {int(i) for i in query_indices if 0 <= int(i) < len(self.keypoints)}
        if indices and tolerance > 0:
            # detectors report the same corner again at other scales, close to the claimed location
            points = np.float32([kp.pt for kp in self.keypoints])
            claimed = points[sorted(indices)]
            squared = ((points[:, None, :] - claimed[None, :, :]) ** 2).sum(axis=2)
            near = np.flatnonzero((squared <= tolerance * tolerance).any(axis=1))
            indices.update(int(i) for i in near)
        return self.remove(indices)

    def remove(self, query_indices: Iterable[int]) -> int:
        """Drop the given keypoints and their descriptor rows; returns how many were removed."""
        to_remove = sorted({int(i) for i in query_indices if 0 <= int(i) < len(self.keypoints)})
        if not to_remove:
            return 0

        removed = set(to_remove)
        self.keypoints = [kp for i, kp in enumerate(self.keypoints) if i not in removed]
        if self.descriptors is not None:
            self.descriptors = np.delete(self.descriptors, to_remove, axis=0)
        return len(to_remove)


def passes_geometric_gates(result: MatchResult, image_shape: Tuple[int, ...], min_target_area: float) -> bool:
    """The projected contour must be convex and cover more than ``min_target_area`` of the image."""
    if not result.has_contour:
        return False
    if contour_area_fraction(result.contour, image_shape) <= min_target_area:
        return False
    return is_simple_convex(result.contour)


def select_best_candidate(
    candidates: Sequence[MatchResult],
    image_shape: Tuple[int, ...],
    min_target_area: float,
) -> Optional[MatchResult]:
    """
    Pick the round winner among candidates that pass the geometric gates
    Args:
        candidates: One result per target model, in database order
        image_shape: Shape of the query image
        min_target_area: Minimum contour area as a fraction of the image area
    Returns:
        Highest scoring candidate (ties: lowest target id, then first in
        order), or None if no candidate with inliers passes the gates
    """
    best: Optional[MatchResult] = None
    for candidate in candidates:
        if not candidate.inliers:
            continue
        if not passes_geometric_gates(candidate, image_shape, min_target_area):
            continue
        if best is None or candidate.score > best.score:
            best = candidate
        elif candidate.score == best.score and candidate.target_id < best.target_id:
            best = candidate
    return best


class RecognitionEngine:
    """Database of target models plus the greedy multi-instance detector."""

    def __init__(
        self,
        feature_detector=None,
        descriptor_extractor=None,
        descriptor_matcher=None,
        preprocessor: Optional[ImagePreprocessor] = None,
        reprojection_threshold: float = DEFAULT_REPROJECTION_THRESHOLD,
        workers: Optional[int] = None,
        mask_threshold: int = MASK_BINARY_THRESHOLD,
        reference_analysis_dir: Optional[str] = None,
        configuration_tag: str = "",
        max_instance_overlap: float = DEFAULT_MAX_INSTANCE_OVERLAP,
    ) -> None:
        """
        Initialize the recognition engine
        Args:
            feature_detector: Keypoint detector (default ORB)
            descriptor_extractor: Descriptor extractor (default ORB)
            descriptor_matcher: Object with ``match(query, train)`` (default RatioTestMatcher)
            preprocessor: Image loader used for reference images
            reprojection_threshold: RANSAC inlier tolerance in pixels
            workers: Thread pool size, None lets the executor decide
            mask_threshold: Mask pixels above this value are part of the target
            reference_analysis_dir: Where to save reference keypoint images (None disables)
            configuration_tag: Suffix added to generated filenames
            max_instance_overlap: A winner overlapping an earlier detection of the same
                target by more than this (intersection over union) is not reported again
        """
        self.feature_detector = feature_detector or create_feature_detector("ORB")
        self.descriptor_extractor = descriptor_extractor or create_descriptor_extractor("ORB")
        self.descriptor_matcher = descriptor_matcher or RatioTestMatcher()
        self.preprocessor = preprocessor or ImagePreprocessor()
        self.reprojection_threshold = reprojection_threshold
        self.workers = workers
        self.mask_threshold = mask_threshold
        self.reference_analysis_dir = reference_analysis_dir
        self.configuration_tag = configuration_tag
        self.max_instance_overlap = max_instance_overlap

        self._models: Tuple[TargetModel, ...] = ()
        self._matchers: Tuple[TargetMatcher, ...] = ()

    @classmethod
    def from_config(cls, config) -> "RecognitionEngine":
        """Create an engine from a ConfigManager."""
        max_keypoints = int(config.get('features.max_keypoints', 2000))
        analysis_dir = None
        if config.get('save_reference_keypoints', True):
            analysis_dir = config.get('paths.reference_analysis_dir')

        return cls(
            feature_detector=create_feature_detector(config.get('features.detector', 'ORB'), max_keypoints),
            descriptor_extractor=create_descriptor_extractor(config.get('features.extractor', 'ORB'), max_keypoints),
            descriptor_matcher=RatioTestMatcher(
                ratio=float(config.get('matching.ratio', 0.8)),
                cross_check=bool(config.get('matching.cross_check', False)),
            ),
            preprocessor=ImagePreprocessor(
                max_image_size=config.get('preprocessing.max_image_size', 0),
                equalize=bool(config.get('preprocessing.equalize', False)),
                denoise=bool(config.get('preprocessing.denoise', False)),
            ),
            reprojection_threshold=float(config.get('detection.ransac_reprojection_threshold', DEFAULT_REPROJECTION_THRESHOLD)),
            workers=config.get('workers'),
            mask_threshold=int(config.get('mask.binary_threshold', MASK_BINARY_THRESHOLD)),
            reference_analysis_dir=analysis_dir,
            configuration_tag=config.configuration_tag,
            max_instance_overlap=float(config.get('detection.max_instance_overlap', DEFAULT_MAX_INSTANCE_OVERLAP)),
        )

    @property
    def models(self) -> Tuple[TargetModel, ...]:
        return self._models

    def output_filename(self, name: str, suffix: str = "") -> str:
        """``dir/coin.jpg`` -> ``coin_<tag><suffix>.png``"""
        stem = os.path.splitext(os.path.basename(name))[0] or "image"
        if self.configuration_tag:
            stem = f"{stem}_{self.configuration_tag}"
        return f"{stem}{suffix}{IMAGE_OUTPUT_EXTENSION}"

    def get_model(self, name: str) -> Optional[TargetModel]:
        for model in self._models:
            if model.name == name:
                return model
        return None

    def set_models(self, models: Iterable[TargetModel]) -> None:
        """Replace the database with already built models."""
        self._models = tuple(models)
        self._matchers = tuple(
            TargetMatcher(model, self.descriptor_matcher, self.reprojection_threshold)
            for model in self._models
        )

    # ------------------------------------------------------------------
    # database construction
    # ------------------------------------------------------------------

    def build_database(self, entries: Sequence[ReferenceEntry]) -> bool:
        """
        Build one target model per reference entry, in parallel
        Args:
            entries: Reference entries with resolved image and mask paths
        Returns:
            True if at least one model was built; failed entries are logged and skipped
        """
        logger.info("Initializing recognition database with %d reference images...", len(entries))
        start = time.perf_counter()

        if self.reference_analysis_dir:
            try:
                os.makedirs(self.reference_analysis_dir, exist_ok=True)
            except OSError as exc:
                logger.warning("Cannot create %s, reference keypoint images disabled: %s", self.reference_analysis_dir, exc)
                self.reference_analysis_dir = None

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            built = list(executor.map(self._build_entry, entries))

        self.set_models(model for model in built if model is not None)

        logger.info(
            "Finished initialization of targets database in %s (%d of %d targets)",
            format_elapsed(time.perf_counter() - start), len(self._models), len(entries),
        )
        return bool(self._models)

    def build_database_from_list(
        self,
        list_path: str,
        images_dir: str = "",
        mask_suffix: str = MASK_SUFFIX,
        mask_extension: str = MASK_EXTENSION,
    ) -> bool:
        """Parse a reference list and build the database; ConfigurationFailure if the list cannot be opened."""
        entries = load_reference_list(list_path, images_dir, mask_suffix, mask_extension)
        return self.build_database(entries)

    def _build_entry(self, entry: ReferenceEntry) -> Optional[TargetModel]:
        try:
            image = self.preprocessor.load(entry.image_path, cv2.IMREAD_GRAYSCALE, preprocess=False)
            mask = self.preprocessor.load_mask(entry.mask_path, image.shape)
            processed = self.preprocessor.preprocess(image)
            if processed.shape[:2] != mask.shape[:2]:
                height, width = processed.shape[:2]
                mask = cv2.resize(mask, (width, height), interpolation=cv2.INTER_NEAREST)

            model = build_target_model(
                processed,
                mask,
                entry.target_id,
                self.feature_detector,
                self.descriptor_extractor,
                display_color=entry.color,
                name=entry.filename,
                mask_threshold=self.mask_threshold,
            )
        except (RecognitionError, ValueError) as exc:
            logger.warning("Skipping reference %s: %s", entry.filename, exc)
            return None

        if model.keypoint_count < MIN_TRANSFORM_POINTS:
            logger.warning(
                "Reference %s has only %d keypoints inside its mask and will never match",
                entry.filename, model.keypoint_count,
            )

        self._save_reference_keypoints(model)
        return model

    def _save_reference_keypoints(self, model: TargetModel) -> None:
        if not self.reference_analysis_dir or model.image is None:
            return

        path = os.path.join(self.reference_analysis_dir, self.output_filename(model.name))
        canvas = draw_keypoints(model.image, model.keypoints, TARGET_KEYPOINT_COLOR)
        if not cv2.imwrite(path, canvas):
            logger.warning("Could not write reference keypoints image %s", path)

    # ------------------------------------------------------------------
    # detection
    # ------------------------------------------------------------------

    def extract_features(self, image: np.ndarray):
        return detect_and_compute(image, self.feature_detector, self.descriptor_extractor)

    def detect(
        self,
        image: np.ndarray,
        min_match_score: float = DEFAULT_MIN_MATCH_SCORE,
        min_inliers: int = DEFAULT_MIN_INLIERS,
        min_target_area: float = DEFAULT_MIN_TARGET_AREA,
        max_rounds: Optional[int] = None,
    ) -> List[MatchResult]:
        """
        Detect every instance of the database targets in a query image
        Args:
            image: Preprocessed grayscale query image
            min_match_score: A round continues only while its winner scores above this
            min_inliers: Winners with this many inliers or fewer are consumed but not reported
            min_target_area: Minimum projected contour area as a fraction of the image
            max_rounds: Optional cap on the number of rounds
        Returns:
            Accepted matches in the order they were found
        """
        keypoints, descriptors = self.extract_features(image)
        return self.detect_features(
            image.shape, keypoints, descriptors,
            min_match_score, min_inliers, min_target_area, max_rounds,
        )

    def detect_features(
        self,
        image_shape: Tuple[int, ...],
        keypoints: Sequence[cv2.KeyPoint],
        descriptors: Optional[np.ndarray],
        min_match_score: float = DEFAULT_MIN_MATCH_SCORE,
        min_inliers: int = DEFAULT_MIN_INLIERS,
        min_target_area: float = DEFAULT_MIN_TARGET_AREA,
        max_rounds: Optional[int] = None,
    ) -> List[MatchResult]:
        """Run the detection rounds over already extracted query features."""
        results: List[MatchResult] = []
        if len(keypoints) < MIN_TRANSFORM_POINTS or descriptors is None or not self._matchers:
            return results

        session = DetectionSession(keypoints, descriptors)
        rounds = 0

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            while max_rounds is None or rounds < max_rounds:
                if session.keypoint_count < MIN_TRANSFORM_POINTS:
                    break
                rounds += 1

                candidates = self._analyze_round(executor, session)
                best = select_best_candidate(candidates, image_shape, min_target_area)
                if best is None or best.score <= min_match_score:
                    break

                if len(best.inliers) <= min_inliers:
                    outcome = "dropped"
                elif self.repeats_detection(best, results):
                    outcome = "duplicate"
                else:
                    outcome = "accepted"
                    results.append(best)

                removed = session.claim(best.query_indices(), self.reprojection_threshold)
                logger.debug(
                    "Round %d: target %s (%s) score=%.4f inliers=%d %s, %d query keypoints left",
                    rounds, best.target_id, best.model_name, best.score, len(best.inliers),
                    outcome, session.keypoint_count,
                )
                if removed == 0:
                    break

        return results

    def repeats_detection(self, candidate: MatchResult, results: Sequence[MatchResult]) -> bool:
        """True if ``candidate`` covers the same region as an earlier result for the same target."""
        return any(
            result.target_id == candidate.target_id
            and contour_overlap(result.contour, candidate.contour) > self.max_instance_overlap
            for result in results
        )

    def _analyze_round(self, executor: ThreadPoolExecutor, session: DetectionSession) -> List[MatchResult]:
        keypoints = session.keypoints
        descriptors = session.descriptors
        return list(executor.map(lambda matcher: matcher.analyze(keypoints, descriptors), self._matchers))

    def detect_and_render(
        self,
        image: np.ndarray,
        image_name: str = "",
        output_dir: Optional[str] = None,
        min_match_score: float = DEFAULT_MIN_MATCH_SCORE,
        min_inliers: int = DEFAULT_MIN_INLIERS,
        min_target_area: float = DEFAULT_MIN_TARGET_AREA,
        max_rounds: Optional[int] = None,
    ) -> Tuple[List[MatchResult], np.ndarray]:
        """
        Detect targets and draw them
        Args:
            image: Preprocessed grayscale query image
            image_name: Name used for inlier match images
            output_dir: Where to write one inlier match image per result (None skips)
        Returns:
            (results, annotated BGR image)
        """
        keypoints, descriptors = self.extract_features(image)
        results = self.detect_features(
            image.shape, keypoints, descriptors,
            min_match_score, min_inliers, min_target_area, max_rounds,
        )

        annotated = draw_keypoints(image, keypoints, NONTARGET_KEYPOINT_COLOR)
        for index, result in enumerate(results):
            draw_detection(annotated, result)
            if output_dir:
                self._save_inlier_matches(image, result, image_name, output_dir, index)

        return results, annotated

    def _save_inlier_matches(self, image: np.ndarray, result: MatchResult, image_name: str, output_dir: str, index: int) -> None:
        model = self.get_model(result.model_name)
        if model is None:
            return

        path = os.path.join(output_dir, self.output_filename(image_name, f"_inliersMatches_{index}"))
        if not cv2.imwrite(path, draw_inlier_matches(image, result, model)):
            logger.warning("Could not write inlier matches image %s", path)
