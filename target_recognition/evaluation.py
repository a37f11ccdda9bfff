#!/usr/bin/env python3
"""
Detector Evaluation Module
Runs the recognition engine over a labelled test set and scores the detections
against the expected target ids with multiset precision, recall and accuracy

Created: 2025
"""

from __future__ import annotations

import json
import logging
import os
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, TextIO

import cv2

from .exceptions import ConfigurationFailure, LoadFailure
from .list_parser import load_test_list
from .recognition_engine import (
    DEFAULT_MIN_INLIERS,
    DEFAULT_MIN_MATCH_SCORE,
    DEFAULT_MIN_TARGET_AREA,
    RecognitionEngine,
    format_elapsed,
)
from .rendering import draw_global_result
from .types import TestEntry

logger = logging.getLogger(__name__)

RESULTS_FILE_SUFFIX = "results"
RESULTS_FILE_HEADER = "Target detection evaluation results (precision | recall | accuracy per test image)"
RESULTS_FILE_FOOTER = "Global evaluation results"


@dataclass
class EvaluationRecord:
    """Detected versus expected target ids for one test image."""

    filename: str
    detected: List[int]
    expected: List[int]
    elapsed_seconds: float = 0.0

    def __post_init__(self) -> None:
        self.detected = sorted(int(i) for i in self.detected)
        self.expected = sorted(int(i) for i in self.expected)

    @property
    def true_positives(self) -> int:
        # each detected id can claim at most one expected occurrence
        return sum((Counter(self.detected) & Counter(self.expected)).values())

    @property
    def precision(self) -> float:
        if not self.detected:
            return 0.0
        return self.true_positives / float(len(self.detected))

    @property
    def recall(self) -> float:
        if not self.expected:
            return 0.0
        return self.true_positives / float(len(self.expected))

    @property
    def accuracy(self) -> float:
        """Multiset Jaccard index: |detected & expected| / |detected | expected|."""
        union = sum((Counter(self.detected) | Counter(self.expected)).values())
        if union == 0:
            return 1.0
        return self.true_positives / float(union)

    @property
    def global_value(self) -> int:
        return sum(self.detected)

    def metrics_line(self) -> str:
        return f"Precision: {self.precision:.4f} | Recall: {self.recall:.4f} | Accuracy: {self.accuracy:.4f}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "detected": list(self.detected),
            "expected": list(self.expected),
            "true_positives": self.true_positives,
            "precision": self.precision,
            "recall": self.recall,
            "accuracy": self.accuracy,
            "global_value": self.global_value,
            "elapsed_seconds": round(self.elapsed_seconds, 4),
        }


@dataclass
class AggregateMetrics:
    precision: float = 0.0
    recall: float = 0.0
    accuracy: float = 0.0
    images: int = 0

    def metrics_line(self) -> str:
        return (
            f"Global precision: {self.precision:.4f} | Global recall: {self.recall:.4f} | "
            f"Global accuracy: {self.accuracy:.4f}"
        )


@dataclass
class EvaluationReport:
    per_image: List[EvaluationRecord] = field(default_factory=list)
    aggregate: AggregateMetrics = field(default_factory=AggregateMetrics)
    failed_images: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "perImage": [record.to_dict() for record in self.per_image],
            "aggregate": asdict(self.aggregate),
            "failedImages": list(self.failed_images),
        }


def aggregate_records(records: Sequence[EvaluationRecord]) -> AggregateMetrics:
    """Arithmetic mean of the per-image metrics; zeros when there are no records."""
    if not records:
        return AggregateMetrics()

    count = float(len(records))
    return AggregateMetrics(
        precision=sum(r.precision for r in records) / count,
        recall=sum(r.recall for r in records) / count,
        accuracy=sum(r.accuracy for r in records) / count,
        images=len(records),
    )


class EvaluationHarness:
    """Evaluate a RecognitionEngine against a labelled list of test images."""

    def __init__(
        self,
        engine: RecognitionEngine,
        test_images_dir: str = "",
        output_dir: str = "results",
        min_match_score: float = DEFAULT_MIN_MATCH_SCORE,
        min_inliers: int = DEFAULT_MIN_INLIERS,
        min_target_area: float = DEFAULT_MIN_TARGET_AREA,
        max_rounds: Optional[int] = None,
    ) -> None:
        self.engine = engine
        self.test_images_dir = test_images_dir
        self.output_dir = output_dir
        self.min_match_score = min_match_score
        self.min_inliers = min_inliers
        self.min_target_area = min_target_area
        self.max_rounds = max_rounds

    @classmethod
    def from_config(cls, engine: RecognitionEngine, config) -> "EvaluationHarness":
        return cls(
            engine,
            test_images_dir=config.get('paths.test_images_dir', ''),
            output_dir=config.get('paths.test_output_dir', 'results'),
            min_match_score=float(config.get('detection.min_match_score', DEFAULT_MIN_MATCH_SCORE)),
            min_inliers=int(config.get('detection.min_inliers', DEFAULT_MIN_INLIERS)),
            min_target_area=float(config.get('detection.min_target_area', DEFAULT_MIN_TARGET_AREA)),
            max_rounds=config.get('detection.max_rounds'),
        )

    @property
    def results_basename(self) -> str:
        tag = self.engine.configuration_tag
        return f"{tag}_{RESULTS_FILE_SUFFIX}" if tag else RESULTS_FILE_SUFFIX

    def evaluate(self, test_list_path: str, save_results: bool = True) -> EvaluationReport:
        """
        Evaluate the detector on every image of a test list
        Args:
            test_list_path: Path to the test list
            save_results: Write annotated images, inlier match images and per-image report lines
        Returns:
            EvaluationReport with per-image records and aggregate metrics
        Raises:
            ConfigurationFailure: the test list or the output destination cannot be opened
        """
        entries = load_test_list(test_list_path, self.test_images_dir)

        try:
            os.makedirs(self.output_dir, exist_ok=True)
            results_file = open(
                os.path.join(self.output_dir, self.results_basename + ".txt"), "w", encoding="utf-8"
            )
        except OSError as exc:
            raise ConfigurationFailure(f"Cannot create results in {self.output_dir}: {exc}") from exc

        with results_file:
            report = self.run(entries, save_results, results_file)

        self._write_json_report(report)
        return report

    def run(
        self,
        entries: Sequence[TestEntry],
        save_results: bool = False,
        results_file: Optional[TextIO] = None,
    ) -> EvaluationReport:
        """Evaluate already parsed entries; images that fail to load are excluded from the averages."""
        report = EvaluationReport()
        if save_results:
            try:
                os.makedirs(self.output_dir, exist_ok=True)
            except OSError as exc:
                raise ConfigurationFailure(f"Cannot create output directory {self.output_dir}: {exc}") from exc
        if results_file is not None:
            results_file.write(RESULTS_FILE_HEADER + "\n\n")

        logger.info("Evaluating detector with %d test images...", len(entries))
        start = time.perf_counter()

        for index, entry in enumerate(entries, start=1):
            logger.info("Evaluating image %s (%d/%d)", entry.filename, index, len(entries))
            record = self._evaluate_entry(entry, save_results)
            if record is None:
                report.failed_images.append(entry.filename)
                continue

            report.per_image.append(record)
            logger.info(
                "Detected %d targets %s in %s || %s",
                len(record.detected), record.detected, format_elapsed(record.elapsed_seconds), record.metrics_line(),
            )
            if save_results and results_file is not None:
                results_file.write(f"{entry.filename} -> {record.metrics_line()}\n")

        report.aggregate = aggregate_records(report.per_image)
        if not report.per_image:
            logger.warning("No test image could be evaluated")

        if results_file is not None:
            results_file.write(f"\n\n{RESULTS_FILE_FOOTER}\n")
            results_file.write(f" ==> {report.aggregate.metrics_line()}\n")

        logger.info(
            "Finished evaluation of detector in %s || %s",
            format_elapsed(time.perf_counter() - start), report.aggregate.metrics_line(),
        )
        return report

    def _evaluate_entry(self, entry: TestEntry, save_results: bool) -> Optional[EvaluationRecord]:
        start = time.perf_counter()
        image = entry.image
        if image is None:
            try:
                image = self.engine.preprocessor.load(entry.image_path or entry.filename, cv2.IMREAD_GRAYSCALE)
            except LoadFailure as exc:
                logger.warning("Skipping test image %s: %s", entry.filename, exc)
                return None

        results, annotated = self.engine.detect_and_render(
            image,
            image_name=entry.filename,
            output_dir=self.output_dir if save_results else None,
            min_match_score=self.min_match_score,
            min_inliers=self.min_inliers,
            min_target_area=self.min_target_area,
            max_rounds=self.max_rounds,
        )

        record = EvaluationRecord(
            filename=entry.filename,
            detected=[result.target_id for result in results],
            expected=entry.expected,
            elapsed_seconds=time.perf_counter() - start,
        )

        if save_results:
            draw_global_result(annotated, record.detected)
            path = os.path.join(self.output_dir, self.engine.output_filename(entry.filename))
            if not cv2.imwrite(path, annotated):
                logger.warning("Could not write annotated image %s", path)

        return record

    def _write_json_report(self, report: EvaluationReport) -> None:
        path = os.path.join(self.output_dir, self.results_basename + ".json")
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(report.to_dict(), f, indent=2)
        except OSError as exc:
            raise ConfigurationFailure(f"Cannot write report {path}: {exc}") from exc
