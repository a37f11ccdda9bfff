#!/usr/bin/env python3
"""CLI entry point for the Target Recognition application."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional

import cv2
import numpy as np

# Ensure the package is importable regardless of entry location
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from target_recognition.config_manager import ConfigManager
from target_recognition.evaluation import EvaluationHarness, EvaluationReport
from target_recognition.exceptions import ConfigurationFailure, LoadFailure
from target_recognition.recognition_engine import RecognitionEngine, format_elapsed
from target_recognition.rendering import draw_global_result
from target_recognition.types import MatchResult

logger = logging.getLogger(__name__)


class TargetRecognitionSystem:
    """Ties configuration, the target database and the evaluation harness together."""

    def __init__(self, config: Optional[ConfigManager] = None) -> None:
        self.config = config or ConfigManager()
        self.engine = RecognitionEngine.from_config(self.config)
        self.database_ready = False

    def build_database(self) -> bool:
        """Build the target database from the configured reference list."""
        self.database_ready = self.engine.build_database_from_list(
            self.config.get("paths.reference_list"),
            self.config.get("paths.reference_images_dir", ""),
            self.config.get("mask.suffix", "_mask"),
            self.config.get("mask.extension", ".png"),
        )
        return self.database_ready

    def detection_parameters(self) -> Dict[str, object]:
        return {
            "min_match_score": float(self.config.get("detection.min_match_score")),
            "min_inliers": int(self.config.get("detection.min_inliers")),
            "min_target_area": float(self.config.get("detection.min_target_area")),
            "max_rounds": self.config.get("detection.max_rounds"),
        }

    def detect_image(self, image_path: str, output_dir: Optional[str] = None):
        """Detect targets in one image; returns (results, annotated image)."""
        image = self.engine.preprocessor.load(image_path, cv2.IMREAD_GRAYSCALE)
        results, annotated = self.engine.detect_and_render(
            image,
            image_name=image_path,
            output_dir=output_dir,
            **self.detection_parameters(),
        )
        draw_global_result(annotated, sorted(result.target_id for result in results))
        return results, annotated

    def evaluate(self, test_list: Optional[str] = None, save_results: bool = True) -> EvaluationReport:
        harness = EvaluationHarness.from_config(self.engine, self.config)
        return harness.evaluate(test_list or self.config.get("paths.test_list"), save_results)


def _print_results(results: List[MatchResult]) -> None:
    if not results:
        print("No targets detected")
        return

    ids = sorted(result.target_id for result in results)
    print(f"Detected {len(results)} targets ( {' '.join(str(i) for i in ids)} ) -> global result: {sum(ids)}")
    for index, result in enumerate(results):
        print(
            f"  [{index}] target {result.target_id} ({result.model_name}) "
            f"score={result.score:.4f} inliers={len(result.inliers)}"
        )


def _print_report(report: EvaluationReport) -> None:
    print("\n=== Evaluation Results ===")
    for record in report.per_image:
        print(f"{record.filename} -> detected {record.detected} expected {record.expected} | {record.metrics_line()}")
    if report.failed_images:
        print(f"Skipped {len(report.failed_images)} unreadable images: {', '.join(report.failed_images)}")
    print(f"==> {report.aggregate.metrics_line()} ({report.aggregate.images} images)")


def _apply_overrides(config: ConfigManager, args: argparse.Namespace) -> None:
    overrides = {
        "features.detector": args.detector,
        "features.extractor": args.extractor,
        "detection.min_match_score": args.min_match_score,
        "detection.min_inliers": args.min_inliers,
        "detection.min_target_area": args.min_target_area,
        "detection.max_rounds": args.max_rounds,
        "paths.reference_list": args.references,
        "paths.reference_images_dir": args.references_dir,
        "workers": args.workers,
    }
    for key, value in overrides.items():
        if value is not None:
            config.set(key, value)

    if getattr(args, "test_list", None):
        config.set("paths.test_list", args.test_list)
    if getattr(args, "test_dir", None):
        config.set("paths.test_images_dir", args.test_dir)
    if getattr(args, "output", None):
        config.set("paths.test_output_dir", args.output)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Target Recognition System - keypoint based multi-instance detection",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--config", type=str, default="config.json", help="Configuration file path")
    parser.add_argument("--references", type=str, help="Reference list file (overrides paths.reference_list)")
    parser.add_argument("--references-dir", type=str, help="Directory of reference images and masks")
    parser.add_argument("--detector", type=str, help="Feature detector (ORB, SIFT, AKAZE, BRISK, FAST, GFTT)")
    parser.add_argument("--extractor", type=str, help="Descriptor extractor (ORB, SIFT, AKAZE, BRISK)")
    parser.add_argument("--min-match-score", type=float, help="Minimum fraction of target keypoints matched")
    parser.add_argument("--min-inliers", type=int, help="Minimum inliers for a match to be reported")
    parser.add_argument("--min-target-area", type=float, help="Minimum target area as a fraction of the image")
    parser.add_argument("--max-rounds", type=int, help="Cap on detection rounds per image")
    parser.add_argument("--workers", type=int, help="Thread pool size")
    parser.add_argument("--print-config", action="store_true", help="Print the effective configuration")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("build", help="Build the target database and report its contents")

    detect = subparsers.add_parser("detect", help="Detect targets in one or more images")
    detect.add_argument("images", nargs="+", help="Image files or directories of images")
    detect.add_argument("--output", type=str, help="Directory for annotated and inlier match images")
    detect.add_argument("--show", action="store_true", help="Display annotated images")
    detect.add_argument("--json", action="store_true", help="Print results as JSON")

    evaluate = subparsers.add_parser("evaluate", help="Evaluate the detector against a labelled test list")
    evaluate.add_argument("--test-list", type=str, help="Test list file (overrides paths.test_list)")
    evaluate.add_argument("--test-dir", type=str, help="Directory of test images")
    evaluate.add_argument("--output", type=str, help="Directory for results")
    evaluate.add_argument("--no-save-results", dest="save_results", action="store_false",
                          help="Do not write annotated images or per-image result lines")

    return parser


def _expand_images(system: TargetRecognitionSystem, paths: List[str]) -> List[str]:
    """Directories expand to the supported images they contain, sorted by name."""
    images = []
    for path in paths:
        if os.path.isdir(path):
            images.extend(
                os.path.join(path, name) for name in sorted(os.listdir(path))
                if system.engine.preprocessor.is_supported_file(name)
            )
        else:
            images.append(path)
    return images


def _run_detect(system: TargetRecognitionSystem, args: argparse.Namespace) -> int:
    output_dir = args.output
    if output_dir:
        Path(output_dir).mkdir(parents=True, exist_ok=True)

    payload = []
    for image_path in _expand_images(system, args.images):
        start = time.perf_counter()
        try:
            results, annotated = system.detect_image(image_path, output_dir)
        except LoadFailure as exc:
            print(f"❌ {exc}", file=sys.stderr)
            continue

        if args.json:
            payload.append({
                "image": image_path,
                "results": [
                    {
                        "target_id": r.target_id,
                        "score": round(r.score, 4),
                        "inliers": len(r.inliers),
                        "reference": r.model_name,
                        "contour": np.round(r.contour, 2).tolist(),
                    }
                    for r in results
                ],
            })
        else:
            print(f"\n📷 {image_path} ({format_elapsed(time.perf_counter() - start)})")
            _print_results(results)

        if output_dir:
            cv2.imwrite(str(Path(output_dir) / system.engine.output_filename(image_path)), annotated)
        if args.show:
            cv2.namedWindow(image_path, cv2.WINDOW_KEEPRATIO)
            cv2.imshow(image_path, annotated)
            cv2.waitKey(0)

    if args.show:
        cv2.destroyAllWindows()
    if args.json:
        print(json.dumps(payload, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = ConfigManager(args.config)
    _apply_overrides(config, args)
    if args.print_config:
        config.print_config()
    if not config.validate_config():
        print("Invalid configuration, aborting", file=sys.stderr)
        return 1

    try:
        system = TargetRecognitionSystem(config)
    except ValueError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return 1

    try:
        if not system.build_database():
            print("⚠️  Target database is empty, no target can be detected")

        if args.command == "build":
            print(f"Target database: {len(system.engine.models)} models")
            for model in system.engine.models:
                print(f"  {model.name}: target {model.target_id}, {model.keypoint_count} keypoints")
            return 0

        if args.command == "detect":
            return _run_detect(system, args)

        report = system.evaluate(save_results=args.save_results)
        _print_report(report)
        return 0

    except ConfigurationFailure as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
