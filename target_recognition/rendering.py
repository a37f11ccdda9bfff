"""Drawing helpers for reference keypoints and detection results."""

from __future__ import annotations

from typing import Sequence, Tuple

import cv2
import numpy as np

from .geometry import clamp_bounding_box
from .types import Color, MatchResult, TargetModel

TARGET_KEYPOINT_COLOR: Color = (0, 0, 255)
NONTARGET_KEYPOINT_COLOR: Color = (255, 0, 0)
LABEL_TEXT_COLOR: Color = (255, 255, 255)
LABEL_BACKGROUND_COLOR: Color = (0, 0, 0)


def to_bgr(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    return image.copy()


def draw_keypoints(image: np.ndarray, keypoints: Sequence[cv2.KeyPoint], color: Color) -> np.ndarray:
    """Return a BGR copy of ``image`` with ``keypoints`` drawn (plain copy if there are none)."""
    canvas = to_bgr(image)
    if not keypoints:
        return canvas
    return cv2.drawKeypoints(canvas, list(keypoints), None, color)


def draw_points(image: np.ndarray, points: np.ndarray, color: Color, radius: int = 3) -> None:
    for x, y in np.asarray(points, dtype=np.float32).reshape(-1, 2):
        cv2.circle(image, (int(round(x)), int(round(y))), radius, color, 1, cv2.LINE_AA)


def draw_contour(image: np.ndarray, contour: np.ndarray, color: Color, thickness: int = 2) -> None:
    if len(contour) < 2:
        return
    points = np.round(np.asarray(contour, dtype=np.float32)).astype(np.int32).reshape(-1, 1, 2)
    cv2.polylines(image, [points], True, color, thickness, cv2.LINE_AA)


def draw_label(
    image: np.ndarray,
    text: str,
    pos: Tuple[int, int],
    color: Color = LABEL_BACKGROUND_COLOR,
    font_scale: float = 0.8,
) -> None:
    x, y = pos
    font = cv2.FONT_HERSHEY_SIMPLEX
    thickness = 2
    (text_width, text_height), baseline = cv2.getTextSize(text, font, font_scale, thickness)
    if y < text_height + baseline:
        y = text_height + baseline
    if x + text_width > image.shape[1]:
        x = max(0, image.shape[1] - text_width)
    cv2.rectangle(image, (x, y - text_height - baseline), (x + text_width, y + baseline), color, -1)
    cv2.putText(image, text, (x, y), font, font_scale, LABEL_TEXT_COLOR, thickness, cv2.LINE_AA)


def draw_label_in_center(image: np.ndarray, text: str, contour: np.ndarray, color: Color) -> None:
    """Label the center of the contour's bounding box, clamped to the image."""
    box = clamp_bounding_box(contour, image.shape)
    if box is None:
        return
    x, y, w, h = box
    font = cv2.FONT_HERSHEY_SIMPLEX
    (text_width, text_height), _ = cv2.getTextSize(text, font, 0.8, 2)
    draw_label(image, text, (x + (w - text_width) // 2, y + (h + text_height) // 2), color)


def draw_detection(image: np.ndarray, result: MatchResult) -> None:
    draw_points(image, result.inlier_query_points, TARGET_KEYPOINT_COLOR)
    draw_contour(image, result.contour, result.display_color)
    draw_label_in_center(image, str(result.target_id), result.contour, result.display_color)


def draw_global_result(image: np.ndarray, detected_ids: Sequence[int]) -> None:
    """Write the sum of detected ids followed by the ids themselves at the top left."""
    text = f"Global result: {sum(detected_ids)}"
    if detected_ids:
        text += " ( " + " ".join(str(i) for i in detected_ids) + " )"
    draw_label(image, text, (5, 5), LABEL_BACKGROUND_COLOR)


def draw_inlier_matches(query_image: np.ndarray, result: MatchResult, model: TargetModel) -> np.ndarray:
    """Reference image beside the query image with one line per inlier correspondence."""
    query = to_bgr(query_image)
    if model.image is None:
        return query

    reference = to_bgr(model.image)
    height = max(reference.shape[0], query.shape[0])
    canvas = np.zeros((height, reference.shape[1] + query.shape[1], 3), dtype=np.uint8)
    canvas[: reference.shape[0], : reference.shape[1]] = reference
    canvas[: query.shape[0], reference.shape[1]:] = query

    offset = np.float32([reference.shape[1], 0])
    draw_contour(canvas, model.contour, result.display_color)
    draw_contour(canvas, result.contour + offset if len(result.contour) else result.contour, result.display_color)

    for target_pt, query_pt in zip(result.inlier_target_points, result.inlier_query_points):
        start = tuple(int(round(v)) for v in target_pt)
        end = tuple(int(round(v)) for v in query_pt + offset)
        cv2.circle(canvas, start, 3, TARGET_KEYPOINT_COLOR, 1, cv2.LINE_AA)
        cv2.circle(canvas, end, 3, TARGET_KEYPOINT_COLOR, 1, cv2.LINE_AA)
        cv2.line(canvas, start, end, result.display_color, 1, cv2.LINE_AA)

    return canvas
