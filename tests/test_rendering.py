"""Drawing of detections and inlier matches."""
import numpy as np

from conftest import synthetic_model
from target_recognition.rendering import (
    draw_detection,
    draw_global_result,
    draw_inlier_matches,
    draw_keypoints,
)
from target_recognition.types import MatchResult, TargetModel


def detection(contour):
    return MatchResult(
        target_id=5,
        score=0.5,
        inliers=((0, 0),),
        contour=contour,
        display_color=(0, 0, 255),
        inlier_query_points=np.float32([[40, 40]]),
        inlier_target_points=np.float32([[10, 10]]),
    )


def test_keypoints_on_grayscale_give_color_copy():
    image = np.zeros((50, 50), np.uint8)
    canvas = draw_keypoints(image, [], (255, 0, 0))
    assert canvas.shape == (50, 50, 3)
    assert not image.any()


def test_detection_draws_contour_in_display_color():
    canvas = np.zeros((200, 200, 3), np.uint8)
    draw_detection(canvas, detection(np.float32([[20, 20], [180, 20], [180, 180], [20, 180]])))

    assert canvas[18:23, 100, 2].max() > 200
    assert canvas[18:23, 100, :2].max() == 0


def test_contour_outside_image_is_not_labelled():
    canvas = np.zeros((100, 100, 3), np.uint8)
    draw_detection(canvas, detection(np.float32([[300, 300], [400, 300], [400, 400], [300, 400]])))
    # only the inlier point circle is visible
    assert canvas[:, :, 2].any()
    assert not canvas[0:20, :, :].any()


def test_global_result_label():
    canvas = np.zeros((60, 400, 3), np.uint8)
    draw_global_result(canvas, [5, 10])
    assert canvas.any()


def test_inlier_matches_canvas_holds_both_images():
    model = synthetic_model(5, 20, 0)
    model = TargetModel(
        target_id=5, keypoints=model.keypoints, descriptors=model.descriptors,
        contour=model.contour, image=np.zeros((100, 100), np.uint8),
    )
    query = np.zeros((150, 200), np.uint8)

    canvas = draw_inlier_matches(query, detection(model.contour + 20), model)

    assert canvas.shape == (150, 300, 3)


def test_inlier_matches_without_reference_image():
    model = synthetic_model(5, 20, 0)
    canvas = draw_inlier_matches(np.zeros((80, 90), np.uint8), detection(model.contour), model)
    assert canvas.shape == (80, 90, 3)
