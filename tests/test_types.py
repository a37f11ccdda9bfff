"""Value semantics of the target and result records."""
import cv2
import numpy as np

from conftest import synthetic_model
from target_recognition.types import MatchResult


def result(**overrides):
    values = dict(
        target_id=3,
        score=0.5,
        inliers=((0, 1), (2, 3)),
        contour=np.float32([[0, 0], [10, 0], [10, 10]]),
        model_name="target_3.png",
        inlier_query_points=np.float32([[1, 1], [2, 2]]),
        inlier_target_points=np.float32([[0, 0], [1, 1]]),
    )
    values.update(overrides)
    return MatchResult(**values)


class TestTargetModel:
    def test_equal_models_compare_and_hash_alike(self):
        first = synthetic_model(1, 20, 0)
        second = synthetic_model(1, 20, 0)

        assert first == second
        assert hash(first) == hash(second)
        assert len({first, second}) == 1

    def test_models_differ_by_descriptors_and_keypoints(self):
        model = synthetic_model(1, 20, 0)

        assert model != synthetic_model(1, 20, 100)
        assert model != synthetic_model(1, 21, 0)
        assert model != synthetic_model(2, 20, 0)

    def test_moved_keypoint_breaks_equality(self):
        model = synthetic_model(1, 4, 0)
        keypoints = list(model.keypoints)
        keypoints[0] = cv2.KeyPoint(keypoints[0].pt[0] + 1.0, keypoints[0].pt[1], 5.0)
        moved = type(model)(
            target_id=model.target_id,
            keypoints=tuple(keypoints),
            descriptors=model.descriptors,
            contour=model.contour,
            name=model.name,
        )

        assert model != moved

    def test_comparison_with_other_types(self):
        assert synthetic_model(1, 4, 0) != "target_1.png"


class TestMatchResult:
    def test_equal_results_compare_and_hash_alike(self):
        assert result() == result()
        assert hash(result()) == hash(result())

    def test_array_fields_take_part_in_equality(self):
        assert result() != result(contour=np.float32([[0, 0], [10, 0], [10, 11]]))
        assert result() != result(inlier_query_points=np.float32([[1, 1], [2, 3]]))

    def test_scalar_fields_take_part_in_equality(self):
        assert result() != result(score=0.6)
        assert result() != result(inliers=((0, 1),))

    def test_default_result_is_hashable(self):
        assert MatchResult(target_id=1) == MatchResult(target_id=1)
        assert hash(MatchResult(target_id=1)) == hash(MatchResult(target_id=1))
