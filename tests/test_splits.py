import numpy as np

from pyDET.metrics import error_reduction, heldout_squared_error, leave_one_out_error
from pyDET.utils import find_best_split, log_neg_error, log_volume


def _root_split(X, min_leaf_size):
    X = np.asarray(X, dtype=float)
    mins, maxs = X.min(axis=0), X.max(axis=0)
    active = maxs > mins
    lv = log_volume(mins, maxs, active)
    return find_best_split(
        X, mins, maxs, lv, float(log_neg_error(len(X), len(X), lv)), active, len(X), min_leaf_size
    )


def test_best_split_separates_dense_cluster():
    X = np.array([[0.0], [0.1], [0.2], [0.3], [4.0], [6.0], [8.0], [10.0]])

    candidate = _root_split(X, min_leaf_size=4)
    assert candidate is not None
    assert candidate.dim == 0
    assert np.isclose(candidate.split_value, 2.15)
    assert candidate.left_n == 4 and candidate.right_n == 4
    # root negative error is (8/8)^2 / 10
    assert candidate.children_log_neg_error > np.log(0.1)


def test_constant_dimension_is_never_split():
    rng = np.random.default_rng(0)
    X = np.column_stack([rng.uniform(size=40), np.full(40, 5.0)])

    candidate = _root_split(X, min_leaf_size=5)
    assert candidate is not None
    assert candidate.dim == 0
    assert 5 <= candidate.left_n <= 35


def test_no_split_for_constant_data_or_too_few_points():
    assert _root_split(np.full((20, 1), 3.0), min_leaf_size=1) is None
    assert _root_split(np.arange(9.0).reshape(-1, 1), min_leaf_size=5) is None


def test_error_helpers():
    assert np.isclose(error_reduction(np.log(0.1), np.log(0.2), np.log(0.05)), 0.15)
    assert heldout_squared_error(1.0, [0.5, 0.5]) == 0.0
    # one leaf holding every point: (1 - 2) / V
    assert np.isclose(leave_one_out_error([10], [np.log(2.0)], 10), -0.5)
    assert np.isnan(leave_one_out_error([1], [0.0], 1))
