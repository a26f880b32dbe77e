import numpy as np
import pytest

from pyDET import DensityEstimationTree, InvalidConfiguration, build_tree
from pyDET.tree import iter_nodes


def _uniform(n=300, d=2, seed=0):
    return np.random.default_rng(seed).uniform(size=(n, d))


def test_fit_partitions_training_points():
    X = _uniform()
    model = DensityEstimationTree(max_leaf_size=10, min_leaf_size=5).fit(X)

    leaves = model.leaves()
    assert model.n_leaves == len(leaves) > 1
    assert sum(leaf.n_points for leaf in leaves) == X.shape[0]
    assert all(leaf.n_points >= 5 for leaf in leaves)
    assert [leaf.tag for leaf in leaves] == list(range(len(leaves)))

    tags = model.find_leaf(X)
    counts = np.bincount(tags, minlength=len(leaves))
    for leaf in leaves:
        assert counts[leaf.tag] == leaf.n_points
    for point, tag in zip(X, tags):
        assert leaves[tag].contains(point)


def test_children_partition_parent_box():
    X = _uniform(n=400, d=3, seed=1)
    model = DensityEstimationTree(max_leaf_size=10, min_leaf_size=5).fit(X)

    for node in iter_nodes(model.root_):
        if node.is_leaf:
            continue
        d = node.split_dim
        other = np.arange(X.shape[1]) != d
        assert node.min_vals[d] < node.split_value < node.max_vals[d]
        assert node.left.max_vals[d] == node.split_value == node.right.min_vals[d]
        assert node.left.min_vals[d] == node.min_vals[d]
        assert node.right.max_vals[d] == node.max_vals[d]
        for child in (node.left, node.right):
            assert np.array_equal(child.min_vals[other], node.min_vals[other])
            assert np.array_equal(child.max_vals[other], node.max_vals[other])
            assert child.parent is node
        assert node.left.n_points + node.right.n_points == node.n_points


def test_density_integrates_to_one_and_vanishes_outside():
    X = np.random.default_rng(2).normal(size=(250, 2))
    model = DensityEstimationTree(max_leaf_size=10, min_leaf_size=5).fit(X)

    mass = sum(leaf.density * np.exp(leaf.log_volume) for leaf in model.leaves())
    assert np.isclose(mass, 1.0)
    assert model.error() == -model.integrated_squared_density() < 0

    values = model.density(np.vstack([X[:5], [[100.0, 100.0]]]))
    assert np.all(values[:5] > 0)
    assert values[5] == 0.0
    assert np.array_equal(model.score_samples(X[:5]), values[:5])


def test_constant_data_gives_single_leaf():
    model = DensityEstimationTree(max_leaf_size=2, min_leaf_size=1).fit(np.full((50, 1), 3.0))

    assert model.n_leaves == 1
    assert model.root_.log_volume == 0.0
    assert model.density([[3.0]])[0] == 1.0
    assert model.density([[3.5]])[0] == 0.0


def test_small_dataset_gives_single_leaf():
    model = DensityEstimationTree(max_leaf_size=5, min_leaf_size=5).fit(_uniform(n=9))
    assert model.n_leaves == 1


def test_build_tree_reorders_rows_in_place():
    X = _uniform(n=120, seed=3)
    data = X.copy()
    old_from_new = np.arange(X.shape[0])

    root = build_tree(data, max_leaf_size=10, min_leaf_size=5, old_from_new=old_from_new)

    assert np.array_equal(np.sort(old_from_new), np.arange(X.shape[0]))
    assert np.array_equal(data, X[old_from_new])
    for node in iter_nodes(root):
        rows = data[node.start:node.end]
        assert np.all(rows >= node.min_vals) and np.all(rows <= node.max_vals)


def test_fit_leaves_caller_data_untouched():
    X = _uniform(n=100, seed=4)
    original = X.copy()
    model = DensityEstimationTree().fit(X)

    assert np.array_equal(X, original)
    assert np.array_equal(np.sort(model.old_from_new_), np.arange(100))


def test_invalid_configuration_is_rejected():
    with pytest.raises(InvalidConfiguration):
        DensityEstimationTree(max_leaf_size=3, min_leaf_size=5).fit(_uniform())
    with pytest.raises(InvalidConfiguration):
        DensityEstimationTree(min_leaf_size=0).fit(_uniform())
    with pytest.raises(InvalidConfiguration):
        DensityEstimationTree().fit(np.empty((0, 2)))
    with pytest.raises(InvalidConfiguration):
        DensityEstimationTree().fit([[0.0, np.nan], [1.0, 2.0]])


def test_queries_need_a_fitted_model_with_matching_dimensions():
    model = DensityEstimationTree()
    with pytest.raises(RuntimeError):
        model.density([[0.0, 0.0]])

    model.fit(_uniform())
    with pytest.raises(InvalidConfiguration):
        model.find_leaf([[0.0, 0.0, 0.0]])


def test_params_round_trip():
    model = DensityEstimationTree(max_leaf_size=20, min_leaf_size=4, use_volume_reg=True)
    assert model.get_params() == {"max_leaf_size": 20, "min_leaf_size": 4, "use_volume_reg": True}
    model.set_params(min_leaf_size=2)
    assert model.min_leaf_size == 2
    with pytest.raises(ValueError):
        model.set_params(depth=3)
