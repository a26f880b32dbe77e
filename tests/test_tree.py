import numpy as np

from pyDET import DensityEstimationTree
from pyDET.tree import DTreeNode, assign_tags, enumerate_tree, iter_leaves, iter_nodes


class _Recorder:
    def __init__(self):
        self.events = []

    def enter(self, node, parent):
        self.events.append(("enter", node.tag, None if parent is None else parent.tag))

    def leave(self, node, parent):
        self.events.append(("leave", node.tag, None if parent is None else parent.tag))


def _model(seed=0, n=300, **kwargs):
    X = np.random.default_rng(seed).normal(size=(n, 2))
    return DensityEstimationTree(max_leaf_size=10, min_leaf_size=5, **kwargs).fit(X)


def test_enumerate_tree_visits_pre_and_post_order():
    model = _model()
    n_nodes = assign_tags(model.root_, every_node=True)
    recorder = _Recorder()

    enumerate_tree(model.root_, recorder)

    entered = [tag for kind, tag, _ in recorder.events if kind == "enter"]
    left = [tag for kind, tag, _ in recorder.events if kind == "leave"]
    assert entered == list(range(n_nodes))
    assert sorted(left) == entered
    assert recorder.events[0] == ("enter", 0, None)
    assert recorder.events[-1] == ("leave", 0, None)

    position = {(kind, tag): i for i, (kind, tag, _) in enumerate(recorder.events)}
    for kind, tag, parent in recorder.events:
        if kind == "enter" and parent is not None:
            assert position[("enter", parent)] < position[("enter", tag)]
            assert position[("leave", tag)] < position[("leave", parent)]


def test_leaf_tags_skip_internal_nodes():
    model = _model()
    n_leaves = assign_tags(model.root_)

    assert n_leaves == model.n_leaves
    for node in iter_nodes(model.root_):
        assert (node.tag >= 0) == node.is_leaf
    assert model.tag_tree(start=5) == n_leaves
    assert min(leaf.tag for leaf in iter_leaves(model.root_)) == 5


def test_subtree_aggregates_match_leaves():
    model = _model(use_volume_reg=True)
    root = model.root_
    leaves = list(iter_leaves(root))

    assert root.subtree_leaves == len(leaves)
    assert np.isclose(np.exp(root.subtree_leaves_log_neg_error),
                      sum(np.exp(leaf.log_neg_error) for leaf in leaves))
    assert np.isclose(root.subtree_leaves_inv_volume, sum(leaf.inv_volume for leaf in leaves))
    assert np.isclose(model.integrated_squared_density(), sum(leaf.ratio ** 2 / np.exp(leaf.log_volume) for leaf in leaves))
    for node in iter_nodes(root):
        if not node.is_leaf:
            assert node.alpha_upper > 0
            assert node.split_gain() > 0


def test_prune_and_update_removes_weakest_links():
    model = _model()
    before = model.n_leaves
    alpha = model.next_alpha_

    next_alpha = model.prune_and_update(alpha)

    assert model.n_leaves < before
    assert next_alpha > alpha
    for node in iter_nodes(model.root_):
        if not node.is_leaf:
            assert node.alpha_upper > alpha


def test_collapse_turns_node_into_leaf():
    model = _model()
    root = model.root_
    left = root.left

    root.collapse()

    assert root.is_leaf
    assert root.subtree_leaves == 1
    assert root.split_dim is None and root.split_value is None
    assert left.parent is None
    assert root.prune_and_update(0.0, False) == float("inf")


def test_node_dict_round_trip():
    model = _model()
    clone = DTreeNode.from_dict(model.root_.to_dict())

    for a, b in zip(iter_nodes(model.root_), iter_nodes(clone)):
        assert a.tag == b.tag
        assert a.split_dim == b.split_dim
        assert a.split_value == b.split_value
        assert np.array_equal(a.min_vals, b.min_vals)
        assert np.array_equal(a.max_vals, b.max_vals)
        assert np.isclose(a.alpha_upper, b.alpha_upper) or a.is_leaf
