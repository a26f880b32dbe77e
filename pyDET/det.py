from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .exceptions import InvalidConfiguration
from .metrics import leave_one_out_error
from .tree import INFINITY, DTreeNode, assign_tags, iter_leaves, iter_nodes
from .utils import check_leaf_sizes, ensure_numpy, find_best_split, log_neg_error, log_volume

logger = logging.getLogger(__name__)


def build_tree(
    data: np.ndarray,
    max_leaf_size: int = 10,
    min_leaf_size: int = 5,
    use_volume_reg: bool = False,
    old_from_new: Optional[np.ndarray] = None,
) -> DTreeNode:
    """Grow the maximal density estimation tree over ``data``.

    ``data`` is an ``(n_samples, n_features)`` float array that is reordered
    in place so that every node owns a contiguous row range. When given,
    ``old_from_new`` receives the same permutation. Leaves are tagged in
    pre-order.
    """
    check_leaf_sizes(max_leaf_size, min_leaf_size)
    if not isinstance(data, np.ndarray) or data.ndim != 2 or data.shape[0] == 0:
        raise InvalidConfiguration("Dataset must be a non-empty 2D array.")

    n_total = data.shape[0]
    min_vals = data.min(axis=0)
    max_vals = data.max(axis=0)
    active = max_vals > min_vals
    root_log_vol = log_volume(min_vals, max_vals, active)

    root = DTreeNode(
        start=0,
        end=n_total,
        min_vals=min_vals,
        max_vals=max_vals,
        ratio=1.0,
        log_volume=root_log_vol,
        inv_volume=1.0,
        log_neg_error=float(log_neg_error(n_total, n_total, root_log_vol)),
    )
    builder = _Builder(data, old_from_new, active, root_log_vol,
                       int(max_leaf_size), int(min_leaf_size), bool(use_volume_reg))
    builder.grow(root)
    assign_tags(root)
    return root


class _Builder:
    def __init__(self, data, old_from_new, active, root_log_volume,
                 max_leaf_size, min_leaf_size, use_volume_reg):
        self.data = data
        self.old_from_new = old_from_new
        self.active = active
        self.root_log_volume = root_log_volume
        self.n_total = data.shape[0]
        self.max_leaf_size = max_leaf_size
        self.min_leaf_size = min_leaf_size
        self.use_volume_reg = use_volume_reg

    def grow(self, node: DTreeNode) -> None:
        """Split ``node`` recursively until no split improves the error."""
        candidate = None
        if node.n_points > self.max_leaf_size:
            candidate = find_best_split(
                self.data[node.start:node.end],
                node.min_vals,
                node.max_vals,
                node.log_volume,
                node.log_neg_error,
                self.active,
                self.n_total,
                self.min_leaf_size,
            )
        if candidate is None:
            return

        mid = self._partition(node, candidate.dim, candidate.split_value)
        if mid - node.start != candidate.left_n:
            raise RuntimeError("Partition disagrees with split search.")

        node.split_dim = candidate.dim
        node.split_value = candidate.split_value

        left_max = node.max_vals.copy()
        left_max[candidate.dim] = candidate.split_value
        right_min = node.min_vals.copy()
        right_min[candidate.dim] = candidate.split_value

        node.left = self._child(node, node.start, mid, node.min_vals.copy(), left_max,
                                candidate.left_log_volume, candidate.left_log_neg_error)
        node.right = self._child(node, mid, node.end, right_min, node.max_vals.copy(),
                                 candidate.right_log_volume, candidate.right_log_neg_error)

        self.grow(node.left)
        self.grow(node.right)
        node.update_from_children(self.use_volume_reg)

    def _child(self, parent, start, end, min_vals, max_vals, log_vol, lne) -> DTreeNode:
        child = DTreeNode(
            start=start,
            end=end,
            min_vals=min_vals,
            max_vals=max_vals,
            ratio=(end - start) / self.n_total,
            log_volume=log_vol,
            inv_volume=float(np.exp(self.root_log_volume - log_vol)),
            log_neg_error=lne,
        )
        child.parent = parent
        return child

    def _partition(self, node: DTreeNode, dim: int, split_value: float) -> int:
        """Stable in-place partition of the node's rows; return the first right row."""
        segment = self.data[node.start:node.end]
        goes_left = segment[:, dim] <= split_value
        order = np.concatenate([np.flatnonzero(goes_left), np.flatnonzero(~goes_left)])
        segment[:] = segment[order]
        if self.old_from_new is not None:
            ids = self.old_from_new[node.start:node.end]
            ids[:] = ids[order]
        return node.start + int(np.count_nonzero(goes_left))


def _subtree_min_alpha(node: DTreeNode) -> float:
    return min((n.alpha_upper for n in iter_nodes(node) if not n.is_leaf), default=INFINITY)


class DensityEstimationTree:
    """
    Density estimation tree with piecewise constant leaf densities.

    Parameters
    ----------
    max_leaf_size : int, default=10
        Nodes holding at most this many points are not split.
    min_leaf_size : int, default=5
        Minimum number of points on each side of a split.
    use_volume_reg : bool, default=False
        Measure subtree complexity as the sum of V_root / V_leaf over leaves
        instead of the leaf count, so that pruning removes small boxes first.
    """

    def __init__(self, max_leaf_size: int = 10, min_leaf_size: int = 5, use_volume_reg: bool = False):
        self.max_leaf_size = int(max_leaf_size)
        self.min_leaf_size = int(min_leaf_size)
        self.use_volume_reg = bool(use_volume_reg)

        self.root_: Optional[DTreeNode] = None
        self.n_points_: int = 0
        self.n_features_: int = 0
        self.feature_names_: List[str] = []
        self.old_from_new_: Optional[np.ndarray] = None
        self.next_alpha_: float = INFINITY

        # set by pruning.trainer
        self.alpha_sequence_: Optional[List[Any]] = None
        self.cv_errors_: Optional[np.ndarray] = None
        self.optimal_alpha_: Optional[float] = None

    # -----------------------------
    # Fit
    # -----------------------------
    def fit(self, X, feature_names: Optional[List[str]] = None) -> "DensityEstimationTree":
        check_leaf_sizes(self.max_leaf_size, self.min_leaf_size)
        X_arr, names = ensure_numpy(X, copy=True)
        self.feature_names_ = list(feature_names) if feature_names is not None else names
        self.n_points_, self.n_features_ = X_arr.shape

        self.old_from_new_ = np.arange(self.n_points_, dtype=int)
        self.root_ = build_tree(X_arr, self.max_leaf_size, self.min_leaf_size,
                                self.use_volume_reg, self.old_from_new_)
        self.next_alpha_ = _subtree_min_alpha(self.root_)
        logger.debug("Grew tree with %d leaves on %d points; minimum alpha %g",
                     self.n_leaves, self.n_points_, self.next_alpha_)
        return self

    def _check_fitted(self) -> DTreeNode:
        if self.root_ is None:
            raise RuntimeError("Model is not fitted.")
        return self.root_

    def _check_points(self, X) -> np.ndarray:
        self._check_fitted()
        X_arr = np.asarray(X, dtype=float)
        if X_arr.ndim == 1:
            X_arr = X_arr.reshape(1, -1) if X_arr.size == self.n_features_ else X_arr.reshape(-1, 1)
        if X_arr.ndim != 2 or X_arr.shape[1] != self.n_features_:
            raise InvalidConfiguration(
                f"Expected points with {self.n_features_} features, got shape {X_arr.shape}"
            )
        return X_arr

    @property
    def n_leaves(self) -> int:
        return self._check_fitted().subtree_leaves

    # -----------------------------
    # Queries
    # -----------------------------
    def _route(self, X_arr: np.ndarray) -> List[Tuple[DTreeNode, np.ndarray]]:
        """Send rows down the tree; return (leaf, rows) pairs."""
        root = self._check_fitted()
        out: List[Tuple[DTreeNode, np.ndarray]] = []
        stack: List[Tuple[DTreeNode, np.ndarray]] = [(root, np.arange(X_arr.shape[0], dtype=int))]

        while stack:
            node, rows = stack.pop()
            if rows.size == 0:
                continue
            if node.is_leaf:
                out.append((node, rows))
                continue

            goes_left = X_arr[rows, node.split_dim] <= node.split_value
            stack.append((node.left, rows[goes_left]))
            stack.append((node.right, rows[~goes_left]))
        return out

    def find_leaf(self, X) -> np.ndarray:
        """Tag of the leaf each row falls into (the root box is not checked)."""
        X_arr = self._check_points(X)
        tags = np.empty(X_arr.shape[0], dtype=int)
        for leaf, rows in self._route(X_arr):
            tags[rows] = leaf.tag
        return tags

    def density(self, X) -> np.ndarray:
        """Estimated density per row; zero outside the training bounding box."""
        root = self._check_fitted()
        X_arr = self._check_points(X)
        values = np.zeros(X_arr.shape[0], dtype=float)
        for leaf, rows in self._route(X_arr):
            values[rows] = leaf.density
        inside = np.all((X_arr >= root.min_vals) & (X_arr <= root.max_vals), axis=1)
        values[~inside] = 0.0
        return values

    score_samples = density

    def leaves(self) -> List[DTreeNode]:
        return list(iter_leaves(self._check_fitted()))

    def integrated_squared_density(self) -> float:
        """Integral of f^2 over the root box."""
        return float(np.exp(self._check_fitted().subtree_leaves_log_neg_error))

    def error(self) -> float:
        """Training estimate of the ISE up to a constant: -integral f^2."""
        return -self.integrated_squared_density()

    def loo_error(self) -> float:
        leaves = self.leaves()
        counts = np.array([leaf.n_points for leaf in leaves], dtype=float)
        log_vols = np.array([leaf.log_volume for leaf in leaves], dtype=float)
        return leave_one_out_error(counts, log_vols, self.n_points_)

    # -----------------------------
    # Pruning
    # -----------------------------
    def prune_and_update(self, old_alpha: float) -> float:
        """Collapse every subtree with g(t) <= old_alpha; return the next weakest link.

        The remaining leaves are retagged ``0 .. L-1`` in pre-order.
        """
        root = self._check_fitted()
        self.next_alpha_ = root.prune_and_update(old_alpha, self.use_volume_reg)
        assign_tags(root)
        return self.next_alpha_

    # -----------------------------
    # Reporting helpers
    # -----------------------------
    def tag_tree(self, start: int = 0, every_node: bool = False) -> int:
        """Tag leaves (or every node) in pre-order; return the number of tags used."""
        return assign_tags(self._check_fitted(), start, every_node) - start

    def compute_variable_importance(self) -> np.ndarray:
        """Raw per-dimension sum of split error reductions."""
        root = self._check_fitted()
        importance = np.zeros(self.n_features_, dtype=float)
        for node in iter_nodes(root):
            if not node.is_leaf:
                importance[node.split_dim] += node.split_gain()
        return importance

    def summary(self) -> str:
        if self.root_ is None:
            return "DensityEstimationTree(not fitted)"
        return (
            f"DensityEstimationTree(max_leaf_size={self.max_leaf_size}, "
            f"min_leaf_size={self.min_leaf_size}, use_volume_reg={self.use_volume_reg})\n"
            f"Points: {self.n_points_}, features: {self.n_features_}, leaves: {self.n_leaves}\n"
            f"Integral of f^2: {self.integrated_squared_density():.6g}, next alpha: {self.next_alpha_:.6g}"
        )

    def print_tree(self, max_depth: Optional[int] = None):
        if self.root_ is None:
            print("Model not fitted")
            return

        def print_node(node: DTreeNode, depth: int = 0):
            if max_depth is not None and depth > max_depth:
                return

            indent = "  " * depth

            if node.is_leaf:
                print(f"{indent}Leaf {node.tag}: n={node.n_points}, density={node.density:.6g}")
            else:
                name = self.feature_names_[node.split_dim] if self.feature_names_ else f"x{node.split_dim}"
                print(f"{indent}{name} <= {node.split_value:.6f} (n={node.n_points}, g={node.alpha_upper:.6g})")
                print_node(node.left, depth + 1)
                print_node(node.right, depth + 1)

        print_node(self.root_, 0)

    # -----------------------------
    # Persistence
    # -----------------------------
    def to_dict(self) -> Dict[str, Any]:
        root = self._check_fitted()
        return {
            "params": self.get_params(),
            "n_points": self.n_points_,
            "n_features": self.n_features_,
            "feature_names": list(self.feature_names_),
            "tree": root.to_dict(),
        }

    def to_json(self, path: str):
        obj = self.to_dict()
        with open(path, "w", encoding="utf-8") as f:
            json.dump(obj, f, indent=2)

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "DensityEstimationTree":
        model = cls(**obj["params"])
        model.n_points_ = int(obj["n_points"])
        model.n_features_ = int(obj["n_features"])
        model.feature_names_ = list(obj.get("feature_names", []))
        model.root_ = DTreeNode.from_dict(obj["tree"], model.use_volume_reg)
        model.next_alpha_ = _subtree_min_alpha(model.root_)
        return model

    @classmethod
    def from_json(cls, path: str) -> "DensityEstimationTree":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def get_params(self, deep: bool = True) -> Dict[str, Any]:
        return {
            "max_leaf_size": self.max_leaf_size,
            "min_leaf_size": self.min_leaf_size,
            "use_volume_reg": self.use_volume_reg,
        }

    def set_params(self, **params) -> "DensityEstimationTree":
        for key, value in params.items():
            if key not in self.get_params():
                raise ValueError(f"Unknown parameter {key}")
            setattr(self, key, value)
        return self
