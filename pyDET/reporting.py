from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np

from .det import DensityEstimationTree
from .exceptions import InvalidConfiguration, OutOfRangeLabel, UnknownPathQuery
from .tree import DTreeNode, enumerate_tree

logger = logging.getLogger(__name__)


def _emit(table: np.ndarray, output: Optional[str], header: str, fmt: str) -> None:
    if output:
        np.savetxt(output, table, fmt=fmt)
        logger.info("%s written to '%s'.", header, output)
    else:
        print(header)
        print(np.array2string(table, threshold=np.inf, max_line_width=np.inf))


def _check_labels(labels, n_points: int, n_classes: int) -> np.ndarray:
    if int(n_classes) != n_classes or n_classes < 1:
        raise InvalidConfiguration(f"n_classes must be a positive integer, got {n_classes}")
    labels_arr = np.asarray(labels).reshape(-1)
    if labels_arr.shape[0] != n_points:
        raise InvalidConfiguration(
            f"Shape mismatch: data has {n_points} points, labels has {labels_arr.shape[0]}"
        )
    if labels_arr.size and not np.all(np.mod(labels_arr, 1) == 0):
        raise InvalidConfiguration("Labels must be integers.")
    labels_arr = labels_arr.astype(int)
    bad = (labels_arr < 0) | (labels_arr >= n_classes)
    if np.any(bad):
        raise OutOfRangeLabel(
            f"Label {labels_arr[bad][0]} outside [0, {n_classes}) at row {int(np.flatnonzero(bad)[0])}"
        )
    return labels_arr


def print_leaf_membership(
    tree: DensityEstimationTree,
    data,
    labels,
    n_classes: int,
    output: Optional[str] = None,
) -> np.ndarray:
    """Class histogram of the points reaching each leaf.

    Returns an integer table of shape ``(n_leaves, n_classes + 1)``: row i
    is the i-th leaf in pre-order (the leaf tagged i after a fit or a prune),
    columns hold per-class counts and the last column the number of points
    in the leaf. The tree's tags are not modified.
    """
    X = tree._check_points(data)
    labels_arr = _check_labels(labels, X.shape[0], n_classes)

    leaves = tree.leaves()
    n_leaves = len(leaves)
    position = {id(leaf): i for i, leaf in enumerate(leaves)}
    leaf_tags = np.empty(X.shape[0], dtype=int)
    for leaf, rows in tree._route(X):
        leaf_tags[rows] = position[id(leaf)]

    table = np.zeros((n_leaves, int(n_classes) + 1), dtype=int)
    np.add.at(table, (leaf_tags, labels_arr), 1)
    table[:, -1] = np.bincount(leaf_tags, minlength=n_leaves)

    _emit(table, output,
          "Leaf membership; row represents leaf id, column represents class id; "
          "value represents number of points in leaf in class.", "%d")
    return table


def print_variable_importance(tree: DensityEstimationTree, output: Optional[str] = None) -> np.ndarray:
    """Per-dimension share of the total split error reduction in the tree."""
    importance = tree.compute_variable_importance()
    logger.info("Maximum variable importance: %g", float(importance.max(initial=0.0)))
    total = float(importance.sum())
    if total > 0:
        importance = importance / total
    _emit(importance, output, "Variable importance:", "%.18e")
    return importance


class PathFormat(Enum):
    LR = "lr"
    LR_ID = "lr_id"
    ID_LR = "id_lr"


class PathCacher:
    """Root-to-node path strings for every node of a tree.

    The cacher numbers the nodes itself, in pre-order with the root at 0
    (the numbering ``tree.tag_tree(every_node=True)`` would give), and
    leaves the tree's own tags alone. The constructor walks the tree once;
    afterwards ``path_for`` and ``parent_of`` are dictionary lookups. The
    root has parent ``-1`` and an empty path.
    """

    def __init__(self, fmt, tree: DensityEstimationTree):
        self.format = PathFormat(fmt)
        self.tree = tree
        self._path: List[Tuple[bool, int]] = []
        self._cache: Dict[int, Tuple[int, str]] = {}
        # keyed by id(); _nodes keeps the visited nodes alive so ids stay unique
        self._tags: Dict[int, int] = {}
        self._nodes: List[DTreeNode] = []
        self._complete = False

        enumerate_tree(tree._check_fitted(), self)
        self._complete = True

    def enter(self, node: DTreeNode, parent: Optional[DTreeNode]) -> None:
        tag = len(self._nodes)
        self._tags[id(node)] = tag
        self._nodes.append(node)
        if parent is None:
            self._cache[tag] = (-1, "")
            return
        self._path.append((parent.left is node, tag))
        self._cache[tag] = (self._tags[id(parent)], self._build_string())

    def leave(self, node: DTreeNode, parent: Optional[DTreeNode]) -> None:
        if parent is None:
            return
        self._path.pop()

    def _build_string(self) -> str:
        parts = []
        for is_left, tag in self._path:
            side = "L" if is_left else "R"
            if self.format is PathFormat.LR:
                parts.append(side)
            elif self.format is PathFormat.LR_ID:
                parts.append(f"{side}{tag}")
            else:
                parts.append(f"{tag}{side}")
        return "".join(parts)

    def _lookup(self, tag: int) -> Tuple[int, str]:
        if not self._complete:
            raise UnknownPathQuery("Path cache queried before the traversal completed.")
        try:
            return self._cache[tag]
        except KeyError:
            raise UnknownPathQuery(f"No path cached for tag {tag}.") from None

    def tag_of(self, node: DTreeNode) -> int:
        """The cacher's tag for ``node``."""
        try:
            return self._tags[id(node)]
        except KeyError:
            raise UnknownPathQuery("Node was not visited when the cache was built.") from None

    def path_for(self, tag: int) -> str:
        return self._lookup(tag)[1]

    def parent_of(self, tag: int) -> int:
        return self._lookup(tag)[0]

    @property
    def n_nodes(self) -> int:
        return len(self._cache)

    def paths_for(self, X) -> List[str]:
        """Path of the leaf reached by each row of ``X``."""
        X_arr = self.tree._check_points(X)
        paths = [""] * X_arr.shape[0]
        for leaf, rows in self.tree._route(X_arr):
            path = self.path_for(self.tag_of(leaf))
            for row in rows:
                paths[row] = path
        return paths
