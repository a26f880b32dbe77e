from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np

from .metrics import error_reduction

INFINITY = float("inf")


class DTreeNode:
    """One box of a density estimation tree.

    The node owns its two children; ``parent`` is a plain back reference kept
    for traversal only. ``start``/``end`` delimit the rows of the (reordered)
    training matrix that fall in the box.
    """

    __slots__ = (
        "start", "end", "min_vals", "max_vals",
        "ratio", "log_volume", "inv_volume", "log_neg_error",
        "subtree_leaves", "subtree_leaves_log_neg_error",
        "subtree_leaves_inv_volume", "alpha_upper",
        "split_dim", "split_value", "tag",
        "left", "right", "parent",
    )

    def __init__(self, start: int, end: int, min_vals: np.ndarray, max_vals: np.ndarray,
                 ratio: float, log_volume: float, inv_volume: float, log_neg_error: float):
        self.start = start
        self.end = end
        self.min_vals = min_vals
        self.max_vals = max_vals
        self.ratio = ratio
        self.log_volume = log_volume
        self.inv_volume = inv_volume
        self.log_neg_error = log_neg_error

        self.subtree_leaves: int = 1
        self.subtree_leaves_log_neg_error: float = log_neg_error
        self.subtree_leaves_inv_volume: float = inv_volume
        self.alpha_upper: float = INFINITY

        self.split_dim: Optional[int] = None
        self.split_value: Optional[float] = None
        self.tag: int = -1
        self.left: Optional["DTreeNode"] = None
        self.right: Optional["DTreeNode"] = None
        self.parent: Optional["DTreeNode"] = None

    @property
    def is_leaf(self) -> bool:
        return self.left is None

    @property
    def n_points(self) -> int:
        return self.end - self.start

    @property
    def density(self) -> float:
        return float(self.ratio * np.exp(-self.log_volume))

    def contains(self, point: np.ndarray) -> bool:
        return bool(np.all(point >= self.min_vals) and np.all(point <= self.max_vals))

    # -----------------------------
    # Pruning
    # -----------------------------
    def update_from_children(self, use_volume_reg: bool) -> None:
        """Refresh subtree aggregates and the weakest-link cost g(t)."""
        left, right = self.left, self.right
        self.subtree_leaves = left.subtree_leaves + right.subtree_leaves
        self.subtree_leaves_log_neg_error = float(np.logaddexp(
            left.subtree_leaves_log_neg_error, right.subtree_leaves_log_neg_error))
        self.subtree_leaves_inv_volume = left.subtree_leaves_inv_volume + right.subtree_leaves_inv_volume

        gain = float(np.exp(self.subtree_leaves_log_neg_error) - np.exp(self.log_neg_error))
        if use_volume_reg:
            complexity = self.subtree_leaves_inv_volume - self.inv_volume
        else:
            complexity = float(self.subtree_leaves - 1)
        self.alpha_upper = gain / complexity if complexity > 0 else INFINITY

    def collapse(self) -> None:
        """Turn this node into a leaf, releasing its subtree."""
        for child in (self.left, self.right):
            if child is not None:
                child.parent = None
        self.left = None
        self.right = None
        self.split_dim = None
        self.split_value = None
        self.subtree_leaves = 1
        self.subtree_leaves_log_neg_error = self.log_neg_error
        self.subtree_leaves_inv_volume = self.inv_volume
        self.alpha_upper = INFINITY

    def prune_and_update(self, old_alpha: float, use_volume_reg: bool) -> float:
        """Collapse every subtree with g(t) <= old_alpha.

        Returns the smallest g(t) left in the subtree, which is strictly
        greater than ``old_alpha`` (``inf`` once the subtree is a leaf).
        """
        if self.is_leaf:
            return INFINITY
        if self.alpha_upper <= old_alpha:
            self.collapse()
            return INFINITY

        left_alpha = self.left.prune_and_update(old_alpha, use_volume_reg)
        right_alpha = self.right.prune_and_update(old_alpha, use_volume_reg)
        self.update_from_children(use_volume_reg)

        # Pruning the children can lower this node's own cost.
        if self.alpha_upper <= old_alpha:
            self.collapse()
            return INFINITY
        return min(left_alpha, right_alpha, self.alpha_upper)

    def split_gain(self) -> float:
        if self.is_leaf:
            return 0.0
        return error_reduction(self.log_neg_error, self.left.log_neg_error, self.right.log_neg_error)

    # -----------------------------
    # Serialization
    # -----------------------------
    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "tag": self.tag,
            "start": self.start,
            "end": self.end,
            "min_vals": [float(v) for v in self.min_vals],
            "max_vals": [float(v) for v in self.max_vals],
            "ratio": self.ratio,
            "log_volume": self.log_volume,
            "inv_volume": self.inv_volume,
            "log_neg_error": self.log_neg_error,
        }
        if self.is_leaf:
            d["is_leaf"] = True
        else:
            d["is_leaf"] = False
            d["split_dim"] = self.split_dim
            d["split_value"] = self.split_value
            d["left"] = self.left.to_dict()
            d["right"] = self.right.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any], use_volume_reg: bool = False) -> "DTreeNode":
        node = cls(
            start=int(data["start"]),
            end=int(data["end"]),
            min_vals=np.asarray(data["min_vals"], dtype=float),
            max_vals=np.asarray(data["max_vals"], dtype=float),
            ratio=float(data["ratio"]),
            log_volume=float(data["log_volume"]),
            inv_volume=float(data["inv_volume"]),
            log_neg_error=float(data["log_neg_error"]),
        )
        node.tag = int(data.get("tag", -1))
        if not data["is_leaf"]:
            node.split_dim = int(data["split_dim"])
            node.split_value = float(data["split_value"])
            node.left = cls.from_dict(data["left"], use_volume_reg)
            node.right = cls.from_dict(data["right"], use_volume_reg)
            node.left.parent = node
            node.right.parent = node
            node.update_from_children(use_volume_reg)
        return node


def assign_tags(root: DTreeNode, start: int = 0, every_node: bool = False) -> int:
    """Number leaves (or every node) in pre-order; return the next free tag."""
    next_tag = start
    stack: List[DTreeNode] = [root]
    while stack:
        node = stack.pop()
        if every_node or node.is_leaf:
            node.tag = next_tag
            next_tag += 1
        else:
            node.tag = -1
        if not node.is_leaf:
            stack.append(node.right)
            stack.append(node.left)
    return next_tag


def enumerate_tree(root: DTreeNode, visitor) -> None:
    """Depth-first walk calling ``visitor.enter`` pre-order and ``visitor.leave`` post-order.

    Both callbacks receive ``(node, parent)``; ``parent`` is None for the root.
    """
    stack: List[Tuple[DTreeNode, Optional[DTreeNode], bool]] = [(root, None, False)]
    while stack:
        node, parent, entered = stack.pop()
        if entered:
            visitor.leave(node, parent)
            continue
        visitor.enter(node, parent)
        stack.append((node, parent, True))
        if not node.is_leaf:
            stack.append((node.right, node, False))
            stack.append((node.left, node, False))


def iter_nodes(root: DTreeNode) -> Iterator[DTreeNode]:
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        if not node.is_leaf:
            stack.append(node.right)
            stack.append(node.left)


def iter_leaves(root: DTreeNode) -> Iterator[DTreeNode]:
    return (node for node in iter_nodes(root) if node.is_leaf)
