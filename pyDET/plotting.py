from __future__ import annotations

from typing import Optional, Sequence, Tuple

import matplotlib
import matplotlib.pyplot as plt
import numpy as np
from matplotlib.patches import Rectangle

from .det import DensityEstimationTree
from .tree import DTreeNode


def _layout_tree(node: DTreeNode, y=0, positions=None, leaf_positions=None):
    if positions is None:
        positions = {}
    if leaf_positions is None:
        leaf_positions = []

    if node.is_leaf:
        xpos = len(leaf_positions)
        positions[id(node)] = (xpos, -y)
        leaf_positions.append(xpos)
        return positions, leaf_positions

    positions, leaf_positions = _layout_tree(node.left, y + 1, positions, leaf_positions)
    positions, leaf_positions = _layout_tree(node.right, y + 1, positions, leaf_positions)

    lx, _ = positions[id(node.left)]
    rx, _ = positions[id(node.right)]
    positions[id(node)] = ((lx + rx) / 2, -y)
    return positions, leaf_positions


def plot_tree(tree: DensityEstimationTree, ax: Optional[plt.Axes] = None) -> plt.Axes:
    """Visualize the tree structure using a minimalist layout."""
    root = tree._check_fitted()
    if ax is None:
        _, ax = plt.subplots(figsize=(8, 5))
    positions, _ = _layout_tree(root)

    stack = [root]
    while stack:
        node = stack.pop()
        x, y = positions[id(node)]
        if node.is_leaf:
            label = f"leaf\nn={node.n_points}\nf={node.density:.3g}"
        else:
            name = tree.feature_names_[node.split_dim] if tree.feature_names_ else f"x{node.split_dim}"
            label = f"{name} ≤ {node.split_value:.3f}\nn={node.n_points}"
            for child in (node.left, node.right):
                cx, cy = positions[id(child)]
                ax.plot([x, cx], [y, cy], color="0.6", zorder=1)
                stack.append(child)
        ax.scatter([x], [y], s=200, color="#2a9d8f" if node.is_leaf else "#264653", zorder=2)
        ax.text(x, y, label, ha="center", va="center", color="white", fontsize=8, zorder=3)

    ax.set_axis_off()
    ax.set_title("Density estimation tree", fontsize=12)
    return ax


def plot_partition(
    tree: DensityEstimationTree,
    X: Optional[np.ndarray] = None,
    dims: Tuple[int, int] = (0, 1),
    ax: Optional[plt.Axes] = None,
    cmap: str = "viridis",
) -> plt.Axes:
    """Draw the leaf boxes of a tree over two dimensions, shaded by density."""
    leaves: Sequence[DTreeNode] = tree.leaves()
    if ax is None:
        _, ax = plt.subplots(figsize=(6, 5))
    dx, dy = dims

    densities = np.array([leaf.density for leaf in leaves])
    norm = plt.Normalize(vmin=0.0, vmax=float(densities.max()) if densities.size else 1.0)
    colors = matplotlib.colormaps[cmap]

    for leaf, value in zip(leaves, densities):
        ax.add_patch(Rectangle(
            (leaf.min_vals[dx], leaf.min_vals[dy]),
            leaf.max_vals[dx] - leaf.min_vals[dx],
            leaf.max_vals[dy] - leaf.min_vals[dy],
            facecolor=colors(norm(value)),
            edgecolor="white",
            linewidth=0.8,
        ))

    if X is not None:
        X_arr = np.asarray(X, dtype=float)
        ax.scatter(X_arr[:, dx], X_arr[:, dy], s=8, color="#e76f51", alpha=0.7)

    root = tree._check_fitted()
    ax.set_xlim(root.min_vals[dx], root.max_vals[dx])
    ax.set_ylim(root.min_vals[dy], root.max_vals[dy])
    names = tree.feature_names_ or [f"x{dx}", f"x{dy}"]
    ax.set_xlabel(names[dx] if len(names) > dx else f"x{dx}")
    ax.set_ylabel(names[dy] if len(names) > dy else f"x{dy}")
    ax.figure.colorbar(plt.cm.ScalarMappable(norm=norm, cmap=colors), ax=ax, label="density")
    ax.set_title("Leaf densities")
    return ax
