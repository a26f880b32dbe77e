from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .exceptions import InvalidConfiguration


def ensure_numpy(X, copy: bool = False) -> Tuple[np.ndarray, List[str]]:
    """Convert a dataset to a contiguous float matrix and extract feature names."""
    feature_names: List[str] = []
    if hasattr(X, "to_numpy"):
        feature_names = [str(c) for c in getattr(X, "columns", [])]
        X_arr = X.to_numpy(dtype=float, copy=copy)
    else:
        X_arr = np.array(X, dtype=float, copy=True) if copy else np.asarray(X, dtype=float)
    if X_arr.ndim == 1:
        X_arr = X_arr.reshape(-1, 1)
    if X_arr.ndim != 2:
        raise InvalidConfiguration("X must be 2D (n_samples, n_features).")
    if X_arr.shape[0] == 0 or X_arr.shape[1] == 0:
        raise InvalidConfiguration("Dataset is empty.")
    if not np.all(np.isfinite(X_arr)):
        raise InvalidConfiguration("X contains NaN or Inf")
    if not feature_names:
        feature_names = [f"x{i}" for i in range(X_arr.shape[1])]
    return np.ascontiguousarray(X_arr, dtype=float), feature_names


def check_leaf_sizes(max_leaf_size: int, min_leaf_size: int) -> None:
    if int(min_leaf_size) < 1:
        raise InvalidConfiguration(f"min_leaf_size must be >= 1, got {min_leaf_size}")
    if int(max_leaf_size) < 1:
        raise InvalidConfiguration(f"max_leaf_size must be >= 1, got {max_leaf_size}")
    if min_leaf_size > max_leaf_size:
        raise InvalidConfiguration(
            f"min_leaf_size ({min_leaf_size}) must not exceed max_leaf_size ({max_leaf_size})"
        )


def log_volume(min_vals: np.ndarray, max_vals: np.ndarray, active: np.ndarray) -> float:
    """Log hyper-volume of a box over the active dimensions only."""
    if not np.any(active):
        return 0.0
    return float(np.sum(np.log(max_vals[active] - min_vals[active])))


def log_neg_error(n_points, n_total: int, log_vol):
    """log(-R(t)) for R(t) = -(n / N)^2 / V."""
    with np.errstate(divide="ignore"):
        return 2.0 * (np.log(n_points) - np.log(n_total)) - log_vol


@dataclass
class SplitCandidate:
    dim: int
    split_value: float
    left_n: int
    right_n: int
    left_log_volume: float
    right_log_volume: float
    left_log_neg_error: float
    right_log_neg_error: float

    @property
    def children_log_neg_error(self) -> float:
        return float(np.logaddexp(self.left_log_neg_error, self.right_log_neg_error))


def find_best_split(
    points: np.ndarray,
    min_vals: np.ndarray,
    max_vals: np.ndarray,
    node_log_volume: float,
    node_log_neg_error: float,
    active: np.ndarray,
    n_total: int,
    min_leaf_size: int,
) -> Optional[SplitCandidate]:
    """Find the axis-aligned split that most reduces the density tree error.

    Candidates are midpoints between consecutive distinct values of each
    active dimension that keep ``min_leaf_size`` points on both sides. The
    winner maximizes the children's total negative error and must strictly
    beat the node's own.
    """
    n_samples = points.shape[0]
    if n_samples < 2 * min_leaf_size:
        return None

    log_n_total = np.log(n_total)
    best: Optional[SplitCandidate] = None

    for dim in np.flatnonzero(active):
        x_sorted = np.sort(points[:, dim], kind="mergesort")

        diff_mask = x_sorted[:-1] != x_sorted[1:]
        if not np.any(diff_mask):
            continue

        split_positions = np.nonzero(diff_mask)[0]
        left_n = split_positions + 1
        right_n = n_samples - left_n
        valid = (left_n >= min_leaf_size) & (right_n >= min_leaf_size)
        split_positions = split_positions[valid]
        if split_positions.size == 0:
            continue

        lower = x_sorted[split_positions]
        upper = x_sorted[split_positions + 1]
        split_values = 0.5 * (lower + upper)
        # Adjacent floats can round the midpoint onto the upper value.
        split_values = np.where(split_values >= upper, lower, split_values)
        inside = (split_values > min_vals[dim]) & (split_values < max_vals[dim])
        split_positions = split_positions[inside]
        split_values = split_values[inside]
        if split_positions.size == 0:
            continue

        left_n = (split_positions + 1).astype(float)
        right_n = n_samples - left_n

        rest = node_log_volume - np.log(max_vals[dim] - min_vals[dim])
        left_log_vol = rest + np.log(split_values - min_vals[dim])
        right_log_vol = rest + np.log(max_vals[dim] - split_values)

        left_lne = 2.0 * (np.log(left_n) - log_n_total) - left_log_vol
        right_lne = 2.0 * (np.log(right_n) - log_n_total) - right_log_vol
        children = np.logaddexp(left_lne, right_lne)

        best_idx = int(np.argmax(children))
        if children[best_idx] <= node_log_neg_error:
            continue

        candidate = SplitCandidate(
            dim=int(dim),
            split_value=float(split_values[best_idx]),
            left_n=int(left_n[best_idx]),
            right_n=int(right_n[best_idx]),
            left_log_volume=float(left_log_vol[best_idx]),
            right_log_volume=float(right_log_vol[best_idx]),
            left_log_neg_error=float(left_lne[best_idx]),
            right_log_neg_error=float(right_lne[best_idx]),
        )
        if best is None or candidate.children_log_neg_error > best.children_log_neg_error:
            best = candidate

    return best
