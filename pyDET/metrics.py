from __future__ import annotations

import numpy as np


def error_reduction(parent_lne: float, left_lne: float, right_lne: float) -> float:
    """Drop in R(t) = -(n/N)^2 / V achieved by a split, from log negative errors."""
    return float(np.exp(left_lne) + np.exp(right_lne) - np.exp(parent_lne))


def heldout_squared_error(integral_f2: float, heldout_densities: np.ndarray) -> float:
    """Held-out ISE estimate: int f^2 - 2 * mean f(x) over unseen points."""
    heldout_densities = np.asarray(heldout_densities, dtype=float)
    if heldout_densities.size == 0:
        return float("nan")
    return float(integral_f2 - 2.0 * np.mean(heldout_densities))


def leave_one_out_error(counts: np.ndarray, log_volumes: np.ndarray, n_total: int) -> float:
    """Closed-form leave-one-out ISE estimate of a piecewise constant density.

    Removing a point from its own leaf gives f_{-i}(x_i) = (n - 1) / ((N - 1) V),
    so the estimate is sum over leaves of ((n/N)^2 - 2 n (n - 1) / (N (N - 1))) / V.
    """
    if n_total < 2:
        return float("nan")
    counts = np.asarray(counts, dtype=float)
    inv_vol = np.exp(-np.asarray(log_volumes, dtype=float))
    n = float(n_total)
    terms = (counts / n) ** 2 - 2.0 * counts * (counts - 1.0) / (n * (n - 1.0))
    return float(np.sum(terms * inv_vol))
