"""Weakest-link pruning and the cross-validated trainer."""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from joblib import Parallel, delayed

from .det import DensityEstimationTree
from .exceptions import DegenerateFold, DegenerateFoldWarning, InvalidConfiguration
from .metrics import heldout_squared_error
from .utils import check_leaf_sizes, ensure_numpy

logger = logging.getLogger(__name__)


@dataclass
class PruneStep:
    """One level of an alpha-sequence."""

    alpha: float
    n_leaves: int
    integrated_squared_density: float
    loo_error: float


def alpha_sequence(tree: DensityEstimationTree) -> List[PruneStep]:
    """Prune ``tree`` in place down to its root, recording every level.

    The first step is the tree as given at alpha 0; each further step
    collapses all subtrees whose cost does not exceed its alpha.
    """
    steps = [_snapshot(tree, 0.0)]
    alpha = tree.next_alpha_
    while tree.n_leaves > 1:
        next_alpha = tree.prune_and_update(alpha)
        steps.append(_snapshot(tree, alpha))
        alpha = next_alpha
    return steps


def _snapshot(tree: DensityEstimationTree, alpha: float) -> PruneStep:
    return PruneStep(
        alpha=float(alpha),
        n_leaves=tree.n_leaves,
        integrated_squared_density=tree.integrated_squared_density(),
        loo_error=tree.loo_error(),
    )


def prune_to_alpha(tree: DensityEstimationTree, alpha: float) -> DensityEstimationTree:
    """Apply every weakest link with cost <= alpha."""
    while tree.n_leaves > 1 and tree.next_alpha_ <= alpha:
        tree.prune_and_update(tree.next_alpha_)
    return tree


def split_folds(n_points: int, folds: int, shuffle: bool = False,
                random_state: Optional[int] = None) -> List[np.ndarray]:
    """Row indices of each fold: contiguous near-equal blocks, optionally shuffled first."""
    indices = np.arange(n_points, dtype=int)
    if shuffle:
        np.random.default_rng(random_state).shuffle(indices)
    return np.array_split(indices, folds)


def evaluate_fold(
    train: np.ndarray,
    test: np.ndarray,
    alphas: Sequence[float],
    max_leaf_size: int,
    min_leaf_size: int,
    use_volume_reg: bool,
) -> Optional[np.ndarray]:
    """Held-out error of a tree grown on ``train`` at every alpha, in increasing order.

    Returns None when either part of the fold is empty.
    """
    if test.shape[0] == 0 or train.shape[0] == 0:
        return None

    tree = DensityEstimationTree(max_leaf_size, min_leaf_size, use_volume_reg).fit(train)
    errors = np.empty(len(alphas), dtype=float)
    for i, alpha in enumerate(alphas):
        prune_to_alpha(tree, alpha)
        errors[i] = heldout_squared_error(tree.integrated_squared_density(), tree.density(test))
    return errors


def aggregate_fold_errors(fold_errors: Sequence[Optional[np.ndarray]]) -> np.ndarray:
    """Average per-alpha errors over the folds that could be evaluated."""
    usable = []
    for fold, errors in enumerate(fold_errors):
        if errors is None:
            logger.warning("Fold %d has no points; skipping it.", fold)
            warnings.warn(f"Cross-validation fold {fold} has no points and was skipped.",
                          DegenerateFoldWarning, stacklevel=2)
            continue
        usable.append(errors)
    if not usable:
        raise DegenerateFold("No cross-validation fold could be evaluated.")
    return np.mean(np.vstack(usable), axis=0)


def _check_config(n_points: int, folds: int, max_leaf_size: int, min_leaf_size: int) -> None:
    check_leaf_sizes(max_leaf_size, min_leaf_size)
    try:
        valid = int(folds) == folds and folds >= 1
    except (TypeError, ValueError, OverflowError):
        valid = False
    if not valid:
        raise InvalidConfiguration(f"folds must be a positive integer, got {folds!r}")
    if folds > n_points:
        raise InvalidConfiguration(f"folds ({folds}) exceeds the number of points ({n_points})")


def trainer(
    dataset,
    folds: int = 10,
    use_volume_reg: bool = False,
    max_leaf_size: int = 10,
    min_leaf_size: int = 5,
    unpruned_tree_output: Optional[str] = None,
    skip_pruning: bool = False,
    shuffle: bool = False,
    random_state: Optional[int] = None,
    n_jobs: Optional[int] = None,
) -> DensityEstimationTree:
    """Train a density estimation tree pruned to the cross-validated optimum.

    Parameters
    ----------
    dataset : array-like of shape (n_samples, n_features)
        Training points. The caller's buffer is left untouched.
    folds : int, default=10
        Number of cross-validation folds; ``1`` disables cross-validation and
        ``n_samples`` gives leave-one-out.
    use_volume_reg : bool, default=False
        Charge small leaves more during pruning (see DensityEstimationTree).
    max_leaf_size, min_leaf_size : int
        Leaf size limits for every tree grown.
    unpruned_tree_output : str, optional
        Path to write the unpruned full-data tree to, as JSON.
    skip_pruning : bool, default=False
        With ``folds == 1``, return the maximal tree as is.
    shuffle : bool, default=False
        Shuffle rows before forming folds.
    random_state : int, optional
        Seed for the shuffle.
    n_jobs : int, optional
        joblib worker count for the folds; None runs them sequentially.
    """
    data, feature_names = ensure_numpy(dataset)
    n_points = data.shape[0]
    _check_config(n_points, folds, max_leaf_size, min_leaf_size)
    folds = int(folds)

    def grow() -> DensityEstimationTree:
        model = DensityEstimationTree(max_leaf_size, min_leaf_size, use_volume_reg)
        return model.fit(data, feature_names=feature_names)

    tree = grow()
    logger.info("%d leaf nodes in the tree using full dataset; minimum alpha: %g",
                tree.n_leaves, tree.next_alpha_)

    if unpruned_tree_output:
        tree.to_json(unpruned_tree_output)
        logger.info("Unpruned tree written to '%s'.", unpruned_tree_output)

    if folds == 1 and skip_pruning:
        return tree

    sequence = alpha_sequence(tree)
    alphas = [step.alpha for step in sequence]
    logger.info("%d trees in the sequence; maximum alpha: %g", len(sequence), alphas[-1])

    if folds == 1:
        # No held-out data: use the closed-form leave-one-out estimate.
        errors = np.array([step.loo_error for step in sequence], dtype=float)
    else:
        fold_rows = split_folds(n_points, folds, shuffle, random_state)
        jobs = []
        for rows in fold_rows:
            mask = np.ones(n_points, dtype=bool)
            mask[rows] = False
            jobs.append(delayed(evaluate_fold)(
                data[mask], data[rows], alphas, max_leaf_size, min_leaf_size, use_volume_reg))
        fold_errors = Parallel(n_jobs=n_jobs)(jobs)
        for fold, fold_error in enumerate(fold_errors):
            if fold_error is not None:
                logger.debug("Fold %d held-out errors: %s", fold, fold_error)
        errors = aggregate_fold_errors(fold_errors)

    # argmin keeps the first minimum, i.e. the least pruned tree on ties.
    if np.all(np.isnan(errors)):
        best = 0
    else:
        best = int(np.nanargmin(errors))
    optimal_alpha = alphas[best]
    logger.info("Optimal alpha: %g", optimal_alpha)

    tree = prune_to_alpha(grow(), optimal_alpha)
    logger.info("%d leaf nodes in the optimally pruned tree; optimal alpha: %g",
                tree.n_leaves, optimal_alpha)

    tree.alpha_sequence_ = sequence
    tree.cv_errors_ = errors
    tree.optimal_alpha_ = optimal_alpha
    return tree
