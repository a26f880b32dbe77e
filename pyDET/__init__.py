"""pyDET: density estimation trees.

Non-parametric multivariate density estimation by recursive axis-aligned
partitioning (Ram & Gray, 2011), with weakest-link pruning selected by
cross-validated integrated squared error.
"""

from .det import DensityEstimationTree, build_tree
from .exceptions import (
    DegenerateFold,
    DegenerateFoldWarning,
    DETError,
    InvalidConfiguration,
    OutOfRangeLabel,
    UnknownPathQuery,
)
from .pruning import PruneStep, alpha_sequence, prune_to_alpha, trainer
from .reporting import PathCacher, PathFormat, print_leaf_membership, print_variable_importance

__all__ = [
    "DensityEstimationTree",
    "build_tree",
    "trainer",
    "alpha_sequence",
    "prune_to_alpha",
    "PruneStep",
    "print_leaf_membership",
    "print_variable_importance",
    "PathCacher",
    "PathFormat",
    "DETError",
    "InvalidConfiguration",
    "OutOfRangeLabel",
    "UnknownPathQuery",
    "DegenerateFold",
    "DegenerateFoldWarning",
]
