import numpy as np
from pyDET import trainer

rng = np.random.default_rng(0)
X = np.vstack([rng.normal(size=(20000, 4)), rng.normal(3.0, 0.5, size=(5000, 4))])

tree = trainer(X, folds=5, max_leaf_size=40, min_leaf_size=20, n_jobs=-1)
print(tree.summary())
