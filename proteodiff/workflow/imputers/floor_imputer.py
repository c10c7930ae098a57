import numpy as np
from sklearn.base import BaseEstimator, TransformerMixin


class FloorImputer(BaseEstimator, TransformerMixin):
    """
    Deterministic floor replacement.

    The floor is half of the smallest finite value observed anywhere in the
    matrix, and it replaces every missing entry. The floor is global across
    features and samples, so per-feature detection limits are not modelled.
    Assumes X is on the linear intensity scale, shape = (n_features, n_samples).
    """

    def __init__(self, divisor=2.0):
        self.divisor = float(divisor)

    def fit(self, X, y=None):
        X = np.asarray(X, dtype=np.float64)
        finite = X[np.isfinite(X)]
        if finite.size == 0:
            raise ValueError("Floor replacement needs at least one finite value in the matrix.")
        self.min_observed_ = float(finite.min())
        self.floor_ = self.min_observed_ / self.divisor
        return self

    def transform(self, X):
        X = np.asarray(X, dtype=np.float64)
        X_imp = X.copy()
        X_imp[np.isnan(X_imp)] = self.floor_
        return X_imp

    def fit_transform(self, X, y=None):
        return self.fit(X).transform(X)
