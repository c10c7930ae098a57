import numpy as np
from sklearn.base import BaseEstimator, TransformerMixin

from proteodiff.utils.errors import NonPositiveValueError


def check_positive(X) -> np.ndarray:
    """Return X as float array, raising if any entry is non-finite or <= 0."""
    X = np.asarray(X, dtype=np.float64)
    bad = ~np.isfinite(X) | (X <= 0)
    if bad.any():
        n_nonfinite = int((~np.isfinite(X)).sum())
        n_nonpos = int(bad.sum()) - n_nonfinite
        raise NonPositiveValueError(
            f"{int(bad.sum())} entries cannot be log-transformed "
            f"(non-finite={n_nonfinite}, zero or negative={n_nonpos}). "
            "Choose a missing-value policy that yields a complete, positive matrix."
        )
    return X


class Log2Normalizer(BaseEstimator, TransformerMixin):
    """Elementwise log2 of a complete, strictly positive matrix."""

    def fit(self, X, y=None):
        check_positive(X)
        self.fallback_samples_ = np.array([], dtype=int)
        return self

    def transform(self, X):
        return np.log2(check_positive(X))

    def fit_transform(self, X, y=None):
        return self.fit(X).transform(X)
