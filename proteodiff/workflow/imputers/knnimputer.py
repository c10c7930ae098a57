import numpy as np
import sklearn.impute
from sklearn.base import BaseEstimator, TransformerMixin


class KNNFeatureImputer(BaseEstimator, TransformerMixin):
    """
    Feature-wise kNN imputation for (n_features, n_samples) intensity matrices.

    Rows are features: a missing X[feature, sample] is replaced by the unweighted
    mean of that sample's values in the k nearest features, where distances are
    NaN-aware Euclidean over the samples both features observed
    (sklearn.impute.KNNImputer with features as rows). No randomness is involved.

    Features for which kNN is infeasible get a deterministic fallback instead:
      - more than `rowmax` of their samples are missing, or
      - one of their missing samples has fewer than `n_neighbors` donor features.
    Fallback values are the observed mean of the sample column ("column_mean")
    or half the global minimum ("floor"). Affected feature indices are exposed
    as `fallback_features_` after `transform`.

    Attributes:
        n_neighbors (int): Number of neighbouring features averaged.
        rowmax (float): Maximum missing fraction of a feature for kNN.
        colmax (float): Missing fraction above which a sample is reported.
        fallback (str): "column_mean" or "floor".
    """

    def __init__(self, n_neighbors=10, rowmax=0.5, colmax=0.8, fallback="column_mean"):
        self.n_neighbors = int(n_neighbors)
        self.rowmax = float(rowmax)
        self.colmax = float(colmax)
        self.fallback = fallback

    def fit(self, X, y=None):
        X = np.asarray(X, dtype=np.float64)                 # (n_features, n_samples)
        if self.fallback not in {"column_mean", "floor"}:
            raise ValueError(f"Invalid kNN fallback: {self.fallback}. Options: column_mean, floor")
        self.n_features_, self.n_samples_ = X.shape
        observed = ~np.isnan(X)

        finite = X[observed]
        floor = finite.min() / 2.0 if finite.size else np.nan

        counts = observed.sum(axis=0)
        sums = np.where(observed, X, 0.0).sum(axis=0)
        col_mean = np.full(self.n_samples_, floor)
        col_mean[counts > 0] = sums[counts > 0] / counts[counts > 0]

        self.fill_values_ = col_mean if self.fallback == "column_mean" else np.full(self.n_samples_, floor)
        self.col_missing_ = 1.0 - counts / max(self.n_features_, 1)
        self.sparse_samples_ = np.where(self.col_missing_ > self.colmax)[0]
        return self

    def transform(self, X):
        X = np.asarray(X, dtype=np.float64)
        if getattr(self, "n_features_", None) is None:
            self.fit(X)
        if X.shape != (self.n_features_, self.n_samples_):
            raise ValueError(f"X shape changed: expected {(self.n_features_, self.n_samples_)}, got {X.shape}")

        X_imp = X.copy()
        nan_mask = np.isnan(X)
        has_missing = nan_mask.any(axis=1)
        if not has_missing.any():
            self.fallback_features_ = np.array([], dtype=int)
            return X_imp

        row_missing = nan_mask.mean(axis=1)
        pool = (row_missing <= self.rowmax) & ~nan_mask.all(axis=1)

        # donors for a sample = pooled features observed in that sample
        donors = (~nan_mask & pool[:, None]).sum(axis=0)
        short_cols = donors < self.n_neighbors
        short_rows = (nan_mask & short_cols[None, :]).any(axis=1)

        infeasible = has_missing & (~pool | short_rows)
        feasible = has_missing & ~infeasible

        if feasible.any():
            knn = sklearn.impute.KNNImputer(
                n_neighbors=self.n_neighbors,
                weights="uniform",
                keep_empty_features=True,
            )
            knn.fit(X[pool])
            X_imp[feasible] = knn.transform(X[feasible])

        rows, cols = np.where(nan_mask & infeasible[:, None])
        if len(rows):
            X_imp[rows, cols] = self.fill_values_[cols]

        self.fallback_features_ = np.where(infeasible)[0]
        return X_imp

    def fit_transform(self, X, y=None):
        return self.fit(X, y).transform(X)
