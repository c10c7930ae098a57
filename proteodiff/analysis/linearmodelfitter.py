import numpy as np
from joblib import Parallel, delayed

from proteodiff.utils.utils import log_info, log_time


def _fit_observed(y: np.ndarray, X: np.ndarray):
    """
    OLS of one feature on its observed samples.

    Design columns (groups) with no observed sample are left out of the fit and
    get NaN coefficients and NaN rows/columns in the unscaled covariance.
    """
    p = X.shape[1]
    coef = np.full(p, np.nan)
    cov = np.full((p, p), np.nan)

    obs = np.isfinite(y)
    if not obs.any():
        return coef, cov, np.nan, 0

    Xo = X[obs]
    cols = np.where(np.abs(Xo).sum(axis=0) > 0)[0]
    Xo = Xo[:, cols]
    yo = y[obs]

    rank = np.linalg.matrix_rank(Xo)
    df = int(Xo.shape[0] - rank)
    xtx_inv = np.linalg.pinv(Xo.T @ Xo)
    beta = xtx_inv @ Xo.T @ yo

    coef[cols] = beta
    cov[np.ix_(cols, cols)] = xtx_inv
    if df > 0:
        resid = yo - Xo @ beta
        s2 = float(resid @ resid) / df
    else:
        s2 = np.nan
    return coef, cov, s2, df


class LinearModelFitter:
    def __init__(self, expression: np.ndarray, design_matrix: np.ndarray, n_jobs: int = 1):
        """
        Parameters:
        - expression: (n_features x n_samples) normalized matrix, NaN = missing
        - design_matrix: (n_samples x n_levels) one-hot matrix from DesignMatrixBuilder
        - n_jobs: joblib workers for features with missing values
        """
        self.Y = np.asarray(expression, dtype=np.float64)
        self.X = np.asarray(design_matrix, dtype=np.float64)
        self.n_jobs = n_jobs
        if self.Y.shape[1] != self.X.shape[0]:
            raise ValueError(f"Expression has {self.Y.shape[1]} samples but design has {self.X.shape[0]} rows.")
        self.coefficients = None
        self.residual_variance = None
        self.df_residual = None
        self.cov_unscaled = None
        self.xtx_inv = None  # (X^T X)^(-1) of the full design

    @log_time("Linear Regressions")
    def fit(self):
        """
        Fits OLS for all features.
        Complete rows are fitted in one vectorized pass; rows with missing values
        are fitted one by one on their observed samples.
        """
        X, Y = self.X, self.Y
        n_features, p = Y.shape[0], X.shape[1]

        self.xtx_inv = np.linalg.inv(X.T @ X)
        df_full = int(X.shape[0] - np.linalg.matrix_rank(X))

        coef = np.full((n_features, p), np.nan)
        s2 = np.full(n_features, np.nan)
        df = np.zeros(n_features, dtype=np.int64)
        cov = np.broadcast_to(self.xtx_inv, (n_features, p, p)).copy()

        complete = np.all(np.isfinite(Y), axis=1)
        if complete.any():
            Yc = Y[complete].T                          # (n_samples x n_complete)
            betas = self.xtx_inv @ X.T @ Yc             # (p x n_complete)
            coef[complete] = betas.T
            df[complete] = df_full
            if df_full > 0:
                resid = Yc - X @ betas
                s2[complete] = np.sum(resid ** 2, axis=0) / df_full

        incomplete = np.where(~complete)[0]
        if len(incomplete):
            log_info(f"{len(incomplete)} feature(s) with missing values fitted on observed samples")
            fits = Parallel(n_jobs=self.n_jobs)(
                delayed(_fit_observed)(Y[i], X) for i in incomplete
            )
            # joblib returns results in submission order
            for i, (c, v, s, d) in zip(incomplete, fits):
                coef[i], cov[i], s2[i], df[i] = c, v, s, d

        self.coefficients = coef
        self.residual_variance = s2
        self.df_residual = df
        self.cov_unscaled = cov
        return self

    def get_results(self) -> dict:
        """
        Returns a dictionary of results.
        """
        return {
            "coefficients": self.coefficients,
            "residual_variance": self.residual_variance,
            "df_residual": self.df_residual,
            "cov_unscaled": self.cov_unscaled,
            "xtx_inv": self.xtx_inv,
        }
