"""Variance-stabilizing normalization (VSN).

Model (Huber et al., 2002): for feature k and sample j,

    arsinh(a_j + b_j * y_kj) = mu_k + eps_kj,   eps_kj ~ N(0, sigma^2)

The per-sample calibration (a_j, b_j) is estimated by maximizing the profile
likelihood, in which mu_k and sigma^2 are replaced by their closed forms.
Robustness comes from least trimmed sum of squares: after each fit, features
whose residual sum of squares exceeds the `lts_quantile` are left out of the
next fit.

Output is on a generalized log2 scale, (arsinh(a_j + b_j y) - ln(2 b_ref)) / ln 2,
with b_ref the geometric mean of the b_j, so large intensities behave like log2.
"""

import warnings

import numpy as np
from scipy.optimize import minimize
from sklearn.base import BaseEstimator, TransformerMixin

from proteodiff.utils.errors import VSNConvergenceWarning
from proteodiff.workflow.normalizers.log_transform import check_positive

_LN2 = np.log(2.0)


def _vsn_nll(theta: np.ndarray, Y: np.ndarray):
    """Negative profile log-likelihood and its gradient w.r.t. (a, log b)."""
    n, d = Y.shape
    a = theta[:d]
    logb = theta[d:]
    b = np.exp(logb)

    u = a + b * Y
    h = np.arcsinh(u)
    r = h - h.mean(axis=1, keepdims=True)
    s2 = np.sum(r * r) / (n * d)
    if not np.isfinite(s2) or s2 <= 0:
        return np.inf, np.zeros_like(theta)

    one_u2 = 1.0 + u * u
    nll = 0.5 * n * d * np.log(s2) - n * np.sum(logb) + 0.5 * np.sum(np.log(one_u2))

    # rows of r sum to zero, so mu_k drops out of the gradient
    rw = r / np.sqrt(one_u2)
    by = b * Y
    grad_a = rw.sum(axis=0) / s2 + (u / one_u2).sum(axis=0)
    grad_logb = (rw * by).sum(axis=0) / s2 - n + (u * by / one_u2).sum(axis=0)
    return nll, np.concatenate([grad_a, grad_logb])


class VSNNormalizer(BaseEstimator, TransformerMixin):
    """
    Fit VSN calibration on a (n_features, n_samples) matrix and apply it.

    Recoverable failures fall back to log2 with a `VSNConvergenceWarning`:
      - too few samples/features for a stable fit -> whole matrix,
      - optimizer not converged -> whole matrix,
      - non-finite calibration for some samples -> those samples only.
    `fallback_samples_` lists the column indices transformed with log2.
    """

    def __init__(self, lts_quantile=0.9, lts_iter=3, max_iter=1000,
                 min_samples=2, min_features=42, grad_tol=1e-4):
        self.lts_quantile = float(lts_quantile)
        self.lts_iter = int(lts_iter)
        self.max_iter = int(max_iter)
        self.min_samples = int(min_samples)
        self.min_features = int(min_features)
        self.grad_tol = float(grad_tol)

    def _fallback(self, n_samples: int, reason: str) -> None:
        self.a_ = np.full(n_samples, np.nan)
        self.b_ = np.full(n_samples, np.nan)
        self.b_ref_ = np.nan
        self.fallback_samples_ = np.arange(n_samples)
        self.fallback_reason_ = reason
        warnings.warn(f"VSN fallback to log2 for all samples: {reason}", VSNConvergenceWarning, stacklevel=3)

    def fit(self, X, y=None):
        X = check_positive(X)
        n_features, n_samples = X.shape
        self.n_samples_ = n_samples
        self.converged_ = False
        self.fallback_reason_ = None
        self.n_iter_ = 0

        if n_samples < self.min_samples or n_features < self.min_features:
            self._fallback(n_samples, f"{n_features} features x {n_samples} samples is too small "
                                      f"(need >= {self.min_features} x {self.min_samples})")
            return self

        theta = np.concatenate([np.zeros(n_samples), -np.log(np.median(X, axis=0))])
        keep = np.ones(n_features, dtype=bool)
        res = None

        for _ in range(max(self.lts_iter, 1)):
            res = minimize(
                _vsn_nll, theta, args=(X[keep],), jac=True, method="L-BFGS-B",
                options={"maxiter": self.max_iter},
            )
            self.n_iter_ += int(res.nit)
            if not np.all(np.isfinite(res.x)):
                break
            theta = res.x

            h = np.arcsinh(theta[:n_samples] + np.exp(theta[n_samples:]) * X)
            rss = np.sum((h - h.mean(axis=1, keepdims=True)) ** 2, axis=1)
            keep = rss <= np.quantile(rss, self.lts_quantile)
            if keep.sum() < self.min_features:
                keep = np.ones(n_features, dtype=bool)

        n_used = int(keep.sum())
        small_grad = res is not None and np.all(np.isfinite(res.jac)) and \
            np.max(np.abs(res.jac)) <= self.grad_tol * n_used * n_samples
        self.converged_ = bool(res is not None and (res.success or small_grad) and np.isfinite(res.fun))
        if not self.converged_:
            msg = res.message if res is not None else "no optimizer run"
            self._fallback(n_samples, f"optimizer did not converge ({msg})")
            return self

        a = theta[:n_samples]
        b = np.exp(theta[n_samples:])
        with np.errstate(over="ignore", invalid="ignore"):
            h = np.arcsinh(a + b * X)
        ok = np.isfinite(a) & np.isfinite(b) & (b > 0) & np.all(np.isfinite(h), axis=0)

        if not ok.any():
            self._fallback(n_samples, "non-finite calibration for every sample")
            return self

        self.a_ = np.where(ok, a, np.nan)
        self.b_ = np.where(ok, b, np.nan)
        self.b_ref_ = float(np.exp(np.mean(np.log(b[ok]))))
        self.fallback_samples_ = np.where(~ok)[0]
        if len(self.fallback_samples_):
            self.fallback_reason_ = "non-finite calibration"
            warnings.warn(
                f"VSN fallback to log2 for samples {self.fallback_samples_.tolist()}: non-finite calibration",
                VSNConvergenceWarning, stacklevel=2,
            )
        return self

    def transform(self, X):
        X = check_positive(X)
        if X.shape[1] != self.n_samples_:
            raise ValueError(f"VSN was fitted on {self.n_samples_} samples, got {X.shape[1]}")

        out = np.log2(X)
        fitted = np.setdiff1d(np.arange(self.n_samples_), self.fallback_samples_)
        if len(fitted):
            u = self.a_[fitted] + self.b_[fitted] * X[:, fitted]
            out[:, fitted] = (np.arcsinh(u) - np.log(2.0 * self.b_ref_)) / _LN2
        return out

    def fit_transform(self, X, y=None):
        return self.fit(X).transform(X)
