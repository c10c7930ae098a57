"""B-statistic (log-odds of differential abundance), following limma's eBayes.

The moderated t of a truly changed feature is a scaled t whose extra variance
comes from a prior on the coefficient, var_prior. var_prior is estimated per
contrast from the largest |t| by matching them to the order statistics of a
two-component mixture (proportion `proportion` of changed features).
"""

import numpy as np
from scipy.stats import t as t_dist

from proteodiff.utils.utils import log_warning


def tmixture_vector(tstat, stdev_unscaled, df, proportion=0.01, v0_lim=None) -> float:
    """Estimate the prior coefficient variance for one contrast."""
    tstat = np.asarray(tstat, dtype=np.float64)
    stdu = np.asarray(stdev_unscaled, dtype=np.float64)
    df = np.broadcast_to(np.asarray(df, dtype=np.float64), tstat.shape)

    ok = np.isfinite(tstat) & np.isfinite(stdu) & np.isfinite(df) & (df > 0)
    tstat, stdu, df = np.abs(tstat[ok]), stdu[ok], df[ok].copy()
    n = tstat.size

    ntarget = int(np.ceil(proportion / 2 * n))
    if ntarget < 1:
        return np.nan
    # for very small ntarget, p at least the selected proportion so ptarget < 1
    p = max(ntarget / n, proportion)

    # method needs a common df: map smaller-df statistics to the same tail probability
    max_df = df.max()
    lower = df < max_df
    if lower.any():
        tail_logp = t_dist.logsf(tstat[lower], df[lower])
        # tails below the smallest normal double map to the largest finite quantile
        tail_p = np.maximum(np.exp(tail_logp), np.finfo(np.float64).tiny)
        tstat[lower] = t_dist.isf(tail_p, max_df)
        df[lower] = max_df

    order = np.argsort(-tstat, kind="mergesort")[:ntarget]
    tstat = tstat[order]
    v1 = stdu[order] ** 2

    r = np.arange(1, ntarget + 1)
    p0 = 2 * t_dist.sf(tstat, max_df)
    ptarget = ((r - 0.5) / n - (1 - p) * p0) / p
    v0 = np.zeros(ntarget)
    pos = ptarget > p0
    if pos.any():
        qtarget = t_dist.isf(ptarget[pos] / 2, max_df)
        v0[pos] = v1[pos] * ((tstat[pos] / qtarget) ** 2 - 1)
    if v0_lim is not None:
        v0 = np.clip(v0, v0_lim[0], v0_lim[1])
    return float(np.mean(v0))


def tmixture_matrix(tstat, stdev_unscaled, df, proportion=0.01, v0_lim=None) -> np.ndarray:
    return np.array([
        tmixture_vector(tstat[:, j], stdev_unscaled[:, j], df, proportion, v0_lim)
        for j in range(tstat.shape[1])
    ])


def b_statistic(
    t_mod: np.ndarray,
    stdev_unscaled: np.ndarray,
    df_total: np.ndarray,
    s2_prior: float,
    df_prior: float,
    proportion: float = 0.01,
    stdev_coef_lim=(0.1, 4.0),
) -> np.ndarray:
    """
    Log-odds that each feature is differentially abundant, per contrast.

    Parameters:
        t_mod: (n_features x n_contrasts) moderated t.
        stdev_unscaled: same shape, sqrt(c^T V c).
        df_total: (n_features,) total degrees of freedom.
        s2_prior, df_prior: variance prior from `fit_fdist`.
    """
    t_mod = np.asarray(t_mod, dtype=np.float64)
    stdu = np.asarray(stdev_unscaled, dtype=np.float64)
    df_total = np.asarray(df_total, dtype=np.float64)

    var_prior_lim = np.asarray(stdev_coef_lim, dtype=np.float64) ** 2 / s2_prior
    var_prior = tmixture_matrix(t_mod, stdu, df_total, proportion, var_prior_lim)
    if np.isnan(var_prior).any():
        log_warning("Estimation of var.prior failed; set to default value")
        var_prior[np.isnan(var_prior)] = 1.0 / s2_prior

    r = (stdu ** 2 + var_prior[None, :]) / stdu ** 2
    t2 = t_mod ** 2
    dft = df_total[:, None]

    with np.errstate(divide="ignore", invalid="ignore"):
        if df_prior > 1e6:
            kernel = t2 * (1 - 1 / r) / 2
        else:
            kernel = (1 + dft) / 2 * np.log((t2 + dft) / (t2 / r + dft))
        lods = np.log(proportion / (1 - proportion)) - np.log(r) / 2 + kernel
    return lods
