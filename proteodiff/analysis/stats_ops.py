import numpy as np
from scipy.stats import t as t_dist
from statsmodels.stats.multitest import multipletests


def raw_stats_from_fit(
    *,
    coefs: np.ndarray,
    stdu: np.ndarray,
    sigma: np.ndarray,
    df_res: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Ordinary (unmoderated) statistics:
      se = stdu * sigma[:, None]
      t  = coefs / se
      p  = 2 * t.sf(|t|, df=df_res[:, None])
    Features without residual df or with zero SE get NaN.
    """
    df_res = np.asarray(df_res, dtype=np.float64)
    se = stdu * sigma[:, None]
    with np.errstate(divide="ignore", invalid="ignore"):
        t = coefs / se
    t[~np.isfinite(se) | (se == 0) | (df_res[:, None] <= 0)] = np.nan
    p = np.full_like(t, np.nan)
    ok = np.isfinite(t)
    p[ok] = 2 * t_dist.sf(np.abs(t[ok]), df=np.broadcast_to(df_res[:, None], t.shape)[ok])
    return se, t, p


def bh_qvalues_1d(p: np.ndarray) -> np.ndarray:
    """Benjamini-Hochberg q-values for one contrast. NaN p-values are left out of n and stay NaN."""
    p = np.asarray(p, dtype=np.float64)
    q = np.full_like(p, np.nan)
    ok = np.isfinite(p)
    if ok.any():
        q[ok] = multipletests(p[ok], method="fdr_bh")[1]
    return q


def bh_qvalues(p: np.ndarray) -> np.ndarray:
    """Benjamini-Hochberg q-values, applied per contrast/column."""
    if p.ndim != 2:
        raise ValueError(f"Expected 2D p-value array (n_features x n_contrasts), got shape {p.shape}")
    return np.column_stack([bh_qvalues_1d(p[:, j]) for j in range(p.shape[1])]) if p.shape[1] \
        else np.empty_like(p)
