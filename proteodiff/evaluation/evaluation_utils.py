from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from scipy.stats import pearsonr, spearmanr


@dataclass(frozen=True)
class MeanSdDiagnostic:
    table: pd.DataFrame      # one row per feature, ordered by rank of mean
    rho: float               # Spearman correlation of running median SD vs rank
    span: float              # (max - min) / median of the running median
    trend_detected: bool


def mean_sd_trend(
    mat: np.ndarray,
    feature_ids: Optional[Sequence[str]] = None,
    window_fraction: float = 0.1,
    trend_rho: float = 0.8,
    trend_span: float = 0.5,
) -> MeanSdDiagnostic:
    """
    Running median of per-feature SD against the rank of per-feature mean.

    After a good variance-stabilizing transform the curve is flat. A trend is
    flagged when the curve is both monotone (|rho| >= trend_rho) and wide
    (relative span >= trend_span).

    Parameters:
        mat (np.ndarray): Normalized matrix (features x samples).
        feature_ids: Labels for the rows of `mat`.
        window_fraction (float): Running-median window as a fraction of features.
    """
    mat = np.asarray(mat, dtype=np.float64)
    feature_ids = np.asarray(feature_ids if feature_ids is not None else np.arange(mat.shape[0])).astype(str)

    with np.errstate(invalid="ignore"):
        mean = np.nanmean(mat, axis=1) if mat.shape[1] else np.full(mat.shape[0], np.nan)
        sd = np.nanstd(mat, axis=1, ddof=1) if mat.shape[1] > 1 else np.full(mat.shape[0], np.nan)

    valid = np.isfinite(mean) & np.isfinite(sd)
    order = np.argsort(mean[valid], kind="mergesort")
    n = int(valid.sum())

    window = max(3, int(round(window_fraction * n)))
    if window % 2 == 0:
        window += 1

    sd_sorted = sd[valid][order]
    running = pd.Series(sd_sorted).rolling(window, center=True, min_periods=1).median().to_numpy()

    table = pd.DataFrame({
        "FEATURE_ID": feature_ids[valid][order],
        "RANK": np.arange(1, n + 1),
        "MEAN": mean[valid][order],
        "SD": sd_sorted,
        "RUNNING_MEDIAN_SD": running,
    })

    if n < 3 or np.ptp(running) == 0:
        rho = 0.0
    else:
        rho, _ = spearmanr(table["RANK"], running)
        rho = float(rho)

    med = float(np.median(running)) if n else 0.0
    span = float(np.ptp(running) / med) if n and med > 0 else 0.0
    trend = bool(abs(rho) >= trend_rho and span >= trend_span)
    return MeanSdDiagnostic(table=table, rho=rho, span=span, trend_detected=trend)


def imputation_correlation(
    floor_filled: np.ndarray,
    imputed: np.ndarray,
    sample_ids: Sequence[str],
    log_scale: bool = True,
) -> pd.DataFrame:
    """
    Per-sample Pearson correlation between floor-replaced and imputed values.

    A well-behaved imputer leaves the bulk of each sample untouched and places
    imputed values near the low end, so r stays high (> 0.9).

    Returns:
        DataFrame indexed by sample with columns PEARSON_R and N_IMPUTED.
    """
    a = np.asarray(floor_filled, dtype=np.float64)
    b = np.asarray(imputed, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError(f"Shape mismatch: floor-filled {a.shape} vs imputed {b.shape}")
    if log_scale:
        with np.errstate(divide="ignore", invalid="ignore"):
            a, b = np.log2(a), np.log2(b)

    rows = []
    for j, sample in enumerate(sample_ids):
        x, y = a[:, j], b[:, j]
        ok = np.isfinite(x) & np.isfinite(y)
        n_imp = int(np.sum(x[ok] != y[ok]))
        if ok.sum() < 3 or np.ptp(x[ok]) == 0 or np.ptp(y[ok]) == 0:
            r = 1.0 if np.array_equal(x[ok], y[ok]) else np.nan
        else:
            r, _ = pearsonr(x[ok], y[ok])
        rows.append({"SAMPLE": sample, "PEARSON_R": float(r), "N_IMPUTED": n_imp})

    return pd.DataFrame(rows).set_index("SAMPLE")
