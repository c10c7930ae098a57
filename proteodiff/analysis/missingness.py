from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class MissingnessResult:
    per_feature: pd.DataFrame   # features x groups, missing counts
    per_sample: pd.Series       # missing count per sample
    n_missing: int
    fraction_missing: float
    rule: str = "nan-is-missing"


def _missingness_counts(intensity_matrix_GxN: np.ndarray, conditions: Sequence[str]) -> dict:
    cond_arr = np.asarray(conditions, dtype=str)
    out = {}
    # first-seen order so columns follow the sample layout
    for cond in pd.unique(cond_arr):
        mask = cond_arr == cond
        out[cond] = np.isnan(intensity_matrix_GxN[:, mask]).sum(axis=1)
    return out


def compute_missingness(
    raw: np.ndarray,
    feature_ids: Sequence[str],
    samples: Sequence[str],
    conditions: Sequence[str],
) -> MissingnessResult:
    """Per-feature missing counts per group and per-sample missing counts of the raw matrix."""
    raw = np.asarray(raw, dtype=np.float64)
    nan_mask = np.isnan(raw)
    per_feature = pd.DataFrame(_missingness_counts(raw, conditions), index=list(feature_ids))
    per_sample = pd.Series(nan_mask.sum(axis=0), index=list(samples), name="N_MISSING")
    n_missing = int(nan_mask.sum())
    return MissingnessResult(
        per_feature=per_feature,
        per_sample=per_sample,
        n_missing=n_missing,
        fraction_missing=float(n_missing / raw.size) if raw.size else 0.0,
    )
