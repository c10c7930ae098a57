"""PCA of the normalized matrix.

Provides:
  - run_pca: sample scores, explained variance and feature loadings on the
             normalized features x samples matrix, with optional feature capping
             by variance.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA

from proteodiff.utils.utils import log_info, log_time


@dataclass(frozen=True)
class PcaResult:
    scores: pd.DataFrame            # samples x PCs
    explained_variance_ratio: np.ndarray
    loadings: pd.DataFrame          # features x PCs (features used in the fit)


def _pick_feature_indices(mat: np.ndarray, max_features: Optional[int]) -> np.ndarray:
    """Return feature indices (<= max_features) with the largest variance across samples."""
    n_features = mat.shape[0]
    if (max_features is None) or (n_features <= max_features):
        return np.arange(n_features)
    var = np.nanvar(mat, axis=1)
    idx = np.argsort(var, kind="mergesort")[::-1][:max_features]
    return np.sort(idx)  # keep ascending index order for stable slicing


@log_time("PCA")
def run_pca(
    mat: np.ndarray,
    samples: Sequence[str],
    feature_ids: Sequence[str],
    n_components: Optional[int] = None,
    max_features: Optional[int] = None,
) -> PcaResult:
    """
    PCA with samples as observations and features as variables (centered, not scaled).

    Features with any non-finite value or zero variance are left out.
    """
    mat = np.asarray(mat, dtype=np.float64)
    feature_ids = np.asarray(feature_ids).astype(str)

    keep = np.all(np.isfinite(mat), axis=1)
    keep[keep] = np.nanvar(mat[keep], axis=1) > 0
    mat, feature_ids = mat[keep], feature_ids[keep]

    idx = _pick_feature_indices(mat, max_features)
    mat, feature_ids = mat[idx], feature_ids[idx]

    n_samples, n_features = mat.shape[1], mat.shape[0]
    max_pcs = min(n_samples, n_features)
    if max_pcs < 1 or n_samples < 2:
        log_info("PCA skipped: not enough samples or variable features")
        return PcaResult(
            scores=pd.DataFrame(index=list(samples)),
            explained_variance_ratio=np.array([]),
            loadings=pd.DataFrame(index=feature_ids),
        )

    n_components = max_pcs if n_components is None else min(int(n_components), max_pcs)
    pca = PCA(n_components=n_components, svd_solver="full")
    scores = pca.fit_transform(mat.T)
    pcs = [f"PC{i + 1}" for i in range(n_components)]

    log_info("Explained variance: " + ", ".join(
        f"{pc}={100 * v:.1f}%" for pc, v in zip(pcs[:3], pca.explained_variance_ratio_[:3])))
    return PcaResult(
        scores=pd.DataFrame(scores, index=list(samples), columns=pcs),
        explained_variance_ratio=pca.explained_variance_ratio_,
        loadings=pd.DataFrame(pca.components_.T, index=feature_ids, columns=pcs),
    )
