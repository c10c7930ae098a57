import numpy as np

from proteodiff.utils.utils import log_time


@log_time("Apply Contrasts")
def apply_contrasts(fit_results, contrast_matrix):
    """
    Applies contrast matrix to fitted model results.

    Parameters:
    - fit_results: output of LinearModelFitter.get_results()
    - contrast_matrix: shape (p x m) → p = design coefficients, m = contrasts

    Returns:
    - beta_contrasts: (n_features x m) log2FC
    - stdev_unscaled: (n_features x m) sqrt(c^T V_f c), V_f the feature's unscaled covariance
    """
    B = fit_results["coefficients"]      # (n_features x p)
    V = fit_results["cov_unscaled"]      # (n_features x p x p)
    C = np.asarray(contrast_matrix, dtype=np.float64)

    n_features, m = B.shape[0], C.shape[1]
    beta_contrasts = np.full((n_features, m), np.nan)
    stdev_unscaled = np.full((n_features, m), np.nan)

    for j in range(m):
        c = C[:, j]
        # only the levels in the contrast, so NaN from unobserved other groups stays out
        idx = np.nonzero(c)[0]
        cj = c[idx]
        beta_contrasts[:, j] = B[:, idx] @ cj
        Vj = V[:, idx][:, :, idx]                           # (n_features x k x k)
        var = np.einsum("i,fij,j->f", cj, Vj, cj)
        with np.errstate(invalid="ignore"):
            stdev_unscaled[:, j] = np.sqrt(var)

    return beta_contrasts, stdev_unscaled
