import numpy as np
from scipy.special import digamma, polygamma

from proteodiff.utils.utils import log_warning


def squeeze_var_input_filter(s2: np.ndarray, df) -> tuple[np.ndarray, np.ndarray]:
    """Keep the (s2, df) pairs usable for the prior: finite, df > 0, s2 not negative."""
    s2 = np.asarray(s2, dtype=np.float64)
    # If df is scalar, broadcast it to shape of s2
    if np.isscalar(df) or np.ndim(df) == 0:
        df = np.full_like(s2, df, dtype=np.float64)
    df = np.asarray(df, dtype=np.float64)

    mask = np.isfinite(s2) & np.isfinite(df) & (df > 0) & (s2 > -1e-15)
    return np.maximum(s2[mask], 0.0), df[mask]


def trigamma_inverse(y: float, tol: float = 1e-8, max_iter: int = 50) -> float:
    """Solve trigamma(x) = y for x > 0 (Newton iterations on 1/trigamma, as limma does)."""
    if not np.isfinite(y) or y <= 0:
        return np.nan
    if y > 1e7:
        return 1.0 / np.sqrt(y)
    if y < 1e-6:
        return 1.0 / y

    x = 0.5 + 1.0 / y
    for _ in range(max_iter):
        tri = polygamma(1, x)
        dif = tri * (1.0 - tri / y) / polygamma(2, x)
        x = x + dif
        if -dif / x < tol:
            break
    return float(x)


def fit_fdist(s2: np.ndarray, df1) -> tuple[float, float]:
    """
    Moment estimation of the scaled F prior on the residual variances.

    s2 ~ s0^2 * F(df1, d0). Log variances are corrected for their expected
    mean (digamma) and variance (trigamma) given df1, then the remaining
    variance is matched to trigamma(d0/2).

    Returns:
        (s20, d0): prior variance and prior degrees of freedom. d0 is inf when
        the observed variances are no more dispersed than chance alone predicts.
    """
    x, d = squeeze_var_input_filter(s2, df1)
    n = x.size

    if n == 0:
        return np.nan, np.nan
    if n == 1:
        return float(x[0]), 0.0

    m = np.median(x)
    if m == 0:
        log_warning("More than half of residual variances are exactly zero: eBayes unreliable")
        m = 1.0
    # Avoid zeros like limma does
    x = np.maximum(x, 1e-5 * m)

    e = np.log(x) - digamma(d / 2.0) + np.log(d / 2.0)
    emean = float(np.mean(e))
    evar = float(np.var(e, ddof=1) - np.mean(polygamma(1, d / 2.0)))

    if evar > 0:
        d0 = 2.0 * trigamma_inverse(evar)
        s20 = float(np.exp(emean + digamma(d0 / 2.0) - np.log(d0 / 2.0)))
    else:
        d0 = np.inf
        s20 = float(np.exp(emean))

    return s20, d0
