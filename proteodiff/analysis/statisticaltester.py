from typing import Dict, List, Union

import numpy as np
from scipy.stats import t as t_dist

from proteodiff.analysis.ebayes_moderator import EbayesModerator
from proteodiff.analysis.stats_ops import raw_stats_from_fit
from proteodiff.analysis.tmixture import b_statistic
from proteodiff.utils.semantics import DEFAULT_CONFINT
from proteodiff.utils.utils import log_time, log_warning


class StatisticalTester:
    """
    Perform statistical testing for differential abundance contrasts.

    Computes raw and moderated t-statistics, p-values, confidence intervals and
    B-statistics for each contrast. Multiple-testing correction is done
    downstream, per contrast.
    """

    def __init__(
        self,
        log2fc: np.ndarray,
        stdev_unscaled: np.ndarray,
        residual_variance: np.ndarray,
        df_residual: Union[np.ndarray, float],
        contrast_names: List[str],
        confint: float = DEFAULT_CONFINT,
        proportion: float = 0.01,
    ) -> None:
        """
        Initialize the StatisticalTester.

        Args:
            log2fc: Array of log2 fold-changes (n_features x n_contrasts).
            stdev_unscaled: sqrt(c^T V c), same shape as log2fc.
            residual_variance: s^2 per feature (NaN where df is 0).
            df_residual: Residual degrees of freedom, scalar or array of length n_features.
            contrast_names: Names of each contrast.
            confint: Confidence level of the log2FC interval.
            proportion: Assumed proportion of changed features for the B-statistic.
        """
        self.log2fc = np.asarray(log2fc, dtype=np.float64)
        self.stdu = np.asarray(stdev_unscaled, dtype=np.float64)
        self.sigma2 = np.asarray(residual_variance, dtype=np.float64)
        self.df_residual = np.broadcast_to(
            np.asarray(df_residual, dtype=np.float64), self.sigma2.shape).copy()
        self.contrast_names = list(contrast_names)
        self.confint = float(confint)
        self.proportion = float(proportion)
        if not 0 < self.confint < 1:
            raise ValueError(f"confint must be in (0, 1), got {self.confint}")

        self.pilot_mode = not np.any(self.df_residual > 0)
        self.moderator = None

    def _nan(self) -> np.ndarray:
        return np.full_like(self.log2fc, np.nan)

    @log_time("Compute statistics")
    def compute(self) -> Dict[str, np.ndarray]:
        """
        Returns:
            A dict of (n_features x n_contrasts) arrays:
              log2fc, se, ci_low, ci_high, t_raw, p_raw, t, p, b
            plus s2_post, df_total (n_features,) and s2_prior, df_prior.
        """
        if self.pilot_mode:
            log_warning("Pilot mode: no residual degrees of freedom (single sample per group); "
                        "only log2FC is reported")
            nan = self._nan()
            return {
                "log2fc": self.log2fc, "se": nan, "ci_low": nan.copy(), "ci_high": nan.copy(),
                "t_raw": nan.copy(), "p_raw": nan.copy(), "t": nan.copy(), "p": nan.copy(), "b": nan.copy(),
                "s2_post": np.full(self.sigma2.shape, np.nan),
                "df_total": np.zeros(self.sigma2.shape),
                "s2_prior": np.nan, "df_prior": np.nan,
            }

        # Raw statistics
        sigma = np.sqrt(self.sigma2)
        _, t_raw, p_raw = raw_stats_from_fit(
            coefs=self.log2fc, stdu=self.stdu, sigma=sigma, df_res=self.df_residual)

        # Moderated statistics
        self.moderator = EbayesModerator(self.sigma2, self.df_residual)
        d0, s0 = self.moderator.fit()
        s2_post, df_total = self.moderator.moderate()

        se = self.stdu * np.sqrt(s2_post)[:, None]
        valid = np.isfinite(se) & (se > 0) & (df_total[:, None] > 0)
        t_mod, p_mod = self._nan(), self._nan()
        dft = np.broadcast_to(df_total[:, None], self.log2fc.shape)
        with np.errstate(divide="ignore", invalid="ignore"):
            t_mod[valid] = self.log2fc[valid] / se[valid]
        valid &= np.isfinite(t_mod)
        p_mod[valid] = 2 * t_dist.sf(np.abs(t_mod[valid]), dft[valid])

        se = np.where(valid, se, np.nan)
        q = np.full_like(se, np.nan)
        q[valid] = t_dist.ppf((1 + self.confint) / 2, dft[valid])
        ci_low = self.log2fc - q * se
        ci_high = self.log2fc + q * se

        b = self._nan()
        if np.isfinite(s0) and s0 > 0 and valid.any():
            b = b_statistic(t_mod, self.stdu, df_total, s2_prior=s0, df_prior=d0,
                            proportion=self.proportion)
            b = np.where(valid, b, np.nan)

        return {
            "log2fc": self.log2fc, "se": se, "ci_low": ci_low, "ci_high": ci_high,
            "t_raw": t_raw, "p_raw": p_raw, "t": t_mod, "p": p_mod, "b": b,
            "s2_post": s2_post, "df_total": df_total,
            "s2_prior": s0, "df_prior": d0,
        }
