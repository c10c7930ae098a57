import numpy as np

from proteodiff.analysis.ebayes_prior import fit_fdist
from proteodiff.utils.utils import log_info, log_time


class EbayesModerator:
    def __init__(self, sigma2, df_residual):
        """
        Parameters:
        - sigma2: (n_features,) vector of residual variances (NaN where no df)
        - df_residual: scalar or array of degrees of freedom (per feature)
        """
        self.sigma2 = np.asarray(sigma2, dtype=np.float64)
        df = np.asarray(df_residual, dtype=np.float64)
        self.df_residual = np.broadcast_to(df, self.sigma2.shape).copy()
        self.d0 = None
        self.s0 = None   # prior variance s0^2
        self.df_total = None

    @log_time("Variance prior")
    def fit(self):
        s0, d0 = fit_fdist(self.sigma2, self.df_residual)
        self.s0 = s0
        self.d0 = d0
        log_info(f"Prior variance s0^2={s0:.4g}, prior df d0={d0:.4g}")
        return d0, s0

    def moderate(self):
        """
        Returns:
        - posterior variances (d0*s0^2 + d*s^2) / (d0 + d)
        - total degrees of freedom min(d0 + d, sum(d))
        """
        if self.s0 is None:
            self.fit()

        d = self.df_residual
        s2 = self.sigma2.copy()
        d0, s02 = self.d0, self.s0

        # zero variances carry no information about the feature's scale
        s2[s2 == 0] = s02
        d_ok = np.where(d > 0, d, 0.0)
        s2_ok = np.where(d > 0, s2, 0.0)

        if not np.isfinite(s02):
            s2_post = np.where(d > 0, s2, np.nan)
        elif np.isinf(d0):
            s2_post = np.full_like(s2, s02)
        else:
            with np.errstate(invalid="ignore"):
                s2_post = (d0 * s02 + d_ok * s2_ok) / (d0 + d_ok)

        df_pooled = float(np.sum(d_ok))
        df_total = np.minimum((d0 if np.isfinite(d0) else np.inf) + d_ok, df_pooled) \
            if np.isfinite(s02) else d_ok.copy()

        self.s2_post = s2_post
        self.df_total = df_total
        return s2_post, df_total
