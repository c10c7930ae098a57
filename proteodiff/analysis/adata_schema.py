"""
Centralized AnnData key schema for ProteoDiff.

This module is intentionally small and declarative: it defines the canonical
keys used in .uns / .varm / .obsm written by analysis/QC components.
"""

# -----------------------
# .layers (preprocessing stages)
# -----------------------
LAYER_RAW = "raw"
LAYER_FLOOR_FILLED = "floor_filled"
LAYER_IMPUTED = "imputed"
LAYER_NORMALIZED = "normalized"

# -----------------------
# .uns (analysis metadata)
# -----------------------
UNS_CONTRAST_NAMES = "contrast_names"
UNS_CONTRASTS = "contrasts"
UNS_PILOT_MODE = "pilot_study_mode"
UNS_THRESHOLDS = "thresholds"
UNS_PRIOR = "ebayes_prior"
UNS_DIAGNOSTICS = "diagnostics"
UNS_SUMMARY = "summary"
UNS_PCA = "pca"

# -----------------------
# .varm (analysis outputs, n_features x n_contrasts)
# -----------------------
VARM_LOG2FC = "log2fc"
VARM_SE = "se_ebayes"
VARM_CI_LOW = "ci_low"
VARM_CI_HIGH = "ci_high"
VARM_T_RAW = "t_raw"
VARM_P_RAW = "p_raw"
VARM_T_EBAYES = "t_ebayes"
VARM_P_EBAYES = "p_ebayes"
VARM_Q_EBAYES = "q_ebayes"
VARM_B = "b_statistic"

# -----------------------
# .obsm (sample embeddings)
# -----------------------
OBSM_PCA = "X_pca"
