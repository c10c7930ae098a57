"""
Canonical semantics for ProteoDiff.

This module is intentionally small and declarative:
  - Canonical method names accepted in the configuration
  - Default thresholds shared by analysis, plotting and exports
  - Canonical column names of the DEG tables

Implementation details live elsewhere (imputers, normalizers, pipelines).
"""

IMPUTATION_METHODS = ("knn", "floor")
NORMALIZATION_METHODS = ("vsn", "log2")

DEFAULT_SIGN_THRESHOLD = 0.05
DEFAULT_FC_THRESHOLD = 0.25
DEFAULT_CONFINT = 0.95

# Sample metadata column holding the (combined) group label
CONDITION = "CONDITION"

# Null markers recognised in input tables
NULL_VALUES = ["", "NA", "NaN", "nan", "NULL", "Filtered"]

# DEG table columns
COL_FEATURE_ID = "FEATURE_ID"
COL_LOG2FC = "log2FC"
COL_SE = "SE"
COL_CI_LOW = "CI_LOW"
COL_CI_HIGH = "CI_HIGH"
COL_AVG = "AVG_LOG2_INTENSITY"
COL_T_RAW = "T_RAW"
COL_P_RAW = "PVALUE_RAW"
COL_T = "T"
COL_P = "PVALUE"
COL_Q = "QVALUE"
COL_B = "B"
COL_REGULATION = "REGULATION"

STAT_COLUMNS = [
    COL_LOG2FC, COL_SE, COL_CI_LOW, COL_CI_HIGH, COL_AVG,
    COL_T_RAW, COL_P_RAW, COL_T, COL_P, COL_Q, COL_B, COL_REGULATION,
]
