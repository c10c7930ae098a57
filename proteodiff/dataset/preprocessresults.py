from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd


@dataclass
class PreprocessResults:
    raw: np.ndarray                     # features x samples, NaN = missing
    floor_filled: np.ndarray
    imputed: np.ndarray
    normalized: np.ndarray
    feature_ids: np.ndarray
    samples: List[str]
    imputation_method: str
    normalization_method: str
    missingness: Dict[str, Any]
    imputation_correlation: Optional[pd.DataFrame]   # <- only for knn
    mean_sd: Any                                      # MeanSdDiagnostic
    fallback_features: np.ndarray = field(default_factory=lambda: np.array([], dtype=int))
    fallback_samples: np.ndarray = field(default_factory=lambda: np.array([], dtype=int))
