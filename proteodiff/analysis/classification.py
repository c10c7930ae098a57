from enum import Enum
from typing import Dict, Mapping

import numpy as np
import pandas as pd

from proteodiff.utils.semantics import (
    COL_LOG2FC, COL_Q, COL_REGULATION, DEFAULT_FC_THRESHOLD, DEFAULT_SIGN_THRESHOLD,
)


class Regulation(str, Enum):
    UP = "up"
    DOWN = "down"
    NOT_SIGNIFICANT = "not_significant"


def classify(
    q: np.ndarray,
    log2fc: np.ndarray,
    q_threshold: float = DEFAULT_SIGN_THRESHOLD,
    fc_threshold: float = DEFAULT_FC_THRESHOLD,
) -> np.ndarray:
    """
    Label each feature UP, DOWN or NOT_SIGNIFICANT.

    UP needs q < q_threshold and log2fc > fc_threshold, DOWN needs
    q < q_threshold and log2fc < -fc_threshold. NaN in either input is
    NOT_SIGNIFICANT.

    Returns:
        object array of `Regulation`, same shape as the inputs.
    """
    q = np.asarray(q, dtype=np.float64)
    lfc = np.asarray(log2fc, dtype=np.float64)
    if q.shape != lfc.shape:
        raise ValueError(f"q {q.shape} and log2fc {lfc.shape} must have the same shape")

    with np.errstate(invalid="ignore"):
        sig = q < q_threshold
        up = sig & (lfc > fc_threshold)
        down = sig & (lfc < -fc_threshold)

    out = np.empty(q.shape, dtype=object)
    out.fill(Regulation.NOT_SIGNIFICANT)
    out[up] = Regulation.UP
    out[down] = Regulation.DOWN
    return out


def summarize(
    tables: Mapping[str, pd.DataFrame],
    q_threshold: float = DEFAULT_SIGN_THRESHOLD,
    fc_threshold: float = DEFAULT_FC_THRESHOLD,
) -> pd.DataFrame:
    """Counts per category per contrast, with the thresholds used."""
    rows = []
    for name, df in tables.items():
        labels = df[COL_REGULATION].astype(str)
        counts: Dict[str, int] = {r.value: int((labels == r.value).sum()) for r in Regulation}
        rows.append({
            "CONTRAST": name,
            "N_FEATURES": len(df),
            "N_TESTED": int(df[COL_Q].notna().sum()),
            "N_UP": counts[Regulation.UP.value],
            "N_DOWN": counts[Regulation.DOWN.value],
            "N_NOT_SIGNIFICANT": counts[Regulation.NOT_SIGNIFICANT.value],
            "Q_THRESHOLD": q_threshold,
            "LOG2FC_THRESHOLD": fc_threshold,
            "MAX_ABS_LOG2FC": float(np.nanmax(np.abs(df[COL_LOG2FC]))) if df[COL_LOG2FC].notna().any() else np.nan,
        })
    return pd.DataFrame(rows)
