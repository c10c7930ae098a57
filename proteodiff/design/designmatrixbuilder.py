from typing import Iterable, Optional, Sequence

import numpy as np
import pandas as pd
import patsy

from proteodiff.utils.errors import ContrastDefinitionError, InputMisalignmentError
from proteodiff.utils.semantics import CONDITION
from proteodiff.utils.utils import log_warning


class DesignMatrixBuilder:
    """
    One-hot (cell means) design for a single categorical factor.

    One column per level, in the configured level order, no intercept, so each
    coefficient is a group mean and a contrast is a difference of columns.
    """

    def __init__(
        self,
        sample_metadata: pd.DataFrame,
        levels: Sequence[str],
        group_column: str = CONDITION,
        required_levels: Optional[Iterable[str]] = None,
    ):
        self.meta = sample_metadata.copy()
        self.group_column = group_column
        self.levels = [str(l) for l in levels]
        self.required_levels = set(required_levels or [])
        self.formula: Optional[str] = None
        self.design_matrix: Optional[np.ndarray] = None
        self.design_info: Optional[patsy.DesignInfo] = None
        self.dropped_levels: list = []

    def build(self):
        group_col = self.group_column
        if group_col not in self.meta.columns:
            raise InputMisalignmentError(f"{group_col} not found in sample metadata.")

        groups = self.meta[group_col].astype(str)
        outside = sorted(set(groups) - set(self.levels))
        if outside:
            bad = self.meta.index[groups.isin(outside)].tolist()
            raise InputMisalignmentError(
                f"Sample(s) {bad} belong to group(s) {outside} that are not among levels {self.levels}")

        present = set(groups)
        empty = [l for l in self.levels if l not in present]
        needed = sorted(set(empty) & self.required_levels)
        if needed:
            raise ContrastDefinitionError(f"Contrast references group(s) without samples: {needed}")
        if empty:
            log_warning(f"Dropping level(s) without samples: {empty}")
        self.dropped_levels = empty
        self.levels = [l for l in self.levels if l in present]

        self.meta[group_col] = pd.Categorical(groups, categories=self.levels, ordered=False)
        self.formula = f"0 + C({group_col})"
        self.design_df = patsy.dmatrix(self.formula, self.meta, return_type="dataframe")

        self.design_matrix = self.design_df.to_numpy()
        self.design_info = self.design_df.design_info
        return self.design_matrix, self.design_info
