from dataclasses import dataclass, field
from typing import Dict, Optional, Any
import numpy as np


@dataclass
class IntermediateResults:
    # Store matrices at various stages of preprocessing (features x samples)
    matrices: Dict[str, np.ndarray] = field(default_factory=dict)

    # Store normalization & imputation models
    models: Dict[str, Any] = field(default_factory=lambda: {"normalization": None, "imputation": None})

    # Metadata and diagnostics for each step
    metadata: Dict[str, Any] = field(default_factory=lambda: {
        "missingness": {},
        "normalization": {},
        "imputation": {}})

    # Sample names, in matrix column order
    columns: Optional[list] = None

    # Feature ids, in matrix row order
    index: Optional[np.ndarray] = None

    def set_columns_and_index(self, columns, index):
        """Set columns and index once, from the loaded matrix."""
        self.columns = [str(c) for c in columns]
        self.index = np.asarray(index).astype(str)

    def add_matrix(self, name: str, matrix: np.ndarray):
        """Add a stage matrix, frozen, with shape validation. Stages are never overwritten."""
        if name in self.matrices:
            raise ValueError(f"Matrix '{name}' already stored; stages are immutable.")
        if self.index is not None and matrix.shape[0] != len(self.index):
            raise ValueError(f"Matrix '{name}' has inconsistent row dimension.")
        if self.columns is not None and matrix.shape[1] != len(self.columns):
            raise ValueError(f"Matrix '{name}' has inconsistent column dimension.")
        matrix = np.array(matrix, dtype=np.float64, copy=True)
        matrix.setflags(write=False)
        self.matrices[name] = matrix

    def add_metadata(self, step: str, key: str, value: Any):
        """Store metadata like method names, fallbacks, diagnostics."""
        if step not in self.metadata:
            raise ValueError(f"step must be one of {sorted(self.metadata)}")
        self.metadata[step][key] = value

    def add_model(self, step: str, model: Any):
        """Add normalization or imputation model."""
        if step not in ["normalization", "imputation"]:
            raise ValueError("step must be 'normalization' or 'imputation'")
        self.models[step] = model
