from typing import Any


def get_imputer(**kwargs) -> Any:
    """
    Returns an imputer instance based on the given method.

    Valid methods:
        - "knn": KNNFeatureImputer (feature-wise kNN, deterministic fallback).
        - "floor": FloorImputer (global min / 2).

    kwargs are passed to the imputer constructors.
    """
    method = kwargs.pop("method", None)

    if method == "knn":
        from proteodiff.workflow.imputers.knnimputer import KNNFeatureImputer
        return KNNFeatureImputer(
            n_neighbors=kwargs.get("knn_k", 10),
            rowmax=kwargs.get("rowmax", 0.5),
            colmax=kwargs.get("colmax", 0.8),
            fallback=kwargs.get("fallback", "column_mean"),
        )
    elif method == "floor":
        from proteodiff.workflow.imputers.floor_imputer import FloorImputer
        return FloorImputer(divisor=kwargs.get("floor_divisor", 2.0))
    else:
        raise ValueError(f"Invalid imputation method: {method}. And one is needed...\n"
                           "Options: knn, floor")
