from typing import Any


def get_normalizer(**kwargs) -> Any:
    """
    Returns a normalizer instance based on the given method.

    Valid methods:
        - "vsn": VSNNormalizer (arsinh calibration, log2 fallback).
        - "log2": Log2Normalizer.

    kwargs are passed to the normalizer constructors.
    """
    method = kwargs.pop("method", None)

    if method == "vsn":
        from proteodiff.workflow.normalizers.vsn import VSNNormalizer
        return VSNNormalizer(
            lts_quantile=kwargs.get("vsn_lts_quantile", 0.9),
            lts_iter=kwargs.get("vsn_lts_iter", 3),
            max_iter=kwargs.get("vsn_max_iter", 1000),
            min_samples=kwargs.get("vsn_min_samples", 2),
            min_features=kwargs.get("vsn_min_features", 42),
        )
    elif method == "log2":
        from proteodiff.workflow.normalizers.log_transform import Log2Normalizer
        return Log2Normalizer()
    else:
        raise ValueError(f"Invalid normalization method: {method}.\n"
                         "Options: vsn, log2")
