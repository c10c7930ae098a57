"""Shared test fixtures for ProteoDiff tests."""

import numpy as np
import pandas as pd
import pytest

# 6 features x 4 samples on log2 scale: A = (s1, s2), B = (s3, s4).
# Feature 1 is up in A, feature 2 down, features 3-6 differ by < 0.1.
E2E_LOG2 = np.array([
    [14.0, 14.1, 10.0, 10.2],
    [10.1, 10.0, 14.2, 14.0],
    [12.0, 12.2, 12.1, 12.05],
    [11.0, 11.1, 11.05, 11.0],
    [13.0, 12.9, 13.1, 12.95],
    [9.0, 9.1, 9.1, 9.0],
])
E2E_SAMPLES = ["s1", "s2", "s3", "s4"]
E2E_GROUPS = ["A", "A", "B", "B"]
E2E_FEATURES = [f"P{i}" for i in range(1, 7)]


def write_tables(tmp_path, log2_values, samples, groups, features, extra_meta=None, missing=None):
    """Write intensities.tsv (linear scale) and samples.tsv; return their paths."""
    raw = np.power(2.0, np.asarray(log2_values, dtype=float))
    if missing is not None:
        for i, j in missing:
            raw[i, j] = np.nan
    df = pd.DataFrame(raw, columns=samples)
    df.insert(0, "INDEX", features)
    df.insert(1, "GENE_NAMES", [f"GENE_{f}" for f in features])
    intensities = tmp_path / "intensities.tsv"
    df.to_csv(intensities, sep="\t", index=False, na_rep="NA")

    meta = pd.DataFrame({"Sample": samples, "Treatment": groups})
    if extra_meta is not None:
        meta = pd.concat([meta, pd.DataFrame(extra_meta)], ignore_index=True)
    metadata = tmp_path / "samples.tsv"
    meta.to_csv(metadata, sep="\t", index=False)
    return intensities, metadata


def make_config(intensities, metadata, out_dir, imputation="floor", normalization="log2", **analysis):
    cfg = {
        "dataset": {
            "input_file": str(intensities),
            "metadata_file": str(metadata),
            "feature_id_column": "INDEX",
            "annotation_columns": ["GENE_NAMES"],
            "sample_id_column": "Sample",
            "group_columns": ["Treatment"],
            "levels": ["A", "B"],
        },
        "preprocessing": {
            "imputation": {"method": imputation, "knn_k": 2},
            "normalization": {"method": normalization},
        },
        "analysis": {
            "contrasts": ["A_vs_B"],
            "sign_threshold": 0.05,
            "fc_threshold": 0.25,
            "export_plot": False,
            "exports": {
                "path_table": str(out_dir / "res"),
                "path_pdf": str(out_dir / "report.pdf"),
                "path_h5ad": str(out_dir / "res.h5ad"),
            },
        },
    }
    cfg["analysis"].update(analysis)
    return cfg


@pytest.fixture
def e2e_files(tmp_path):
    return write_tables(tmp_path, E2E_LOG2, E2E_SAMPLES, E2E_GROUPS, E2E_FEATURES)


@pytest.fixture
def e2e_config(tmp_path, e2e_files):
    intensities, metadata = e2e_files
    return make_config(intensities, metadata, tmp_path / "out")


@pytest.fixture
def lognormal_matrix():
    """60 features x 6 samples of linear-scale intensities with per-sample scaling."""
    np.random.seed(42)
    base = np.random.lognormal(mean=12, sigma=1.5, size=(60, 1))
    noise = np.random.lognormal(mean=0, sigma=0.1, size=(60, 6))
    scale = np.array([1.0, 1.3, 0.8, 1.1, 0.9, 1.2])
    return base * noise * scale


@pytest.fixture
def matrix_with_missing(lognormal_matrix):
    X = lognormal_matrix.copy()
    X[3, 1] = np.nan
    X[7, 4] = np.nan
    X[11, 0] = np.nan
    return X
