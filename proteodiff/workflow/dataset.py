import warnings
from copy import deepcopy
from typing import List, Sequence, Tuple

import anndata as ad
import numpy as np
import pandas as pd
import polars as pl

from proteodiff.analysis import adata_schema as K
from proteodiff.utils.errors import InputMisalignmentError
from proteodiff.utils.semantics import CONDITION, NULL_VALUES
from proteodiff.utils.utils import log_info, log_time
from proteodiff.workflow.preprocessing import Preprocessor

# Supress the ImplicitModificationWarning from AnnData
warnings.filterwarnings("ignore", category=UserWarning, message=".*Transforming to str index.*")


def _to_list(x) -> List[str]:
    if x is None:
        return []
    if isinstance(x, str):
        return [x.strip()] if x.strip() else []
    return [str(v).strip() for v in x if str(v).strip()]


def _duplicates(values: Sequence[str]) -> List[str]:
    s = pd.Series(list(values))
    return sorted(s[s.duplicated()].unique().tolist())


def align_samples(
    samples: Sequence[str],
    metadata: pd.DataFrame,
    sample_id_column: str,
) -> Tuple[pd.DataFrame, List[str]]:
    """
    Align sample metadata rows to the matrix columns.

    Every matrix sample needs exactly one metadata row. Metadata rows for samples
    that are not in the matrix are dropped and returned.

    Returns:
        (metadata indexed by sample in matrix order, dropped sample ids)
    """
    if sample_id_column not in metadata.columns:
        raise InputMisalignmentError(
            f"Sample id column '{sample_id_column}' not found in metadata "
            f"(columns: {list(metadata.columns)})")

    ids = metadata[sample_id_column].astype(str)
    dups = _duplicates(ids)
    if dups:
        raise InputMisalignmentError(f"Duplicate sample ids in metadata: {dups}")

    meta = metadata.assign(**{sample_id_column: ids}).set_index(sample_id_column)
    missing = [s for s in samples if s not in meta.index]
    if missing:
        raise InputMisalignmentError(
            f"{len(missing)} matrix sample(s) have no metadata row: {missing}")

    dropped = [s for s in meta.index if s not in set(samples)]
    return meta.loc[list(samples)], dropped


class Dataset:
    """The main class for loading the intensity matrix and metadata, preprocessing, and converting to AnnData."""

    def __init__(self, **kwargs):
        """
        Initialize the dataset object.

        Args:
            kwargs: dict with all the config elements
        """
        dataset_cfg = kwargs.get("dataset", {}) or {}
        self._dataset_cfg_original = deepcopy(dataset_cfg)

        self.file_path = dataset_cfg.get("input_file")
        self.metadata_path = dataset_cfg.get("metadata_file")
        if not self.file_path or not self.metadata_path:
            raise ValueError("dataset.input_file and dataset.metadata_file are both required.")

        self.feature_id_column = dataset_cfg.get("feature_id_column", "INDEX")
        self.annotation_columns = _to_list(dataset_cfg.get("annotation_columns"))
        self.sample_columns = _to_list(dataset_cfg.get("sample_columns"))
        self.sample_id_column = dataset_cfg.get("sample_id_column", "Sample")
        self.group_columns = _to_list(dataset_cfg.get("group_columns")) or [CONDITION]
        self.levels = _to_list(dataset_cfg.get("levels"))
        self.exclude_samples = set(_to_list(dataset_cfg.get("exclude_samples")))
        self.zero_is_missing = bool(dataset_cfg.get("zero_is_missing", False))

        self.preprocessor = Preprocessor(deepcopy(kwargs.get("preprocessing", {}) or {}))

        self._load_and_process()

    def _load_and_process(self):
        # Load data
        self.rawinput = self._load_rawdata(self.file_path)
        self.rawmeta = self._load_rawdata(self.metadata_path, all_strings=True)

        # Matrix, annotation and aligned sample metadata
        self._extract_matrix()
        self._align_metadata()

        # Apply preprocessing
        self.preprocessed_data = self._apply_preprocessing()

        # Convert to AnnData format
        self._convert_to_anndata()

    @log_time("Data Loading")
    def _load_rawdata(self, file_path: str, all_strings: bool = False) -> pl.DataFrame:
        """Load a CSV or TSV table with polars."""
        file_path = str(file_path)
        if not file_path.endswith((".csv", ".tsv", ".txt")):
            raise ValueError("Only CSV or TSV files are supported.")

        delimiter = "," if file_path.endswith(".csv") else "\t"
        df = pl.read_csv(
            file_path,
            separator=delimiter,
            infer_schema_length=0 if all_strings else 10000,
            null_values=NULL_VALUES,
        )
        log_info(f"{file_path}: {df.height} rows x {df.width} columns")
        return df

    def _resolve_sample_columns(self, df: pl.DataFrame) -> List[str]:
        id_col = self.feature_id_column
        if self.sample_columns:
            cols = self.sample_columns
        elif self.annotation_columns:
            cols = [c for c in df.columns if c != id_col and c not in self.annotation_columns]
        else:
            cols = [c for c, dt in df.schema.items() if c != id_col and dt.is_numeric()]

        absent = [c for c in cols if c not in df.columns]
        if absent:
            raise InputMisalignmentError(f"Sample column(s) not found in intensity table: {absent}")
        return cols

    @log_time("Matrix Extraction")
    def _extract_matrix(self) -> None:
        df = self.rawinput
        id_col = self.feature_id_column
        if id_col not in df.columns:
            raise InputMisalignmentError(f"Feature id column '{id_col}' not found in intensity table.")
        absent = [c for c in self.annotation_columns if c not in df.columns]
        if absent:
            raise InputMisalignmentError(f"Annotation column(s) not found in intensity table: {absent}")

        df = df.with_columns(pl.col(id_col).cast(pl.Utf8))
        if df.select(pl.col(id_col).null_count()).item():
            raise InputMisalignmentError(f"Feature id column '{id_col}' contains empty values.")
        dups = _duplicates(df.get_column(id_col).to_list())
        if dups:
            raise InputMisalignmentError(f"Duplicate feature ids: {dups[:10]}{' ...' if len(dups) > 10 else ''}")

        sample_cols = self._resolve_sample_columns(df)
        dups = _duplicates(sample_cols)
        if dups:
            raise InputMisalignmentError(f"Duplicate sample columns: {dups}")

        if self.exclude_samples:
            to_drop = [c for c in sample_cols if c in self.exclude_samples]
            unknown = sorted(self.exclude_samples - set(sample_cols))
            if unknown:
                log_info(f"Exclude samples: {len(unknown)} not found in data, ignored: {unknown}")
            sample_cols = [c for c in sample_cols if c not in self.exclude_samples]
            log_info(f"Exclude samples: dropped {len(to_drop)} sample(s)")

        if not sample_cols:
            raise InputMisalignmentError("No sample columns left in intensity table.")

        nulls_before = df.select(sample_cols).null_count().row(0)
        df = df.with_columns([pl.col(c).cast(pl.Float64, strict=False) for c in sample_cols])
        nulls_after = df.select(sample_cols).null_count().row(0)
        bad = [c for c, b, a in zip(sample_cols, nulls_before, nulls_after) if a > b]
        if bad:
            raise InputMisalignmentError(f"Non-numeric intensities in sample column(s): {bad}")

        if self.zero_is_missing:
            n_zero = int(sum(df.select([(pl.col(c) == 0).sum() for c in sample_cols]).row(0)))
            df = df.with_columns([
                pl.when(pl.col(c) == 0).then(None).otherwise(pl.col(c)).alias(c) for c in sample_cols
            ])
            log_info(f"zero_is_missing: {n_zero} zero intensities set to missing")

        self.samples = list(sample_cols)
        self.feature_ids = np.asarray(df.get_column(id_col).to_list(), dtype=str)
        self.raw_matrix = df.select(sample_cols).to_numpy().astype(np.float64)
        self.annotation = (
            df.select([id_col] + self.annotation_columns)
              .to_pandas()
              .set_index(id_col)
        )
        self.annotation.index = self.annotation.index.astype(str)
        log_info(f"Matrix: {len(self.feature_ids)} features x {len(self.samples)} samples")

    @log_time("Sample Alignment")
    def _align_metadata(self) -> None:
        meta_pd = self.rawmeta.to_pandas()
        absent = [c for c in self.group_columns if c not in meta_pd.columns]
        if absent:
            raise InputMisalignmentError(f"Group column(s) not found in metadata: {absent}")

        meta, dropped = align_samples(self.samples, meta_pd, self.sample_id_column)
        if dropped:
            log_info(f"Dropped {len(dropped)} metadata row(s) without matrix column: {dropped}")

        groups = meta[self.group_columns].astype(str)
        if meta[self.group_columns].isna().any().any():
            missing = meta.index[meta[self.group_columns].isna().any(axis=1)].tolist()
            raise InputMisalignmentError(f"Sample(s) without group label: {missing}")
        meta[CONDITION] = groups.agg("_".join, axis=1)
        meta.index.name = self.sample_id_column

        if not self.levels:
            self.levels = sorted(meta[CONDITION].unique().tolist())
        outside = meta.index[~meta[CONDITION].isin(self.levels)].tolist()
        if outside:
            labels = sorted(meta.loc[outside, CONDITION].unique().tolist())
            raise InputMisalignmentError(
                f"Sample(s) {outside} have group(s) {labels} outside the configured levels {list(self.levels)}"
            )
        self.sample_metadata = meta
        log_info(f"Groups: {meta[CONDITION].value_counts().sort_index().to_dict()}")

    @log_time("Data Processing")
    def _apply_preprocessing(self):
        return self.preprocessor.fit_transform(
            self.raw_matrix,
            self.feature_ids,
            self.samples,
            self.sample_metadata[CONDITION].tolist(),
        )

    @log_time("Conversion to AnnData")
    def _convert_to_anndata(self):
        """Convert the data to an AnnData object for downstream analysis."""
        pp = self.preprocessed_data

        obs = self.sample_metadata.copy()
        obs.index = obs.index.astype(str)
        obs = obs.astype(str)

        self.adata = ad.AnnData(
            X=np.array(pp.normalized.T),
            obs=obs,
            var=self.annotation.loc[list(pp.feature_ids)].astype(str),
        )

        self.adata.layers[K.LAYER_RAW] = np.array(pp.raw.T)
        self.adata.layers[K.LAYER_FLOOR_FILLED] = np.array(pp.floor_filled.T)
        self.adata.layers[K.LAYER_IMPUTED] = np.array(pp.imputed.T)
        self.adata.layers[K.LAYER_NORMALIZED] = np.array(pp.normalized.T)

        self.adata.uns["preprocessing"] = {
            "imputation": {k: v for k, v in self.preprocessor.imputation.items() if v is not None},
            "normalization": {k: v for k, v in self.preprocessor.normalization.items() if v is not None},
            "levels": list(self.levels),
            "group_columns": list(self.group_columns),
        }

        assert list(self.adata.var_names) == list(pp.feature_ids)

    def get_anndata(self) -> ad.AnnData:
        """Export the processed dataset as an AnnData object."""
        return self.adata
