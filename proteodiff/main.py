from pathlib import Path

from proteodiff.analysis import adata_schema as K
from proteodiff.analysis.clustering import run_pca
from proteodiff.analysis.limma_pipeline import run_limma_pipeline
from proteodiff.export.de_exporter import DEExporter
from proteodiff.export.pdf_report_exporter import ReportPlotter
from proteodiff.utils.semantics import CONDITION
from proteodiff.utils.utils import log_time
from proteodiff.workflow.dataset import Dataset


def _diagnostics(pp) -> dict:
    diag = {
        "n_missing": int(pp.missingness.get("n_missing", 0)),
        "fraction_missing": float(pp.missingness.get("fraction_missing", 0.0)),
        "knn_fallback_features": [str(pp.feature_ids[i]) for i in pp.fallback_features],
        "vsn_fallback_samples": [pp.samples[j] for j in pp.fallback_samples],
    }
    if pp.mean_sd is not None:
        diag["mean_sd"] = {
            "rho": float(pp.mean_sd.rho),
            "span": float(pp.mean_sd.span),
            "trend_detected": bool(pp.mean_sd.trend_detected),
        }
    if pp.imputation_correlation is not None:
        diag["imputation_correlation"] = {
            str(s): float(r) for s, r in pp.imputation_correlation["PEARSON_R"].items()
        }
    return diag


@log_time("ProteoDiff Pipeline")
def run_pipeline(config: dict):
    """Load, preprocess, test and export. Returns the `LimmaResult`."""
    dataset = Dataset(**config)
    adata = dataset.get_anndata()
    pp = dataset.preprocessed_data

    result = run_limma_pipeline(adata, config)

    pca = run_pca(pp.normalized, pp.samples, pp.feature_ids,
                  n_components=config.get("analysis", {}).get("n_pcs"))
    out = result.adata
    if pca.scores.shape[1]:
        out.obsm[K.OBSM_PCA] = pca.scores.to_numpy()
        out.uns[K.UNS_PCA] = {"variance_ratio": pca.explained_variance_ratio}
    out.uns[K.UNS_DIAGNOSTICS] = _diagnostics(pp)
    out.uns[K.UNS_SUMMARY] = result.summary

    analysis_config = config.get("analysis", {}) or {}
    export_config = analysis_config.get("exports", {}) or {}
    method_info = {
        "imputation": pp.imputation_method,
        "normalization": pp.normalization_method,
    }

    if analysis_config.get("export_plot", True) and export_config.get("path_pdf"):
        Path(export_config["path_pdf"]).parent.mkdir(parents=True, exist_ok=True)
        plotter = ReportPlotter(result, pp, pca=pca,
                                sample_metadata=adata.obs[[CONDITION]], config=config)
        plotter.plot_all(export_config["path_pdf"])

    exporter = DEExporter(result,
                          output_path=export_config.get("path_table", "proteodiff"),
                          use_xlsx=export_config.get("use_xlsx", True),
                          method_info=method_info)
    if analysis_config.get("export_table", True):
        exporter.export()

    if export_config.get("path_h5ad"):
        exporter.export_adata(export_config["path_h5ad"])

    return result
