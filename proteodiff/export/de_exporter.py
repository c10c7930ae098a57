"""Export differential-abundance results to TSV/Excel and write a cleaned .h5ad.

Per contrast, one table with all features and one with the up/down features
only. Workbooks hold one sheet per contrast plus a README sheet stating the
thresholds and methods.
"""
import re
from datetime import datetime
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version
from pathlib import Path
from typing import Dict, Mapping, Optional

import pandas as pd

from proteodiff.analysis.classification import Regulation
from proteodiff.utils.semantics import COL_REGULATION, CONDITION
from proteodiff.utils.utils import log_info, log_time

_SHEET_FORBIDDEN = re.compile(r"[\[\]:*?/\\]")
_FILE_FORBIDDEN = re.compile(r"[^A-Za-z0-9_.+-]+")


def sanitize_sheet_names(names) -> Dict[str, str]:
    """Map names to unique Excel sheet names (<= 31 chars, no []:*?/\\, not 'README')."""
    out: Dict[str, str] = {}
    used = {"readme"}
    for name in names:
        base = _SHEET_FORBIDDEN.sub("_", str(name)).strip("'") or "Sheet"
        cand = base[:31]
        k = 2
        while cand.lower() in used:
            suffix = f"~{k}"
            cand = base[:31 - len(suffix)] + suffix
            k += 1
        used.add(cand.lower())
        out[name] = cand
    return out


def _file_token(name: str) -> str:
    return _FILE_FORBIDDEN.sub("_", str(name))


def filter_significant(df: pd.DataFrame) -> pd.DataFrame:
    """Rows labelled up or down, in the order of the full table."""
    keep = df[COL_REGULATION].isin([Regulation.UP.value, Regulation.DOWN.value])
    return df.loc[keep].reset_index(drop=True)


def _h5ad_safe(obj):
    """Drop None values recursively; h5py cannot store them."""
    if isinstance(obj, Mapping):
        return {str(k): _h5ad_safe(v) for k, v in obj.items() if v is not None}
    if isinstance(obj, (list, tuple)):
        return [_h5ad_safe(v) for v in obj if v is not None]
    return obj


class DEExporter:
    def __init__(
        self,
        result,
        output_path,
        use_xlsx: bool = True,
        method_info: Optional[Dict[str, str]] = None,
    ):
        """
        TSV/Excel and .h5ad exporter for a `LimmaResult`.

        Parameters:
            result: LimmaResult with one DEG table per contrast.
            output_path: file prefix, e.g. "results/proteodiff" -> results/proteodiff_<contrast>_all.tsv
            method_info: imputation/normalization methods stated in READMEs and summary.
        """
        self.result = result
        self.output_path = Path(output_path)
        self.use_xlsx = use_xlsx
        self.method_info = dict(method_info or {})
        self.q_threshold = result.q_threshold
        self.fc_threshold = result.fc_threshold

    @property
    def prefix(self) -> str:
        return str(self.output_path.with_suffix("")) if self.output_path.suffix in {".tsv", ".xlsx"} \
            else str(self.output_path)

    @property
    def threshold_tag(self) -> str:
        return f"q{self.q_threshold:g}_lfc{self.fc_threshold:g}"

    def _readme(self, content: str) -> str:
        lines = [
            "ProteoDiff Differential Abundance Export",
            "",
            f"Content: {content}",
            f"Created: {datetime.now().isoformat(timespec='seconds')}",
            "",
            "Thresholds:",
            f"- QVALUE < {self.q_threshold:g} (Benjamini-Hochberg on moderated p-values, per contrast)",
            f"- |log2FC| > {self.fc_threshold:g}",
            "",
            "Methods:",
        ]
        for k, v in self.method_info.items():
            lines.append(f"- {k}: {v}")
        lines += [
            "- statistics: linear model per feature + empirical Bayes moderated t (limma)",
            "",
            "Contrasts (A_vs_B = A - B):",
        ]
        for name, (a, b) in self.result.contrasts.items():
            lines.append(f"- {name}: {a} - {b}")
        if self.result.pilot_mode:
            lines += ["", "PILOT MODE: no residual degrees of freedom; statistics are empty."]
        return "\n".join(lines)

    def _export_excel(self, tables: Dict[str, pd.DataFrame], readme: str, out_file: Path) -> Path:
        """Write tables to a single XLSX with a README sheet."""
        sheet_names = sanitize_sheet_names(tables.keys())
        with pd.ExcelWriter(out_file, engine="xlsxwriter") as writer:
            writer.book.use_zip64()

            # README: one line per row
            pd.DataFrame({"README": readme.split("\n")}).to_excel(
                writer, index=False, sheet_name="README"
            )

            for name, df in tables.items():
                sheet = sheet_names[name]
                df.to_excel(writer, sheet_name=sheet, index=False)
                writer.sheets[sheet].set_column(0, max(len(df.columns) - 1, 0), 14)
        return out_file

    @log_time("Differential Abundance - exporting tables")
    def export(self) -> Dict[str, Path]:
        """Write per-contrast TSVs, the summary TSV and (optionally) the four workbooks."""
        Path(self.prefix).parent.mkdir(parents=True, exist_ok=True)
        written: Dict[str, Path] = {}
        tables = self.result.tables
        filtered = {name: filter_significant(df) for name, df in tables.items()}

        for name, df in tables.items():
            token = _file_token(name)
            p_all = Path(f"{self.prefix}_{token}_all.tsv")
            p_sig = Path(f"{self.prefix}_{token}_{self.threshold_tag}.tsv")
            df.to_csv(p_all, sep="\t", index=False, na_rep="NA")
            filtered[name].to_csv(p_sig, sep="\t", index=False, na_rep="NA")
            written[f"{name}/all"] = p_all
            written[f"{name}/filtered"] = p_sig

        summary = self.result.summary.copy()
        for k, v in self.method_info.items():
            summary[k.upper()] = v
        p_summary = Path(f"{self.prefix}_summary.tsv")
        summary.to_csv(p_summary, sep="\t", index=False, na_rep="NA")
        written["summary"] = p_summary

        if self.use_xlsx:
            up = {n: df[df[COL_REGULATION] == Regulation.UP.value] for n, df in filtered.items()}
            down = {n: df[df[COL_REGULATION] == Regulation.DOWN.value] for n, df in filtered.items()}
            books = {
                "all": (tables, "all features per contrast"),
                "filtered": (filtered, "features labelled up or down per contrast"),
                "up": (up, "features labelled up per contrast"),
                "down": (down, "features labelled down per contrast"),
            }
            for key, (tbls, content) in books.items():
                out = Path(f"{self.prefix}_{key}.xlsx")
                written[f"xlsx/{key}"] = self._export_excel(tbls, self._readme(content), out)

        log_info(f"Wrote {len(written)} file(s) with prefix {self.prefix}")
        return written

    @log_time("Exporting .h5ad")
    def export_adata(self, h5ad_path: str, adata=None) -> Path:
        """Write a compact .h5ad with categorical metadata and h5py-safe uns."""
        adata = (adata if adata is not None else self.result.adata).copy()
        if CONDITION in adata.obs.columns:
            adata.obs[CONDITION] = adata.obs[CONDITION].astype("category")

        meta = dict(adata.uns.get("proteodiff", {}) or {})
        try:
            pd_version = _pkg_version("proteodiff")
        except PackageNotFoundError:
            pd_version = "0+unknown"
        meta.setdefault("version", pd_version)
        meta.setdefault("created_at", datetime.now().isoformat(timespec="seconds"))
        adata.uns["proteodiff"] = meta

        for key in list(adata.uns.keys()):
            adata.uns[key] = _h5ad_safe(adata.uns[key])

        h5ad_path = Path(h5ad_path)
        h5ad_path.parent.mkdir(parents=True, exist_ok=True)
        adata.write(h5ad_path, compression="gzip")
        return h5ad_path


def read_table(path) -> pd.DataFrame:
    """Read back an exported TSV with the same null marker."""
    return pd.read_csv(path, sep="\t", na_values=["NA"], keep_default_na=False)

