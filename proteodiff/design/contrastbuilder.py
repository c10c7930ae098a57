import itertools
import re
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from proteodiff.utils.errors import ContrastDefinitionError

ContrastDefinition = Union[None, str, Sequence[str], Dict[str, Sequence[str]]]

_SEPARATORS = (re.compile(r"\s+-\s+"), re.compile(r"_vs_"), re.compile(r"_v_"))


def _split_contrast(text: str, levels: Sequence[str]) -> Tuple[str, str]:
    """Split 'A_vs_B', 'A_v_B' or 'A - B' into (A, B).

    Level names may themselves contain underscores, so every occurrence of a
    separator is tried and the split must name two known levels.
    """
    known = set(levels)
    text = text.strip()
    for sep in _SEPARATORS:
        candidates = []
        for m in sep.finditer(text):
            a, b = text[:m.start()].strip(), text[m.end():].strip()
            if a in known and b in known:
                candidates.append((a, b))
        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            raise ContrastDefinitionError(f"Ambiguous contrast '{text}': {candidates}")
        if sep.search(text):
            parts = sep.split(text, maxsplit=1)
            unknown = [p.strip() for p in parts if p.strip() not in known]
            raise ContrastDefinitionError(
                f"Contrast '{text}' references undefined group(s) {unknown}; levels are {list(levels)}")
    raise ContrastDefinitionError(
        f"Cannot parse contrast '{text}'. Use 'A_vs_B', 'A_v_B', 'A - B' or a mapping {{name: [A, B]}}.")


def parse_contrasts(
    contrasts: ContrastDefinition,
    levels: Sequence[str],
    reference: Optional[str] = None,
) -> Dict[str, Tuple[str, str]]:
    """
    Normalize the configured contrasts to an ordered {name: (A, B)} mapping, meaning A - B.

    Accepted forms:
      - None / empty: every level against the reference, named '<level>_vs_<reference>'
      - "all_pairwise": every pair of levels, in level order
      - a string or a list of strings: 'A_vs_B', 'A_v_B', 'A - B'
      - a mapping {name: [A, B]}
    """
    levels = [str(l) for l in levels]
    if not levels:
        raise ContrastDefinitionError("No group levels defined.")
    reference = levels[0] if reference is None else str(reference)
    if reference not in levels:
        raise ContrastDefinitionError(f"Reference '{reference}' is not a level: {levels}")

    out: Dict[str, Tuple[str, str]] = {}

    def _add(name: str, a: str, b: str) -> None:
        for g in (a, b):
            if g not in levels:
                raise ContrastDefinitionError(
                    f"Contrast '{name}' references undefined group '{g}'; levels are {levels}")
        if a == b:
            raise ContrastDefinitionError(f"Contrast '{name}' compares '{a}' with itself.")
        if name in out:
            raise ContrastDefinitionError(f"Duplicate contrast name '{name}'.")
        out[name] = (a, b)

    if contrasts is None or (not isinstance(contrasts, str) and len(contrasts) == 0):
        for lvl in levels:
            if lvl != reference:
                _add(f"{lvl}_vs_{reference}", lvl, reference)
    elif isinstance(contrasts, str) and contrasts.strip().lower() == "all_pairwise":
        for a, b in itertools.combinations(levels, 2):
            _add(f"{a}_vs_{b}", a, b)
    elif isinstance(contrasts, dict):
        for name, pair in contrasts.items():
            if isinstance(pair, str):
                a, b = _split_contrast(pair, levels)
            else:
                pair = list(pair)
                if len(pair) != 2:
                    raise ContrastDefinitionError(f"Contrast '{name}' must list exactly two groups, got {pair}")
                a, b = str(pair[0]), str(pair[1])
            _add(str(name), a, b)
    else:
        items = [contrasts] if isinstance(contrasts, str) else list(contrasts)
        for item in items:
            a, b = _split_contrast(str(item), levels)
            _add(f"{a}_vs_{b}", a, b)

    if not out:
        raise ContrastDefinitionError(f"No contrast could be built from levels {levels}.")
    return out


class ContrastBuilder:
    def __init__(self, design_info, baseline=None):
        """
        Parameters:
        - design_info: patsy DesignInfo of the one-hot (no intercept) design
        - baseline: str (optional), reference level for default contrasts
        """
        self.design_info = design_info
        self.column_names = design_info.column_names
        self.factor_infos = design_info.factor_infos
        self.levels = self._extract_levels()
        self.baseline = baseline or self.levels[0]

    def _extract_levels(self) -> List[str]:
        # Support only one categorical factor
        for factor, info in self.factor_infos.items():
            if info.type == "categorical":
                return [str(c) for c in info.categories]
        raise ValueError("No categorical factor found in design matrix.")

    def _contrast_vector(self, group1, group2) -> np.ndarray:
        """
        Create contrast vector for group1 - group2
        """
        vec = np.zeros(len(self.column_names))
        vec[self.levels.index(group1)] = 1
        vec[self.levels.index(group2)] = -1
        return vec

    def build(self, contrasts: Dict[str, Tuple[str, str]]):
        """
        Returns:
        - contrast_matrix: np.ndarray (p x m)
        - contrast_names: list of str
        """
        missing = sorted({g for pair in contrasts.values() for g in pair} - set(self.levels))
        if missing:
            raise ContrastDefinitionError(f"Contrast group(s) {missing} have no column in the design.")

        names = list(contrasts)
        contrast_matrix = np.vstack([self._contrast_vector(*contrasts[n]) for n in names]).T
        return contrast_matrix, names

    def make_all_pairwise_contrasts(self):
        """
        Generate all pairwise contrasts between levels (not just vs baseline)
        """
        return self.build(parse_contrasts("all_pairwise", self.levels, self.baseline))
