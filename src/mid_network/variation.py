"""Cross-experiment labeling variation of a node.

The variation score drives node colouring and the "hide less varying" filter;
the ANOVA p-values give a significance view of the same per-isotopomer spread.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Sequence

import numpy as np
from scipy import stats

if TYPE_CHECKING:  # pragma: no cover
    from .model import NetworkNode


CI_QUANTILE = 0.9


def max_isotopomer_sd(mids: Sequence[Sequence[float]]) -> float:
    """Maximum population SD of any isotopomer fraction across MIDs.

    For each level m the SD is taken over exactly the MIDs that are longer than m.
    A single MID has no cross-experiment spread and scores 0.
    """
    arrays = [np.asarray(m, dtype=float) for m in mids]
    if len(arrays) <= 1:
        return 0.0

    max_sd = 0.0
    m = 0
    while True:
        level = [a[m] for a in arrays if a.size > m]
        if not level:
            break
        max_sd = max(max_sd, float(np.std(level)))
        m += 1
    return max_sd


def anova_pvalue(means: Sequence[float], sds: Sequence[float], n: int) -> float:
    """One-way ANOVA p-value from group means/SDs with `n` replicates per group."""
    k = len(means)
    if n < 2 or k < 2:
        return 1.0
    if len(sds) != k:
        raise ValueError("means and sds must have the same length.")

    means_arr = np.asarray(means, dtype=float)
    sds_arr = np.asarray(sds, dtype=float)
    df1 = n - 1
    df2 = n * k - df1 - 1

    s_x = float(np.sum((means_arr - means_arr.mean()) ** 2) / (k - 1))
    mean_var = float(np.sum(sds_arr**2) / k)
    if mean_var <= 0.0:
        return 0.0 if s_x > 0.0 else 1.0
    f = n * s_x / mean_var
    return float(stats.f.sf(f, df1, df2))


def anova_pvalues(node: "NetworkNode") -> List[float]:
    """ANOVA p-value per isotopomer level of the node's selected MIDs.

    Confidence intervals are turned into SDs with the 0.9 Student-t quantile at
    `(n_labeled * n_unlabeled - 1) * len(mid)` degrees of freedom.
    """
    exps = node.experiments
    if len(exps) <= 1:
        return []

    max_len = max(len(node.selected_mid(t)) for t in exps)
    pvalues: List[float] = []
    for m in range(max_len):
        means: List[float] = []
        sds: List[float] = []
        min_files = None
        for t in exps:
            dist = node.selected_distribution(t)
            if len(dist) <= m:
                continue
            obs = node.observation(t)
            n_obs = obs.n_labeled_spectra * obs.n_unlabeled_spectra
            files = max(obs.n_labeled_spectra, obs.n_unlabeled_spectra)
            min_files = files if min_files is None else min(min_files, files)

            dof = max((n_obs - 1) * len(dist), 1)
            t_q = float(stats.t.ppf(CI_QUANTILE, dof))
            means.append(float(dist.values[m]))
            sds.append(float(dist.confidence[m]) / t_q)
        pvalues.append(anova_pvalue(means, sds, min_files or 0))
    return pvalues


def min_anova_pvalue(node: "NetworkNode") -> float:
    pvalues = anova_pvalues(node)
    return min(pvalues) if pvalues else 1.0
