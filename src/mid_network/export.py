"""Tabular views of a labeling network for CSV/TSV writers."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .distance_matrix import DistanceMatrix
from .model import IsotopomerDistribution, NetworkNode
from .network import Edge

METABOLITE_COL = "Metabolite"
RI_COL = "RI"
IONS_COL = "Ions (M0)"
ISOTOPOMER_COL = "M"


def _ci_col(experiment: str) -> str:
    return f"CI {experiment}"


def _mid_rows(
    node: NetworkNode,
    ion_label,
    mids: Dict[str, Optional[IsotopomerDistribution]],
    experiments: Sequence[str],
) -> List[dict]:
    length = max((len(m) for m in mids.values() if m is not None), default=0)
    ri = node.average_retention_index()
    rows = []
    for i in range(length):
        row = {METABOLITE_COL: node.name, RI_COL: ri, IONS_COL: ion_label, ISOTOPOMER_COL: i}
        for t in experiments:
            m = mids.get(t)
            row[t] = float(m.values[i]) if m is not None and len(m) > i else 0.0
        for t in experiments:
            m = mids.get(t)
            row[_ci_col(t)] = float(m.confidence[i]) if m is not None and len(m) > i else 0.0
        rows.append(row)
    return rows


def _columns(experiments: Sequence[str]) -> List[str]:
    return [METABOLITE_COL, RI_COL, IONS_COL, ISOTOPOMER_COL, *experiments, *[_ci_col(t) for t in experiments]]


def selected_mids_frame(nodes: Sequence[NetworkNode], experiments: Sequence[str]) -> pd.DataFrame:
    """One row per node and isotopomer of the selected MIDs.

    Missing experiments and positions beyond a shorter MID are reported as 0.
    The ion column lists the selected ion per experiment (0 where missing).
    """
    rows: List[dict] = []
    for node in nodes:
        mids = {t: node.selected_distribution(t) if node.has_data_for(t) else None for t in experiments}
        ions = " ".join(f"{m.ion:g}" if m is not None else "0" for m in mids.values())
        rows.extend(_mid_rows(node, ions, mids, experiments))
    return pd.DataFrame(rows, columns=_columns(experiments))


def all_mids_frame(nodes: Sequence[NetworkNode], experiments: Sequence[str]) -> pd.DataFrame:
    """Like `selected_mids_frame`, but for every labeled ion of every node."""
    rows: List[dict] = []
    for node in nodes:
        for ion in node.all_labeled_ions():
            mids = {
                t: node.observation(t).mid_for_ion(ion) if node.has_data_for(t) else None for t in experiments
            }
            rows.extend(_mid_rows(node, ion, mids, experiments))
    return pd.DataFrame(rows, columns=_columns(experiments))


def distance_matrix_frame(matrix: DistanceMatrix, node_names: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Full square matrix as a frame; the lower triangle is mirrored from the upper one."""
    values = np.array(matrix.values, dtype=float)
    lower = np.tril_indices(matrix.size, k=-1)
    values[lower] = values.T[lower]
    labels = list(node_names) if node_names is not None else list(range(matrix.size))
    return pd.DataFrame(values, index=labels, columns=labels)


def edges_frame(
    edges: Sequence[Edge],
    node_names: Optional[Sequence[str]] = None,
    experiment_names: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    rows = []
    for e in edges:
        row = {"node1": e.node1, "node2": e.node2, "distance": e.distance, "dataset_index": e.dataset_index}
        if node_names is not None:
            row["name1"] = node_names[e.node1]
            row["name2"] = node_names[e.node2]
        if experiment_names is not None:
            row["experiment"] = experiment_names[e.dataset_index]
        rows.append(row)
    columns = ["node1", "node2", "distance", "dataset_index"]
    if node_names is not None:
        columns += ["name1", "name2"]
    if experiment_names is not None:
        columns.append("experiment")
    return pd.DataFrame(rows, columns=columns)
