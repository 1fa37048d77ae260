"""
Labeling network: canonical nodes, per-experiment distance matrices and the
filters that turn them into a drawable graph.

Every dataset is a layer. An edge exists in a layer when the pair's finite
distance is at most that dataset's cutoff.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import networkx as nx
import numpy as np

from .distance import DistanceConfig
from .distance_matrix import DistanceMatrix, DistanceMatrixBuilder
from .errors import MidNetworkError
from .matching import CompoundMatcher, identify_nodes
from .model import Dataset, IonSelection, M0Mode, NetworkNode, coerce_enum

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Edge:
    node1: int
    node2: int
    distance: float
    dataset_index: int


@dataclass
class GraphFilter:
    """Node visibility toggles of the graph view."""

    show_unconnected: bool = True
    hide_less_varying: bool = False
    variation_cutoff: float = 0.0
    hide_found_in_fewer: bool = False
    min_experiments: int = 1


class LabelingNetwork:
    """
    Build and query the isotopomer network over a list of datasets.

    `rebuild()` runs compound matching followed by matrix construction. Setters
    that change what a matrix holds (M0 mode, ion selection, removing a dataset)
    rebuild the matrices; cutoff and visibility changes only affect queries.
    """

    def __init__(
        self,
        datasets: Iterable[Dataset] = (),
        *,
        matcher: Optional[CompoundMatcher] = None,
        distance_config: Optional[DistanceConfig] = None,
        builder: Optional[DistanceMatrixBuilder] = None,
    ):
        self.datasets: List[Dataset] = list(datasets)
        self.matcher = matcher or CompoundMatcher()
        self.builder = builder or DistanceMatrixBuilder(distance_config)
        self.nodes: List[NetworkNode] = []
        self.matrices: List[DistanceMatrix] = []
        self.match_diagnostics: Dict[str, int] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_nodes(
        cls,
        nodes: Sequence[NetworkNode],
        datasets: Iterable[Dataset],
        *,
        builder: Optional[DistanceMatrixBuilder] = None,
        distance_config: Optional[DistanceConfig] = None,
    ) -> "LabelingNetwork":
        """Network over already matched nodes; node order defines the index space."""
        net = cls(datasets, builder=builder, distance_config=distance_config)
        net.nodes = list(nodes)
        for idx, node in enumerate(net.nodes):
            node.index = idx
        net.build_matrices()
        return net

    # construction

    def rebuild(self) -> None:
        with self._lock:
            result = self.matcher.match(self.datasets)
            self.nodes = result.nodes
            self.match_diagnostics = result.diagnostics
            self.build_matrices()

    def build_matrices(self) -> None:
        with self._lock:
            self.matrices = self.builder.build_all(self.nodes, self.datasets)

    def identify(self, library, **kwargs) -> int:
        """Name nodes from a reference library; see `matching.identify_nodes`."""
        with self._lock:
            return identify_nodes(self.nodes, library, **kwargs)

    def add_dataset(self, dataset: Dataset, *, rebuild: bool = True) -> None:
        with self._lock:
            self.datasets.append(dataset)
            if rebuild:
                self.rebuild()

    def remove_dataset(self, dataset: Union[Dataset, int]) -> Dataset:
        with self._lock:
            idx = dataset if isinstance(dataset, int) else self.datasets.index(dataset)
            removed = self.datasets.pop(idx)
            self.build_matrices()
            return removed

    # accessors

    @property
    def experiment_names(self) -> List[str]:
        return [ds.experiment for ds in self.datasets]

    @property
    def node_names(self) -> List[str]:
        return [n.name for n in self.nodes]

    def matrix(self, experiment: Union[str, int]) -> DistanceMatrix:
        self._check_built()
        if isinstance(experiment, int):
            return self.matrices[experiment]
        return self.matrices[self.experiment_names.index(experiment)]

    def _check_built(self) -> None:
        if len(self.matrices) != len(self.datasets) or any(m.size != len(self.nodes) for m in self.matrices):
            raise MidNetworkError(
                "Distance matrices are out of date; call rebuild() first.",
                context={"n_datasets": len(self.datasets), "n_matrices": len(self.matrices)},
            )

    def _visible_layers(self) -> List[Tuple[int, Dataset, DistanceMatrix]]:
        self._check_built()
        return [(k, ds, m) for k, (ds, m) in enumerate(zip(self.datasets, self.matrices)) if ds.visible]

    # settings

    def set_distance_cutoff(self, cutoff: float) -> None:
        for ds in self.datasets:
            ds.settings.distance_cutoff = float(cutoff)

    def set_relative_distance_cutoff(self, percent: float) -> None:
        """Per dataset, cutoff = min + percent/100 * (max - min) of its distance range."""
        self._check_built()
        for ds, m in zip(self.datasets, self.matrices):
            lo, hi = m.range
            ds.settings.distance_cutoff = lo + percent / 100.0 * (hi - lo)
            logger.info("Set %s cutoff to %.4g (relative cutoff %g%%)", ds.experiment, ds.settings.distance_cutoff, percent)

    def set_visible(self, dataset_index: int, visible: bool) -> None:
        self.datasets[dataset_index].visible = visible

    def set_m0_mode(self, mode: Union[M0Mode, int, str]) -> None:
        mode = coerce_enum(M0Mode, mode)
        with self._lock:
            changed = False
            for ds in self.datasets:
                if ds.settings.m0_mode is not mode:
                    ds.settings.m0_mode = mode
                    changed = True
            if changed:
                self.build_matrices()

    def set_ion_selection(self, selection: Union[IonSelection, str]) -> None:
        selection = coerce_enum(IonSelection, selection)
        with self._lock:
            self.matcher.config.ion_selection = selection
            changed = False
            for node in self.nodes:
                if node.ion_selection is not selection:
                    node.ion_selection = selection
                    changed = True
            if changed:
                self.build_matrices()

    # queries

    def _passes_node_filters(self, min_experiments: int, variation_cutoff: float) -> np.ndarray:
        multi = len(self.datasets) > 1
        keep = np.ones(len(self.nodes), dtype=bool)
        for idx, node in enumerate(self.nodes):
            if min_experiments > 1 and len(node.experiments) < min_experiments:
                keep[idx] = False
            elif multi and node.variation() < variation_cutoff:
                keep[idx] = False
        return keep

    def node_has_edges(self, n: int) -> bool:
        """True if node `n` has a finite distance within cutoff in any visible dataset."""
        for _, ds, m in self._visible_layers():
            cutoff = ds.settings.distance_cutoff
            row = m.values[n, n + 1 :]
            col = m.values[:n, n]
            for vals in (row, col):
                if np.any(np.isfinite(vals) & (vals <= cutoff)):
                    return True
        return False

    def get_edges(self, min_experiments: int = 1, variation_cutoff: float = 0.0) -> List[Edge]:
        """Edges of all visible datasets, ordered by dataset, then node pair."""
        keep = self._passes_node_filters(min_experiments, variation_cutoff)
        edges: List[Edge] = []
        for k, ds, m in self._visible_layers():
            rows, cols, vals = m.upper_triangle()
            mask = np.isfinite(vals) & (vals <= ds.settings.distance_cutoff) & keep[rows] & keep[cols]
            for i, j, d in zip(rows[mask], cols[mask], vals[mask]):
                edges.append(Edge(int(i), int(j), float(d), k))
        return edges

    def number_of_edges(self, variation_cutoff: float = 0.0, min_experiments: int = 1) -> int:
        return len(self.get_edges(min_experiments, variation_cutoff))

    def nodes_in_graph(self, graph_filter: Optional[GraphFilter] = None) -> Dict[int, NetworkNode]:
        """Visible nodes keyed by index."""
        f = graph_filter or GraphFilter()
        multi = len(self.datasets) > 1
        visible: Dict[int, NetworkNode] = {}
        for n, node in enumerate(self.nodes):
            if not f.show_unconnected and not self.node_has_edges(n):
                continue
            # variation and experiment count are only meaningful with several datasets
            if multi and f.hide_less_varying and node.variation() < f.variation_cutoff:
                continue
            if multi and f.hide_found_in_fewer and len(node.experiments) < f.min_experiments:
                continue
            visible[n] = node
        return visible

    def min_max_distances(self) -> Tuple[Optional[float], Optional[float]]:
        """Global (min, max) of in-cutoff finite distances over visible datasets.

        Node count and variation filters are not applied. (None, None) when no
        entry qualifies.
        """
        lo = np.inf
        hi = -np.inf
        for _, ds, m in self._visible_layers():
            _, _, vals = m.upper_triangle()
            vals = vals[np.isfinite(vals) & (vals <= ds.settings.distance_cutoff)]
            if vals.size:
                lo = min(lo, float(vals.min()))
                hi = max(hi, float(vals.max()))
        if not np.isfinite(lo):
            return None, None
        return lo, hi

    def to_networkx(self, graph_filter: Optional[GraphFilter] = None) -> nx.MultiGraph:
        """Visible nodes and edges as a multigraph; parallel edges are keyed by experiment."""
        f = graph_filter or GraphFilter()
        visible = self.nodes_in_graph(f)
        G = nx.MultiGraph()
        for idx, node in visible.items():
            G.add_node(
                idx,
                name=node.name,
                experiments=node.experiments,
                variation=node.variation(),
                retention_index=node.average_retention_index(),
            )

        min_experiments = f.min_experiments if f.hide_found_in_fewer else 1
        variation_cutoff = f.variation_cutoff if f.hide_less_varying else 0.0
        names = self.experiment_names
        for e in self.get_edges(min_experiments, variation_cutoff):
            if e.node1 not in visible or e.node2 not in visible:
                continue
            G.add_edge(
                e.node1,
                e.node2,
                key=names[e.dataset_index],
                distance=e.distance,
                experiment=names[e.dataset_index],
                dataset_index=e.dataset_index,
            )
        return G
