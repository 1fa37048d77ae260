"""
Cross-experiment compound matching.

Observations of all experiments are merged into canonical `NetworkNode`s:

1. Per experiment (in order) and per observation: drop it when the exclude library
   knows it, otherwise attach it to the node whose representative spectrum it
   matches best, or open a new node.
2. Redetect: harmonize the fragment windows of each node across experiments and
   re-quantify every observation over that window set.
3. Filter and re-index: drop empty nodes, number the survivors densely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .library import (
    FragmentQuantifier,
    InMemoryLibrary,
    LibraryHit,
    MutableSpectralLibrary,
    SpectralLibrary,
    load_library,
)
from .mid_utils import filter_mids
from .model import (
    COMPOUND_GROUPING_FEATURE,
    Dataset,
    IonSelection,
    LabeledCompoundObservation,
    NetworkNode,
    coerce_enum,
)

logger = logging.getLogger(__name__)

EXCLUDE_SCORE_CUTOFF = 0.92
MATCH_SCORE_CUTOFF = 0.85
MATCH_RI_TOLERANCE = 5.0
IDENTIFICATION_SCORE_CUTOFF = 0.75


@dataclass
class MatchConfig:
    """Settings for cross-experiment matching."""

    score_cutoff: float = MATCH_SCORE_CUTOFF
    exclude_cutoff: float = EXCLUDE_SCORE_CUTOFF
    ion_selection: IonSelection = IonSelection.INDIVIDUAL
    apply_mid_filter: bool = True
    redetect: bool = True

    def __post_init__(self) -> None:
        self.ion_selection = coerce_enum(IonSelection, self.ion_selection)


@dataclass
class MatchResult:
    nodes: List[NetworkNode]
    diagnostics: Dict[str, int] = field(default_factory=dict)


def _default_library() -> MutableSpectralLibrary:
    return InMemoryLibrary(ri_tolerance=MATCH_RI_TOLERANCE)


def is_excluded(
    observation: LabeledCompoundObservation,
    exclude_library: Optional[SpectralLibrary],
    cutoff: float = EXCLUDE_SCORE_CUTOFF,
) -> bool:
    if exclude_library is None:
        return False
    hits = exclude_library.hits(observation)
    return bool(hits) and hits[0].score >= cutoff


def fragment_window_union(observations: Iterable[LabeledCompoundObservation]) -> List[Tuple[int, int]]:
    """Union of fragment windows keyed by start mass; the widest end wins."""
    windows: Dict[int, int] = {}
    for obs in observations:
        for start, end in obs.fragment_windows():
            windows[start] = max(end, windows.get(start, end))
    return sorted(windows.items())


def redetect(
    nodes: Sequence[NetworkNode],
    datasets: Sequence[Dataset],
    quantifier: FragmentQuantifier,
    *,
    apply_mid_filter: bool = True,
) -> int:
    """Re-quantify every observation over its node's harmonized fragment windows.

    Observations left without a labeled ion are detached. Returns how many were.
    """
    settings = {ds.experiment: ds.settings for ds in datasets}
    removed = 0
    for node in nodes:
        windows = fragment_window_union(node.observations.values())
        logger.debug("Redetecting labeled fragments of %s over %d windows", node.name, len(windows))
        for experiment, obs in node.observations.items():
            new = quantifier.quantify(obs, windows)
            new.features = dict(obs.features)
            if apply_mid_filter and experiment in settings:
                new = filter_mids(new, settings[experiment].mid_filter)
            if new.has_labeled_ions():
                node.replace_observation(experiment, new)
            else:
                node.remove_observation(experiment)
                removed += 1
    return removed


def filter_and_reindex(nodes: Iterable[NetworkNode]) -> List[NetworkNode]:
    """Drop nodes without observations and assign dense indices 0..N-1."""
    kept: List[NetworkNode] = []
    for node in nodes:
        if not node.experiments:
            logger.debug("Remove compound with no labeled fragments: %s", node.name)
            continue
        idx = len(kept)
        key = str(idx)
        node.index = idx
        node.features[COMPOUND_GROUPING_FEATURE] = key
        for obs in node.observations.values():
            obs.features[COMPOUND_GROUPING_FEATURE] = key
        kept.append(node)
    return kept


class CompoundMatcher:
    """
    Merge per-experiment observations into canonical nodes.

    Args:
        config: Matching settings.
        library_factory: Builds the running library of representative spectra. A
            failing factory degrades to an empty library.
        quantifier: Fragment-quantitation collaborator used for redetection; without
            one the redetect step is skipped.
    """

    def __init__(
        self,
        config: Optional[MatchConfig] = None,
        *,
        library_factory: Callable[[], MutableSpectralLibrary] = _default_library,
        quantifier: Optional[FragmentQuantifier] = None,
    ):
        self.config = config or MatchConfig()
        self.library_factory = library_factory
        self.quantifier = quantifier

    def match(self, datasets: Sequence[Dataset]) -> MatchResult:
        cfg = self.config
        library = load_library(self.library_factory, label="cross-experiment library")
        nodes: List[NetworkNode] = []
        diag = {"n_unlabeled": 0, "n_excluded": 0, "n_attached": 0, "n_created": 0}

        for t_idx, ds in enumerate(datasets):
            for raw in ds.observations:
                obs = raw.with_mids(raw.mids)
                if cfg.apply_mid_filter:
                    obs = filter_mids(obs, ds.settings.mid_filter)
                if not obs.has_labeled_ions():
                    diag["n_unlabeled"] += 1
                    continue

                if is_excluded(obs, ds.exclude_library, cfg.exclude_cutoff):
                    logger.debug("Exclude-library match: %s (RI %g)", obs.name, obs.retention_index)
                    diag["n_excluded"] += 1
                    continue

                if t_idx > 0 and self._attach(obs, ds.experiment, library.hits(obs), nodes):
                    diag["n_attached"] += 1
                    continue

                key = str(len(nodes))
                obs.features[COMPOUND_GROUPING_FEATURE] = key
                library.add(obs, key, ds.experiment)
                node = NetworkNode(obs.name, ion_selection=cfg.ion_selection)
                node.index = len(nodes)
                node.add_observation(ds.experiment, obs)
                nodes.append(node)
                diag["n_created"] += 1

        logger.info("Detected %d different labeled compounds in %d experiments.", len(nodes), len(datasets))

        diag["n_redetect_removed"] = 0
        if cfg.redetect and self.quantifier is not None and len(datasets) >= 2:
            diag["n_redetect_removed"] = redetect(
                nodes, datasets, self.quantifier, apply_mid_filter=cfg.apply_mid_filter
            )

        n_before = len(nodes)
        nodes = filter_and_reindex(nodes)
        diag["n_removed_nodes"] = n_before - len(nodes)
        diag["n_nodes"] = len(nodes)
        return MatchResult(nodes=nodes, diagnostics=diag)

    def _attach(
        self,
        obs: LabeledCompoundObservation,
        experiment: str,
        hits: List[LibraryHit],
        nodes: List[NetworkNode],
    ) -> bool:
        if not hits or hits[0].score < self.config.score_cutoff:
            return False
        prev = nodes[int(hits[0].key)]
        # one observation per experiment; a second sighting opens a new node
        if prev.has_data_for(experiment):
            return False
        prev.add_observation(experiment, obs)
        return True


def compound_label(
    observation: LabeledCompoundObservation,
    hits: Sequence[LibraryHit],
    *,
    score_cutoff: float = IDENTIFICATION_SCORE_CUTOFF,
    max_hits: int = 1,
) -> Tuple[str, Optional[LibraryHit]]:
    """Name from library hits above `score_cutoff`, or an UNIDENTIFIED RI/RT label."""
    candidates = hits if max_hits < 0 else hits[:max_hits]
    parts = []
    best = None
    for hit in candidates:
        if hit.score < score_cutoff:
            break
        if best is None:
            best = hit
        parts.append(f"{hit.name}({hit.score:.4g})")
    if parts:
        return ", ".join(parts), best

    if observation.retention_index > 0:
        return f"UNIDENTIFIED RI {observation.retention_index:.6g}", None
    # retention time is stored in ms
    return f"UNIDENTIFIED RT {observation.retention_time / 1000.0 / 60.0:.6g}", None


def identify_nodes(
    nodes: Iterable[NetworkNode],
    library: SpectralLibrary,
    *,
    score_cutoff: float = IDENTIFICATION_SCORE_CUTOFF,
    max_hits: int = 1,
    overwrite_names: bool = True,
) -> int:
    """Name nodes after library hits of their first observation.

    Features of the best hit are added without overwriting existing ones. Without
    `overwrite_names`, nodes with no qualifying hit keep their old name. Returns
    the number of identified nodes.
    """
    n_identified = 0
    for node in nodes:
        exps = node.experiments
        if not exps:
            continue
        first = node.observation(exps[0])
        label, best = compound_label(first, library.hits(first), score_cutoff=score_cutoff, max_hits=max_hits)
        if best is None and not overwrite_names:
            continue

        node.name = label
        for t in exps:
            obs = node.observation(t)
            obs.name = label
            if best is not None:
                for k, v in best.features.items():
                    obs.features.setdefault(k, v)
        if best is not None:
            for k, v in best.features.items():
                node.features.setdefault(k, v)
            n_identified += 1
    return n_identified
