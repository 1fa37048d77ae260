import logging

import pytest

from mid_network.errors import LibraryLoadError
from mid_network.library import LibraryHit
from mid_network.matching import (
    CompoundMatcher,
    MatchConfig,
    compound_label,
    filter_and_reindex,
    fragment_window_union,
    identify_nodes,
)
from mid_network.model import (
    COMPOUND_GROUPING_FEATURE,
    Dataset,
    IsotopomerDistribution,
    LabeledCompoundObservation,
    NetworkNode,
)

ALA_SPECTRUM = [1.0, 0.0, 0.0, 5.0, 0.0]
GLY_SPECTRUM = [0.0, 3.0, 0.0, 0.0, 1.0]


def _obs(name, spectrum, *, mids=None, ri=1000.0):
    if mids is None:
        mids = [IsotopomerDistribution(200.0, [0.7, 0.2, 0.1], r2=0.99)]
    return LabeledCompoundObservation(name=name, mids=mids, retention_index=ri, spectrum=spectrum)


class _NameLibrary:
    """Scores observations by name."""

    def __init__(self, scores, features=None):
        self.scores = scores
        self.features = features or {}

    def hits(self, observation):
        if observation.name not in self.scores:
            return []
        return [
            LibraryHit(
                score=self.scores[observation.name],
                key=observation.name,
                name=observation.name.capitalize(),
                features=self.features.get(observation.name, {}),
            )
        ]


class _DroppingQuantifier:
    """Keeps MIDs as they are, except for names listed in `drop`."""

    def __init__(self, drop=()):
        self.drop = set(drop)
        self.windows = {}

    def quantify(self, observation, windows):
        self.windows.setdefault(observation.name, []).append(list(windows))
        if observation.name in self.drop:
            return observation.with_mids([])
        return observation.with_mids(observation.mids)


def test_observations_are_merged_across_experiments():
    datasets = [
        Dataset("A", [_obs("ala", ALA_SPECTRUM), _obs("gly", GLY_SPECTRUM)]),
        Dataset("B", [_obs("gly", GLY_SPECTRUM), _obs("ala", ALA_SPECTRUM)]),
    ]
    result = CompoundMatcher().match(datasets)
    nodes = result.nodes

    assert [n.name for n in nodes] == ["ala", "gly"]
    assert [n.index for n in nodes] == [0, 1]
    for idx, node in enumerate(nodes):
        assert node.experiments == ["A", "B"]
        assert node.features[COMPOUND_GROUPING_FEATURE] == str(idx)
        for obs in node.observations.values():
            assert obs.features[COMPOUND_GROUPING_FEATURE] == str(idx)
    assert result.diagnostics["n_attached"] == 2
    assert result.diagnostics["n_created"] == 2


def test_first_experiment_is_never_merged_with_itself():
    datasets = [Dataset("A", [_obs("ala", ALA_SPECTRUM), _obs("ala", ALA_SPECTRUM)])]
    nodes = CompoundMatcher().match(datasets).nodes
    assert len(nodes) == 2
    assert all(n.experiments == ["A"] for n in nodes)


def test_node_takes_one_observation_per_experiment():
    datasets = [
        Dataset("A", [_obs("ala", ALA_SPECTRUM)]),
        Dataset("B", [_obs("ala", ALA_SPECTRUM), _obs("ala", ALA_SPECTRUM)]),
    ]
    nodes = CompoundMatcher().match(datasets).nodes
    assert [n.experiments for n in nodes] == [["A", "B"], ["B"]]


def test_dissimilar_spectra_open_new_nodes():
    datasets = [
        Dataset("A", [_obs("ala", ALA_SPECTRUM)]),
        Dataset("B", [_obs("gly", GLY_SPECTRUM)]),
    ]
    nodes = CompoundMatcher().match(datasets).nodes
    assert [n.experiments for n in nodes] == [["A"], ["B"]]


def test_exclude_library_drops_known_compounds():
    exclude = _NameLibrary({"siloxane": 0.95, "ala": 0.9})
    datasets = [
        Dataset("A", [_obs("siloxane", GLY_SPECTRUM), _obs("ala", ALA_SPECTRUM)], exclude_library=exclude),
    ]
    result = CompoundMatcher().match(datasets)
    assert [n.name for n in result.nodes] == ["ala"]
    assert result.diagnostics["n_excluded"] == 1


def test_unlabeled_and_filtered_observations_are_skipped():
    poor_fit = [IsotopomerDistribution(200.0, [0.7, 0.2, 0.1], r2=0.3)]
    datasets = [
        Dataset("A", [_obs("ala", ALA_SPECTRUM), _obs("none", GLY_SPECTRUM, mids=[]), _obs("bad", GLY_SPECTRUM, mids=poor_fit)]),
    ]
    result = CompoundMatcher().match(datasets)
    assert [n.name for n in result.nodes] == ["ala"]
    assert result.diagnostics["n_unlabeled"] == 2

    result = CompoundMatcher(MatchConfig(apply_mid_filter=False)).match(datasets)
    assert [n.name for n in result.nodes] == ["ala", "bad"]


def test_input_observations_are_not_modified():
    ala = _obs("ala", ALA_SPECTRUM)
    CompoundMatcher().match([Dataset("A", [ala])])
    assert COMPOUND_GROUPING_FEATURE not in ala.features


def test_failing_running_library_creates_a_node_per_observation(caplog):
    def broken_factory():
        raise LibraryLoadError("library unavailable")

    datasets = [
        Dataset("A", [_obs("ala", ALA_SPECTRUM)]),
        Dataset("B", [_obs("ala", ALA_SPECTRUM)]),
    ]
    with caplog.at_level(logging.WARNING, logger="mid_network"):
        nodes = CompoundMatcher(library_factory=broken_factory).match(datasets).nodes
    assert [n.experiments for n in nodes] == [["A"], ["B"]]
    assert "library unavailable" in caplog.text


def test_any_library_factory_error_degrades_to_new_nodes():
    def broken_factory():
        raise ImportError("library backend unavailable")

    datasets = [
        Dataset("A", [_obs("ala", ALA_SPECTRUM)]),
        Dataset("B", [_obs("ala", ALA_SPECTRUM)]),
    ]
    result = CompoundMatcher(library_factory=broken_factory).match(datasets)
    assert len(result.nodes) == 2
    assert result.diagnostics["n_created"] == 2


class _FixedScoreLibrary:
    """Running library whose best hit is always the first node, at a fixed score."""

    def __init__(self, score):
        self.score = score
        self.keys = []

    def hits(self, observation):
        if not self.keys:
            return []
        return [LibraryHit(score=self.score, key=self.keys[0])]

    def add(self, observation, key, experiment):
        self.keys.append(key)


@pytest.mark.parametrize("score, excluded", [(0.92, True), (0.9199, False)])
def test_exclude_cutoff_is_inclusive(score, excluded):
    exclude = _NameLibrary({"ala": score})
    result = CompoundMatcher().match([Dataset("A", [_obs("ala", ALA_SPECTRUM)], exclude_library=exclude)])
    assert result.diagnostics["n_excluded"] == int(excluded)
    assert len(result.nodes) == int(not excluded)


@pytest.mark.parametrize("score, attached", [(0.85, True), (0.8499, False)])
def test_match_score_cutoff_is_inclusive(score, attached):
    datasets = [
        Dataset("A", [_obs("ala", ALA_SPECTRUM)]),
        Dataset("B", [_obs("ala", ALA_SPECTRUM)]),
    ]
    matcher = CompoundMatcher(MatchConfig(), library_factory=lambda: _FixedScoreLibrary(score))
    assert matcher.config.score_cutoff == 0.85
    result = matcher.match(datasets)
    if attached:
        assert [n.experiments for n in result.nodes] == [["A", "B"]]
    else:
        assert [n.experiments for n in result.nodes] == [["A"], ["B"]]
    assert result.diagnostics["n_attached"] == int(attached)


def test_fragment_window_union_keeps_widest_window():
    a = _obs("ala", ALA_SPECTRUM, mids=[
        IsotopomerDistribution(150.0, [0.8, 0.2]),
        IsotopomerDistribution(200.0, [0.7, 0.2, 0.1]),
    ])
    b = _obs("ala", ALA_SPECTRUM, mids=[IsotopomerDistribution(200.0, [0.7, 0.2, 0.05, 0.05])])
    assert fragment_window_union([a, b]) == [(150, 152), (200, 204)]


def test_redetect_harmonizes_windows_and_drops_empty_nodes():
    ala_a = _obs("ala", ALA_SPECTRUM, mids=[
        IsotopomerDistribution(150.0, [0.8, 0.2], r2=0.99),
        IsotopomerDistribution(200.0, [0.7, 0.2, 0.1], r2=0.99),
    ])
    ala_b = _obs("ala", ALA_SPECTRUM, mids=[IsotopomerDistribution(200.0, [0.7, 0.2, 0.05, 0.05], r2=0.99)])
    datasets = [
        Dataset("A", [ala_a]),
        Dataset("B", [_obs("gly", GLY_SPECTRUM), ala_b]),
    ]
    quantifier = _DroppingQuantifier(drop={"gly"})
    result = CompoundMatcher(quantifier=quantifier).match(datasets)

    assert quantifier.windows["ala"] == [[(150, 152), (200, 204)]] * 2
    assert len(result.nodes) == 1
    node = result.nodes[0]
    assert node.name == "ala"
    assert node.index == 0
    assert node.experiments == ["A", "B"]
    assert node.observation("B").features[COMPOUND_GROUPING_FEATURE] == "0"
    assert result.diagnostics["n_redetect_removed"] == 1
    assert result.diagnostics["n_removed_nodes"] == 1


def test_redetect_needs_two_datasets():
    quantifier = _DroppingQuantifier(drop={"ala"})
    nodes = CompoundMatcher(quantifier=quantifier).match([Dataset("A", [_obs("ala", ALA_SPECTRUM)])]).nodes
    assert quantifier.windows == {}
    assert len(nodes) == 1


def test_filter_and_reindex_assigns_dense_indices():
    keep1 = NetworkNode("a")
    keep1.add_observation("A", _obs("a", ALA_SPECTRUM))
    empty = NetworkNode("b")
    keep2 = NetworkNode("c")
    keep2.add_observation("A", _obs("c", GLY_SPECTRUM))
    nodes = filter_and_reindex([keep1, empty, keep2])
    assert [n.name for n in nodes] == ["a", "c"]
    assert [n.index for n in nodes] == [0, 1]
    assert keep2.observation("A").features[COMPOUND_GROUPING_FEATURE] == "1"


def test_compound_label_formats():
    obs = _obs("x", ALA_SPECTRUM, ri=1100.0)
    hits = [LibraryHit(0.9, "1", "Alanine"), LibraryHit(0.8, "2", "Sarcosine"), LibraryHit(0.5, "3", "Other")]
    assert compound_label(obs, hits) == ("Alanine(0.9)", hits[0])
    assert compound_label(obs, hits, max_hits=-1)[0] == "Alanine(0.9), Sarcosine(0.8)"
    assert compound_label(obs, hits[2:]) == ("UNIDENTIFIED RI 1100", None)

    no_ri = LabeledCompoundObservation(name="y", retention_time=120000.0)
    assert compound_label(no_ri, []) == ("UNIDENTIFIED RT 2", None)


def test_identify_nodes_names_nodes_and_copies_features():
    ala = NetworkNode("ala")
    ala.add_observation("A", _obs("ala", ALA_SPECTRUM))
    gly = NetworkNode("gly")
    gly.add_observation("A", _obs("gly", GLY_SPECTRUM, ri=1100.0))
    library = _NameLibrary({"ala": 0.9}, features={"ala": {"KEGG": "C00041"}})

    assert identify_nodes([ala, gly], library, overwrite_names=False) == 1
    assert ala.name == "Ala(0.9)"
    assert ala.features["KEGG"] == "C00041"
    assert ala.observation("A").name == "Ala(0.9)"
    assert gly.name == "gly"

    identify_nodes([gly], library)
    assert gly.name == "UNIDENTIFIED RI 1100"
