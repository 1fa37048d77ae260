"""Spectral-library and fragment-quantitation collaborators.

The spectral matcher and the MID solver live outside this package. Matching only
needs the small protocols below; `InMemoryLibrary` is a reference implementation
driven by any pairwise similarity function.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import numpy as np

from .model import LabeledCompoundObservation

logger = logging.getLogger(__name__)

Similarity = Callable[[LabeledCompoundObservation, LabeledCompoundObservation], float]


@dataclass(frozen=True)
class LibraryHit:
    score: float
    key: str
    name: str = ""
    features: Mapping[str, str] = field(default_factory=dict)


class SpectralLibrary(Protocol):
    def hits(self, observation: LabeledCompoundObservation) -> List[LibraryHit]:
        """Library hits for `observation`, best first."""
        ...


class MutableSpectralLibrary(SpectralLibrary, Protocol):
    def add(self, observation: LabeledCompoundObservation, key: str, experiment: str) -> None:
        ...


class FragmentQuantifier(Protocol):
    def quantify(
        self, observation: LabeledCompoundObservation, windows: Sequence[Tuple[int, int]]
    ) -> LabeledCompoundObservation:
        """Re-evaluate `observation` over the given (start, end) fragment windows."""
        ...


class EmptyLibrary:
    """Library without entries; additions are ignored."""

    def hits(self, observation: LabeledCompoundObservation) -> List[LibraryHit]:
        return []

    def add(self, observation: LabeledCompoundObservation, key: str, experiment: str) -> None:
        return None

    def __len__(self) -> int:
        return 0


def spectrum_cosine(a: LabeledCompoundObservation, b: LabeledCompoundObservation) -> float:
    """Cosine similarity of two nominal-mass spectra stored as `observation.spectrum`."""
    if a.spectrum is None or b.spectrum is None:
        return 0.0
    x = np.asarray(a.spectrum, dtype=float)
    y = np.asarray(b.spectrum, dtype=float)
    n = max(x.size, y.size)
    x = np.pad(x, (0, n - x.size))
    y = np.pad(y, (0, n - y.size))
    denom = float(np.linalg.norm(x) * np.linalg.norm(y))
    if denom <= 0.0:
        return 0.0
    return float(np.dot(x, y) / denom)


@dataclass
class _Entry:
    key: str
    name: str
    experiment: str
    observation: LabeledCompoundObservation
    features: Dict[str, str]


class InMemoryLibrary:
    """Library of representative spectra scored with a pairwise similarity.

    Args:
        similarity: Score in [0, 1] for a query and a library entry.
        ri_tolerance: Skip entries whose retention index differs by more than this
            (only when both retention indices are positive). None disables the gate.
        max_hits: Return at most this many hits.
    """

    def __init__(
        self,
        similarity: Similarity = spectrum_cosine,
        *,
        ri_tolerance: Optional[float] = None,
        max_hits: int = 10,
    ):
        self.similarity = similarity
        self.ri_tolerance = ri_tolerance
        self.max_hits = max_hits
        self._entries: List[_Entry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, observation: LabeledCompoundObservation, key: str, experiment: str = "") -> None:
        self._entries.append(
            _Entry(
                key=str(key),
                name=observation.name,
                experiment=experiment,
                observation=observation,
                features=dict(observation.features),
            )
        )

    def _ri_ok(self, a: LabeledCompoundObservation, b: LabeledCompoundObservation) -> bool:
        if self.ri_tolerance is None:
            return True
        if a.retention_index <= 0 or b.retention_index <= 0:
            return True
        return abs(a.retention_index - b.retention_index) <= self.ri_tolerance

    def hits(self, observation: LabeledCompoundObservation) -> List[LibraryHit]:
        scored = []
        for entry in self._entries:
            if not self._ri_ok(observation, entry.observation):
                continue
            score = float(self.similarity(observation, entry.observation))
            scored.append(LibraryHit(score=score, key=entry.key, name=entry.name, features=entry.features))
        scored.sort(key=lambda h: h.score, reverse=True)
        return scored[: self.max_hits]


def load_library(loader: Callable[[], Any], *, label: str = "library") -> Any:
    """Call `loader`; on any error log a warning and return an `EmptyLibrary`.

    Matching still runs against an empty library, it just creates more nodes.
    """
    try:
        lib = loader()
    except Exception as exc:
        logger.warning("Failed to load %s, continuing with an empty library: %s", label, exc)
        return EmptyLibrary()
    if lib is None:
        logger.warning("Loader for %s returned nothing, continuing with an empty library.", label)
        return EmptyLibrary()
    return lib
