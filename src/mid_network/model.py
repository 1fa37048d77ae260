"""Data model for isotopomer networks.

Observations are what a label-detection run reports for one compound in one
experiment; nodes are canonical compounds merged across experiments.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

import numpy as np

from .errors import InvalidInputError
from .mid_utils import MIDFilterConfig, as_mid_array
from .variation import max_isotopomer_sd

if TYPE_CHECKING:  # pragma: no cover
    from .library import SpectralLibrary


# Feature key holding the canonical node index on nodes and their observations.
COMPOUND_GROUPING_FEATURE = "CMP_ID"

# Mean R^2 an ion needs across experiments to be picked as common ion.
COMMON_ION_MIN_MEAN_R2 = 0.95

_E = TypeVar("_E", bound=enum.Enum)


def coerce_enum(enum_cls: Type[_E], value: Any) -> _E:
    """Accept an enum member, its name (case-insensitive) or its value."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        key = value.strip().upper().replace("-", "_")
        if key in enum_cls.__members__:
            return enum_cls.__members__[key]
    try:
        return enum_cls(value)
    except ValueError:
        accepted = ", ".join(m.name.lower() for m in enum_cls)
        raise InvalidInputError(
            f"Unsupported {enum_cls.__name__}: {value!r} (expected one of: {accepted})."
        ) from None


class M0Mode(enum.IntEnum):
    """How the M0 isotopomer is handled before distance calculation."""

    AS_IS = 0
    DROP_M0 = 1
    BASE_PEAK_NORMALIZE = 2
    SUM_NORMALIZE = 3


class IonSelection(str, enum.Enum):
    """Which fragment ion represents a node in an experiment."""

    INDIVIDUAL = "individual"
    COMMON = "common"


@dataclass(eq=False)
class IsotopomerDistribution:
    """MID of one fragment ion: abundances M0..Mk with confidence intervals."""

    ion: float
    values: np.ndarray
    confidence: Optional[np.ndarray] = None
    r2: float = 1.0

    def __post_init__(self) -> None:
        self.ion = float(self.ion)
        self.values = as_mid_array(self.values, name=f"MID of ion {self.ion:g}")
        if self.confidence is None:
            self.confidence = np.zeros_like(self.values)
        else:
            self.confidence = np.asarray(self.confidence, dtype=float)
        if self.confidence.shape != self.values.shape:
            raise InvalidInputError(
                f"Confidence intervals of ion {self.ion:g} have shape {self.confidence.shape}, "
                f"expected {self.values.shape}."
            )
        self.r2 = float(self.r2)

    def __len__(self) -> int:
        return int(self.values.size)

    @property
    def window(self) -> Tuple[int, int]:
        """Fragment window as (start, end) nominal mass."""
        start = int(self.ion)
        return start, start + len(self)


@dataclass(eq=False)
class LabeledCompoundObservation:
    """One experiment's detection of a labeled compound."""

    name: str = ""
    mids: List[IsotopomerDistribution] = field(default_factory=list)
    retention_index: float = 0.0
    retention_time: float = 0.0  # milliseconds
    signal: float = 0.0
    features: Dict[str, str] = field(default_factory=dict)
    n_labeled_spectra: int = 0
    n_unlabeled_spectra: int = 0
    spectrum: Any = None  # opaque handle for the library / quantitation collaborators

    def __post_init__(self) -> None:
        self.mids = sorted(self.mids, key=lambda m: m.ion)

    @property
    def labeled_ions(self) -> List[float]:
        return [m.ion for m in self.mids]

    def has_labeled_ions(self) -> bool:
        return bool(self.mids)

    def mid_for_ion(self, ion: float) -> Optional[IsotopomerDistribution]:
        for m in self.mids:
            if m.ion == ion:
                return m
        return None

    def highest_ion_mid(self) -> Optional[IsotopomerDistribution]:
        return self.mids[-1] if self.mids else None

    def fragment_windows(self) -> List[Tuple[int, int]]:
        return [m.window for m in self.mids]

    def with_mids(self, mids: Sequence[IsotopomerDistribution]) -> "LabeledCompoundObservation":
        return replace(self, mids=list(mids), features=dict(self.features))


class NetworkNode:
    """A canonical compound holding at most one observation per experiment."""

    def __init__(
        self,
        name: str = "",
        *,
        ion_selection: IonSelection | str = IonSelection.INDIVIDUAL,
        features: Optional[Dict[str, str]] = None,
    ):
        self.name = name
        self.features: Dict[str, str] = dict(features or {})
        self.index = -1
        self._observations: Dict[str, LabeledCompoundObservation] = {}
        self._ion_selection = coerce_enum(IonSelection, ion_selection)
        self._largest_common_ion: Optional[float] = None
        self._variation: Optional[float] = None

    def __repr__(self) -> str:
        return f"NetworkNode(index={self.index}, name={self.name!r}, experiments={self.experiments})"

    def _invalidate(self) -> None:
        self._largest_common_ion = None
        self._variation = None

    @property
    def ion_selection(self) -> IonSelection:
        return self._ion_selection

    @ion_selection.setter
    def ion_selection(self, value: IonSelection | str) -> None:
        self._ion_selection = coerce_enum(IonSelection, value)
        self._invalidate()

    # observations

    def add_observation(self, experiment: str, observation: LabeledCompoundObservation) -> None:
        if experiment in self._observations:
            raise InvalidInputError(
                f"Node {self.name!r} already has an observation for experiment {experiment!r}."
            )
        self._observations[experiment] = observation
        self.features.update(observation.features)
        self._invalidate()

    def replace_observation(self, experiment: str, observation: LabeledCompoundObservation) -> None:
        if experiment not in self._observations:
            raise KeyError(experiment)
        self._observations[experiment] = observation
        self._invalidate()

    def remove_observation(self, experiment: str) -> None:
        del self._observations[experiment]
        self._invalidate()

    def observation(self, experiment: str) -> LabeledCompoundObservation:
        return self._observations[experiment]

    @property
    def observations(self) -> Dict[str, LabeledCompoundObservation]:
        return dict(self._observations)

    @property
    def experiments(self) -> List[str]:
        return list(self._observations)

    def has_data_for(self, experiment: str) -> bool:
        return experiment in self._observations

    # ion selection

    def largest_common_ion(self) -> Optional[float]:
        """Largest ion labeled in every experiment with mean R^2 >= 0.95.

        Falls back to the largest common ion when none reaches the R^2 threshold,
        and to None when the experiments share no labeled ion.
        """
        if self._largest_common_ion is not None:
            return self._largest_common_ion
        if not self._observations:
            return None

        obs = list(self._observations.values())
        common = set(obs[0].labeled_ions)
        for o in obs[1:]:
            common &= set(o.labeled_ions)
        if not common:
            return None

        ions = sorted(common)
        mean_r2 = [float(np.mean([o.mid_for_ion(ion).r2 for o in obs])) for ion in ions]

        chosen = ions[-1]
        for ion, r2 in zip(reversed(ions), reversed(mean_r2)):
            if r2 >= COMMON_ION_MIN_MEAN_R2:
                chosen = ion
                break
        self._largest_common_ion = chosen
        return chosen

    def selected_distribution(self, experiment: str) -> IsotopomerDistribution:
        """The MID representing this node in `experiment`."""
        obs = self._observations[experiment]
        if not obs.mids:
            raise InvalidInputError(
                f"Node {self.name!r} has no labeled ion in experiment {experiment!r}."
            )
        if self._ion_selection is IonSelection.COMMON:
            ion = self.largest_common_ion()
            if ion is not None:
                mid = obs.mid_for_ion(ion)
                if mid is not None:
                    return mid
        return obs.mids[-1]

    def selected_mid(self, experiment: str) -> np.ndarray:
        return self.selected_distribution(experiment).values

    def selected_ion(self, experiment: str) -> float:
        return self.selected_distribution(experiment).ion

    def selected_ci(self, experiment: str) -> np.ndarray:
        return self.selected_distribution(experiment).confidence

    def selected_r2(self, experiment: str) -> float:
        return self.selected_distribution(experiment).r2

    # summaries

    def all_labeled_ions(self) -> List[float]:
        ions = set()
        for o in self._observations.values():
            ions.update(o.labeled_ions)
        return sorted(ions)

    def average_retention_index(self) -> float:
        if not self._observations:
            return float("nan")
        return float(np.mean([o.retention_index for o in self._observations.values()]))

    def variation(self) -> float:
        """Maximum cross-experiment SD of any isotopomer fraction (cached)."""
        if self._variation is None:
            if len(self._observations) <= 1:
                self._variation = 0.0
            else:
                self._variation = max_isotopomer_sd([self.selected_mid(t) for t in self._observations])
        return self._variation


@dataclass
class DatasetSettings:
    """Resolved per-dataset settings for network construction."""

    gap_penalty: float = 0.2
    distance_cutoff: float = 0.0
    m0_mode: M0Mode = M0Mode.AS_IS
    visible: bool = True
    mid_filter: MIDFilterConfig = field(default_factory=MIDFilterConfig)

    def __post_init__(self) -> None:
        self.m0_mode = coerce_enum(M0Mode, self.m0_mode)


@dataclass
class Dataset:
    """One experiment / tracer condition."""

    experiment: str
    observations: List[LabeledCompoundObservation] = field(default_factory=list)
    settings: DatasetSettings = field(default_factory=DatasetSettings)
    exclude_library: Optional["SpectralLibrary"] = None

    @property
    def visible(self) -> bool:
        return self.settings.visible

    @visible.setter
    def visible(self, value: bool) -> None:
        self.settings.visible = bool(value)
