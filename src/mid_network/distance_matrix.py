"""Per-experiment distance matrices over the canonical node index space."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .distance import DistanceConfig, DistanceEngine
from .errors import InvalidInputError
from .mid_utils import base_peak_normalize, sum_normalize
from .model import Dataset, M0Mode, NetworkNode, coerce_enum

logger = logging.getLogger(__name__)

DIAGONAL_VALUE = 1.0


class DistanceKind(enum.Enum):
    FINITE = "finite"
    # one of the nodes has no MID in this experiment
    MISSING = "missing"
    # the measure is undefined for the pair (e.g. Canberra 0/0)
    INCOMPARABLE = "incomparable"


def classify_distance(value: float) -> DistanceKind:
    if np.isnan(value):
        return DistanceKind.INCOMPARABLE
    if np.isinf(value):
        return DistanceKind.MISSING
    return DistanceKind.FINITE


@dataclass
class DistanceMatrix:
    """Upper-triangular distances of one experiment.

    `values[i, j]` for i < j holds the distance, the diagonal is 1 and the lower
    triangle is NaN; use `get` for symmetric access.
    """

    experiment: str
    values: np.ndarray
    min_distance: float = 0.0
    max_distance: float = 0.0
    mean_distance: float = 0.0

    def __post_init__(self) -> None:
        self.values = np.asarray(self.values, dtype=float)
        if self.values.ndim != 2 or self.values.shape[0] != self.values.shape[1]:
            raise InvalidInputError(f"Distance matrix must be square, got shape {self.values.shape}.")

    @property
    def size(self) -> int:
        return int(self.values.shape[0])

    @property
    def range(self) -> Tuple[float, float]:
        return self.min_distance, self.max_distance

    def get(self, i: int, j: int) -> float:
        if i == j:
            return float(self.values[i, i])
        a, b = (i, j) if i < j else (j, i)
        return float(self.values[a, b])

    def kind(self, i: int, j: int) -> DistanceKind:
        return classify_distance(self.get(i, j))

    def upper_triangle(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(rows, cols, values) of all i < j entries."""
        rows, cols = np.triu_indices(self.size, k=1)
        return rows, cols, self.values[rows, cols]


def prepare_mid(mid: Sequence[float], mode: M0Mode) -> Optional[np.ndarray]:
    """Apply the M0 handling mode; None when nothing is left to compare."""
    mode = coerce_enum(M0Mode, mode)
    arr = np.asarray(mid, dtype=float)
    if mode is M0Mode.AS_IS:
        return arr
    arr = arr[1:]
    if arr.size == 0:
        return None
    with np.errstate(divide="ignore", invalid="ignore"):
        if mode is M0Mode.BASE_PEAK_NORMALIZE:
            return base_peak_normalize(arr)
        if mode is M0Mode.SUM_NORMALIZE:
            return sum_normalize(arr)
    return arr


class DistanceMatrixBuilder:
    """
    Build one `DistanceMatrix` per dataset.

    Args:
        config: Measure and normalization; the gap penalty is taken from each
            dataset's settings.
        use_zscore: Store Monte-Carlo z-scores instead of raw distances.
        seed: Seed for the null-model RNG of every engine.
        n_jobs: Workers for null-model sampling.
    """

    def __init__(
        self,
        config: Optional[DistanceConfig] = None,
        *,
        use_zscore: bool = False,
        seed: Optional[int] = None,
        n_jobs: Optional[int] = None,
    ):
        self.config = config or DistanceConfig()
        self.use_zscore = bool(use_zscore)
        self.seed = seed
        self.n_jobs = n_jobs
        self._engines: Dict[float, DistanceEngine] = {}

    def engine_for(self, gap_penalty: float) -> DistanceEngine:
        """Engines are shared between datasets with the same gap penalty."""
        key = float(gap_penalty)
        if key not in self._engines:
            self._engines[key] = DistanceEngine(
                self.config.with_gap_penalty(key), seed=self.seed, n_jobs=self.n_jobs
            )
        return self._engines[key]

    def build(self, nodes: Sequence[NetworkNode], dataset: Dataset) -> DistanceMatrix:
        t = dataset.experiment
        mode = dataset.settings.m0_mode
        engine = self.engine_for(dataset.settings.gap_penalty)

        mids: List[Optional[np.ndarray]] = []
        for node in nodes:
            if node.has_data_for(t):
                mids.append(prepare_mid(node.selected_mid(t), mode))
            else:
                mids.append(None)

        n = len(nodes)
        values = np.full((n, n), np.nan, dtype=float)
        np.fill_diagonal(values, DIAGONAL_VALUE)
        d_min = 0.0
        d_max = 0.0
        d_sum = 0.0

        for i in range(n):
            for j in range(i + 1, n):
                mid1, mid2 = mids[i], mids[j]
                if mid1 is None or mid2 is None:
                    values[i, j] = np.inf
                    continue
                dist = engine.distance(mid1, mid2)
                if self.use_zscore:
                    dist = engine.zscore(dist, mid1.size, mid2.size)
                values[i, j] = dist
                if np.isfinite(dist):
                    d_min = min(d_min, dist)
                    d_max = max(d_max, dist)
                    d_sum += dist

        d_mean = d_sum / (n * (n - 1)) if n > 1 else 0.0
        logger.info(
            "Distances for %s (%d nodes): range %.4g - %.4g, mean %.4g (%s / %s)",
            t,
            n,
            d_min,
            d_max,
            d_mean,
            engine.config.measure.value,
            engine.config.normalization.value,
        )
        return DistanceMatrix(t, values, d_min, d_max, d_mean)

    def build_all(self, nodes: Sequence[NetworkNode], datasets: Sequence[Dataset]) -> List[DistanceMatrix]:
        logger.info("Creating distance matrices, number of nodes: %d", len(nodes))
        return [self.build(nodes, ds) for ds in datasets]
