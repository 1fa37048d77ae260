"""Distance scores between aligned MIDs and their Monte-Carlo null models."""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
from joblib import Parallel, delayed

from .alignment import align_mids
from .errors import InvalidInputError
from .mid_utils import as_mid_array, random_normalized_vector
from .model import coerce_enum

logger = logging.getLogger(__name__)

MONTE_CARLO_SIZE = 1000


class DistanceMeasure(enum.Enum):
    EUCLIDEAN = "euclidean"
    CANBERRA = "canberra"
    MANHATTAN = "manhattan"
    # Listed as "cosine" in older configurations, but it is the plain,
    # unnormalized dot product.
    DOT_PRODUCT = "dot_product"
    # 1 - Pearson correlation over the aligned vectors.
    CUSTOM = "custom"


class DistanceNormalization(enum.Enum):
    NONE = "none"
    SUM = "sum"
    PROD = "prod"
    MAX = "max"
    MIN = "min"


@dataclass(frozen=True)
class DistanceConfig:
    """Measure, normalization and gap penalty used for every MID comparison."""

    measure: DistanceMeasure = DistanceMeasure.EUCLIDEAN
    normalization: DistanceNormalization = DistanceNormalization.SUM
    gap_penalty: float = 0.2

    def __post_init__(self) -> None:
        measure = self.measure
        if isinstance(measure, str) and measure.strip().lower() == "cosine":
            measure = DistanceMeasure.DOT_PRODUCT
        object.__setattr__(self, "measure", coerce_enum(DistanceMeasure, measure))
        object.__setattr__(self, "normalization", coerce_enum(DistanceNormalization, self.normalization))
        object.__setattr__(self, "gap_penalty", float(self.gap_penalty))

    def with_gap_penalty(self, gap_penalty: float) -> "DistanceConfig":
        return DistanceConfig(self.measure, self.normalization, gap_penalty)


def raw_distance(a: np.ndarray, b: np.ndarray, measure: DistanceMeasure) -> float:
    """Unnormalized distance between two equal-length vectors (may be NaN)."""
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.shape != b.shape:
        raise ValueError(f"Aligned vectors differ in shape: {a.shape} vs {b.shape}.")

    with np.errstate(divide="ignore", invalid="ignore"):
        if measure is DistanceMeasure.EUCLIDEAN:
            return float(np.sqrt(np.sum((a - b) ** 2)))
        if measure is DistanceMeasure.CANBERRA:
            return float(np.sum(np.abs(a - b) / (np.abs(a) + np.abs(b))))
        if measure is DistanceMeasure.MANHATTAN:
            return float(np.sum(np.abs(a - b)))
        if measure is DistanceMeasure.DOT_PRODUCT:
            return float(np.dot(a, b))
        if measure is DistanceMeasure.CUSTOM:
            za = (a - a.mean()) / a.std()
            zb = (b - b.mean()) / b.std()
            return float(1.0 - np.mean(za * zb))
    raise ValueError(f"Unsupported distance measure: {measure!r}")


def normalization_divisor(len1: int, len2: int, normalization: DistanceNormalization) -> float:
    if normalization is DistanceNormalization.NONE:
        return 1.0
    if normalization is DistanceNormalization.SUM:
        return float(len1 + len2)
    if normalization is DistanceNormalization.PROD:
        return float(len1 * len2)
    if normalization is DistanceNormalization.MAX:
        return float(max(len1, len2))
    if normalization is DistanceNormalization.MIN:
        return float(min(len1, len2))
    raise ValueError(f"Unsupported distance normalization: {normalization!r}")


def mid_distance(
    aligned_a: Sequence[float],
    aligned_b: Sequence[float],
    len1: int = 0,
    len2: int = 0,
    measure: DistanceMeasure | str = DistanceMeasure.EUCLIDEAN,
    normalization: DistanceNormalization | str = DistanceNormalization.SUM,
) -> float:
    """Score an aligned MID pair.

    `len1`/`len2` are the lengths before alignment; 0 means "use the aligned length".
    Returns |raw / divisor|; NaN signals an incomparable pair.
    """
    measure = coerce_enum(DistanceMeasure, measure)
    normalization = coerce_enum(DistanceNormalization, normalization)
    a = np.asarray(aligned_a, dtype=float)
    b = np.asarray(aligned_b, dtype=float)

    len1 = int(len1) or a.size
    len2 = int(len2) or b.size
    dist = raw_distance(a, b, measure)
    return abs(dist / normalization_divisor(len1, len2, normalization))


def aligned_distance(mid1: Sequence[float], mid2: Sequence[float], config: DistanceConfig) -> float:
    """Align two MIDs with `config.gap_penalty` and score them."""
    mid1 = as_mid_array(mid1, name="mid1")
    mid2 = as_mid_array(mid2, name="mid2")
    al1, al2 = align_mids(mid1, mid2, config.gap_penalty)
    return mid_distance(al1, al2, mid1.size, mid2.size, config.measure, config.normalization)


def _sample_null_distances(
    n: int, len1: int, len2: int, config: DistanceConfig, seed: np.random.SeedSequence
) -> np.ndarray:
    rng = np.random.default_rng(seed)
    out = np.empty(n, dtype=float)
    for k in range(n):
        v1 = random_normalized_vector(rng, len1)
        v2 = random_normalized_vector(rng, len2)
        out[k] = aligned_distance(v1, v2, config)
    return out


def split_slices(size: int, n_workers: int) -> list[Tuple[int, int]]:
    """Split range(size) into contiguous disjoint (start, stop) slices, one per worker."""
    n_workers = max(1, min(int(n_workers), int(size)))
    per = size // n_workers
    slices = []
    start = 0
    for w in range(n_workers):
        stop = size if w == n_workers - 1 else start + per
        slices.append((start, stop))
        start = stop
    return slices


class DistanceEngine:
    """MID distances under one `DistanceConfig`, with cached Monte-Carlo z-scores.

    Args:
        config: Distance measure, normalization and gap penalty.
        seed: Seed (or SeedSequence) for null-model sampling; None draws fresh entropy.
        n_jobs: Number of sampling workers; None uses the CPU count.
    """

    def __init__(
        self,
        config: Optional[DistanceConfig] = None,
        *,
        seed: int | np.random.SeedSequence | None = None,
        n_jobs: Optional[int] = None,
    ):
        self.config = config or DistanceConfig()
        if isinstance(seed, np.random.SeedSequence):
            self._seed_seq = seed
        else:
            self._seed_seq = np.random.SeedSequence(seed)
        self.n_jobs = int(n_jobs) if n_jobs else (os.cpu_count() or 1)
        self._null_models: Dict[Tuple[int, int], Tuple[float, float]] = {}
        self._null_model_sizes: Dict[Tuple[int, int], int] = {}

    def align(self, mid1: Sequence[float], mid2: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
        return align_mids(mid1, mid2, self.config.gap_penalty)

    def distance(self, mid1: Sequence[float], mid2: Sequence[float]) -> float:
        return aligned_distance(mid1, mid2, self.config)

    def null_model(self, len1: int, len2: int, size: int = MONTE_CARLO_SIZE) -> Tuple[float, float]:
        """(mean, population SD) of distances between random MIDs of the given lengths.

        Models are cached per length pair. Asking for a cached pair with another
        `size` raises; call `clear_cache` first to resample.
        """
        key = (min(len1, len2), max(len1, len2))
        if key not in self._null_models:
            self._null_models[key] = self._build_null_model(key[0], key[1], size)
            self._null_model_sizes[key] = size
        elif self._null_model_sizes.get(key, size) != size:
            raise InvalidInputError(
                f"Null model for lengths {key} was built from {self._null_model_sizes[key]} samples, "
                f"not {size}; call clear_cache() to resample."
            )
        return self._null_models[key]

    def _build_null_model(self, len1: int, len2: int, size: int) -> Tuple[float, float]:
        if size <= 0:
            raise InvalidInputError(f"Monte-Carlo sample size must be positive, got {size}.")
        if len1 <= 0:
            raise InvalidInputError(f"MID lengths must be positive, got ({len1}, {len2}).")
        slices = split_slices(size, self.n_jobs)
        seeds = self._seed_seq.spawn(len(slices))
        parts = Parallel(n_jobs=len(slices))(
            delayed(_sample_null_distances)(stop - start, len1, len2, self.config, s)
            for (start, stop), s in zip(slices, seeds)
        )
        dists = np.concatenate(parts)
        mean = float(np.mean(dists))
        sd = float(np.std(dists))
        logger.debug("Monte-Carlo null model (%d, %d): mean=%.4g sd=%.4g n=%d", len1, len2, mean, sd, size)
        return mean, sd

    def zscore(self, distance: float, len1: int, len2: int) -> float:
        mean, sd = self.null_model(len1, len2)
        if sd <= 0.0:
            return float("nan")
        return (distance - mean) / sd

    def clear_cache(self) -> None:
        self._null_models.clear()
        self._null_model_sizes.clear()
