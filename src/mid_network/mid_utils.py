from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, List, Optional, Sequence

import numpy as np

from .errors import InvalidInputError

if TYPE_CHECKING:  # pragma: no cover
    from .model import IsotopomerDistribution, LabeledCompoundObservation


# Trailing isotopomers at or below this abundance are trimmed by the MID filter.
DEFAULT_TAIL_THRESHOLD = 0.01


def as_mid_array(values: Sequence[float], name: str = "mid") -> np.ndarray:
    """Return a 1D float array, rejecting empty or non-vector input."""
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 1:
        raise InvalidInputError(f"{name} must be 1D, got shape {arr.shape}.")
    if arr.size == 0:
        raise InvalidInputError(f"{name} must not be empty.")
    return arr


def base_peak_normalize(values: Sequence[float]) -> np.ndarray:
    """Scale so that the largest abundance is 1."""
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return arr
    return arr / np.max(arr)


def sum_normalize(values: Sequence[float]) -> np.ndarray:
    """Scale so that the abundances sum to 1."""
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return arr
    return arr / np.sum(arr)


def remove_trailing_abundances(values: Sequence[float], threshold: float = DEFAULT_TAIL_THRESHOLD) -> np.ndarray:
    """Drop trailing isotopomers whose abundance does not exceed `threshold`."""
    arr = np.asarray(values, dtype=float)
    above = np.flatnonzero(arr > threshold)
    if above.size == 0:
        return arr[:0]
    return arr[: int(above[-1]) + 1]


def random_normalized_vector(rng: np.random.Generator, size: int, total: float = 1.0) -> np.ndarray:
    """Random non-negative vector of length `size` summing to `total`."""
    if size <= 0:
        raise InvalidInputError(f"size must be positive, got {size}.")
    v = rng.random(size)
    s = float(v.sum())
    if s <= 0.0:
        v = np.ones(size, dtype=float)
        s = float(size)
    return v / s * total


@dataclass(frozen=True)
class MIDFilterConfig:
    """Quality filter applied to every labeled ion of an observation.

    An ion is kept when its fit is good enough (`min_r2`), it is not longer than
    `max_mass_isotopomer + 1`, its M0 is at least `min_m0`, the fragment is heavy
    enough to carry that many tracer atoms (`len * tracer_atom_mass <= ion`) and the
    absolute abundances sum to at most `1 + max_fragment_deviation`. Kept MIDs have
    trailing abundances `<= tail_threshold` removed.
    """

    enabled: bool = True
    min_r2: float = 0.95
    max_mass_isotopomer: int = 20
    min_m0: float = 0.45
    tracer_atom_mass: float = 13.0
    max_fragment_deviation: float = 0.2
    tail_threshold: float = DEFAULT_TAIL_THRESHOLD


def _keep_mid(mid: "IsotopomerDistribution", cfg: MIDFilterConfig) -> Optional["IsotopomerDistribution"]:
    values = mid.values
    if mid.r2 < cfg.min_r2:
        return None
    if values.size > cfg.max_mass_isotopomer + 1:
        return None
    if values[0] < cfg.min_m0:
        return None
    if values.size * cfg.tracer_atom_mass > mid.ion:
        return None
    if float(np.sum(np.abs(values))) - 1.0 > cfg.max_fragment_deviation:
        return None

    trimmed = remove_trailing_abundances(values, cfg.tail_threshold)
    if trimmed.size == 0:
        return None
    return replace(mid, values=trimmed, confidence=mid.confidence[: trimmed.size])


def filter_mids(observation: "LabeledCompoundObservation", cfg: MIDFilterConfig) -> "LabeledCompoundObservation":
    """Return a copy of `observation` holding only the ions that pass `cfg`."""
    if not cfg.enabled:
        return observation
    kept: List["IsotopomerDistribution"] = []
    for mid in observation.mids:
        m = _keep_mid(mid, cfg)
        if m is not None:
            kept.append(m)
    return observation.with_mids(kept)
