"""Needleman-Wunsch style alignment of mass isotopomer distributions.

Lower cost is better. Matching two abundances costs their absolute difference,
skipping an element costs the gap penalty, except for trailing gaps: once one
MID is exhausted the remaining isotopomers of the other are aligned against
free gaps. This lets MIDs of different length be compared without penalizing
the extra (near-zero) heavy isotopomers of the longer one.
"""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np

from .mid_utils import as_mid_array

# traceback codes
_DIAG = 0
_DOWN = 1  # consume a, gap in b
_RIGHT = 2  # consume b, gap in a


def alignment_matrices(a: np.ndarray, b: np.ndarray, gap_penalty: float) -> Tuple[np.ndarray, np.ndarray]:
    """Return (cost, traceback) matrices of shape (len(a)+1, len(b)+1)."""
    n, m = a.size, b.size
    cost = np.zeros((n + 1, m + 1), dtype=float)
    trace = np.empty((n + 1, m + 1), dtype=np.int8)
    cost[:, 0] = gap_penalty * np.arange(n + 1)
    cost[0, :] = gap_penalty * np.arange(m + 1)
    trace[:, 0] = _DOWN
    trace[0, :] = _RIGHT

    for i in range(1, n + 1):
        for j in range(1, m + 1):
            right = cost[i, j - 1] + (0.0 if i == n else gap_penalty)
            down = cost[i - 1, j] + (0.0 if j == m else gap_penalty)
            diag = cost[i - 1, j - 1] + abs(a[i - 1] - b[j - 1])

            # ties between down and right go right; diagonal only if strictly cheaper
            if down < right:
                if diag < down:
                    cost[i, j], trace[i, j] = diag, _DIAG
                else:
                    cost[i, j], trace[i, j] = down, _DOWN
            else:
                if diag < right:
                    cost[i, j], trace[i, j] = diag, _DIAG
                else:
                    cost[i, j], trace[i, j] = right, _RIGHT
    return cost, trace


def align_mids(
    a: Sequence[float], b: Sequence[float], gap_penalty: float
) -> Tuple[np.ndarray, np.ndarray]:
    """Align two MIDs; gap slots are filled with 0.

    Both returned arrays have the same length, and dropping the gap slots of each
    gives back the corresponding input.
    """
    a = as_mid_array(a, name="mid1")
    b = as_mid_array(b, name="mid2")
    _, trace = alignment_matrices(a, b, float(gap_penalty))

    al_a = []
    al_b = []
    i, j = a.size, b.size
    while i > 0 or j > 0:
        step = trace[i, j]
        if step == _DIAG:
            i -= 1
            j -= 1
            al_a.append(a[i])
            al_b.append(b[j])
        elif step == _DOWN:
            i -= 1
            al_a.append(a[i])
            al_b.append(0.0)
        else:
            j -= 1
            al_a.append(0.0)
            al_b.append(b[j])

    al_a.reverse()
    al_b.reverse()
    return np.asarray(al_a, dtype=float), np.asarray(al_b, dtype=float)


def alignment_cost(a: Sequence[float], b: Sequence[float], gap_penalty: float) -> float:
    """Total cost of the optimal alignment."""
    a = as_mid_array(a, name="mid1")
    b = as_mid_array(b, name="mid2")
    cost, _ = alignment_matrices(a, b, float(gap_penalty))
    return float(cost[-1, -1])
