import numpy as np
import pytest

from mid_network.alignment import align_mids, alignment_cost
from mid_network.errors import InvalidInputError


def test_identical_mids_align_without_gaps():
    mid = [0.5, 0.3, 0.2]
    al1, al2 = align_mids(mid, mid, 0.2)
    np.testing.assert_allclose(al1, mid)
    np.testing.assert_allclose(al2, mid)
    assert alignment_cost(mid, mid, 0.2) == pytest.approx(0.0)


def test_trailing_gap_is_free():
    al1, al2 = align_mids([1.0, 0.0, 0.0], [1.0, 0.0], 0.5)
    np.testing.assert_allclose(al1, [1.0, 0.0, 0.0])
    np.testing.assert_allclose(al2, [1.0, 0.0, 0.0])
    assert alignment_cost([1.0, 0.0, 0.0], [1.0, 0.0], 0.5) == pytest.approx(0.0)


def test_equal_down_and_right_prefers_right():
    # at the last cell down and right tie at 0.2, diagonal costs 0.4
    al1, al2 = align_mids([0.6, 0.4], [0.4, 0.6], 0.2)
    np.testing.assert_allclose(al1, [0.6, 0.4, 0.0])
    np.testing.assert_allclose(al2, [0.0, 0.4, 0.6])


def test_aligned_outputs_have_equal_length_and_keep_input_order():
    a = [0.6, 0.3, 0.1]
    b = [0.2, 0.5, 0.2, 0.1]
    al1, al2 = align_mids(a, b, 0.2)
    assert al1.shape == al2.shape
    assert al1.size >= max(len(a), len(b))
    # all inputs are positive, so non-zero slots are exactly the input entries
    np.testing.assert_allclose(al1[al1 != 0], a)
    np.testing.assert_allclose(al2[al2 != 0], b)


def test_single_element_mids():
    al1, al2 = align_mids([1.0], [1.0], 0.2)
    np.testing.assert_allclose(al1, [1.0])
    np.testing.assert_allclose(al2, [1.0])


def test_empty_mid_is_rejected():
    with pytest.raises(InvalidInputError):
        align_mids([], [0.5, 0.5], 0.2)
    with pytest.raises(ValueError):
        align_mids([0.5, 0.5], [], 0.2)
