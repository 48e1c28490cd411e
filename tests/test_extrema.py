import logging

import numpy as np
import pytest

from fasthessian.detector import collect_keypoints
from fasthessian.extrema import (
    F_OFF_S,
    F_OFF_X,
    I_OCT,
    create_extrema,
    detect_extrema,
    refine_extrema,
    scan_border,
)
from fasthessian.response import create_response_layer


def _triplet(size: int = 9):
    b = create_response_layer(size, size, 1, 9)
    m = create_response_layer(size, size, 1, 15)
    t = create_response_layer(size, size, 1, 1)
    return t, m, b


def _run(t, m, b, thresh=0.1, capacity=16):
    ex = create_extrema(capacity)
    start, stop, raw = detect_extrema(ex, t, m, b, thresh, 0, 0, record=True)
    refined = refine_extrema(ex, t, m, b, 0, 0, start, stop, record=True)
    return ex, raw, refined


def test_isolated_peak_is_detected_and_centred():
    t, m, b = _triplet()
    m.responses[4, 4] = 1.0
    ex, raw, _ = _run(t, m, b)
    assert raw[0].tolist() == [[0, 0, 4, 4, 0]]
    (kp,) = collect_keypoints(ex)
    assert (kp.x, kp.y) == (4.0, 4.0)
    assert kp.scale == pytest.approx(0.1333 * 15)
    assert kp.response == 1.0
    assert kp.orientation == 0.0 and kp.descriptor is None


def test_ties_are_rejected():
    t, m, b = _triplet()
    m.responses[4, 4] = 1.0
    m.responses[4, 5] = 1.0
    ex, _, _ = _run(t, m, b)
    assert ex.count == 0


@pytest.mark.parametrize("layer", ["t", "b"])
def test_equal_response_in_adjacent_scale_rejects(layer):
    t, m, b = _triplet()
    m.responses[4, 4] = 1.0
    {"t": t, "b": b}[layer].responses[3, 5] = 1.0
    ex, _, _ = _run(t, m, b)
    assert ex.count == 0


def test_threshold_rejects_weak_candidates():
    t, m, b = _triplet()
    m.responses[4, 4] = 1.0
    ex, _, _ = _run(t, m, b, thresh=1.5)
    assert ex.count == 0


def test_border_cells_are_not_scanned():
    t, m, b = _triplet()
    assert scan_border(t) == 1
    # rows 1 and 8 lie on the border of a 9x9 grid
    m.responses[1, 4] = 1.0
    m.responses[8, 4] = 1.0
    m.responses[5, 5] = 0.5
    ex, raw, _ = _run(t, m, b)
    assert [tuple(row[2:4]) for row in raw[0]] == [(5, 5)]


def test_spatial_offset_moves_keypoint():
    t, m, b = _triplet()
    m.responses[4, 4] = 1.0
    m.responses[4, 5] = 0.5
    ex, _, refined = _run(t, m, b)
    (kp,) = collect_keypoints(ex)
    # dx = 0.25, dxx = -1.5
    assert kp.x == pytest.approx(4.0 + 0.25 / 1.5)
    assert kp.y == pytest.approx(4.0)
    assert refined[1][0, F_OFF_X] == pytest.approx(0.25 / 1.5)


def test_singular_hessian_is_dropped():
    t, m, b = _triplet()
    m.responses[4, 4] = 1.0
    # dxs = 2 with dxx = dss = -2 makes H singular
    t.responses[4, 5], t.responses[4, 3] = 0.5, -3.5
    b.responses[4, 5], b.responses[4, 3] = -3.5, 0.5
    ex, raw, refined = _run(t, m, b)
    assert len(raw[0]) == 1
    assert refined[0][0, I_OCT] == -1
    assert np.isnan(refined[1][0, F_OFF_X])
    assert collect_keypoints(ex) == []


def test_offset_outside_cell_is_rejected():
    t, m, b = _triplet()
    m.responses[4, 4] = 1.0
    t.responses[4, 4], b.responses[4, 4] = 0.5, -0.5
    t.responses[4, 5], t.responses[4, 3] = 0.5, -2.5
    b.responses[4, 5], b.responses[4, 3] = -2.5, 0.5
    ex, _, refined = _run(t, m, b)
    assert refined[0][0, I_OCT] == -1
    assert refined[1][0, F_OFF_S] == pytest.approx(0.5 / 0.875)
    assert collect_keypoints(ex) == []


def test_zero_border_scans_second_row_but_not_far_edge():
    b = create_response_layer(10, 10, 1, 9)
    m = create_response_layer(10, 10, 1, 15)
    t = create_response_layer(5, 5, 2, 1)
    assert scan_border(t) == 0
    # top-layer cells (1, 2) and (4, 2); the last row has no neighbour below
    m.responses[2, 4] = 1.0
    m.responses[8, 4] = 1.0
    ex, raw, _ = _run(t, m, b)
    assert [tuple(row[2:4]) for row in raw[0]] == [(1, 2)]
    (kp,) = collect_keypoints(ex)
    assert (kp.x, kp.y) == (4.0, 2.0)


def test_scan_at_coarser_top_layer():
    b = create_response_layer(10, 10, 1, 9)
    m = create_response_layer(10, 10, 1, 15)
    t = create_response_layer(5, 5, 2, 1)
    m.responses[4, 4] = 1.0
    ex, raw, _ = _run(t, m, b)
    assert [tuple(row[2:4]) for row in raw[0]] == [(2, 2)]
    (kp,) = collect_keypoints(ex)
    assert (kp.x, kp.y) == (4.0, 4.0)


def test_scan_order_is_row_major():
    t, m, b = _triplet(12)
    for r, c in [(7, 3), (3, 8), (3, 3), (8, 8)]:
        m.responses[r, c] = 1.0
    _, raw, _ = _run(t, m, b)
    assert [tuple(row[2:4]) for row in raw[0]] == [(3, 3), (3, 8), (7, 3), (8, 8)]


def test_full_buffer_grows_without_losing_candidates(caplog):
    t, m, b = _triplet(12)
    for r, c in [(3, 3), (3, 8), (8, 3), (8, 8)]:
        m.responses[r, c] = 1.0
    with caplog.at_level(logging.DEBUG, logger="fasthessian.extrema"):
        ex, raw, _ = _run(t, m, b, capacity=1)
    assert ex.count == 4
    assert ex.capacity >= 4
    assert ex.counter.tolist() == [4, 0]
    assert [tuple(row[2:4]) for row in raw[0]] == [(3, 3), (3, 8), (8, 3), (8, 8)]
    assert len(collect_keypoints(ex)) == 4
    assert "growing to 4" in caplog.text


def test_growth_keeps_earlier_triplets():
    t, m, b = _triplet(12)
    m.responses[3, 3] = 1.0
    ex = create_extrema(1)
    first = detect_extrema(ex, t, m, b, 0.1, 0, 0)
    m2 = create_response_layer(12, 12, 1, 15)
    m2.responses[5, 6] = 1.0
    m2.responses[8, 8] = 1.0
    second = detect_extrema(ex, t, m2, b, 0.1, 0, 1)
    assert (first, second) == ((0, 1), (1, 3))
    assert ex.int_buffer[:3, 1:4].tolist() == [[0, 3, 3], [1, 5, 6], [1, 8, 8]]
