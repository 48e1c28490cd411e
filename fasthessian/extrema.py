from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numba
import numpy as np

from .response import ResponseLayer

logger = logging.getLogger(__name__)

# columns of Extrema.int_buffer
I_OCT, I_INTERVAL, I_ROW, I_COL, I_LAPLACIAN = range(5)
# columns of Extrema.float_buffer
F_X, F_Y, F_SCALE, F_RESPONSE, F_OFF_X, F_OFF_Y, F_OFF_S = range(7)

MAX_OFFSET = 0.5
SCALE_FACTOR = 0.1333
DET_EPS = 1e-10


@dataclass
class Extrema:
    int_buffer: np.ndarray  # o, i, row, col, laplacian
    float_buffer: np.ndarray  # x, y, scale, response, off_x, off_y, off_s
    # extrema count, overflow count
    counter: np.ndarray = field(default_factory=lambda: np.zeros(2, dtype=np.int64))

    def reset(self) -> None:
        self.counter[:] = 0

    @property
    def capacity(self) -> int:
        return self.int_buffer.shape[0]

    @property
    def count(self) -> int:
        return int(min(self.counter[0], self.capacity))

    def grow(self, capacity: int) -> None:
        """Reallocate both buffers with room for ``capacity`` rows, keeping the stored ones."""
        n = self.count
        int_buffer = np.zeros((capacity, 5), dtype=np.int64)
        float_buffer = np.zeros((capacity, 7), dtype=np.float64)
        int_buffer[:n] = self.int_buffer[:n]
        float_buffer[:n] = self.float_buffer[:n]
        self.int_buffer = int_buffer
        self.float_buffer = float_buffer


def create_extrema(max_extrema: int) -> Extrema:
    return Extrema(
        int_buffer=np.zeros((max_extrema, 5), dtype=np.int64),
        float_buffer=np.zeros((max_extrema, 7), dtype=np.float64),
    )


@numba.njit(cache=True)
def response_at(responses, row, col, scale):
    return responses[scale * row, scale * col]


@numba.njit(cache=True)
def is_local_max(t_resp, m_resp, b_resp, m_scale, b_scale, r, c, candidate):
    for rr in range(-1, 2):
        for cc in range(-1, 2):
            if t_resp[r + rr, c + cc] >= candidate:
                return False
            if (rr != 0 or cc != 0) and response_at(
                m_resp, r + rr, c + cc, m_scale
            ) >= candidate:
                return False
            if response_at(b_resp, r + rr, c + cc, b_scale) >= candidate:
                return False
    return True


@numba.njit(cache=True)
def find_extrema_kernel(
    t_resp,
    m_resp,
    b_resp,
    m_scale,
    b_scale,
    layer_border,
    thresh,
    o,
    i,
    int_buf,
    float_buf,
    counter,
):
    height, width = t_resp.shape
    max_extrema = int_buf.shape[0]
    # the far edge is also bounded by the 3x3 neighbourhood
    for r in range(layer_border + 1, min(height - layer_border, height - 1)):
        for c in range(layer_border + 1, min(width - layer_border, width - 1)):
            candidate = response_at(m_resp, r, c, m_scale)
            if candidate < thresh:
                continue
            if not is_local_max(t_resp, m_resp, b_resp, m_scale, b_scale, r, c, candidate):
                continue
            idx = counter[0]
            counter[0] += 1
            if idx >= max_extrema:
                counter[1] += 1
                continue
            int_buf[idx, 0] = o
            int_buf[idx, 1] = i
            int_buf[idx, 2] = r
            int_buf[idx, 3] = c
            int_buf[idx, 4] = 0
            for k in range(float_buf.shape[1]):
                float_buf[idx, k] = np.nan
            float_buf[idx, 3] = candidate


@numba.njit(cache=True)
def invert_3x3(H, Hi):
    det = (
        H[0, 0] * (H[1, 1] * H[2, 2] - H[2, 1] * H[1, 2])
        - H[0, 1] * (H[1, 0] * H[2, 2] - H[1, 2] * H[2, 0])
        + H[0, 2] * (H[1, 0] * H[2, 1] - H[1, 1] * H[2, 0])
    )
    norm = 0.0
    for a in range(3):
        for b in range(3):
            norm = max(norm, abs(H[a, b]))
    # singular or numerically indistinguishable from it
    if norm == 0.0 or not abs(det) > DET_EPS * norm * norm * norm:
        return False
    k = 1.0 / det
    Hi[0, 0] = (H[1, 1] * H[2, 2] - H[2, 1] * H[1, 2]) * k
    Hi[0, 1] = (H[0, 2] * H[2, 1] - H[0, 1] * H[2, 2]) * k
    Hi[0, 2] = (H[0, 1] * H[1, 2] - H[0, 2] * H[1, 1]) * k
    Hi[1, 0] = (H[1, 2] * H[2, 0] - H[1, 0] * H[2, 2]) * k
    Hi[1, 1] = (H[0, 0] * H[2, 2] - H[0, 2] * H[2, 0]) * k
    Hi[1, 2] = (H[1, 0] * H[0, 2] - H[0, 0] * H[1, 2]) * k
    Hi[2, 0] = (H[1, 0] * H[2, 1] - H[2, 0] * H[1, 1]) * k
    Hi[2, 1] = (H[2, 0] * H[0, 1] - H[0, 0] * H[2, 1]) * k
    Hi[2, 2] = (H[0, 0] * H[1, 1] - H[1, 0] * H[0, 1]) * k
    return True


@numba.njit(cache=True)
def mat_vec_mul_3x1(M, v, out):
    out[0] = M[0, 0] * v[0] + M[0, 1] * v[1] + M[0, 2] * v[2]
    out[1] = M[1, 0] * v[0] + M[1, 1] * v[1] + M[1, 2] * v[2]
    out[2] = M[2, 0] * v[0] + M[2, 1] * v[1] + M[2, 2] * v[2]


@numba.njit(cache=True)
def build_derivative(t_resp, m_resp, b_resp, m_scale, b_scale, r, c, D):
    D[0] = (response_at(m_resp, r, c + 1, m_scale) - response_at(m_resp, r, c - 1, m_scale)) / 2.0
    D[1] = (response_at(m_resp, r + 1, c, m_scale) - response_at(m_resp, r - 1, c, m_scale)) / 2.0
    D[2] = (t_resp[r, c] - response_at(b_resp, r, c, b_scale)) / 2.0


@numba.njit(cache=True)
def build_hessian(t_resp, m_resp, b_resp, m_scale, b_scale, r, c, H):
    v = response_at(m_resp, r, c, m_scale)
    dxx = (
        response_at(m_resp, r, c + 1, m_scale)
        + response_at(m_resp, r, c - 1, m_scale)
        - 2.0 * v
    )
    dyy = (
        response_at(m_resp, r + 1, c, m_scale)
        + response_at(m_resp, r - 1, c, m_scale)
        - 2.0 * v
    )
    dss = t_resp[r, c] + response_at(b_resp, r, c, b_scale) - 2.0 * v
    dxy = (
        response_at(m_resp, r + 1, c + 1, m_scale)
        - response_at(m_resp, r + 1, c - 1, m_scale)
        - response_at(m_resp, r - 1, c + 1, m_scale)
        + response_at(m_resp, r - 1, c - 1, m_scale)
    ) / 4.0
    dxs = (
        t_resp[r, c + 1]
        - t_resp[r, c - 1]
        - response_at(b_resp, r, c + 1, b_scale)
        + response_at(b_resp, r, c - 1, b_scale)
    ) / 4.0
    dys = (
        t_resp[r + 1, c]
        - t_resp[r - 1, c]
        - response_at(b_resp, r + 1, c, b_scale)
        + response_at(b_resp, r - 1, c, b_scale)
    ) / 4.0
    H[0, 0] = dxx
    H[1, 1] = dyy
    H[2, 2] = dss
    H[0, 1] = H[1, 0] = dxy
    H[0, 2] = H[2, 0] = dxs
    H[1, 2] = H[2, 1] = dys


@numba.njit(cache=True)
def refine_kernel(
    t_resp,
    m_resp,
    b_resp,
    m_lap,
    m_scale,
    b_scale,
    t_step,
    m_filter,
    b_filter,
    o,
    i,
    int_buf,
    float_buf,
    start,
    stop,
):
    D = np.empty(3, dtype=np.float64)
    H = np.empty((3, 3), dtype=np.float64)
    Hi = np.empty((3, 3), dtype=np.float64)
    off = np.empty(3, dtype=np.float64)
    filter_step = m_filter - b_filter
    for idx in range(start, stop):
        if int_buf[idx, 0] != o or int_buf[idx, 1] != i:
            continue
        r, c = int_buf[idx, 2], int_buf[idx, 3]
        build_derivative(t_resp, m_resp, b_resp, m_scale, b_scale, r, c, D)
        build_hessian(t_resp, m_resp, b_resp, m_scale, b_scale, r, c, H)
        if not invert_3x3(H, Hi):
            int_buf[idx, 0] = -1
            continue
        mat_vec_mul_3x1(Hi, D, off)
        for k in range(3):
            off[k] = -off[k]
            float_buf[idx, 4 + k] = off[k]
        # NaN offsets fail these comparisons as well
        if not (
            abs(off[0]) < MAX_OFFSET
            and abs(off[1]) < MAX_OFFSET
            and abs(off[2]) < MAX_OFFSET
        ):
            int_buf[idx, 0] = -1
            continue

        float_buf[idx, 0] = (c + off[0]) * t_step
        float_buf[idx, 1] = (r + off[1]) * t_step
        float_buf[idx, 2] = SCALE_FACTOR * (m_filter + off[2] * filter_step)
        int_buf[idx, 4] = m_lap[m_scale * r, m_scale * c]


def scan_border(t: ResponseLayer) -> int:
    return (t.filter + 1) // (2 * t.step)


def detect_extrema(
    extrema: Extrema,
    t: ResponseLayer,
    m: ResponseLayer,
    b: ResponseLayer,
    thresh: float,
    octave_index: int,
    interval_index: int,
    record: bool = False,
):
    """Append strict 3x3x3 maxima of ``m`` (sampled at ``t``'s density) to ``extrema``.

    When the buffers fill up they are grown and the triplet is scanned again,
    so no candidate is ever lost.
    """
    start = extrema.count
    if t.width == 0 or t.height == 0:
        return (start, start, None) if record else (start, start)
    while True:
        find_extrema_kernel(
            t.responses,
            m.responses,
            b.responses,
            m.scale_to(t),
            b.scale_to(t),
            scan_border(t),
            float(thresh),
            octave_index,
            interval_index,
            extrema.int_buffer,
            extrema.float_buffer,
            extrema.counter,
        )
        if extrema.counter[1] == 0:
            break
        capacity = max(int(extrema.counter[0]), 2 * extrema.capacity)
        logger.debug(
            "Extrema buffer full (%d slots), growing to %d and rescanning octave %d",
            extrema.capacity,
            capacity,
            octave_index + 1,
        )
        extrema.counter[0] = start
        extrema.counter[1] = 0
        extrema.grow(capacity)
    stop = extrema.count
    if record:
        return (
            start,
            stop,
            (
                extrema.int_buffer[start:stop].copy(),
                extrema.float_buffer[start:stop].copy(),
            ),
        )
    return start, stop


def refine_extrema(
    extrema: Extrema,
    t: ResponseLayer,
    m: ResponseLayer,
    b: ResponseLayer,
    octave_index: int,
    interval_index: int,
    start: int,
    stop: int,
    record: bool = False,
):
    """Newton-step every candidate in ``[start, stop)``; rejected ones get o = -1."""
    if stop > start:
        refine_kernel(
            t.responses,
            m.responses,
            b.responses,
            m.laplacian,
            m.scale_to(t),
            b.scale_to(t),
            t.step,
            m.filter,
            b.filter,
            octave_index,
            interval_index,
            extrema.int_buffer,
            extrema.float_buffer,
            start,
            stop,
        )
    if record:
        # rejected rows are kept (with o = -1) so the offsets stay inspectable
        return (
            extrema.int_buffer[start:stop].copy(),
            extrema.float_buffer[start:stop].copy(),
        )
    return None
