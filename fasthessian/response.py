from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numba
import numpy as np

from .integral import IntegralImage, box_integral

logger = logging.getLogger(__name__)

MAX_OCTAVES = 5
# Oct1: 9,  15, 21, 27
# Oct2: 15, 27, 39, 51
# Oct3: 27, 51, 75, 99
# Oct4: 51, 99, 147,195
# Oct5: 99, 195,291,387
FILTER_SIZES = (9, 15, 21, 27, 39, 51, 75, 99, 147, 195, 291, 387)
LAYER_OCTAVE = (0, 0, 0, 0, 1, 1, 2, 2, 3, 3, 4, 4)
FILTER_MAP = np.array(
    [
        [0, 1, 2, 3],
        [1, 3, 4, 5],
        [3, 5, 6, 7],
        [5, 7, 8, 9],
        [7, 9, 10, 11],
    ],
    dtype=np.int64,
)
INTERVALS_PER_OCTAVE = 2
HESSIAN_WEIGHT = 0.81


def num_layers(n_oct: int) -> int:
    return 4 + 2 * (n_oct - 1)


@dataclass
class ResponseLayer:
    width: int
    height: int
    step: int
    filter: int
    responses: np.ndarray = field(repr=False)
    laplacian: np.ndarray = field(repr=False)

    def scale_to(self, src: "ResponseLayer") -> int:
        """Integer ratio mapping a cell of ``src`` onto this (finer or equal) layer."""
        return self.width // src.width

    def remap(self, row: int, col: int, src: "ResponseLayer" | None = None):
        if src is None:
            return row, col
        scale = self.scale_to(src)
        return scale * row, scale * col

    def get_response(self, row: int, col: int, src: "ResponseLayer" | None = None):
        r, c = self.remap(row, col, src)
        return float(self.responses[r, c])

    def get_laplacian(self, row: int, col: int, src: "ResponseLayer" | None = None):
        r, c = self.remap(row, col, src)
        return int(self.laplacian[r, c])


def create_response_layer(width: int, height: int, step: int, filter_size: int):
    return ResponseLayer(
        width=width,
        height=height,
        step=step,
        filter=filter_size,
        responses=np.zeros((height, width), dtype=np.float64),
        laplacian=np.zeros((height, width), dtype=np.uint8),
    )


@numba.njit(cache=True, fastmath=True, parallel=True)
def response_layer_kernel(table, responses, laplacian, step, filter_size):
    height, width = responses.shape
    b = (filter_size - 1) // 2  # border
    l = filter_size // 3  # lobe
    w = filter_size
    inverse_area = 1.0 / (w * w)
    for ar in numba.prange(height):
        r = ar * step
        for ac in range(width):
            c = ac * step
            dxx = box_integral(table, r - l + 1, c - b, 2 * l - 1, w) - 3.0 * box_integral(
                table, r - l + 1, c - l // 2, 2 * l - 1, l
            )
            dyy = box_integral(table, r - b, c - l + 1, w, 2 * l - 1) - 3.0 * box_integral(
                table, r - l // 2, c - l + 1, l, 2 * l - 1
            )
            dxy = (
                box_integral(table, r - l, c + 1, l, l)
                + box_integral(table, r + 1, c - l, l, l)
                - box_integral(table, r - l, c - l, l, l)
                - box_integral(table, r + 1, c + 1, l, l)
            )
            dxx *= inverse_area
            dyy *= inverse_area
            dxy *= inverse_area
            responses[ar, ac] = dxx * dyy - HESSIAN_WEIGHT * dxy * dxy
            laplacian[ar, ac] = 1 if dxx + dyy >= 0.0 else 0


def build_response_layer(integral: IntegralImage, layer: ResponseLayer) -> ResponseLayer:
    if layer.width > 0 and layer.height > 0:
        response_layer_kernel(
            integral.table, layer.responses, layer.laplacian, layer.step, layer.filter
        )
    layer.responses.setflags(write=False)
    layer.laplacian.setflags(write=False)
    return layer


def layer_geometry(img_dims: tuple[int, int], n_oct: int, init_sample: int):
    """Grid shape, step and filter size of every layer in the response map."""
    h = img_dims[0] // init_sample
    w = img_dims[1] // init_sample
    out = []
    for filter_size, o in zip(FILTER_SIZES[: num_layers(n_oct)], LAYER_OCTAVE):
        out.append(((h >> o, w >> o), init_sample << o, filter_size))
    return out


def build_response_map(integral: IntegralImage, params) -> tuple[ResponseLayer, ...]:
    logger.debug("Building response map...")
    layers = []
    for (height, width), step, filter_size in zip(
        params.layer_shapes, params.layer_steps, params.layer_filters
    ):
        layer = create_response_layer(width, height, step, filter_size)
        layers.append(build_response_layer(integral, layer))
    return tuple(layers)
