from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from numba.core.errors import NumbaPerformanceWarning

from .extrema import (
    F_RESPONSE,
    F_SCALE,
    F_X,
    F_Y,
    I_LAPLACIAN,
    I_OCT,
    Extrema,
    create_extrema,
    detect_extrema,
    refine_extrema,
)
from .integral import IntegralImage
from .response import (
    FILTER_MAP,
    INTERVALS_PER_OCTAVE,
    MAX_OCTAVES,
    ResponseLayer,
    build_response_map,
    layer_geometry,
)

warnings.filterwarnings("ignore", category=NumbaPerformanceWarning)

logger = logging.getLogger(__name__)


@dataclass
class Keypoint:
    x: float
    y: float
    scale: float
    laplacian: int
    response: float = 0.0
    # measured anti-clockwise from the +x axis; filled in by a describer
    orientation: float = 0.0
    descriptor: Optional[np.ndarray] = None

    def set_descriptor_length(self, size: int) -> None:
        self.descriptor = np.zeros(size, dtype=np.float32)


@dataclass
class HessianParams:
    img_dims: tuple[int, int]
    thresh: float = 0.001
    n_oct: int = 2
    init_sample: int = 2

    # initial candidate buffer size, grown on demand
    max_extrema: int = 100_000

    layer_shapes: list[tuple[int, int]] | None = None
    layer_steps: list[int] | None = None
    layer_filters: list[int] | None = None

    def __post_init__(self) -> None:
        self._validate()
        geometry = layer_geometry(self.img_dims, self.n_oct, self.init_sample)
        self.layer_shapes = [shape for shape, _, _ in geometry]
        self.layer_steps = [step for _, step, _ in geometry]
        self.layer_filters = [filter_size for _, _, filter_size in geometry]

    def _validate(self) -> None:
        if len(self.img_dims) != 2 or min(self.img_dims) <= 0:
            raise ValueError(f"img_dims must be two positive sizes, got {self.img_dims}")
        if not 1 <= self.n_oct <= MAX_OCTAVES:
            raise ValueError(f"n_oct must be in [1, {MAX_OCTAVES}], got {self.n_oct}")
        if self.init_sample < 1:
            raise ValueError(f"init_sample must be >= 1, got {self.init_sample}")
        if not self.thresh >= 0.0:
            raise ValueError(f"thresh must be >= 0, got {self.thresh}")
        if self.max_extrema < 1:
            raise ValueError(f"max_extrema must be >= 1, got {self.max_extrema}")

    def triplet(self, octave_index: int, interval_index: int) -> tuple[int, int, int]:
        """Layer indices (bottom, middle, top) scanned for one octave interval."""
        b, m, t = FILTER_MAP[octave_index, interval_index : interval_index + 3]
        return int(b), int(m), int(t)


@dataclass
class HessianData:
    integral: IntegralImage
    layers: tuple[ResponseLayer, ...]
    extrema: Extrema = field(repr=False)


def create_hessian_data(
    params: HessianParams, img: np.ndarray, extrema: Optional[Extrema] = None
) -> HessianData:
    integral = IntegralImage.from_image(img)
    if (integral.height, integral.width) != tuple(params.img_dims):
        raise ValueError(
            f"got image of shape {(integral.height, integral.width)}, expected {tuple(params.img_dims)}"
        )
    return HessianData(
        integral=integral,
        layers=build_response_map(integral, params),
        extrema=create_extrema(params.max_extrema) if extrema is None else extrema,
    )


def compute_octave(
    data: HessianData, params: HessianParams, octave_index: int, record: bool = False
) -> Optional[dict[str, object]]:
    snapshot: dict[str, object] = {"extrema": [], "refined": []}
    logger.debug("Scanning octave %d...", octave_index + 1)
    for interval_index in range(INTERVALS_PER_OCTAVE):
        b, m, t = (data.layers[k] for k in params.triplet(octave_index, interval_index))
        found = detect_extrema(
            data.extrema, t, m, b, params.thresh, octave_index, interval_index, record
        )
        start, stop = found[0], found[1]
        refined = refine_extrema(
            data.extrema, t, m, b, octave_index, interval_index, start, stop, record
        )
        if record:
            snapshot["extrema"].append(found[2])
            snapshot["refined"].append(refined)
    if record:
        snapshot["layers"] = {
            k: data.layers[k]
            for i in range(INTERVALS_PER_OCTAVE)
            for k in params.triplet(octave_index, i)
        }
        return snapshot
    return None


def collect_keypoints(extrema: Extrema) -> list[Keypoint]:
    n = extrema.count
    ib = extrema.int_buffer[:n]
    fb = extrema.float_buffer[:n]
    keep = np.flatnonzero(ib[:, I_OCT] >= 0)
    return [
        Keypoint(
            x=float(fb[k, F_X]),
            y=float(fb[k, F_Y]),
            scale=float(fb[k, F_SCALE]),
            laplacian=int(ib[k, I_LAPLACIAN]),
            response=float(fb[k, F_RESPONSE]),
        )
        for k in keep
    ]


def compute(
    data: HessianData, params: HessianParams, record: bool = False
) -> tuple[list[Keypoint], list[Optional[dict[str, object]]]]:
    data.extrema.reset()
    snapshots = [
        compute_octave(data, params, o, record) for o in range(params.n_oct)
    ]
    keypoints = collect_keypoints(data.extrema)
    logger.debug(
        "Found %d keypoints from %d candidates", len(keypoints), data.extrema.count
    )
    return keypoints, snapshots


class FastHessian:
    """Reusable detector for images of one size; not safe to share between threads."""

    def __init__(self, params: HessianParams):
        self.params = params
        self.extrema = create_extrema(params.max_extrema)

    def compute(self, img: np.ndarray, record: bool = False):
        data = create_hessian_data(self.params, img, self.extrema)
        keypoints, snapshots = compute(data, self.params, record)
        if record:
            return keypoints, snapshots
        return keypoints


def detect(
    image: np.ndarray,
    thresh: float = 0.001,
    octaves: int = 2,
    init_sample: int = 2,
) -> list[Keypoint]:
    """Detect Fast-Hessian interest points in an image.

    Keypoints come back in scan order: octave, interval, row, column.
    """
    image = np.asarray(image)
    params = HessianParams(
        img_dims=tuple(image.shape[:2]),
        thresh=thresh,
        n_oct=octaves,
        init_sample=init_sample,
    )
    return FastHessian(params).compute(image)
