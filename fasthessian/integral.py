from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import cv2
import numba
import numpy as np

logger = logging.getLogger(__name__)

W_LUMA_RGB = np.array([0.2989, 0.5870, 0.1140], dtype=np.float64)


def read_rgb(path: str | Path) -> np.ndarray:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")
    im = cv2.imdecode(np.fromfile(str(path), np.uint8), cv2.IMREAD_COLOR)
    if im is None:
        raise ValueError(f"Could not decode image: {path}")
    return cv2.cvtColor(im, cv2.COLOR_BGR2RGB)


def to_luma(image: np.ndarray) -> np.ndarray:
    """Convert an RGB(A) or single-channel image to float64 luma in [0, 1].

    Integer images are scaled by the maximum of their dtype, float images are
    assumed to be normalized already. Single-channel images are used as luma
    directly.
    """
    image = np.asarray(image)
    if np.issubdtype(image.dtype, np.integer):
        scale = 1.0 / float(np.iinfo(image.dtype).max)
    else:
        scale = 1.0
    if image.ndim == 3 and image.shape[2] == 1:
        image = image[:, :, 0]
    if image.ndim == 2:
        return image.astype(np.float64) * scale
    if image.ndim == 3 and image.shape[2] in (3, 4):
        return (image[:, :, :3].astype(np.float64) @ W_LUMA_RGB) * scale
    raise ValueError(
        f"Expected an (H, W), (H, W, 1), (H, W, 3) or (H, W, 4) image, got {image.shape}"
    )


@numba.njit(cache=True)
def box_integral(table, row, col, rows, cols):
    height, width = table.shape
    # corners are inclusive, hence the -1
    r1 = min(row, height) - 1
    c1 = min(col, width) - 1
    r2 = min(row + rows, height) - 1
    c2 = min(col + cols, width) - 1

    a = table[r1, c1] if r1 >= 0 and c1 >= 0 else 0.0
    b = table[r1, c2] if r1 >= 0 and c2 >= 0 else 0.0
    c = table[r2, c1] if r2 >= 0 and c1 >= 0 else 0.0
    d = table[r2, c2] if r2 >= 0 and c2 >= 0 else 0.0
    return max(0.0, a - b - c + d)


@numba.njit(cache=True)
def haar_x(table, row, col, size):
    half = size // 2
    return box_integral(table, row - half, col, size, half) - box_integral(
        table, row - half, col - half, size, half
    )


@numba.njit(cache=True)
def haar_y(table, row, col, size):
    half = size // 2
    return box_integral(table, row, col - half, half, size) - box_integral(
        table, row - half, col - half, half, size
    )


@dataclass(frozen=True)
class IntegralImage:
    """Summed-area table over the luma of an image.

    ``table[y, x]`` holds the sum of luma over all pixels ``(y', x')`` with
    ``y' <= y`` and ``x' <= x``.
    """

    table: np.ndarray

    @classmethod
    def from_image(cls, image: np.ndarray) -> "IntegralImage":
        luma = to_luma(image)
        if luma.shape[0] == 0 or luma.shape[1] == 0:
            raise ValueError(f"Cannot build an integral image of shape {luma.shape}")
        logger.debug("Building integral image of shape %s...", luma.shape)
        table = np.cumsum(np.cumsum(luma, axis=1), axis=0)
        table.setflags(write=False)
        return cls(np.ascontiguousarray(table))

    @property
    def height(self) -> int:
        return self.table.shape[0]

    @property
    def width(self) -> int:
        return self.table.shape[1]

    def box_integral(self, row: int, col: int, rows: int, cols: int) -> float:
        """Sum over ``[row, row + rows) x [col, col + cols)``, clipped to the image."""
        return float(box_integral(self.table, row, col, rows, cols))

    def haar_x(self, row: int, col: int, size: int) -> float:
        return float(haar_x(self.table, row, col, size))

    def haar_y(self, row: int, col: int, size: int) -> float:
        return float(haar_y(self.table, row, col, size))
