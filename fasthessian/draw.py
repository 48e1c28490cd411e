from __future__ import annotations

import math
from typing import Iterable

import cv2
import numpy as np

from .detector import Keypoint

# RGB
BLUE = (0, 0, 255)
RED = (255, 0, 0)
WHITE = (255, 255, 255)


def draw_keypoints(
    img: np.ndarray,
    keypoints: Iterable[Keypoint],
    *,
    thickness: int = 1,
) -> np.ndarray:
    """Overlay keypoints on a copy of an RGB or grayscale uint8 image.

    Each keypoint is a circle of radius ``round(2.5 * scale)``, blue for a
    non-negative Laplacian and red otherwise, with a white line from the
    centre along the keypoint orientation.
    """
    if img.ndim == 2:
        out = cv2.cvtColor(img, cv2.COLOR_GRAY2RGB)
    else:
        out = np.ascontiguousarray(img[:, :, :3]).copy()

    for kp in keypoints:
        radius = round(2.5 * kp.scale)
        ctr = (int(round(kp.x)), int(round(kp.y)))
        tip = (
            ctr[0] + int(round(radius * math.cos(kp.orientation))),
            ctr[1] + int(round(radius * math.sin(kp.orientation))),
        )
        color = BLUE if kp.laplacian > 0 else RED
        cv2.circle(out, ctr, radius, color, thickness, lineType=cv2.LINE_AA)
        cv2.line(out, ctr, tip, WHITE, thickness, lineType=cv2.LINE_AA)
    return out
