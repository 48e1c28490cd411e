from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable

from .detector import Keypoint


def keypoint_record(kp: Keypoint) -> dict:
    return {
        "x": kp.x,
        "y": kp.y,
        "scale": kp.scale,
        "response": kp.response,
        "orientation": kp.orientation,
        "laplacian": kp.laplacian,
        "descriptor": None if kp.descriptor is None else kp.descriptor.tolist(),
    }


def keypoints_to_json(keypoints: Iterable[Keypoint], indent: int = 2) -> str:
    return json.dumps([keypoint_record(kp) for kp in keypoints], indent=indent)


def save_keypoints(path: str | Path, keypoints: Iterable[Keypoint]) -> Path:
    path = Path(path)
    path.write_text(keypoints_to_json(keypoints))
    return path
