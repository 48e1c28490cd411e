from __future__ import annotations

import numpy as np


def concat_pairs(snapshots, key: str):
    """Stack the (int_buffer, float_buffer) pairs recorded under ``key``."""
    pairs = []
    for snap in snapshots:
        for pair in snap[key]:
            if pair is None:
                continue
            ib, fb = pair
            if ib.size > 0:
                pairs.append((ib, fb))
    if not pairs:
        return np.empty((0, 5), np.int64), np.empty((0, 7), np.float64)
    ints = np.concatenate([p[0] for p in pairs], axis=0)
    flts = np.concatenate([p[1] for p in pairs], axis=0)
    return ints, flts
