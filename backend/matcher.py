import math
from typing import Any, Iterable, NamedTuple, Sequence

import numpy as np  # type: ignore

from backend.config import MATCH_THRESHOLD


class Match(NamedTuple):
    identity: Any
    confidence: float
    distance: float


def coerce_descriptor(value: Any) -> np.ndarray | None:
    """
    Returns the descriptor as a 1-D float array, or None when it is missing,
    empty, non-numeric or contains non-finite values.
    """
    if value is None or isinstance(value, (str, bytes)):
        return None
    try:
        arr = np.asarray(value, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if arr.ndim != 1 or arr.size == 0:
        return None
    if not np.all(np.isfinite(arr)):
        return None
    return arr


def euclidean_distance(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    # Compare over the shared prefix so a truncated stored descriptor
    # still yields a distance instead of a shape error.
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    n = min(va.size, vb.size)
    return float(np.linalg.norm(va[:n] - vb[:n]))


def match(
    probe: Any,
    enrolled: Iterable[tuple[Any, Any]],
    threshold: float = MATCH_THRESHOLD,
) -> Match | None:
    """
    Linear nearest-neighbour scan over (identity, descriptor) pairs.

    A candidate becomes the best match only when its distance is strictly
    below both the best distance so far and the threshold.
    Returns None when nothing is within threshold, when `enrolled` is empty,
    or when the probe is malformed.
    """
    probe_arr = coerce_descriptor(probe)
    if probe_arr is None:
        return None

    best: Match | None = None
    best_distance = math.inf

    for identity, descriptor in enrolled:
        stored = coerce_descriptor(descriptor)
        if stored is None:
            continue
        distance = euclidean_distance(probe_arr, stored)
        if distance < best_distance and distance < threshold:
            best_distance = distance
            best = Match(identity, 1.0 - distance, distance)

    return best
