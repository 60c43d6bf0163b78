"""Random number utilities."""

from __future__ import annotations

from typing import List

import numpy as np


def get_rng(seed: int | None) -> np.random.Generator:
    return np.random.default_rng(seed)


def spawn_rngs(seed: int | None, n: int) -> List[np.random.Generator]:
    """Independent child generators for repeated runs from one seed."""
    return [np.random.default_rng(s) for s in np.random.SeedSequence(seed).spawn(n)]
