from __future__ import annotations

import random

from pygame.math import Vector2


def derive_stream_seed(seed: int, salt: int) -> int:
    return (int(seed) ^ int(salt)) & 0xFFFFFFFFFFFFFFFF


class DeterministicRng:
    def __init__(self, seed: int):
        self._seed = seed
        self._random = random.Random(seed)

    @property
    def seed(self) -> int:
        return self._seed

    def reset(self) -> None:
        self._random.seed(self._seed)

    def next_range(self, low: float, high: float) -> float:
        return self._random.uniform(low, high)

    def next_jitter(self) -> Vector2:
        """Uniform sample from the square [-1, 1] x [-1, 1]."""
        return Vector2(self._random.uniform(-1.0, 1.0), self._random.uniform(-1.0, 1.0))
