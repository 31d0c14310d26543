from __future__ import annotations

import math
from typing import Dict, List, Tuple

from pygame.math import Vector2


class SpatialGrid:
    """Uniform hash grid over boid indices, used as a broad phase for neighbor queries."""

    def __init__(self, cell_size: float) -> None:
        if cell_size <= 0.0:
            raise ValueError(f"cell_size must be positive, got {cell_size!r}")
        self._cell_size = cell_size
        self._cells: Dict[Tuple[int, int], List[int]] = {}
        self._active_keys: List[Tuple[int, int]] = []
        self._candidate_scratch: List[int] = []

    @property
    def cell_size(self) -> float:
        return self._cell_size

    def clear(self) -> None:
        for key in self._active_keys:
            bucket = self._cells.get(key)
            if bucket:
                bucket.clear()
        self._active_keys.clear()

    def insert(self, index: int, position: Vector2) -> None:
        key = self._cell_key(position.x, position.y)
        bucket = self._cells.get(key)
        if bucket is None:
            bucket = []
            self._cells[key] = bucket
            self._active_keys.append(key)
        elif not bucket:
            # Bucket survived the last clear(); it is active again.
            self._active_keys.append(key)
        bucket.append(index)

    def candidates(self, position: Vector2, radius: float) -> List[int]:
        """
        Indices stored in every cell overlapping the square around `position`.

        The result is a superset of the indices within `radius`, in ascending order.
        The returned list is reused by the next call.
        """

        scratch = self._candidate_scratch
        scratch.clear()
        base_x, base_y = self._cell_key(position.x, position.y)
        cell_range = int(math.ceil(radius / self._cell_size))
        cells = self._cells
        for dx in range(-cell_range, cell_range + 1):
            for dy in range(-cell_range, cell_range + 1):
                bucket = cells.get((base_x + dx, base_y + dy))
                if bucket:
                    scratch.extend(bucket)
        scratch.sort()
        return scratch

    def _cell_key(self, x: float, y: float) -> Tuple[int, int]:
        return (int(x // self._cell_size), int(y // self._cell_size))
