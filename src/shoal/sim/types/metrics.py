from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class TickMetrics:
    tick: int
    population: int
    groups: int
    neighbor_checks: int
    threatened: int
    skipped: int
    average_speed: float
    max_speed: float
    polarization: float
    out_of_bounds: int
    tick_duration_ms: float = 0.0
