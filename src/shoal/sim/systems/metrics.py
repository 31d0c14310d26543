from __future__ import annotations

import math
from typing import List

from ..core.agent import Boid
from ..types.geometry import Rect
from ..types.metrics import TickMetrics
from .flocking import FlockingStats


def create_metrics(
    tick: int,
    boids: List[Boid],
    bounds: Rect,
    stats: FlockingStats,
    duration_ms: float,
) -> TickMetrics:
    population = len(boids)
    speed_sum = 0.0
    max_speed = 0.0
    heading_x = 0.0
    heading_y = 0.0
    out_of_bounds = 0
    groups = set()
    for boid in boids:
        velocity = boid.velocity
        speed = math.hypot(velocity.x, velocity.y)
        speed_sum += speed
        if speed > max_speed:
            max_speed = speed
        if speed > 1e-9:
            heading_x += velocity.x / speed
            heading_y += velocity.y / speed
        if not bounds.contains(boid.position.x, boid.position.y):
            out_of_bounds += 1
        groups.add(boid.config.group_id)
    if population == 0:
        average_speed = 0.0
        polarization = 0.0
    else:
        average_speed = speed_sum / population
        # 1.0 when every boid heads the same way, near 0.0 for a disordered swarm.
        polarization = math.hypot(heading_x, heading_y) / population
    return TickMetrics(
        tick=tick,
        population=population,
        groups=len(groups),
        neighbor_checks=stats.neighbor_checks,
        threatened=stats.threatened,
        skipped=stats.skipped,
        average_speed=average_speed,
        max_speed=max_speed,
        polarization=polarization,
        out_of_bounds=out_of_bounds,
        tick_duration_ms=duration_ms,
    )
