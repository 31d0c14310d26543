from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Container, List, Sequence

from pygame.math import Vector2

from ..core.agent import Boid
from ..core.config import AvoidanceMode, FieldOfViewMode, FlockingOptions
from ..core.rng import DeterministicRng
from ..core.spatial_grid import SpatialGrid
from ..types.geometry import Rect
from ..utils.math2d import _clamp_length_xy_f, _is_finite_xy, _safe_normalize_xy_f

logger = logging.getLogger(__name__)

# Random wander is only applied when it roughly agrees with the current heading.
EXPLORATION_ALIGNMENT_THRESHOLD = 0.2

_DEFAULT_OPTIONS = FlockingOptions()


@dataclass(slots=True)
class FlockingStats:
    boids: int = 0
    neighbor_checks: int = 0
    threatened: int = 0
    skipped: int = 0

    def reset(self) -> None:
        self.boids = 0
        self.neighbor_checks = 0
        self.threatened = 0
        self.skipped = 0


def step(
    boids: Sequence[Boid],
    bounds: Rect,
    rng: DeterministicRng,
    options: FlockingOptions | None = None,
    stats: FlockingStats | None = None,
    grid: SpatialGrid | None = None,
) -> None:
    """
    Advance every boid's velocity by one tick.

    All accelerations are computed from the velocities and positions as they were
    when the call started; velocities are written only after every boid has been
    evaluated, so the order of `boids` does not bias the result.

    A caller that steps every tick can pass its own `grid`; it is cleared and
    refilled here when its cell size matches `options.cell_size`.
    """

    options = _DEFAULT_OPTIONS if options is None else options
    if stats is not None:
        stats.reset()
        stats.boids = len(boids)

    invalid = _invalid_indices(boids, options.strict)
    if options.cell_size is None:
        grid = None
    elif grid is None or grid.cell_size != options.cell_size:
        grid = SpatialGrid(options.cell_size)
    else:
        grid.clear()
    if grid is not None:
        for index, boid in enumerate(boids):
            if index not in invalid:
                grid.insert(index, boid.position)

    updated: List[tuple[float, float]] = []
    for index, boid in enumerate(boids):
        if index in invalid:
            updated.append((0.0, 0.0))
            continue
        config = boid.config
        neighbors, threats = perceive(boid, boids, options.field_of_view_mode, grid=grid, excluded=invalid)
        acceleration = steer(boid, neighbors, threats, bounds, rng, options.avoidance_mode)
        velocity = boid.velocity
        updated.append(
            _clamp_length_xy_f(velocity.x + acceleration.x, velocity.y + acceleration.y, config.max_speed)
        )
        if stats is not None:
            stats.neighbor_checks += len(neighbors)
            if threats:
                stats.threatened += 1

    for boid, (vel_x, vel_y) in zip(boids, updated):
        boid.velocity.update(vel_x, vel_y)

    if stats is not None:
        stats.skipped = len(invalid)


def perceive(
    boid: Boid,
    boids: Sequence[Boid],
    mode: FieldOfViewMode = FieldOfViewMode.NORMALIZED,
    grid: SpatialGrid | None = None,
    excluded: Container[int] = (),
) -> tuple[List[Boid], List[Boid]]:
    """Split what `boid` can see into flocking neighbors and candidate threats."""

    config = boid.config
    perception = max(config.neighbor_radius, config.avoidance_radius) if config.groups_to_avoid else config.neighbor_radius
    neighbor_radius_sq = config.neighbor_radius * config.neighbor_radius
    avoid = config.groups_to_avoid
    pos_x = boid.position.x
    pos_y = boid.position.y
    neighbors: List[Boid] = []
    threats: List[Boid] = []
    for index in neighbor_indices(boid, boids, perception, config.field_of_view, mode, grid=grid, excluded=excluded):
        other = boids[index]
        offset_x = other.position.x - pos_x
        offset_y = other.position.y - pos_y
        if offset_x * offset_x + offset_y * offset_y <= neighbor_radius_sq:
            neighbors.append(other)
        if other.config.group_id in avoid:
            threats.append(other)
    return neighbors, threats


def neighbor_indices(
    boid: Boid,
    boids: Sequence[Boid],
    radius: float,
    field_of_view: float,
    mode: FieldOfViewMode = FieldOfViewMode.NORMALIZED,
    grid: SpatialGrid | None = None,
    excluded: Container[int] = (),
) -> List[int]:
    """
    Indices (ascending) of the boids `boid` can perceive.

    A boid is never its own neighbor (identity, not equal position). The distance
    test is inclusive: a boid exactly `radius` away is a neighbor.
    """

    radius_sq = radius * radius
    candidates = range(len(boids)) if grid is None else grid.candidates(boid.position, radius)
    return [
        index
        for index in candidates
        if index not in excluded and is_neighbor(boid, boids[index], radius_sq, field_of_view, mode)
    ]


def is_neighbor(
    boid: Boid,
    other: Boid,
    radius_sq: float,
    field_of_view: float,
    mode: FieldOfViewMode = FieldOfViewMode.NORMALIZED,
) -> bool:
    if other is boid:
        return False
    offset_x = other.position.x - boid.position.x
    offset_y = other.position.y - boid.position.y
    if offset_x * offset_x + offset_y * offset_y > radius_sq:
        return False
    return in_field_of_view(boid.velocity, offset_x, offset_y, field_of_view, mode)


def in_field_of_view(
    velocity: Vector2,
    offset_x: float,
    offset_y: float,
    field_of_view: float,
    mode: FieldOfViewMode = FieldOfViewMode.NORMALIZED,
) -> bool:
    if mode is FieldOfViewMode.RAW:
        return velocity.x * offset_x + velocity.y * offset_y > field_of_view
    heading_x, heading_y = _safe_normalize_xy_f(velocity.x, velocity.y)
    dir_x, dir_y = _safe_normalize_xy_f(offset_x, offset_y)
    # No heading means no blind spot; a coincident boid has no direction to hide in.
    if (heading_x == 0.0 and heading_y == 0.0) or (dir_x == 0.0 and dir_y == 0.0):
        return True
    return heading_x * dir_x + heading_y * dir_y > field_of_view


def steer(
    boid: Boid,
    neighbors: Sequence[Boid],
    threats: Sequence[Boid],
    bounds: Rect,
    rng: DeterministicRng,
    avoidance_mode: AvoidanceMode = AvoidanceMode.DIRECTION,
) -> Vector2:
    """Sum of the six weighted rule contributions for one boid."""

    config = boid.config
    group_id = config.group_id
    flockmates = [other for other in neighbors if other.config.group_id == group_id]
    acceleration = separation_rule(boid, neighbors, config.separation_radius, config.separation_weight)
    acceleration += cohesion_rule(boid, flockmates, config.separation_radius, config.cohesion_weight)
    acceleration += alignment_rule(boid, flockmates, config.max_speed, config.alignment_weight)
    acceleration += bounds_rule(boid, bounds, config.bounds_margin, config.max_speed, config.bounds_weight)
    acceleration += exploration_rule(boid, rng, config.max_speed, config.exploration_weight)
    acceleration += avoidance_rule(
        boid, threats, config.avoidance_radius, config.max_speed, config.avoidance_weight, avoidance_mode
    )
    return acceleration


def separation_rule(boid: Boid, neighbors: Sequence[Boid], radius: float, weight: float) -> Vector2:
    # Hard cutoff: neighbors at or beyond `radius` do not push.
    radius_sq = radius * radius
    pos_x = boid.position.x
    pos_y = boid.position.y
    sum_x = 0.0
    sum_y = 0.0
    count = 0
    for other in neighbors:
        offset_x = other.position.x - pos_x
        offset_y = other.position.y - pos_y
        if offset_x * offset_x + offset_y * offset_y >= radius_sq:
            continue
        sum_x += offset_x
        sum_y += offset_y
        count += 1
    if count == 0:
        return Vector2()
    scale = -weight / count
    return Vector2(sum_x * scale, sum_y * scale)


def cohesion_rule(boid: Boid, flockmates: Sequence[Boid], min_spacing: float, weight: float) -> Vector2:
    # Flockmates already inside `min_spacing` are left to the separation rule.
    min_spacing_sq = min_spacing * min_spacing
    pos_x = boid.position.x
    pos_y = boid.position.y
    sum_x = 0.0
    sum_y = 0.0
    count = 0
    for other in flockmates:
        offset_x = other.position.x - pos_x
        offset_y = other.position.y - pos_y
        if offset_x * offset_x + offset_y * offset_y < min_spacing_sq:
            continue
        sum_x += other.position.x
        sum_y += other.position.y
        count += 1
    if count == 0:
        return Vector2()
    inv = 1.0 / count
    return Vector2((sum_x * inv - pos_x) * weight, (sum_y * inv - pos_y) * weight)


def alignment_rule(boid: Boid, flockmates: Sequence[Boid], max_speed: float, weight: float) -> Vector2:
    """Average heading (unit velocity) of the flockmates, scaled to `max_speed`."""

    if not flockmates:
        return Vector2()
    sum_x = 0.0
    sum_y = 0.0
    for other in flockmates:
        heading_x, heading_y = _safe_normalize_xy_f(other.velocity.x, other.velocity.y)
        sum_x += heading_x
        sum_y += heading_y
    scale = weight * max_speed / len(flockmates)
    return Vector2(sum_x * scale, sum_y * scale)


def bounds_rule(boid: Boid, bounds: Rect, margin: float, max_speed: float, weight: float) -> Vector2:
    inner = bounds.inset(margin)
    x = boid.position.x
    y = boid.position.y
    push_x = 0.0
    push_y = 0.0
    if x < inner.left:
        push_x = max_speed
    elif x > inner.right:
        push_x = -max_speed
    if y < inner.top:
        push_y = max_speed
    elif y > inner.bottom:
        push_y = -max_speed
    return Vector2(push_x * weight, push_y * weight)


def exploration_rule(boid: Boid, rng: DeterministicRng, max_speed: float, weight: float) -> Vector2:
    jitter = rng.next_jitter()
    velocity = boid.velocity
    if jitter.x * velocity.x + jitter.y * velocity.y > EXPLORATION_ALIGNMENT_THRESHOLD:
        return jitter * (max_speed * weight)
    return Vector2()


def avoidance_rule(
    boid: Boid,
    threats: Sequence[Boid],
    radius: float,
    max_speed: float,
    weight: float,
    mode: AvoidanceMode = AvoidanceMode.DIRECTION,
) -> Vector2:
    radius_sq = radius * radius
    if radius_sq <= 0.0:
        return Vector2()
    pos_x = boid.position.x
    pos_y = boid.position.y
    sum_x = 0.0
    sum_y = 0.0
    count = 0
    for other in threats:
        offset_x = other.position.x - pos_x
        offset_y = other.position.y - pos_y
        dist_sq = offset_x * offset_x + offset_y * offset_y
        if dist_sq >= radius_sq:
            continue
        count += 1
        if mode is AvoidanceMode.FALLOFF:
            falloff = 1.0 - dist_sq / radius_sq
            unit_x, unit_y = _safe_normalize_xy_f(offset_x, offset_y)
            sum_x += unit_x * falloff
            sum_y += unit_y * falloff
        else:
            sum_x += offset_x
            sum_y += offset_y
    if count == 0:
        return Vector2()
    scale = -weight * max_speed
    if mode is AvoidanceMode.FALLOFF:
        scale /= count
        return Vector2(sum_x * scale, sum_y * scale)
    unit_x, unit_y = _safe_normalize_xy_f(sum_x, sum_y)
    return Vector2(unit_x * scale, unit_y * scale)


def _invalid_indices(boids: Sequence[Boid], strict: bool) -> set[int]:
    invalid: set[int] = set()
    for index, boid in enumerate(boids):
        position = boid.position
        velocity = boid.velocity
        if _is_finite_xy(position.x, position.y) and _is_finite_xy(velocity.x, velocity.y):
            continue
        if strict:
            raise ValueError(
                f"boid {boid.entity_id} has non-finite state: position={tuple(position)} velocity={tuple(velocity)}"
            )
        logger.warning(
            "Skipping boid %s with non-finite state (position=%s, velocity=%s); velocity reset to zero",
            boid.entity_id,
            tuple(position),
            tuple(velocity),
        )
        invalid.add(index)
    return invalid
