from __future__ import annotations

import logging
import math
from time import perf_counter
from typing import Any, Dict, List

from pygame.math import Vector2

from .agent import Animation, Boid, Entity, Movement, Sprite, Transform, query_animated, query_boids, query_movers, query_polish
from .config import ArchetypeConfig, SimulationConfig
from .rng import DeterministicRng, derive_stream_seed
from .spatial_grid import SpatialGrid
from ..systems import animation, flocking, metrics as metrics_system, movement, polish
from ..types.geometry import Rect
from ..types.metrics import TickMetrics
from ..types.snapshot import Snapshot, SnapshotMetadata, SnapshotWorld
from ..utils.math2d import _heading_from_velocity

logger = logging.getLogger(__name__)

_EXPLORATION_RNG_SALT = 0x5EA5C0A1F15B0105


class World:
    def __init__(self, config: SimulationConfig):
        self._config = config
        self._rng = DeterministicRng(config.seed)
        self._exploration_rng = DeterministicRng(derive_stream_seed(config.seed, _EXPLORATION_RNG_SALT))
        self._bounds = self._validated_bounds(config.world_width, config.world_height)
        self._entities: List[Entity] = []
        self._flocking_stats = flocking.FlockingStats()
        self._grid: SpatialGrid | None = None
        self._metrics: TickMetrics | None = None
        self._next_id = 0
        self._bootstrap_population()

    @property
    def config(self) -> SimulationConfig:
        return self._config

    @property
    def entities(self) -> List[Entity]:
        return self._entities

    @property
    def bounds(self) -> Rect:
        return self._bounds

    @property
    def metrics(self) -> TickMetrics | None:
        return self._metrics

    def boids(self) -> List[Boid]:
        return query_boids(self._entities)

    def reset(self) -> None:
        self._entities.clear()
        self._rng.reset()
        self._exploration_rng.reset()
        self._bounds = self._validated_bounds(self._config.world_width, self._config.world_height)
        self._flocking_stats.reset()
        self._metrics = None
        self._next_id = 0
        self._bootstrap_population()

    def resize(self, width: float, height: float) -> None:
        self._bounds = self._validated_bounds(width, height)
        logger.info("World resized to %.1f x %.1f", width, height)

    def step(self, tick: int) -> TickMetrics:
        start = perf_counter()
        config = self._config
        dt = config.time_step
        entities = self._entities

        boids = query_boids(entities)
        self._grid = self._grid_for(config.flocking.cell_size)
        flocking.step(
            boids, self._bounds, self._exploration_rng, config.flocking, self._flocking_stats, grid=self._grid
        )
        movement.integrate(query_movers(entities), dt)
        polish.apply(query_polish(entities), config.polish)
        animation.tick(query_animated(entities), dt)

        elapsed_ms = (perf_counter() - start) * 1000.0
        metrics = metrics_system.create_metrics(tick, boids, self._bounds, self._flocking_stats, elapsed_ms)
        self._metrics = metrics
        logger.debug(
            "tick=%d neighbors=%d threatened=%d avg_speed=%.3f took %.3fms",
            tick,
            metrics.neighbor_checks,
            metrics.threatened,
            metrics.average_speed,
            elapsed_ms,
        )
        return metrics

    def snapshot(self, tick: int) -> Snapshot:
        metrics = self._metrics if self._metrics is not None else self._snapshot_metrics_from_state(tick)
        config = self._config
        metadata = SnapshotMetadata(
            sim_dt=config.time_step,
            tick_rate=0.0 if config.time_step <= 0 else 1.0 / config.time_step,
            seed=config.seed,
            config_version=config.config_version,
            archetypes=[archetype.name for archetype in config.archetypes],
        )
        return Snapshot(
            tick=tick,
            metrics=metrics,
            agents=[self._entity_snapshot(entity) for entity in self._entities if entity.transform is not None],
            world=SnapshotWorld(width=self._bounds.width, height=self._bounds.height),
            metadata=metadata,
        )

    def _bootstrap_population(self) -> None:
        for archetype in self._config.archetypes:
            for _ in range(archetype.count):
                self._entities.append(self._spawn(archetype))
        logger.info(
            "Spawned %d entities from %d archetypes (seed=%d)",
            len(self._entities),
            len(self._config.archetypes),
            self._config.seed,
        )

    def _spawn(self, archetype: ArchetypeConfig) -> Entity:
        width = self._bounds.width
        height = self._bounds.height
        spread = archetype.initial_speed_scale
        position = Vector2(self._rng.next_range(0.0, width), self._rng.next_range(0.0, height))
        velocity = Vector2(
            self._rng.next_range(-width, width) * spread,
            self._rng.next_range(-height, height) * spread,
        )
        entity = Entity(
            id=self._next_id,
            archetype=archetype.name,
            transform=Transform(position=position, rotation=_heading_from_velocity(velocity)),
            movement=Movement(velocity=velocity),
            # Every entity of an archetype points at the same immutable FlockConfig.
            config=archetype.flock,
            animation=Animation(definition=archetype.animation),
            sprite=Sprite(definition=archetype.sprite),
        )
        self._next_id += 1
        return entity

    def _entity_snapshot(self, entity: Entity) -> Dict[str, Any]:
        transform = entity.transform
        velocity = entity.movement.velocity if entity.movement is not None else Vector2()
        source = entity.sprite.source if entity.sprite is not None else None
        return {
            "id": entity.id,
            "archetype": entity.archetype,
            "group": entity.config.group_id if entity.config is not None else None,
            "x": transform.position.x,
            "y": transform.position.y,
            "vx": velocity.x,
            "vy": velocity.y,
            "speed": velocity.length(),
            "heading": transform.rotation,
            "frame": entity.animation.frame_number if entity.animation is not None else 0,
            "source": None if source is None else [source.x, source.y, source.width, source.height],
        }

    def _snapshot_metrics_from_state(self, tick: int) -> TickMetrics:
        return metrics_system.create_metrics(tick, self.boids(), self._bounds, flocking.FlockingStats(), 0.0)

    def _grid_for(self, cell_size: float | None) -> SpatialGrid | None:
        if cell_size is None:
            return None
        if self._grid is None or self._grid.cell_size != cell_size:
            return SpatialGrid(cell_size)
        return self._grid

    @staticmethod
    def _validated_bounds(width: float, height: float) -> Rect:
        if not (math.isfinite(width) and math.isfinite(height)) or width <= 0.0 or height <= 0.0:
            raise ValueError(f"World size must be finite and positive, got {width!r} x {height!r}")
        return Rect(0.0, 0.0, float(width), float(height))
