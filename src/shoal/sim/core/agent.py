from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from pygame.math import Vector2

from .config import AnimationConfig, FlockConfig, SpriteConfig
from ..types.geometry import Rect


@dataclass(slots=True)
class Transform:
    position: Vector2 = field(default_factory=Vector2)
    rotation: float = 0.0


@dataclass(slots=True)
class Movement:
    velocity: Vector2 = field(default_factory=Vector2)


@dataclass(slots=True)
class Animation:
    definition: AnimationConfig
    tick: float = 0.0
    frame_number: int = 0
    speed: float = 1.0


@dataclass(slots=True)
class Sprite:
    definition: SpriteConfig
    source: Rect | None = None


@dataclass(slots=True)
class Entity:
    id: int
    archetype: str = ""
    transform: Transform | None = None
    movement: Movement | None = None
    config: FlockConfig | None = None
    animation: Animation | None = None
    sprite: Sprite | None = None


@dataclass(slots=True)
class Boid:
    """Flocking view of an entity; `position` and `velocity` alias the entity's vectors."""

    position: Vector2
    velocity: Vector2
    config: FlockConfig
    entity_id: int = -1


def query_boids(entities: List[Entity]) -> List[Boid]:
    boids: List[Boid] = []
    for entity in entities:
        if entity.transform is None or entity.movement is None or entity.config is None:
            continue
        boids.append(Boid(entity.transform.position, entity.movement.velocity, entity.config, entity.id))
    return boids


def query_movers(entities: List[Entity]) -> List[tuple[Transform, Movement]]:
    return [
        (entity.transform, entity.movement)
        for entity in entities
        if entity.transform is not None and entity.movement is not None
    ]


def query_polish(entities: List[Entity]) -> List[tuple[Transform, Animation, Movement]]:
    return [
        (entity.transform, entity.animation, entity.movement)
        for entity in entities
        if entity.transform is not None and entity.animation is not None and entity.movement is not None
    ]


def query_animated(entities: List[Entity]) -> List[tuple[Sprite, Animation]]:
    return [
        (entity.sprite, entity.animation)
        for entity in entities
        if entity.sprite is not None and entity.animation is not None
    ]
