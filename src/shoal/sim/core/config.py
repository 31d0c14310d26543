from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, FrozenSet, List

import yaml


class FieldOfViewMode(str, Enum):
    # Angle-only test on unit vectors.
    NORMALIZED = "normalized"
    # Historical variant: raw velocity dotted with the raw offset, sensitive to speed and distance.
    RAW = "raw"


class AvoidanceMode(str, Enum):
    # Unit vector away from the threats, independent of how close they are.
    DIRECTION = "direction"
    # Historical variant: each threat weighted by 1 - d^2 / r^2.
    FALLOFF = "falloff"


_RADIUS_FIELDS = ("neighbor_radius", "separation_radius", "avoidance_radius", "bounds_margin", "max_speed")
_WEIGHT_FIELDS = (
    "separation_weight",
    "cohesion_weight",
    "alignment_weight",
    "bounds_weight",
    "exploration_weight",
    "avoidance_weight",
)


@dataclass(frozen=True)
class FlockConfig:
    """Steering parameters shared by every boid built from one archetype.

    Instances are immutable and handed out by reference; the flocking system
    reads them but never copies or mutates them.
    """

    group_id: int = 1
    groups_to_avoid: FrozenSet[int] = frozenset()
    neighbor_radius: float = 100.0
    separation_radius: float = 20.0
    avoidance_radius: float = 100.0
    field_of_view: float = -0.9
    separation_weight: float = 0.3
    cohesion_weight: float = 0.01
    alignment_weight: float = 0.04
    bounds_weight: float = 0.02
    exploration_weight: float = 0.05
    avoidance_weight: float = 0.06
    max_speed: float = 80.0
    bounds_margin: float = 40.0

    def __post_init__(self) -> None:
        if not isinstance(self.groups_to_avoid, frozenset):
            object.__setattr__(self, "groups_to_avoid", frozenset(int(g) for g in self.groups_to_avoid))
        if self.group_id < 0:
            raise ValueError(f"group_id must be non-negative, got {self.group_id}")
        for name in _RADIUS_FIELDS + _WEIGHT_FIELDS:
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0.0:
                raise ValueError(f"{name} must be a finite non-negative number, got {value!r}")
        if not -1.0 <= self.field_of_view <= 1.0:
            raise ValueError(f"field_of_view must be within [-1, 1], got {self.field_of_view!r}")


@dataclass(frozen=True)
class FlockingOptions:
    field_of_view_mode: FieldOfViewMode = FieldOfViewMode.NORMALIZED
    avoidance_mode: AvoidanceMode = AvoidanceMode.DIRECTION
    # None keeps the brute-force neighbor scan.
    cell_size: float | None = None
    # Raise on corrupted boid state instead of zeroing it and carrying on.
    strict: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "field_of_view_mode", FieldOfViewMode(self.field_of_view_mode))
        object.__setattr__(self, "avoidance_mode", AvoidanceMode(self.avoidance_mode))
        if self.cell_size is not None and self.cell_size <= 0.0:
            raise ValueError(f"cell_size must be positive, got {self.cell_size!r}")


@dataclass
class AnimationConfig:
    duration_per_frame: float = 0.2
    frames: List[tuple[int, int]] = field(default_factory=lambda: [(0, 0), (1, 0), (2, 0)])


@dataclass
class SpriteConfig:
    sheet: str = "fish_spritesheet.png"
    tile_width: float = 32.0
    tile_height: float = 32.0
    size: tuple[float, float] = (40.0, 40.0)
    offset: tuple[float, float] = (-20.0, -28.0)
    rotation_offset: float = -math.pi / 2.0


@dataclass
class ArchetypeConfig:
    name: str = "fish"
    count: int = 30
    # Initial velocity is drawn from [-w, w] x [-h, h] scaled by this factor.
    initial_speed_scale: float = 1.0
    flock: FlockConfig = field(default_factory=FlockConfig)
    animation: AnimationConfig = field(default_factory=AnimationConfig)
    sprite: SpriteConfig = field(default_factory=SpriteConfig)


@dataclass
class PolishConfig:
    facing_min_speed: float = 25.0
    animation_speed_divisor: float = 100.0


SHARK_GROUP = 10


def default_archetypes() -> List[ArchetypeConfig]:
    fish_frames = [
        [(0, 0), (1, 0), (2, 0)],
        [(6, 4), (7, 4), (8, 4)],
        [(6, 0), (7, 0), (8, 0)],
        [(9, 0), (10, 0), (11, 0)],
    ]
    fish_groups = [1, 1, 2, 3]
    archetypes = [
        ArchetypeConfig(
            name=f"fish_{index}",
            count=30,
            flock=FlockConfig(group_id=group, groups_to_avoid=frozenset({SHARK_GROUP})),
            animation=AnimationConfig(frames=list(frames)),
            sprite=SpriteConfig(),
        )
        for index, (group, frames) in enumerate(zip(fish_groups, fish_frames))
    ]
    archetypes.append(
        ArchetypeConfig(
            name="shark",
            count=3,
            flock=FlockConfig(
                group_id=SHARK_GROUP,
                neighbor_radius=200.0,
                separation_radius=100.0,
                avoidance_radius=200.0,
                separation_weight=0.0,
                cohesion_weight=0.0,
                alignment_weight=0.0,
                bounds_weight=0.002,
                exploration_weight=0.0,
                avoidance_weight=0.0,
                max_speed=40.0,
            ),
            animation=AnimationConfig(frames=[(0, 0), (1, 0), (2, 0)]),
            sprite=SpriteConfig(
                sheet="shark_spritesheet.png",
                tile_width=64.0,
                tile_height=64.0,
                size=(80.0, 80.0),
                offset=(-40.0, -50.0),
            ),
        )
    )
    return archetypes


@dataclass
class SimulationConfig:
    time_step: float = 1.0 / 60.0
    world_width: float = 1280.0
    world_height: float = 720.0
    seed: int = 42
    config_version: str = "v1"
    flocking: FlockingOptions = field(default_factory=FlockingOptions)
    polish: PolishConfig = field(default_factory=PolishConfig)
    archetypes: List[ArchetypeConfig] = field(default_factory=default_archetypes)

    @staticmethod
    def from_yaml(path: Path) -> "SimulationConfig":
        data = yaml.safe_load(Path(path).read_text())
        return load_config(data or {})


def _build(cls: type, raw: dict[str, Any] | None, section: str, **overrides: Any) -> Any:
    values = dict(raw or {})
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown keys in {section}: {', '.join(unknown)}")
    values.update(overrides)
    return cls(**values)


def _pair(value: Any, default: tuple[float, float]) -> tuple[float, float]:
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return (float(value[0]), float(value[1]))
    return default


def _load_archetype(raw: dict[str, Any], index: int) -> ArchetypeConfig:
    section = f"archetypes[{index}]"
    default_sprite = SpriteConfig()
    flock_raw = dict(raw.get("flock", {}))
    if "groups_to_avoid" in flock_raw:
        flock_raw["groups_to_avoid"] = frozenset(int(g) for g in flock_raw["groups_to_avoid"] or [])
    flock = _build(FlockConfig, flock_raw, f"{section}.flock")
    animation_raw = dict(raw.get("animation", {}))
    frames = animation_raw.pop("frames", None)
    animation = _build(AnimationConfig, animation_raw, f"{section}.animation")
    if frames is not None:
        animation.frames = [(int(col), int(row)) for col, row in frames]
    sprite_raw = dict(raw.get("sprite", {}))
    size = _pair(sprite_raw.pop("size", None), default_sprite.size)
    offset = _pair(sprite_raw.pop("offset", None), default_sprite.offset)
    sprite = _build(SpriteConfig, sprite_raw, f"{section}.sprite", size=size, offset=offset)
    values = {k: v for k, v in raw.items() if k not in {"flock", "animation", "sprite"}}
    return _build(ArchetypeConfig, values, section, flock=flock, animation=animation, sprite=sprite)


def load_config(raw: dict) -> SimulationConfig:
    flocking = _build(FlockingOptions, raw.get("flocking"), "flocking")
    polish = _build(PolishConfig, raw.get("polish"), "polish")
    archetypes_raw = raw.get("archetypes")
    if archetypes_raw is None:
        archetypes = default_archetypes()
    else:
        archetypes = [_load_archetype(entry or {}, index) for index, entry in enumerate(archetypes_raw)]
    sim_values = {k: v for k, v in raw.items() if k not in {"flocking", "polish", "archetypes"}}
    return _build(
        SimulationConfig,
        sim_values,
        "simulation",
        flocking=flocking,
        polish=polish,
        archetypes=archetypes,
    )
