from __future__ import annotations

import math

import pytest

from shoal.sim.core.config import (
    SHARK_GROUP,
    AvoidanceMode,
    FieldOfViewMode,
    FlockConfig,
    FlockingOptions,
    SimulationConfig,
    load_config,
)
from shoal.sim.core.world import World


def test_default_scene_matches_reference_population():
    config = SimulationConfig()

    counts = {archetype.name: archetype.count for archetype in config.archetypes}
    assert counts == {"fish_0": 30, "fish_1": 30, "fish_2": 30, "fish_3": 30, "shark": 3}
    groups = [archetype.flock.group_id for archetype in config.archetypes]
    assert groups == [1, 1, 2, 3, SHARK_GROUP]
    for archetype in config.archetypes[:-1]:
        assert archetype.flock.groups_to_avoid == frozenset({SHARK_GROUP})
    assert config.archetypes[-1].flock.groups_to_avoid == frozenset()


def test_groups_to_avoid_is_normalised_to_frozenset():
    config = FlockConfig(groups_to_avoid=[10, 11, 10])

    assert config.groups_to_avoid == frozenset({10, 11})


@pytest.mark.parametrize(
    "overrides",
    [
        {"group_id": -1},
        {"neighbor_radius": -1.0},
        {"separation_weight": -0.1},
        {"max_speed": math.inf},
        {"avoidance_radius": math.nan},
        {"field_of_view": 1.5},
        {"field_of_view": -1.01},
    ],
)
def test_flock_config_rejects_invalid_values(overrides):
    with pytest.raises(ValueError):
        FlockConfig(**overrides)


def test_flocking_options_coerce_mode_names():
    options = FlockingOptions(field_of_view_mode="raw", avoidance_mode="falloff")

    assert options.field_of_view_mode is FieldOfViewMode.RAW
    assert options.avoidance_mode is AvoidanceMode.FALLOFF
    with pytest.raises(ValueError):
        FlockingOptions(field_of_view_mode="sideways")
    with pytest.raises(ValueError):
        FlockingOptions(cell_size=0.0)


def test_load_config_builds_archetypes_from_mapping():
    config = load_config(
        {
            "seed": 9,
            "world_width": 300,
            "flocking": {"cell_size": 50},
            "archetypes": [
                {
                    "name": "minnow",
                    "count": 5,
                    "flock": {"group_id": 4, "groups_to_avoid": [10], "max_speed": 60},
                    "animation": {"frames": [[1, 2], [3, 4]]},
                    "sprite": {"size": [10, 12]},
                }
            ],
        }
    )

    assert config.seed == 9
    assert config.world_width == 300
    assert config.flocking.cell_size == 50
    (minnow,) = config.archetypes
    assert minnow.name == "minnow"
    assert minnow.flock.group_id == 4
    assert minnow.flock.groups_to_avoid == frozenset({10})
    assert minnow.flock.max_speed == 60
    assert minnow.animation.frames == [(1, 2), (3, 4)]
    assert minnow.sprite.size == (10.0, 12.0)


def test_load_config_without_archetypes_uses_defaults():
    config = load_config({"seed": 3})

    assert [archetype.name for archetype in config.archetypes] == [
        archetype.name for archetype in SimulationConfig().archetypes
    ]


@pytest.mark.parametrize(
    "raw",
    [
        {"seeds": 1},
        {"flocking": {"cellsize": 10}},
        {"archetypes": [{"flock": {"speed": 3}}]},
        {"archetypes": [{"sprite": {"colour": "red"}}]},
    ],
)
def test_unknown_keys_are_rejected(raw):
    with pytest.raises(ValueError, match="Unknown keys"):
        load_config(raw)


def test_from_yaml_reads_file(tmp_path):
    path = tmp_path / "scene.yaml"
    path.write_text(
        "seed: 5\n"
        "world_height: 400\n"
        "flocking:\n"
        "  field_of_view_mode: raw\n"
        "archetypes:\n"
        "  - name: solo\n"
        "    count: 2\n"
    )

    config = SimulationConfig.from_yaml(path)

    assert config.seed == 5
    assert config.world_height == 400
    assert config.flocking.field_of_view_mode is FieldOfViewMode.RAW
    assert [(a.name, a.count) for a in config.archetypes] == [("solo", 2)]


def test_empty_yaml_gives_default_config(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")

    assert SimulationConfig.from_yaml(path) == SimulationConfig()


@pytest.mark.config_change
def test_shipped_predator_prey_scene_loads_and_runs(repo_root):
    config = SimulationConfig.from_yaml(repo_root / "configs" / "predator_prey.yaml")

    assert [(a.name, a.count) for a in config.archetypes] == [("fish", 40), ("shark", 1)]
    assert config.archetypes[0].flock.groups_to_avoid == frozenset({SHARK_GROUP})

    world = World(config)
    for tick in range(20):
        metrics = world.step(tick)
    assert metrics.population == 41
    assert metrics.skipped == 0
