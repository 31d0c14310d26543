import asyncio
import math

import pytest

from shoal.app.server import SimulationController
from shoal.sim.core.config import ArchetypeConfig, AvoidanceMode, FieldOfViewMode, SimulationConfig


def _controller(seed: int = 42) -> SimulationController:
    return SimulationController(SimulationConfig(seed=seed, archetypes=[ArchetypeConfig(name="fish", count=6)]))


def _positions(controller: SimulationController) -> list[tuple[float, float]]:
    return [tuple(entity.transform.position) for entity in controller.world.entities]


def test_reset_rewinds_tick_and_replays_population() -> None:
    controller = _controller()
    initial = _positions(controller)

    async def exercise() -> None:
        for _ in range(5):
            await controller.advance()
        await controller.reset()

    asyncio.run(exercise())

    assert controller.tick == 0
    assert _positions(controller) == initial
    assert controller.stream.latest.tick == 0
    assert controller.stream.pending_ticks() == []


def test_reset_with_new_seed_rebuilds_world() -> None:
    controller = _controller(seed=1)
    initial = _positions(controller)

    asyncio.run(controller.reset(seed=2))

    assert controller.config.seed == 2
    assert controller.world.config.seed == 2
    assert _positions(controller) != initial
    assert _positions(controller) == _positions(_controller(seed=2))


def test_resize_validates_dimensions() -> None:
    controller = _controller()

    asyncio.run(controller.resize(640, 480))
    assert controller.status()["world"] == {"width": 640.0, "height": 480.0}

    for width, height in [(math.nan, 480.0), (0.0, 480.0), (640.0, math.inf)]:
        with pytest.raises(ValueError):
            asyncio.run(controller.resize(width, height))
    assert controller.status()["world"] == {"width": 640.0, "height": 480.0}


def test_speed_multiplier_is_clamped_and_validated() -> None:
    controller = _controller()

    assert controller.set_speed(20.0) == 5.0
    assert controller.set_speed(0.01) == 0.1
    assert controller.set_speed(2.0) == 2.0
    for bad in (0.0, -1.0, math.nan, math.inf):
        with pytest.raises(ValueError):
            controller.set_speed(bad)
    assert controller.speed_multiplier == 2.0


def test_flocking_options_can_be_changed_between_ticks() -> None:
    controller = _controller()

    async def exercise() -> None:
        await controller.configure_flocking(field_of_view_mode="raw", avoidance_mode="falloff", cell_size=50.0)
        await controller.advance()

    asyncio.run(exercise())

    options = controller.world.config.flocking
    assert options.field_of_view_mode is FieldOfViewMode.RAW
    assert options.avoidance_mode is AvoidanceMode.FALLOFF
    assert controller.status()["flocking"] == {
        "field_of_view_mode": "raw",
        "avoidance_mode": "falloff",
        "cell_size": 50.0,
        "strict": False,
    }


@pytest.mark.parametrize("changes", [{"field_of_view_mode": "sideways"}, {"cell_size": -1.0}, {"radius": 3}])
def test_invalid_flocking_options_are_rejected(changes) -> None:
    controller = _controller()

    with pytest.raises((TypeError, ValueError)):
        asyncio.run(controller.configure_flocking(**changes))
    assert controller.status()["flocking"]["field_of_view_mode"] == "normalized"


def test_status_reports_metrics_after_a_tick() -> None:
    controller = _controller()
    asyncio.run(controller.advance())

    status = controller.status()

    assert status["tick"] == 1
    assert status["population"] == 6
    assert status["clients"] == 0
    assert status["metrics"]["population"] == 6
    assert status["metrics"]["skipped"] == 0
