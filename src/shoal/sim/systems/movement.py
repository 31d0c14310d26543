from __future__ import annotations

from typing import List

from ..core.agent import Movement, Transform


def integrate(movers: List[tuple[Transform, Movement]], dt: float) -> None:
    for transform, movement in movers:
        position = transform.position
        velocity = movement.velocity
        position.update(position.x + velocity.x * dt, position.y + velocity.y * dt)
