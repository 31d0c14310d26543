from __future__ import annotations

import math
from typing import List

from ..core.agent import Animation, Movement, Transform
from ..core.config import PolishConfig


def apply(items: List[tuple[Transform, Animation, Movement]], config: PolishConfig) -> None:
    """Face the direction of travel and tie animation playback to speed."""

    facing_min_sq = config.facing_min_speed * config.facing_min_speed
    divisor = config.animation_speed_divisor
    for transform, animation, movement in items:
        velocity = movement.velocity
        speed_sq = velocity.length_squared()
        # Slow boids keep their last facing instead of jittering around.
        if speed_sq > facing_min_sq:
            transform.rotation = math.atan2(velocity.y, velocity.x)
        animation.speed = math.sqrt(speed_sq) / divisor if divisor > 0.0 else 0.0
