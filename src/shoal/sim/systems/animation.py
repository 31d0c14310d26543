from __future__ import annotations

from typing import List

from ..core.agent import Animation, Sprite
from ..types.geometry import Rect


def advance(animation: Animation, dt: float) -> None:
    definition = animation.definition
    frame_count = len(definition.frames)
    if frame_count == 0:
        return
    animation.tick += dt * animation.speed
    if animation.tick > definition.duration_per_frame:
        animation.tick -= definition.duration_per_frame
        animation.frame_number = (animation.frame_number + 1) % frame_count


def source_rect(sprite: Sprite, animation: Animation) -> Rect | None:
    frames = animation.definition.frames
    if not frames:
        return None
    col, row = frames[animation.frame_number % len(frames)]
    tile_w = sprite.definition.tile_width
    tile_h = sprite.definition.tile_height
    return Rect(col * tile_w, row * tile_h, tile_w, tile_h)


def tick(items: List[tuple[Sprite, Animation]], dt: float) -> None:
    for sprite, animation in items:
        advance(animation, dt)
        sprite.source = source_rect(sprite, animation)
