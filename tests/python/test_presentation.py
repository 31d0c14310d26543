from __future__ import annotations

import math

import pytest
from pygame.math import Vector2

from shoal.sim.core.agent import Animation, Movement, Sprite, Transform
from shoal.sim.core.config import AnimationConfig, PolishConfig, SpriteConfig
from shoal.sim.systems import animation, movement, polish
from shoal.sim.types.geometry import Rect


def test_integrate_moves_by_velocity_times_dt():
    transform = Transform(position=Vector2(10, 20))
    mover = Movement(velocity=Vector2(30, -60))

    movement.integrate([(transform, mover)], 0.5)

    assert tuple(transform.position) == pytest.approx((25.0, -10.0))
    assert tuple(mover.velocity) == (30.0, -60.0)


def test_polish_faces_direction_of_travel_above_threshold():
    transform = Transform(rotation=1.0)
    anim = Animation(definition=AnimationConfig())

    polish.apply([(transform, anim, Movement(velocity=Vector2(0, 30)))], PolishConfig())

    assert transform.rotation == pytest.approx(math.pi / 2)
    assert anim.speed == pytest.approx(0.3)


def test_polish_keeps_facing_for_slow_boids():
    transform = Transform(rotation=1.0)
    anim = Animation(definition=AnimationConfig())

    polish.apply([(transform, anim, Movement(velocity=Vector2(-20, 0)))], PolishConfig())
    assert transform.rotation == 1.0
    assert anim.speed == pytest.approx(0.2)

    # Exactly at the threshold still keeps the old facing.
    polish.apply([(transform, anim, Movement(velocity=Vector2(-25, 0)))], PolishConfig())
    assert transform.rotation == 1.0


def test_animation_advances_one_frame_after_duration():
    anim = Animation(definition=AnimationConfig(duration_per_frame=0.2, frames=[(0, 0), (1, 0), (2, 0)]), speed=1.0)

    animation.advance(anim, 0.15)
    assert anim.frame_number == 0

    animation.advance(anim, 0.15)
    assert anim.frame_number == 1
    assert anim.tick == pytest.approx(0.1)


def test_animation_wraps_around_frame_count():
    anim = Animation(definition=AnimationConfig(duration_per_frame=0.1, frames=[(0, 0), (1, 0)]), speed=1.0)

    frames = []
    for _ in range(4):
        animation.advance(anim, 0.11)
        frames.append(anim.frame_number)

    assert frames == [1, 0, 1, 0]


def test_animation_speed_scales_playback():
    still = Animation(definition=AnimationConfig(duration_per_frame=0.1), speed=0.0)
    for _ in range(10):
        animation.advance(still, 1.0)
    assert still.frame_number == 0


def test_animation_without_frames_is_left_alone():
    anim = Animation(definition=AnimationConfig(frames=[]), speed=5.0)
    sprite = Sprite(definition=SpriteConfig())

    animation.tick([(sprite, anim)], 1.0)

    assert anim.frame_number == 0
    assert sprite.source is None


def test_source_rect_picks_tile_for_current_frame():
    sprite = Sprite(definition=SpriteConfig(tile_width=32.0, tile_height=16.0))
    anim = Animation(definition=AnimationConfig(frames=[(6, 4), (7, 4)]), frame_number=1)

    assert animation.source_rect(sprite, anim) == Rect(224.0, 64.0, 32.0, 16.0)

    animation.tick([(sprite, anim)], 0.0)
    assert sprite.source == Rect(224.0, 64.0, 32.0, 16.0)


def test_rect_inset_and_contains():
    world = Rect(0.0, 0.0, 100.0, 60.0)
    inner = world.inset(10.0)

    assert (inner.left, inner.top, inner.right, inner.bottom) == (10.0, 10.0, 90.0, 50.0)
    assert inner.contains(10.0, 50.0)
    assert not inner.contains(9.9, 30.0)

    collapsed = world.inset(40.0)
    assert collapsed.width == pytest.approx(20.0)
    assert collapsed.height == 0.0
