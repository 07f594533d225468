"""Tests for scene compositing onto frames."""

import math

import numpy as np
import pytest

from facelens.render.canvas import draw_hud, draw_scene
from facelens.render.primitives import Box, Circle, Group, Sprite, rotation_matrix
from facelens.schemas.effects import EffectKind


def blank(h=120, w=160):
    return np.zeros((h, w, 3), dtype=np.uint8)


class TestRotationMatrix:
    def test_identity(self):
        assert np.allclose(rotation_matrix(0, 0, 0), np.eye(3))

    def test_roll_quarter_turn(self):
        R = rotation_matrix(0, 0, math.pi / 2)
        assert np.allclose(R @ np.array([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0])


class TestDrawScene:
    def test_empty_scene_copies_frame(self):
        frame = blank()
        out = draw_scene(frame, [])
        assert np.array_equal(out, frame)
        assert out is not frame

    def test_circle_at_center(self):
        out = draw_scene(blank(), [Circle((0.0, 0.0, 0.0), 1.0, (0, 0, 255), 1.0)])
        assert out[60, 80, 2] == 255
        assert out[5, 5].sum() == 0

    def test_circle_opacity_blends(self):
        frame = blank()
        out = draw_scene(frame, [Circle((0.0, 0.0, 0.0), 1.0, (0, 0, 200), 0.5)])
        assert out[60, 80, 2] == pytest.approx(100, abs=2)

    def test_opacity_is_clamped(self):
        out = draw_scene(blank(), [Circle((0.0, 0.0, 0.0), 1.0, (0, 0, 200), 2.4)])
        assert out[60, 80, 2] == 200

    def test_zero_opacity_draws_nothing(self):
        frame = blank()
        out = draw_scene(frame, [Circle((0.0, 0.0, 0.0), 1.0, (255, 255, 255), 0.0)])
        assert np.array_equal(out, frame)

    def test_group_moves_box(self):
        box = Box((0.0, 0.0, 0.0), (1.0, 1.0, 0.1), (255, 255, 255))
        # +2.5 scene units right of center is 3/4 across the frame
        out = draw_scene(blank(), [Group(position=(2.5, 0.0, 0.0), children=(box,))])
        assert out[60, 120].sum() > 0
        assert out[60, 80].sum() == 0

    def test_degenerate_group_does_not_raise(self):
        box = Box((0.0, 0.0, 0.0), (1.0, 1.0, 0.1), (255, 255, 255))
        sprite = Sprite(image=np.full((10, 20, 4), 255, dtype=np.uint8), width=2.0)
        out = draw_scene(blank(), [Group(position=(0.0, 0.0, 0.0), scale=0.0, children=(box, sprite))])
        assert out.shape == (120, 160, 3)

    def test_sprite_alpha(self):
        img = np.zeros((10, 20, 4), dtype=np.uint8)
        img[..., 1] = 255
        img[..., 3] = 255
        out = draw_scene(blank(), [Group(position=(0.0, 0.0, 0.0), children=(Sprite(image=img, width=4.0),))])
        assert out[60, 80, 1] > 200

    def test_unknown_node(self):
        with pytest.raises(TypeError):
            draw_scene(blank(), ["not a node"])


def test_hud_draws_text():
    frame = blank(200, 400)
    out = draw_hud(frame, fps=30, effect=EffectKind.GLOWING_EYES, glow_intensity=1.2, recording=True)
    assert not np.array_equal(out, frame)
    assert np.array_equal(frame, blank(200, 400))
