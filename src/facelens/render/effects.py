from __future__ import annotations

import logging
import math
import time
from pathlib import Path
from typing import Callable, Mapping

import cv2
import numpy as np

from ..errors import AssetLoadFailure
from ..schemas.effects import EffectKind, EffectSelection
from ..schemas.landmarks import PoseAnchor
from .primitives import Box, Circle, Group, Node, Sprite

log = logging.getLogger(__name__)

SMILE_KEYS = ("mouthSmileLeft", "mouthSmileRight")
SMILE_GAIN = 2.0

EYE_RADIUS = 0.3
HALO_RADIUS = EYE_RADIUS * 1.5
HALO_OPACITY = 0.3
LEFT_GLOW = (255, 255, 0)    # cyan (BGR)
RIGHT_GLOW = (255, 0, 255)   # magenta

LENS_WIDTH = 1.2
LENS_HEIGHT = 0.8
BRIDGE_WIDTH = 0.4
FRAME_THICKNESS = 0.08
LENS_DEPTH = 0.05
STRUT_DEPTH = 0.06
LENS_COLOR = (0, 0, 0)
LENS_OPACITY = 0.7
FRAME_COLOR = (51, 51, 51)


def pulse(t: float) -> float:
    return math.sin(t * 2.0) * 0.3 + 0.7


def smile_score(scores: Mapping[str, float]) -> float:
    return sum(float(scores.get(k, 0.0)) for k in SMILE_KEYS) / len(SMILE_KEYS)


def effective_intensity(selection: EffectSelection, scores: Mapping[str, float] | None = None) -> float:
    """Glow intensity after the optional smile boost."""
    if not selection.emotion_trigger_enabled:
        return selection.glow_intensity
    return selection.glow_intensity * (1.0 + smile_score(scores or {}) * SMILE_GAIN)


def load_asset(path: Path) -> np.ndarray:
    """Read an RGBA overlay image; anything else is an AssetLoadFailure."""
    try:
        img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    except cv2.error as exc:
        raise AssetLoadFailure(f"{path}: {exc}") from exc
    if img is None:
        raise AssetLoadFailure(f"Could not read overlay asset: {path}")
    if img.ndim == 2:
        img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGRA)
    elif img.shape[2] == 3:
        img = cv2.cvtColor(img, cv2.COLOR_BGR2BGRA)
    return img


def procedural_glasses() -> tuple[Node, ...]:
    """Two tinted lenses, a bridge and a top/bottom strut per lens."""
    off = LENS_WIDTH / 2 + BRIDGE_WIDTH / 2
    strut = (LENS_WIDTH + FRAME_THICKNESS, FRAME_THICKNESS, STRUT_DEPTH)
    return (
        Box((-off, 0.0, 0.0), (LENS_WIDTH, LENS_HEIGHT, LENS_DEPTH), LENS_COLOR, LENS_OPACITY),
        Box((off, 0.0, 0.0), (LENS_WIDTH, LENS_HEIGHT, LENS_DEPTH), LENS_COLOR, LENS_OPACITY),
        Box((0.0, 0.0, 0.0), (BRIDGE_WIDTH, FRAME_THICKNESS, LENS_DEPTH), FRAME_COLOR),
        Box((-off, LENS_HEIGHT / 2, 0.0), strut, FRAME_COLOR),
        Box((-off, -LENS_HEIGHT / 2, 0.0), strut, FRAME_COLOR),
        Box((off, LENS_HEIGHT / 2, 0.0), strut, FRAME_COLOR),
        Box((off, -LENS_HEIGHT / 2, 0.0), strut, FRAME_COLOR),
    )


class EffectRenderer:
    """Turns an anchor plus the effect selection into scene nodes each frame.

    The pulse animation runs off the renderer's own clock, so build_scene()
    must be called every tick for the glow to move.
    """

    def __init__(
        self,
        *,
        asset_path: Path | None = None,
        clock: Callable[[], float] = time.perf_counter,
        asset_loader: Callable[[Path], np.ndarray] = load_asset,
    ) -> None:
        self._clock = clock
        self._start = clock()
        self._glasses: tuple[Node, ...] = procedural_glasses()
        self.asset_failed = False
        if asset_path is not None:
            try:
                img = asset_loader(asset_path)
            except (AssetLoadFailure, OSError, ValueError) as exc:
                self.asset_failed = True
                log.debug("Using procedural glasses: %s", exc)
            else:
                span = 2 * LENS_WIDTH + BRIDGE_WIDTH + 2 * FRAME_THICKNESS
                self._glasses = (Sprite(image=img, width=span),)

    @property
    def uses_asset(self) -> bool:
        return any(isinstance(n, Sprite) for n in self._glasses)

    def elapsed(self) -> float:
        return self._clock() - self._start

    def build_scene(self, anchor: PoseAnchor | None, selection: EffectSelection) -> list[Node]:
        if anchor is None or selection.effect is EffectKind.NONE:
            return []
        if selection.effect is EffectKind.GLOWING_EYES:
            return self._glowing_eyes(anchor, selection)
        if selection.effect is EffectKind.SUNGLASSES:
            return [self._sunglasses(anchor)]
        return []

    def _glowing_eyes(self, anchor: PoseAnchor, selection: EffectSelection) -> list[Node]:
        opacity = pulse(self.elapsed()) * effective_intensity(selection, anchor.emotion_scores)
        nodes: list[Node] = []
        for p, color in ((anchor.left_eye_render, LEFT_GLOW), (anchor.right_eye_render, RIGHT_GLOW)):
            nodes.append(Circle((p.x, p.y, 0.0), EYE_RADIUS, color, opacity))
            nodes.append(Circle((p.x, p.y, 0.01), HALO_RADIUS, color, HALO_OPACITY, soft=True))
        return nodes

    def _sunglasses(self, anchor: PoseAnchor) -> Group:
        rot = anchor.head_rotation.relative_to(anchor.neutral_rotation)
        m = anchor.midpoint_anchor
        return Group(
            position=(m.x, m.y, 0.0),
            scale=anchor.scale,
            rotation=(math.radians(rot.pitch), math.radians(rot.yaw), math.radians(rot.roll)),
            children=self._glasses,
        )
