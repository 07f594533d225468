from __future__ import annotations

from typing import Iterable

import cv2
import numpy as np

from ..pipeline.anchor import SPAN
from ..schemas.effects import EffectKind
from .primitives import Box, Circle, Group, Node, Sprite, rotation_matrix


def _to_pixels(world: np.ndarray, w: int, h: int) -> np.ndarray:
    """Orthographic projection of scene points (N x 3) onto frame pixels (N x 2)."""
    px = (world[:, 0] / SPAN + 0.5) * w
    py = (0.5 - world[:, 1] / SPAN) * h
    return np.stack([px, py], axis=1)


def _blend_mask(out: np.ndarray, mask: np.ndarray, color: tuple[int, int, int], opacity: float) -> None:
    a = float(np.clip(opacity, 0.0, 1.0))
    if a <= 0.0:
        return
    x, y, bw, bh = cv2.boundingRect(mask)
    if bw == 0 or bh == 0:
        return
    roi = out[y:y + bh, x:x + bw].astype(np.float32)
    alpha = mask[y:y + bh, x:x + bw, None].astype(np.float32) / 255.0 * a
    roi = roi * (1.0 - alpha) + np.asarray(color, dtype=np.float32) * alpha
    out[y:y + bh, x:x + bw] = np.clip(roi, 0, 255).astype(np.uint8)


def _draw_circle(out: np.ndarray, node: Circle, M: np.ndarray, t: np.ndarray) -> None:
    h, w = out.shape[:2]
    center = _to_pixels((M @ np.asarray(node.center, dtype=float) + t)[None, :], w, h)[0]
    r = node.radius * float(np.linalg.norm(M[:, 0]))
    axes = (max(1, int(round(r / SPAN * w))), max(1, int(round(r / SPAN * h))))
    mask = np.zeros((h, w), dtype=np.uint8)
    cv2.ellipse(mask, (int(round(center[0])), int(round(center[1]))), axes, 0, 0, 360, 255, -1, cv2.LINE_AA)
    if node.soft:
        k = max(3, (min(axes) // 2) * 2 + 1)
        mask = cv2.GaussianBlur(mask, (k, k), 0)
    _blend_mask(out, mask, node.color, node.opacity)


def _draw_box(out: np.ndarray, node: Box, M: np.ndarray, t: np.ndarray) -> None:
    h, w = out.shape[:2]
    c = np.asarray(node.center, dtype=float)
    half = np.asarray(node.size, dtype=float) / 2.0
    signs = np.array([[sx, sy, sz] for sx in (-1, 1) for sy in (-1, 1) for sz in (-1, 1)], dtype=float)
    corners = (c + signs * half) @ M.T + t
    pts = _to_pixels(corners, w, h).astype(np.float32)
    hull = cv2.convexHull(pts).astype(np.int32)
    mask = np.zeros((h, w), dtype=np.uint8)
    cv2.fillConvexPoly(mask, hull, 255, cv2.LINE_AA)
    _blend_mask(out, mask, node.color, node.opacity)


def _draw_sprite(out: np.ndarray, node: Sprite, M: np.ndarray, t: np.ndarray) -> None:
    h, w = out.shape[:2]
    ih, iw = node.image.shape[:2]
    hw, hh = node.width / 2.0, node.height / 2.0
    local = np.array([[-hw, hh, 0.0], [hw, hh, 0.0], [hw, -hh, 0.0], [-hw, -hh, 0.0]])
    dst = _to_pixels(local @ M.T + t, w, h).astype(np.float32)
    if abs(cv2.contourArea(dst)) < 1.0:
        return
    src = np.array([[0, 0], [iw, 0], [iw, ih], [0, ih]], dtype=np.float32)
    H = cv2.getPerspectiveTransform(src, dst)
    warped = cv2.warpPerspective(node.image, H, (w, h), flags=cv2.INTER_LINEAR,
                                 borderMode=cv2.BORDER_CONSTANT, borderValue=(0, 0, 0, 0))
    a = float(np.clip(node.opacity, 0.0, 1.0))
    x, y, bw, bh = cv2.boundingRect(warped[..., 3])
    if bw == 0 or bh == 0 or a <= 0.0:
        return
    roi = out[y:y + bh, x:x + bw].astype(np.float32)
    patch = warped[y:y + bh, x:x + bw]
    alpha = patch[..., 3:4].astype(np.float32) / 255.0 * a
    roi = roi * (1.0 - alpha) + patch[..., :3].astype(np.float32) * alpha
    out[y:y + bh, x:x + bw] = np.clip(roi, 0, 255).astype(np.uint8)


def _walk(out: np.ndarray, node: Node, M: np.ndarray, t: np.ndarray) -> None:
    if isinstance(node, Group):
        R = rotation_matrix(*node.rotation) * float(node.scale)
        t2 = M @ np.asarray(node.position, dtype=float) + t
        M2 = M @ R
        for child in node.children:
            _walk(out, child, M2, t2)
    elif isinstance(node, Circle):
        _draw_circle(out, node, M, t)
    elif isinstance(node, Box):
        _draw_box(out, node, M, t)
    elif isinstance(node, Sprite):
        _draw_sprite(out, node, M, t)
    else:
        raise TypeError(f"Unsupported scene node: {type(node).__name__}")


def draw_scene(frame_bgr: np.ndarray, nodes: Iterable[Node]) -> np.ndarray:
    """Composite scene nodes over a copy of the frame, in list order."""
    out = frame_bgr.copy()
    eye = np.eye(3)
    origin = np.zeros(3)
    for node in nodes:
        _walk(out, node, eye, origin)
    return out


def _label(out: np.ndarray, text: str, org: tuple[int, int], scale: float = 0.6) -> None:
    cv2.putText(out, text, org, cv2.FONT_HERSHEY_SIMPLEX, scale, (0, 0, 0), 4, cv2.LINE_AA)
    cv2.putText(out, text, org, cv2.FONT_HERSHEY_SIMPLEX, scale, (255, 255, 255), 1, cv2.LINE_AA)


def draw_hud(
    frame_bgr: np.ndarray,
    *,
    fps: int | None = None,
    effect: EffectKind = EffectKind.NONE,
    glow_intensity: float | None = None,
    emotion_trigger: bool = False,
    recording: bool = False,
) -> np.ndarray:
    out = frame_bgr.copy()
    h, w = out.shape[:2]
    lines = [f"Effect: {effect.value}"]
    if fps is not None:
        lines.append(f"FPS: {fps}")
    if effect is EffectKind.GLOWING_EYES and glow_intensity is not None:
        lines.append(f"Glow: {glow_intensity:.1f}x")
    if emotion_trigger:
        lines.append("Smile = brighter")
    for i, line in enumerate(lines):
        _label(out, line, (10, 26 + i * 24))
    if recording:
        cv2.circle(out, (w - 110, 24), 7, (0, 0, 255), -1, cv2.LINE_AA)
        _label(out, "REC", (w - 96, 30))
    return out
