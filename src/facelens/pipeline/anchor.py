from __future__ import annotations

import math

from ..schemas.landmarks import CanonicalLandmarks, Point2D, PoseAnchor, RenderPoint

# Width of the renderer's view in scene units; normalized [0,1] maps onto it.
SPAN = 10.0
# Tunable rendering constant: makes the glasses roughly face-wide at typical
# webcam distances. Not a physical calibration.
SCALE_FACTOR = 15.0


def to_render_space(p: Point2D) -> RenderPoint:
    return RenderPoint(x=(p.x - 0.5) * SPAN, y=-(p.y - 0.5) * SPAN)


def _center(points: list[Point2D]) -> Point2D:
    n = len(points)
    return Point2D(x=sum(p.x for p in points) / n, y=sum(p.y for p in points) / n)


def compute_anchor(landmarks: CanonicalLandmarks | None) -> PoseAnchor | None:
    """Eye centers, midpoint and scale for overlay placement.

    Returns None when there is nothing to anchor to (no face, or an empty
    eye point set); callers draw nothing in that case.
    """
    if landmarks is None or landmarks.is_empty:
        return None

    left = _center(landmarks.left_eye)
    right = _center(landmarks.right_eye)
    mid = Point2D(x=(left.x + right.x) / 2.0, y=(left.y + right.y) / 2.0)
    dist = math.hypot(right.x - left.x, right.y - left.y)

    return PoseAnchor(
        left_eye_center=left,
        right_eye_center=right,
        left_eye_render=to_render_space(left),
        right_eye_render=to_render_space(right),
        midpoint_anchor=to_render_space(mid),
        inter_eye_distance=dist,
        scale=dist * SCALE_FACTOR,
        head_rotation=landmarks.head_rotation,
        neutral_rotation=landmarks.neutral_rotation,
        emotion_scores=dict(landmarks.emotion_scores),
    )
