from __future__ import annotations

import math
from enum import Enum
from typing import Sequence

from ..errors import LandmarkTopologyError
from ..schemas.landmarks import (
    CanonicalLandmarks,
    DetectedFace,
    HeadRotation,
    Landmark,
    Point2D,
    RawDetectionResult,
)

# MediaPipe face-mesh topology (468/478 points). These are a compatibility
# contract with the detector model, not tuning knobs.
LEFT_EYE_INDICES = (33, 133, 160, 159, 158, 157, 173)
RIGHT_EYE_INDICES = (362, 263, 387, 386, 385, 384, 380)
NOSE_BRIDGE_INDICES = (6, 168, 197, 195)
NOSE_TIP_INDEX = 1
FOREHEAD_INDEX = 10
LEFT_CHEEK_INDEX = 234
RIGHT_CHEEK_INDEX = 454

_REQUIRED_POINTS = 1 + max(
    *LEFT_EYE_INDICES, *RIGHT_EYE_INDICES, *NOSE_BRIDGE_INDICES,
    NOSE_TIP_INDEX, FOREHEAD_INDEX, LEFT_CHEEK_INDEX, RIGHT_CHEEK_INDEX,
)

# Multi-face results are accepted, but only one face drives effects.
FACE_SELECTION = "first"

# Planar estimate: nose offset of one inter-eye distance reads as 45 degrees.
PLANAR_DEGREES_PER_EYE_DISTANCE = 45.0

# Depth reading of a level face looking into the camera: cheeks at equal z,
# nose tip in the forehead plane. Overlays are posed relative to this.
DEPTH_NEUTRAL = HeadRotation(pitch=90.0, yaw=90.0, roll=0.0)


class RotationStrategy(str, Enum):
    PLANAR = "planar"
    DEPTH = "depth"
    AUTO = "auto"


def _select_face(raw: RawDetectionResult) -> DetectedFace | None:
    if not raw.faces:
        return None
    return raw.faces[0]


def _mean(points: Sequence[Point2D]) -> tuple[float, float]:
    n = len(points)
    return sum(p.x for p in points) / n, sum(p.y for p in points) / n


def _pick(face: Sequence[Landmark], indices: Sequence[int]) -> list[Point2D]:
    return [Point2D(x=face[i].x, y=face[i].y) for i in indices]


def planar_rotation(
    left_eye: Sequence[Point2D],
    right_eye: Sequence[Point2D],
    nose_tip: Point2D,
) -> HeadRotation:
    """2D estimate from eye centers and the nose tip."""
    lx, ly = _mean(left_eye)
    rx, ry = _mean(right_eye)
    d = math.hypot(rx - lx, ry - ly)
    if d == 0.0:
        return HeadRotation()

    mid_x = (lx + rx) / 2.0
    mid_y = (ly + ry) / 2.0
    return HeadRotation(
        pitch=(nose_tip.y - mid_y) / d * PLANAR_DEGREES_PER_EYE_DISTANCE,
        yaw=(nose_tip.x - mid_x) / d * PLANAR_DEGREES_PER_EYE_DISTANCE,
        roll=math.degrees(math.atan2(ry - ly, rx - lx)),
    )


def depth_rotation(face: Sequence[Landmark]) -> HeadRotation:
    """3D estimate from cheek, nose-tip and forehead points (needs z).

    yaw = atan2(dx, dz) over the cheeks, pitch = atan2(dy, dz) from the
    forehead to the nose tip, roll = atan2(dy, dx) over the cheeks.
    A frontal face reads as DEPTH_NEUTRAL, not as zero.
    """
    lc = face[LEFT_CHEEK_INDEX]
    rc = face[RIGHT_CHEEK_INDEX]
    nose = face[NOSE_TIP_INDEX]
    top = face[FOREHEAD_INDEX]

    cheek_dx = rc.x - lc.x
    cheek_dy = rc.y - lc.y
    cheek_dz = (rc.z or 0.0) - (lc.z or 0.0)
    nose_dy = nose.y - top.y
    nose_dz = (nose.z or 0.0) - (top.z or 0.0)

    if cheek_dx == 0.0 and cheek_dy == 0.0 and cheek_dz == 0.0:
        return HeadRotation()

    return HeadRotation(
        pitch=math.degrees(math.atan2(nose_dy, nose_dz)) if (nose_dy or nose_dz) else 0.0,
        yaw=math.degrees(math.atan2(cheek_dx, cheek_dz)),
        roll=math.degrees(math.atan2(cheek_dy, cheek_dx)),
    )


def _has_depth(face: Sequence[Landmark]) -> bool:
    return all(
        face[i].z is not None
        for i in (LEFT_CHEEK_INDEX, RIGHT_CHEEK_INDEX, NOSE_TIP_INDEX, FOREHEAD_INDEX)
    )


def extract(
    raw: RawDetectionResult,
    strategy: RotationStrategy = RotationStrategy.AUTO,
) -> CanonicalLandmarks:
    face = _select_face(raw)
    if face is None:
        return CanonicalLandmarks()

    pts = face.landmarks
    if len(pts) < _REQUIRED_POINTS:
        raise LandmarkTopologyError(
            f"Face has {len(pts)} landmarks; at least {_REQUIRED_POINTS} are required"
        )

    left_eye = _pick(pts, LEFT_EYE_INDICES)
    right_eye = _pick(pts, RIGHT_EYE_INDICES)

    if strategy is RotationStrategy.AUTO:
        strategy = RotationStrategy.DEPTH if _has_depth(pts) else RotationStrategy.PLANAR
    neutral = HeadRotation()
    if strategy is RotationStrategy.DEPTH:
        rotation = depth_rotation(pts)
        neutral = DEPTH_NEUTRAL
    else:
        nose = pts[NOSE_TIP_INDEX]
        rotation = planar_rotation(left_eye, right_eye, Point2D(x=nose.x, y=nose.y))

    return CanonicalLandmarks(
        left_eye=left_eye,
        right_eye=right_eye,
        nose_bridge=_pick(pts, NOSE_BRIDGE_INDICES),
        all_points=[Point2D(x=p.x, y=p.y) for p in pts],
        head_rotation=rotation,
        neutral_rotation=neutral,
        emotion_scores={k: min(1.0, max(0.0, float(v))) for k, v in face.blendshapes.items()},
    )
