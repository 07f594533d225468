from __future__ import annotations

import math
from typing import Optional

import numpy as np

from ..schemas.landmarks import HeadRotation, PoseAnchor, RenderPoint


class LowPassFilter:
    """Exponential smoother."""

    def __init__(self, alpha: float = 1.0) -> None:
        self.alpha = float(max(1e-5, min(1.0, alpha)))
        self._last: Optional[np.ndarray] = None

    def __call__(self, value: np.ndarray, alpha: float | None = None) -> np.ndarray:
        if alpha is not None:
            self.alpha = float(max(1e-5, min(1.0, alpha)))
        value = np.asarray(value, dtype=float)
        if self._last is None:
            self._last = value.copy()
        else:
            self._last = self.alpha * value + (1.0 - self.alpha) * self._last
        return self._last.copy()

    def seed(self, value: np.ndarray) -> None:
        self._last = np.asarray(value, dtype=float).copy()


class OneEuroFilter:
    """Speed-adaptive low-pass filter: steady when still, responsive when moving."""

    def __init__(self, min_cutoff: float = 1.0, beta: float = 0.007, d_cutoff: float = 1.0) -> None:
        self.min_cutoff = float(min_cutoff)
        self.beta = float(beta)
        self.d_cutoff = float(max(1e-5, d_cutoff))
        self._last_time: Optional[float] = None
        self._last_x: Optional[np.ndarray] = None
        self._x = LowPassFilter()
        self._dx = LowPassFilter()

    @staticmethod
    def _alpha(cutoff: float, dt: float) -> float:
        tau = 1.0 / (2 * math.pi * max(1e-5, cutoff))
        return 1.0 / (1.0 + tau / max(1e-5, dt))

    def reset(self) -> None:
        self._last_time = None
        self._last_x = None
        self._x = LowPassFilter()
        self._dx = LowPassFilter()

    def __call__(self, value: np.ndarray, timestamp_s: float) -> np.ndarray:
        x = np.asarray(value, dtype=float)
        if self._last_x is None or self._last_time is None:
            self._last_time = timestamp_s
            self._last_x = x.copy()
            self._x.seed(x)
            self._dx.seed(np.zeros_like(x))
            return x.copy()

        dt = max(1e-5, timestamp_s - self._last_time)
        self._last_time = timestamp_s
        dx = (x - self._last_x) / dt
        self._last_x = x.copy()

        dx_hat = self._dx(dx, self._alpha(self.d_cutoff, dt))
        cutoff = self.min_cutoff + self.beta * float(np.linalg.norm(dx_hat))
        return self._x(x, self._alpha(cutoff, dt))


class AnchorSmoother:
    """Temporal smoothing of anchor placement, scale and rotation.

    Eye centers and distance in normalized space stay raw; only the values
    the renderer places geometry with are filtered. A missing anchor resets
    the filters so a re-acquired face does not glide in from its old spot.
    """

    def __init__(self, min_cutoff: float = 1.5, beta: float = 0.05) -> None:
        self._position = OneEuroFilter(min_cutoff=min_cutoff, beta=beta)
        self._rotation = OneEuroFilter(min_cutoff=min_cutoff, beta=beta)

    def reset(self) -> None:
        self._position.reset()
        self._rotation.reset()

    def __call__(self, anchor: PoseAnchor | None, timestamp_s: float) -> PoseAnchor | None:
        if anchor is None:
            self.reset()
            return None

        pos = self._position(
            np.array([
                anchor.left_eye_render.x, anchor.left_eye_render.y,
                anchor.right_eye_render.x, anchor.right_eye_render.y,
                anchor.midpoint_anchor.x, anchor.midpoint_anchor.y,
                anchor.scale,
            ]),
            timestamp_s,
        )
        rot = anchor.head_rotation
        pitch, yaw, roll = self._rotation(np.array([rot.pitch, rot.yaw, rot.roll]), timestamp_s)

        return anchor.model_copy(update={
            "left_eye_render": RenderPoint(x=float(pos[0]), y=float(pos[1])),
            "right_eye_render": RenderPoint(x=float(pos[2]), y=float(pos[3])),
            "midpoint_anchor": RenderPoint(x=float(pos[4]), y=float(pos[5])),
            "scale": float(pos[6]),
            "head_rotation": HeadRotation(pitch=float(pitch), yaw=float(yaw), roll=float(roll)),
        })
