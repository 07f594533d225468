from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

import numpy as np

Vec3 = tuple[float, float, float]
BGR = tuple[int, int, int]


@dataclass(frozen=True)
class Circle:
    center: Vec3
    radius: float
    color: BGR
    opacity: float = 1.0
    soft: bool = False  # blurred edge, for halos


@dataclass(frozen=True)
class Box:
    center: Vec3
    size: Vec3
    color: BGR
    opacity: float = 1.0


@dataclass(frozen=True, eq=False)
class Sprite:
    """Flat RGBA image centred on the local origin, `width` scene units wide."""
    image: np.ndarray
    width: float
    opacity: float = 1.0

    @property
    def height(self) -> float:
        h, w = self.image.shape[:2]
        return self.width * h / max(1, w)


@dataclass(frozen=True)
class Group:
    """Rigid transform applied to children: scale, then rotate (x, y, z radians), then translate."""
    position: Vec3
    scale: float = 1.0
    rotation: Vec3 = (0.0, 0.0, 0.0)
    children: tuple["Node", ...] = field(default_factory=tuple)


Node = Union[Circle, Box, Sprite, Group]


def rotation_matrix(rx: float, ry: float, rz: float) -> np.ndarray:
    """Intrinsic X-then-Y-then-Z Euler rotation (R = Rx @ Ry @ Rz)."""
    cx, sx = np.cos(rx), np.sin(rx)
    cy, sy = np.cos(ry), np.sin(ry)
    cz, sz = np.cos(rz), np.sin(rz)
    Rx = np.array([[1, 0, 0], [0, cx, -sx], [0, sx, cx]])
    Ry = np.array([[cy, 0, sy], [0, 1, 0], [-sy, 0, cy]])
    Rz = np.array([[cz, -sz, 0], [sz, cz, 0], [0, 0, 1]])
    return Rx @ Ry @ Rz
