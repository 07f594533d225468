from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field


class Landmark(BaseModel):
    """One detector point in normalized [0,1] image space."""
    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    z: float | None = None


class Point2D(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class DetectedFace(BaseModel):
    landmarks: list[Landmark] = Field(default_factory=list)
    blendshapes: dict[str, float] = Field(default_factory=dict)


class RawDetectionResult(BaseModel):
    # Faces keep detector order; consumers pick the first one.
    faces: list[DetectedFace] = Field(default_factory=list)
    timestamp_ms: int = -1


class HeadRotation(BaseModel):
    """Euler angles in degrees."""
    model_config = ConfigDict(frozen=True)

    pitch: float = 0.0
    yaw: float = 0.0
    roll: float = 0.0

    def relative_to(self, origin: "HeadRotation") -> "HeadRotation":
        return HeadRotation(
            pitch=self.pitch - origin.pitch,
            yaw=self.yaw - origin.yaw,
            roll=self.roll - origin.roll,
        )


class CanonicalLandmarks(BaseModel):
    model_config = ConfigDict(frozen=True)

    left_eye: list[Point2D] = Field(default_factory=list)
    right_eye: list[Point2D] = Field(default_factory=list)
    nose_bridge: list[Point2D] = Field(default_factory=list)
    all_points: list[Point2D] = Field(default_factory=list)
    head_rotation: HeadRotation = Field(default_factory=HeadRotation)
    # What head_rotation reads for a frontal face under the estimate used.
    neutral_rotation: HeadRotation = Field(default_factory=HeadRotation)
    emotion_scores: dict[str, float] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.left_eye or not self.right_eye


class RenderPoint(BaseModel):
    """Renderer-space coordinate (y up, origin at frame center)."""
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class PoseAnchor(BaseModel):
    model_config = ConfigDict(frozen=True)

    left_eye_center: Point2D
    right_eye_center: Point2D
    left_eye_render: RenderPoint
    right_eye_render: RenderPoint
    midpoint_anchor: RenderPoint
    inter_eye_distance: float
    scale: float
    head_rotation: HeadRotation = Field(default_factory=HeadRotation)
    neutral_rotation: HeadRotation = Field(default_factory=HeadRotation)
    emotion_scores: dict[str, float] = Field(default_factory=dict)
