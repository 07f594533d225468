from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol

import numpy as np

from ..pipeline.extract import RotationStrategy
from ..schemas.landmarks import DetectedFace, Landmark, RawDetectionResult


@dataclass(frozen=True)
class DetectorConfig:
    PROFILE_PRESETS = {
        "balanced": {
            "min_detection_confidence": 0.50,
            "min_tracking_confidence": 0.50,
        },
        "responsive": {
            "min_detection_confidence": 0.30,
            "min_tracking_confidence": 0.30,
        },
        "strict": {
            "min_detection_confidence": 0.70,
            "min_tracking_confidence": 0.70,
        },
    }

    max_faces: int = 1
    min_detection_confidence: float = 0.50
    min_tracking_confidence: float = 0.50
    output_blendshapes: bool = True
    model: str = "face_landmarker.task"
    delegate: str = "cpu"  # cpu | gpu
    # Deadline for model construction; None waits indefinitely.
    init_timeout_s: float | None = None

    def __post_init__(self):
        if self.max_faces < 1:
            raise ValueError(f"max_faces must be >= 1 (got {self.max_faces})")
        for name in ("min_detection_confidence", "min_tracking_confidence"):
            v = getattr(self, name)
            if not 0.0 <= v <= 1.0:
                raise ValueError(f"{name} must be within [0, 1] (got {v})")
        delegate = self.delegate.strip().lower()
        if delegate not in ("cpu", "gpu"):
            raise ValueError(f"Unknown delegate '{self.delegate}' (expected cpu or gpu)")
        object.__setattr__(self, "delegate", delegate)

    @classmethod
    def from_profile(cls, profile: str, **overrides: Any) -> "DetectorConfig":
        key = profile.strip().lower()
        if key not in cls.PROFILE_PRESETS:
            raise ValueError(
                f"Unknown detector profile '{profile}' (expected one of: {', '.join(cls.PROFILE_PRESETS)})"
            )
        return cls(**{**cls.PROFILE_PRESETS[key], **overrides})


class FaceDetector(Protocol):
    """Pull-style landmark detector; constructing one initializes it."""

    rotation_strategy: RotationStrategy

    def detect(self, frame_rgb: np.ndarray, timestamp_ms: int) -> RawDetectionResult: ...

    def close(self) -> None: ...


DetectorFactory = Callable[[DetectorConfig], FaceDetector]


def raw_result_from_tasks(result: Any, timestamp_ms: int) -> RawDetectionResult:
    """Convert a FaceLandmarkerResult into detector-agnostic faces."""
    faces_lms = getattr(result, "face_landmarks", None) or []
    faces_bs = getattr(result, "face_blendshapes", None) or []

    faces: list[DetectedFace] = []
    for i, lms in enumerate(faces_lms):
        landmarks = [
            Landmark(x=float(lm.x), y=float(lm.y), z=None if getattr(lm, "z", None) is None else float(lm.z))
            for lm in lms
        ]
        blendshapes: dict[str, float] = {}
        if i < len(faces_bs):
            for cat in faces_bs[i] or []:
                name = getattr(cat, "category_name", None)
                if name:
                    blendshapes[name] = float(cat.score)
        faces.append(DetectedFace(landmarks=landmarks, blendshapes=blendshapes))
    return RawDetectionResult(faces=faces, timestamp_ms=int(timestamp_ms))
