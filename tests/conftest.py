import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = (ROOT / "src").resolve()

if SRC not in (Path(p).resolve() for p in sys.path):
    sys.path.insert(0, str(SRC))

from facelens.pipeline.extract import (  # noqa: E402
    FOREHEAD_INDEX,
    LEFT_CHEEK_INDEX,
    LEFT_EYE_INDICES,
    NOSE_TIP_INDEX,
    RIGHT_CHEEK_INDEX,
    RIGHT_EYE_INDICES,
    RotationStrategy,
)
from facelens.schemas.landmarks import DetectedFace, Landmark, RawDetectionResult  # noqa: E402

FACE_POINTS = 478


def build_face(
    left_eye=(0.4, 0.4),
    right_eye=(0.6, 0.4),
    nose=(0.5, 0.5),
    *,
    depth=False,
    blendshapes=None,
) -> DetectedFace:
    """Synthetic face-mesh: every eye point sits on the given eye center."""
    z = 0.0 if depth else None
    pts = [Landmark(x=0.5, y=0.5, z=z) for _ in range(FACE_POINTS)]
    for i in LEFT_EYE_INDICES:
        pts[i] = Landmark(x=left_eye[0], y=left_eye[1], z=z)
    for i in RIGHT_EYE_INDICES:
        pts[i] = Landmark(x=right_eye[0], y=right_eye[1], z=z)
    pts[NOSE_TIP_INDEX] = Landmark(x=nose[0], y=nose[1], z=(-0.05 if depth else None))
    pts[FOREHEAD_INDEX] = Landmark(x=nose[0], y=left_eye[1] - 0.15, z=z)
    pts[LEFT_CHEEK_INDEX] = Landmark(x=left_eye[0] - 0.1, y=left_eye[1] + 0.05, z=z)
    pts[RIGHT_CHEEK_INDEX] = Landmark(x=right_eye[0] + 0.1, y=right_eye[1] + 0.05, z=z)
    return DetectedFace(landmarks=pts, blendshapes=dict(blendshapes or {}))


def build_result(*faces: DetectedFace, timestamp_ms: int = -1) -> RawDetectionResult:
    return RawDetectionResult(faces=list(faces), timestamp_ms=timestamp_ms)


class FakeSource:
    def __init__(self, ready: bool = True):
        self.ready = ready
        self.frame = np.zeros((48, 64, 3), dtype=np.uint8)

    def is_ready(self) -> bool:
        return self.ready

    def current_frame(self):
        return self.frame if self.ready else None


class FakeDetector:
    """Returns scripted results (or raises scripted exceptions) in order."""

    rotation_strategy = RotationStrategy.AUTO

    def __init__(self, results=None, on_detect=None):
        self.results = list(results or [])
        self.on_detect = on_detect
        self.calls = []
        self.closed = False

    def detect(self, frame, timestamp_ms):
        self.calls.append(timestamp_ms)
        if self.on_detect is not None:
            self.on_detect()
        item = self.results.pop(0) if self.results else RawDetectionResult(timestamp_ms=timestamp_ms)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


@pytest.fixture
def face():
    return build_face


@pytest.fixture
def result():
    return build_result


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def clock():
    return FakeClock()
