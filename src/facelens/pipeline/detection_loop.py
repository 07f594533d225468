from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Protocol

import numpy as np

from ..detectors.base import DetectorConfig, DetectorFactory, FaceDetector
from ..errors import InitializationFailure, TransientDetectionError
from ..schemas.landmarks import CanonicalLandmarks
from .extract import RotationStrategy, extract

log = logging.getLogger(__name__)

FPS_WINDOW_MS = 1000.0
NOT_INITIALIZED = "Face detector not initialized"


def now_ms() -> float:
    return time.perf_counter_ns() / 1_000_000


class FrameSource(Protocol):
    def is_ready(self) -> bool: ...

    def current_frame(self) -> np.ndarray | None: ...


class LoopState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    DETECTING = "detecting"


class FpsCounter:
    """Completed detections per second over rolling one-second windows."""

    def __init__(self, window_ms: float = FPS_WINDOW_MS) -> None:
        self.window_ms = float(window_ms)
        self.fps = 0
        self._count = 0
        self._window_start: float | None = None

    def reset(self, now: float | None = None) -> None:
        self.fps = 0
        self._count = 0
        self._window_start = now

    def sample(self, now: float) -> int:
        if self._window_start is None:
            self._window_start = now
        self._count += 1
        elapsed = now - self._window_start
        if elapsed >= self.window_ms:
            self.fps = int(round(self._count / elapsed * 1000.0))
            self._count = 0
            self._window_start = now
        return self.fps


class DetectionLoop:
    """Per-frame landmark sampling driven by the host's frame callback.

    The host calls tick() once per displayed frame. Work happens only while
    DETECTING; everything runs on the caller's thread, so a slow detector
    slows the frame it is called from and nothing else.
    """

    def __init__(
        self,
        detector_factory: DetectorFactory,
        source: FrameSource,
        config: DetectorConfig | None = None,
        *,
        strategy: RotationStrategy | None = None,
        clock: Callable[[], float] = now_ms,
    ) -> None:
        self._factory = detector_factory
        self._source = source
        self.config = config or DetectorConfig()
        self._strategy = strategy
        self._clock = clock

        self._state = LoopState.IDLE
        self._detector: FaceDetector | None = None
        self._generation = 0
        self._started_at = -1
        self._last_ts = -1

        self.landmarks: CanonicalLandmarks | None = None
        self.error: str | None = None
        self.error_count = 0
        self.last_detection_error: TransientDetectionError | None = None
        self.fps_counter = FpsCounter()

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def is_loaded(self) -> bool:
        return self._detector is not None

    @property
    def is_detecting(self) -> bool:
        return self._state is LoopState.DETECTING

    @property
    def fps(self) -> int:
        return self.fps_counter.fps

    def initialize(self) -> None:
        if self._state is not LoopState.IDLE:
            return
        self._state = LoopState.INITIALIZING
        try:
            detector = self._factory(self.config)
        except Exception as exc:
            self._state = LoopState.IDLE
            self.error = str(exc) or exc.__class__.__name__
            log.error("Failed to initialize face detection: %s", self.error)
            if isinstance(exc, InitializationFailure):
                raise
            raise InitializationFailure(self.error) from exc
        self._detector = detector
        self._state = LoopState.READY
        self.error = None

    def start(self) -> bool:
        if self._state in (LoopState.IDLE, LoopState.INITIALIZING):
            self.error = NOT_INITIALIZED
            log.warning(NOT_INITIALIZED)
            return False
        if self._state is LoopState.DETECTING:
            return True
        self._generation += 1
        self._started_at = self._next_timestamp()
        self.fps_counter.reset(float(self._started_at))
        self._state = LoopState.DETECTING
        return True

    def stop(self) -> None:
        if self._state is LoopState.DETECTING:
            self._state = LoopState.READY
        # Bumping the generation drops results of calls still in flight.
        self._generation += 1
        self.landmarks = None
        self.fps_counter.reset()

    def close(self) -> None:
        self.stop()
        detector, self._detector = self._detector, None
        if detector is not None:
            detector.close()
        self._state = LoopState.IDLE

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _next_timestamp(self) -> int:
        # Video-mode detectors reject timestamps that do not increase.
        ts = max(int(self._clock()), self._last_ts + 1)
        self._last_ts = ts
        return ts

    def _strategy_for(self, detector: FaceDetector) -> RotationStrategy:
        if self._strategy is not None:
            return self._strategy
        return getattr(detector, "rotation_strategy", RotationStrategy.AUTO)

    def tick(self) -> bool:
        """Run one sample. Returns True when the detector was invoked."""
        if self._state is not LoopState.DETECTING or self._detector is None:
            return False
        if not self._source.is_ready():
            return False
        frame = self._source.current_frame()
        if frame is None:
            return False

        generation = self._generation
        detector = self._detector
        ts = self._next_timestamp()
        try:
            raw = detector.detect(frame, ts)
            landmarks = extract(raw, self._strategy_for(detector)) if raw.faces else None
        except Exception as exc:
            self.error_count += 1
            self.last_detection_error = TransientDetectionError(str(exc) or exc.__class__.__name__)
            log.warning("Face detection error: %s", self.last_detection_error)
            if generation == self._generation and self._state is LoopState.DETECTING:
                self.landmarks = None
            return True

        if generation != self._generation or self._state is not LoopState.DETECTING:
            return True
        if raw.timestamp_ms >= 0 and raw.timestamp_ms < self._started_at:
            # Buffered result from before this start(); treat as nothing yet.
            landmarks = None

        self.landmarks = landmarks
        self.fps_counter.sample(float(self._clock()))
        return True
