"""MediaPipe backend plumbing that runs without a model file."""

import threading
import time
from types import SimpleNamespace

import mediapipe as mp
import numpy as np
import pytest

from facelens.detectors.base import DetectorConfig
from facelens.detectors.mediapipe_tasks_backend import (
    MediaPipeLiveStreamBackend,
    MediaPipeVideoBackend,
    _create_landmarker,
)
from facelens.errors import InitializationFailure
from facelens.schemas.landmarks import RawDetectionResult

GPU = mp.tasks.BaseOptions.Delegate.GPU
CPU = mp.tasks.BaseOptions.Delegate.CPU


class FakeLandmarker:
    def __init__(self):
        self.async_calls = []
        self.closed = False

    def detect_async(self, image, timestamp_ms):
        self.async_calls.append(timestamp_ms)

    def close(self):
        self.closed = True


def tasks_result(n_faces=1):
    lms = [SimpleNamespace(x=0.5, y=0.5, z=0.0)] * 3
    return SimpleNamespace(face_landmarks=[lms] * n_faces, face_blendshapes=None)


@pytest.fixture
def live():
    backend = object.__new__(MediaPipeLiveStreamBackend)
    backend._lock = threading.Lock()
    backend._latest = RawDetectionResult()
    backend._landmarker = FakeLandmarker()
    return backend


def frame():
    return np.zeros((8, 8, 3), dtype=np.uint8)


# ── Live-stream buffer ──


class TestLiveStreamBuffer:
    def test_nothing_delivered_yet(self, live):
        res = live.detect(frame(), 5)
        assert res.faces == []
        assert res.timestamp_ms == -1
        assert live._landmarker.async_calls == [5]

    def test_returns_latest_callback_result(self, live):
        live._on_result(tasks_result(), None, 10)
        res = live.detect(frame(), 30)
        assert res.timestamp_ms == 10
        assert len(res.faces) == 1
        assert live._landmarker.async_calls == [30]

    def test_out_of_order_callback_is_ignored(self, live):
        live._on_result(tasks_result(2), None, 20)
        live._on_result(tasks_result(1), None, 10)
        res = live.detect(frame(), 40)
        assert res.timestamp_ms == 20
        assert len(res.faces) == 2

    def test_newer_callback_replaces(self, live):
        live._on_result(tasks_result(1), None, 10)
        live._on_result(tasks_result(0), None, 25)
        assert live.detect(frame(), 40).faces == []

    def test_callback_is_wired_only_for_live_stream(self, live):
        assert live._extra_options() == {"result_callback": live._on_result}
        video = object.__new__(MediaPipeVideoBackend)
        assert video._extra_options() == {}

    def test_closed_backend(self, live):
        landmarker = live._landmarker
        live.close()
        assert landmarker.closed
        with pytest.raises(RuntimeError):
            live.detect(frame(), 50)


# ── Landmarker construction ──


class TestCreateLandmarker:
    def test_gpu_failure_falls_back_to_cpu(self):
        tried = []

        def create(delegate):
            tried.append(delegate)
            if delegate == GPU:
                raise RuntimeError("no OpenGL context")
            return "cpu-landmarker"

        out = _create_landmarker(lambda d: d, DetectorConfig(delegate="gpu"), create)
        assert out == "cpu-landmarker"
        assert tried == [GPU, CPU]

    def test_cpu_only_never_tries_gpu(self):
        tried = []
        _create_landmarker(lambda d: d, DetectorConfig(), lambda d: tried.append(d) or "ok")
        assert tried == [CPU]

    def test_cpu_failure_is_initialization_failure(self):
        def create(delegate):
            raise RuntimeError("bad model")

        with pytest.raises(InitializationFailure, match="bad model"):
            _create_landmarker(lambda d: d, DetectorConfig(delegate="gpu"), create)

    def test_deadline(self):
        release = threading.Event()

        def create(delegate):
            release.wait(2.0)
            return "late"

        t0 = time.monotonic()
        try:
            with pytest.raises(InitializationFailure, match="timed out"):
                _create_landmarker(lambda d: d, DetectorConfig(init_timeout_s=0.05), create)
        finally:
            release.set()
        assert time.monotonic() - t0 < 1.5

    def test_deadline_met(self):
        out = _create_landmarker(lambda d: d, DetectorConfig(init_timeout_s=1.0), lambda d: "fast")
        assert out == "fast"
