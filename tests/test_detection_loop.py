"""Tests for the detection loop state machine and FPS accounting."""

import pytest

from conftest import FakeDetector
from facelens.errors import InitializationFailure
from facelens.pipeline.detection_loop import (
    NOT_INITIALIZED,
    DetectionLoop,
    FpsCounter,
    LoopState,
)
from facelens.pipeline.extract import RotationStrategy, extract


def make_loop(source, clock, detector=None, **kwargs):
    detector = detector or FakeDetector()
    return DetectionLoop(lambda cfg: detector, source, clock=clock, **kwargs), detector


# ── FPS ──


class TestFpsCounter:
    def test_thirty_samples_over_one_second(self):
        fps = FpsCounter()
        fps.reset(0.0)
        for i in range(1, 31):
            fps.sample(i * 1000.0 / 30)
        assert fps.fps == 30

    def test_no_report_before_window_closes(self):
        fps = FpsCounter()
        fps.reset(0.0)
        for i in range(1, 10):
            fps.sample(i * 50.0)
        assert fps.fps == 0

    def test_window_resets_after_report(self):
        fps = FpsCounter()
        fps.reset(0.0)
        for i in range(1, 31):
            fps.sample(i * 1000.0 / 30)
        # next window runs slower: 10 samples over 1000 ms
        for i in range(1, 11):
            fps.sample(1000.0 + i * 100.0)
        assert fps.fps == 10

    def test_rounds_rate(self):
        fps = FpsCounter()
        fps.reset(0.0)
        for i in range(1, 8):
            fps.sample(i * 150.0)  # 7 samples, last at 1050 ms
        assert fps.fps == 7


# ── Lifecycle ──


class TestLifecycle:
    def test_initialize_reaches_ready(self, source, clock):
        loop, _ = make_loop(source, clock)
        assert loop.state is LoopState.IDLE
        loop.initialize()
        assert loop.state is LoopState.READY
        assert loop.is_loaded

    def test_initialize_failure_returns_to_idle(self, source, clock):
        def boom(cfg):
            raise RuntimeError("model missing")

        loop = DetectionLoop(boom, source, clock=clock)
        with pytest.raises(InitializationFailure, match="model missing"):
            loop.initialize()
        assert loop.state is LoopState.IDLE
        assert loop.error == "model missing"

    def test_initialize_failure_is_not_retried(self, source, clock):
        attempts = []

        def boom(cfg):
            attempts.append(cfg)
            raise InitializationFailure("no gpu")

        loop = DetectionLoop(boom, source, clock=clock)
        with pytest.raises(InitializationFailure):
            loop.initialize()
        assert len(attempts) == 1
        assert loop.tick() is False
        assert len(attempts) == 1

    def test_start_before_initialize_is_noop(self, source, clock):
        loop, detector = make_loop(source, clock)
        assert loop.start() is False
        assert loop.error == NOT_INITIALIZED
        assert loop.state is LoopState.IDLE
        assert loop.tick() is False
        assert detector.calls == []

    def test_start_and_stop(self, source, clock):
        loop, _ = make_loop(source, clock)
        loop.initialize()
        assert loop.start() is True
        assert loop.is_detecting
        loop.stop()
        assert loop.state is LoopState.READY

    def test_stop_is_idempotent(self, source, clock):
        loop, _ = make_loop(source, clock)
        loop.stop()
        loop.initialize()
        loop.start()
        loop.stop()
        loop.stop()
        assert loop.state is LoopState.READY
        assert loop.landmarks is None
        assert loop.fps == 0

    def test_close_releases_detector(self, source, clock):
        loop, detector = make_loop(source, clock)
        with loop:
            loop.initialize()
            loop.start()
        assert detector.closed
        assert loop.state is LoopState.IDLE
        assert not loop.is_loaded


# ── Sampling ──


class TestSampling:
    def test_tick_idle_does_nothing(self, source, clock):
        loop, detector = make_loop(source, clock)
        loop.initialize()
        assert loop.tick() is False
        assert detector.calls == []

    def test_source_not_ready_skips(self, source, clock):
        source.ready = False
        loop, detector = make_loop(source, clock)
        loop.initialize()
        loop.start()
        assert loop.tick() is False
        assert detector.calls == []
        source.ready = True
        assert loop.tick() is True

    def test_face_updates_landmarks(self, source, clock, face, result):
        raw = result(face())
        loop, _ = make_loop(source, clock, FakeDetector([raw]))
        loop.initialize()
        loop.start()
        loop.tick()
        assert loop.landmarks == extract(raw)

    def test_zero_faces_clears_landmarks(self, source, clock, face, result):
        loop, _ = make_loop(source, clock, FakeDetector([result(face()), result()]))
        loop.initialize()
        loop.start()
        loop.tick()
        assert loop.landmarks is not None
        loop.tick()
        assert loop.landmarks is None

    def test_timestamps_strictly_increase(self, source, clock):
        loop, detector = make_loop(source, clock)
        loop.initialize()
        loop.start()
        for _ in range(3):
            loop.tick()
        assert detector.calls == [1, 2, 3]

    def test_detector_strategy_is_used(self, source, clock, face, result):
        raw = result(face(depth=True))
        detector = FakeDetector([raw])
        detector.rotation_strategy = RotationStrategy.PLANAR
        loop, _ = make_loop(source, clock, detector)
        loop.initialize()
        loop.start()
        loop.tick()
        assert loop.landmarks == extract(raw, RotationStrategy.PLANAR)

    def test_transient_error_keeps_running(self, source, clock, face, result):
        raw = result(face())
        loop, _ = make_loop(source, clock, FakeDetector([result(face()), RuntimeError("gpu hiccup"), raw]))
        loop.initialize()
        loop.start()
        loop.tick()
        assert loop.tick() is True
        assert loop.landmarks is None
        assert loop.error_count == 1
        assert "gpu hiccup" in str(loop.last_detection_error)
        assert loop.is_detecting
        loop.tick()
        assert loop.landmarks == extract(raw)

    def test_fps_through_loop(self, source, clock):
        loop, _ = make_loop(source, clock)
        loop.initialize()
        loop.start()
        for i in range(1, 31):
            clock.t = i * 1000.0 / 30
            loop.tick()
        assert loop.fps == 30


# ── Late results ──


class TestLateResults:
    def test_stop_during_detect_discards_result(self, source, clock, face, result):
        holder = {}
        detector = FakeDetector([result(face())], on_detect=lambda: holder["loop"].stop())
        loop, _ = make_loop(source, clock, detector)
        holder["loop"] = loop
        loop.initialize()
        loop.start()
        loop.tick()
        assert loop.state is LoopState.READY
        assert loop.landmarks is None
        assert loop.fps == 0

    def test_buffered_result_from_before_start_is_dropped(self, source, clock, face, result):
        clock.t = 100.0
        loop, _ = make_loop(source, clock, FakeDetector([result(face(), timestamp_ms=50)]))
        loop.initialize()
        loop.start()
        clock.t = 150.0
        loop.tick()
        assert loop.landmarks is None

    def test_restart_after_stop_resumes(self, source, clock, face, result):
        raw = result(face())
        loop, _ = make_loop(source, clock, FakeDetector([raw, raw]))
        loop.initialize()
        loop.start()
        loop.tick()
        loop.stop()
        assert loop.landmarks is None
        loop.start()
        loop.tick()
        assert loop.landmarks == extract(raw)
