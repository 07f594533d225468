from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

import numpy as np

from ..capture.camera import CameraController
from ..capture.recorder import Recorder, encode_snapshot
from ..config import SessionConfig
from ..detectors.base import DetectorConfig, DetectorFactory, FaceDetector
from ..errors import CaptureError, InitializationFailure
from ..pipeline.anchor import compute_anchor
from ..pipeline.detection_loop import DetectionLoop
from ..pipeline.smoothing import AnchorSmoother
from ..render.canvas import draw_scene
from ..render.effects import EffectRenderer
from ..schemas.effects import EffectKind
from ..schemas.landmarks import PoseAnchor
from .artifacts import Artifact
from .store import RecordingEntry, SessionStore, epoch_ms

log = logging.getLogger(__name__)


def backend_factory(name: str) -> DetectorFactory:
    def factory(cfg: DetectorConfig) -> FaceDetector:
        # Deferred so sessions built with fake detectors never load mediapipe.
        from ..detectors.mediapipe_tasks_backend import BACKENDS
        return BACKENDS[name](cfg)
    return factory


class EffectsSession:
    """Camera -> detection -> anchor -> effect overlay, plus snapshot/recording.

    step() is the per-frame entry point; the caller owns the frame cadence.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        *,
        camera: CameraController | None = None,
        detector_factory: DetectorFactory | None = None,
        renderer: EffectRenderer | None = None,
        recorder: Recorder | None = None,
        store: SessionStore | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.config = cfg = config or SessionConfig()
        self._clock = clock
        self.store = store or SessionStore()
        self.camera = camera or CameraController(
            cfg.device, width=cfg.width, height=cfg.height, fps=cfg.fps, mirror=cfg.mirror,
        )
        self.loop = DetectionLoop(
            detector_factory or backend_factory(cfg.backend),
            self.camera,
            cfg.detector,
            clock=lambda: clock() * 1000.0,
        )
        self.renderer = renderer or EffectRenderer(asset_path=cfg.asset_path, clock=clock)
        self.recorder = recorder or Recorder()
        self._smoother = AnchorSmoother() if cfg.smoothing else None
        self.anchor: PoseAnchor | None = None
        self.last_frame: np.ndarray | None = None
        self.exported: list[Path] = []

    @property
    def can_capture(self) -> bool:
        return self.store.is_camera_active and self.store.active_effect is not EffectKind.NONE

    def start_camera(self) -> None:
        """Open the camera and begin detection; on failure nothing stays running."""
        self.camera.start()
        try:
            self.loop.initialize()
            if not self.loop.start():
                raise InitializationFailure(self.loop.error or "Face detection did not start")
        except InitializationFailure:
            self.loop.stop()
            self.camera.stop()
            raise
        self.store.set_camera_active(True)

    def stop_camera(self) -> None:
        if self.recorder.is_recording:
            self.stop_recording()
        self.loop.stop()
        self.camera.stop()
        self.store.set_camera_active(False)
        self.anchor = None
        if self._smoother is not None:
            self._smoother.reset()

    def step(self) -> np.ndarray | None:
        """Advance one frame. None when the camera had no new frame."""
        if not self.camera.poll():
            return None
        self.loop.tick()
        anchor = compute_anchor(self.loop.landmarks)
        if self._smoother is not None:
            anchor = self._smoother(anchor, self._clock())
        self.anchor = anchor

        scene = self.renderer.build_scene(anchor, self.store.selection)
        frame = draw_scene(self.camera.latest_bgr, scene)
        if self.recorder.is_recording:
            self.recorder.write(frame)
        self.last_frame = frame
        return frame

    def select_effect(self, effect: EffectKind) -> EffectKind:
        return self.store.select_effect(effect)

    def _export(self, artifact: Artifact, name: str) -> None:
        if self.config.export_dir is None:
            return
        try:
            path = artifact.save_to(self.config.export_dir / name)
        except OSError as exc:
            log.error("Could not export %s: %s", name, exc)
            return
        self.exported.append(path)
        log.info("Saved %s", path)

    def capture_snapshot(self) -> Artifact | None:
        if not self.can_capture:
            log.warning("Snapshot needs an active camera and a selected effect")
            return None
        frame = self.last_frame if self.last_frame is not None else self.camera.latest_bgr
        if frame is None:
            return None
        artifact = encode_snapshot(frame)
        self.store.add_snapshot(artifact)
        self._export(artifact, f"ar-snapshot-{epoch_ms()}.png")
        return artifact

    def start_recording(self) -> bool:
        if self.recorder.is_recording:
            return True
        if not self.can_capture:
            log.warning("Recording needs an active camera and a selected effect")
            return False
        try:
            self.recorder.start(self.camera.frame_size, self.camera.source_fps)
        except CaptureError as exc:
            log.error("Failed to start recording: %s", exc)
            return False
        if not self.store.is_recording:
            self.store.toggle_recording()
        return True

    def stop_recording(self) -> RecordingEntry | None:
        artifact = self.recorder.stop()
        if self.store.is_recording:
            self.store.toggle_recording()
        if artifact is None:
            return None
        entry = self.store.add_recording(artifact)
        self._export(artifact, f"ar-recording-{entry.timestamp}.mp4")
        return entry

    def toggle_recording(self) -> bool:
        if self.recorder.is_recording:
            self.stop_recording()
            return False
        return self.start_recording()

    def close(self) -> None:
        try:
            self.stop_camera()
        finally:
            self.loop.close()
            self.store.reset()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
