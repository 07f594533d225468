from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from pathlib import Path
import logging
import threading
from typing import Any, Callable

import numpy as np
import mediapipe as mp

from ..errors import InitializationFailure
from ..pipeline.extract import RotationStrategy
from ..schemas.landmarks import RawDetectionResult
from ..util.download import resolve_model
from ..util.paths import default_models_dir
from .base import DetectorConfig, raw_result_from_tasks

log = logging.getLogger(__name__)


def _create_landmarker(
    options_for: Callable[[Any], Any],
    cfg: DetectorConfig,
    create: Callable[[Any], Any] | None = None,
) -> Any:
    """Build a FaceLandmarker, falling back from GPU to CPU once."""
    BaseOptions = mp.tasks.BaseOptions
    create = create or mp.tasks.vision.FaceLandmarker.create_from_options

    def build(delegate: Any) -> Any:
        opts = options_for(delegate)
        if cfg.init_timeout_s is None:
            return create(opts)
        ex = ThreadPoolExecutor(max_workers=1)
        try:
            future = ex.submit(create, opts)
            return future.result(timeout=cfg.init_timeout_s)
        except FutureTimeout as exc:
            raise InitializationFailure(
                f"FaceLandmarker initialization timed out after {cfg.init_timeout_s:.1f}s"
            ) from exc
        finally:
            ex.shutdown(wait=False)

    if cfg.delegate == "gpu":
        try:
            return build(BaseOptions.Delegate.GPU)
        except InitializationFailure:
            raise
        except Exception as exc:
            log.warning("GPU delegate unavailable (%s); falling back to CPU", exc)
    try:
        return build(BaseOptions.Delegate.CPU)
    except InitializationFailure:
        raise
    except Exception as exc:
        raise InitializationFailure(f"FaceLandmarker initialization failed: {exc}") from exc


class _TasksBackend:
    running_mode_name = "VIDEO"
    rotation_strategy = RotationStrategy.PLANAR

    def __init__(self, cfg: DetectorConfig | None = None, models_dir: Path | None = None):
        self.cfg = cfg or DetectorConfig()
        try:
            model_path = resolve_model(self.cfg.model, models_dir or default_models_dir())
        except (OSError, RuntimeError) as exc:
            raise InitializationFailure(f"Face landmarker model unavailable: {exc}") from exc

        BaseOptions = mp.tasks.BaseOptions
        vision = mp.tasks.vision
        running_mode = getattr(vision.RunningMode, self.running_mode_name)

        def options_for(delegate: Any) -> Any:
            return vision.FaceLandmarkerOptions(
                base_options=BaseOptions(model_asset_path=str(model_path), delegate=delegate),
                running_mode=running_mode,
                num_faces=self.cfg.max_faces,
                min_face_detection_confidence=self.cfg.min_detection_confidence,
                min_face_presence_confidence=self.cfg.min_tracking_confidence,
                min_tracking_confidence=self.cfg.min_tracking_confidence,
                output_face_blendshapes=self.cfg.output_blendshapes,
                output_facial_transformation_matrixes=False,
                **self._extra_options(),
            )

        self._landmarker = _create_landmarker(options_for, self.cfg)
        log.debug("FaceLandmarker ready (%s, %s, model=%s)", self.running_mode_name, self.cfg.delegate, model_path)

    @staticmethod
    def _to_mp_image(rgb: np.ndarray) -> mp.Image:
        return mp.Image(image_format=mp.ImageFormat.SRGB, data=np.ascontiguousarray(rgb))

    def _extra_options(self) -> dict[str, Any]:
        return {}

    def close(self) -> None:
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class MediaPipeVideoBackend(_TasksBackend):
    """Synchronous FaceLandmarker in VIDEO mode; each call blocks for its frame."""

    running_mode_name = "VIDEO"
    rotation_strategy = RotationStrategy.PLANAR

    def detect(self, frame_rgb: np.ndarray, timestamp_ms: int) -> RawDetectionResult:
        if self._landmarker is None:
            raise RuntimeError("FaceLandmarker is closed")
        result = self._landmarker.detect_for_video(self._to_mp_image(frame_rgb), int(timestamp_ms))
        return raw_result_from_tasks(result, timestamp_ms)


class MediaPipeLiveStreamBackend(_TasksBackend):
    """FaceLandmarker in LIVE_STREAM mode behind the pull contract.

    detect() submits the frame and returns the newest result delivered by
    the callback so far, which may belong to an earlier frame. Results carry
    their own timestamp so callers can drop stale ones.
    """

    running_mode_name = "LIVE_STREAM"
    rotation_strategy = RotationStrategy.DEPTH

    def __init__(self, cfg: DetectorConfig | None = None, models_dir: Path | None = None):
        self._lock = threading.Lock()
        self._latest = RawDetectionResult()
        super().__init__(cfg, models_dir)

    def _extra_options(self) -> dict[str, Any]:
        return {"result_callback": self._on_result}

    def _on_result(self, result: Any, image: Any, timestamp_ms: int) -> None:
        converted = raw_result_from_tasks(result, timestamp_ms)
        with self._lock:
            if converted.timestamp_ms >= self._latest.timestamp_ms:
                self._latest = converted

    def detect(self, frame_rgb: np.ndarray, timestamp_ms: int) -> RawDetectionResult:
        if self._landmarker is None:
            raise RuntimeError("FaceLandmarker is closed")
        self._landmarker.detect_async(self._to_mp_image(frame_rgb), int(timestamp_ms))
        with self._lock:
            return self._latest


BACKENDS: dict[str, type[_TasksBackend]] = {
    "video": MediaPipeVideoBackend,
    "live-stream": MediaPipeLiveStreamBackend,
}
