from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable

import cv2
import numpy as np

from ..errors import DeviceUnavailable, InitializationFailure

log = logging.getLogger(__name__)

CaptureFactory = Callable[[Any], Any]


@dataclass(frozen=True)
class CameraDevice:
    index: int
    label: str
    width: int = 0
    height: int = 0


def enumerate_devices(max_index: int = 5, capture_factory: CaptureFactory = cv2.VideoCapture) -> list[CameraDevice]:
    """Try camera indices 0..max_index-1 and report the ones that open."""
    found: list[CameraDevice] = []
    for idx in range(max_index):
        cap = capture_factory(idx)
        try:
            if not cap.isOpened():
                continue
            w = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
            h = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
            found.append(CameraDevice(index=idx, label=f"Camera {idx + 1}", width=w, height=h))
        finally:
            cap.release()
    return found


def require_devices(max_index: int = 5, capture_factory: CaptureFactory = cv2.VideoCapture) -> list[CameraDevice]:
    devices = enumerate_devices(max_index, capture_factory)
    if not devices:
        raise DeviceUnavailable("No camera devices found")
    return devices


class CameraController:
    """Owns one capture stream and serves its latest frame to the pipeline.

    `device` is a camera index or a video file path. The stream is released
    on stop() and on context exit, including after errors.
    """

    def __init__(
        self,
        device: int | str = 0,
        *,
        width: int = 1280,
        height: int = 720,
        fps: float = 30.0,
        mirror: bool = False,
        capture_factory: CaptureFactory = cv2.VideoCapture,
    ) -> None:
        self.device = device
        self.width = width
        self.height = height
        self.fps = fps
        self.mirror = mirror
        self._factory = capture_factory
        self._cap: Any = None
        self._bgr: np.ndarray | None = None
        self._rgb: np.ndarray | None = None
        self.exhausted = False
        self.on_start: Callable[[], None] | None = None
        self.on_stop: Callable[[], None] | None = None

    @property
    def is_active(self) -> bool:
        return self._cap is not None

    @property
    def latest_bgr(self) -> np.ndarray | None:
        return self._bgr

    @property
    def frame_size(self) -> tuple[int, int]:
        if self._bgr is not None:
            h, w = self._bgr.shape[:2]
            return w, h
        return self.width, self.height

    @property
    def source_fps(self) -> float:
        if self._cap is not None:
            v = float(self._cap.get(cv2.CAP_PROP_FPS) or 0.0)
            if v > 0:
                return v
        return float(self.fps)

    def start(self) -> None:
        if self._cap is not None:
            return
        cap = None
        try:
            cap = self._factory(self.device)
            if not cap.isOpened():
                raise InitializationFailure(
                    f"Failed to access camera {self.device!r}. Please check permissions."
                )
            if isinstance(self.device, int):
                cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
                cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
                cap.set(cv2.CAP_PROP_FPS, self.fps)
        except InitializationFailure:
            if cap is not None:
                cap.release()
            raise
        except Exception as exc:
            if cap is not None:
                cap.release()
            raise InitializationFailure(f"Failed to start camera {self.device!r}: {exc}") from exc

        self._cap = cap
        self.exhausted = False
        log.info("Camera %r started", self.device)
        if self.on_start is not None:
            self.on_start()

    def stop(self) -> None:
        cap, self._cap = self._cap, None
        self._bgr = None
        self._rgb = None
        if cap is None:
            return
        cap.release()
        log.info("Camera %r stopped", self.device)
        if self.on_stop is not None:
            self.on_stop()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()

    def poll(self) -> bool:
        """Read the next frame. False when nothing new arrived."""
        if self._cap is None:
            return False
        ok, frame = self._cap.read()
        if not ok or frame is None:
            self.exhausted = True
            return False
        if self.mirror:
            frame = cv2.flip(frame, 1)
        self._bgr = frame
        self._rgb = None
        return True

    def is_ready(self) -> bool:
        return self._cap is not None and self._bgr is not None

    def current_frame(self) -> np.ndarray | None:
        """Latest frame as RGB, converted once per frame."""
        if self._bgr is None:
            return None
        if self._rgb is None:
            self._rgb = cv2.cvtColor(self._bgr, cv2.COLOR_BGR2RGB)
        return self._rgb
