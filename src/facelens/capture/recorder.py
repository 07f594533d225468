from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable

import cv2
import numpy as np

from ..errors import CaptureError
from ..session.artifacts import FileArtifact, MemoryArtifact

log = logging.getLogger(__name__)

VideoWriterFactory = Callable[[str, int, float, tuple[int, int]], Any]


def encode_snapshot(frame_bgr: np.ndarray) -> MemoryArtifact:
    ok, buf = cv2.imencode(".png", frame_bgr)
    if not ok:
        raise CaptureError("PNG encoding failed")
    return MemoryArtifact(data=buf.tobytes(), media_type="image/png")


class Recorder:
    """Streams composited frames into a temporary MP4 and hands it over on stop()."""

    def __init__(
        self,
        *,
        fourcc: str = "mp4v",
        suffix: str = ".mp4",
        tmp_dir: Path | None = None,
        writer_factory: VideoWriterFactory = cv2.VideoWriter,
    ) -> None:
        self.fourcc = fourcc
        self.suffix = suffix
        self.tmp_dir = tmp_dir
        self._writer_factory = writer_factory
        self._writer: Any = None
        self._path: Path | None = None
        self._size: tuple[int, int] | None = None
        self.frames_written = 0

    @property
    def is_recording(self) -> bool:
        return self._writer is not None

    def start(self, frame_size: tuple[int, int], fps: float) -> None:
        if self._writer is not None:
            raise CaptureError("Recording already in progress")
        fd, name = tempfile.mkstemp(prefix="facelens-rec-", suffix=self.suffix, dir=self.tmp_dir)
        os.close(fd)
        path = Path(name)
        writer = self._writer_factory(str(path), cv2.VideoWriter_fourcc(*self.fourcc), float(fps), tuple(frame_size))
        if not writer.isOpened():
            writer.release()
            path.unlink(missing_ok=True)
            raise CaptureError(f"Failed to open video writer ({self.fourcc}, {frame_size}, {fps} fps)")
        self._writer = writer
        self._path = path
        self._size = tuple(frame_size)
        self.frames_written = 0
        log.debug("Recording to %s", path)

    def write(self, frame_bgr: np.ndarray) -> None:
        if self._writer is None:
            return
        h, w = frame_bgr.shape[:2]
        if (w, h) != self._size:
            frame_bgr = cv2.resize(frame_bgr, self._size)
        self._writer.write(frame_bgr)
        self.frames_written += 1

    def stop(self) -> FileArtifact | None:
        """Finalize the file. None if nothing was recording."""
        writer, self._writer = self._writer, None
        path, self._path = self._path, None
        if writer is None or path is None:
            return None
        writer.release()
        log.debug("Recording finalized: %s (%d frames)", path, self.frames_written)
        return FileArtifact(path=path, media_type="video/mp4")

    def abort(self) -> None:
        artifact = self.stop()
        if artifact is not None:
            artifact.release()
