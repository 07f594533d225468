from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

log = logging.getLogger(__name__)


class Artifact(Protocol):
    """Handle to an externally owned capture output (image or video)."""

    media_type: str

    @property
    def released(self) -> bool: ...

    def release(self) -> None: ...

    def save_to(self, path: Path) -> Path: ...


@dataclass(eq=False)
class MemoryArtifact:
    """Encoded bytes held in memory, e.g. a PNG snapshot."""
    data: bytes
    media_type: str = "image/png"
    _released: bool = field(default=False, repr=False)

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self.data = b""
        self._released = True

    def save_to(self, path: Path) -> Path:
        if self._released:
            raise ValueError("Artifact has been released")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.data)
        return path


@dataclass(eq=False)
class FileArtifact:
    """A temporary file owned by the session, e.g. a finished recording."""
    path: Path
    media_type: str = "video/mp4"
    _released: bool = field(default=False, repr=False)

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            log.warning("Could not remove %s: %s", self.path, exc)
        self._released = True

    def save_to(self, path: Path) -> Path:
        if self._released:
            raise ValueError("Artifact has been released")
        path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.path, path)
        return path
