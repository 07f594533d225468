from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .detectors.base import DetectorConfig

BACKEND_NAMES = ("video", "live-stream")


@dataclass(frozen=True)
class SessionConfig:
    device: int | str = 0
    width: int = 1280
    height: int = 720
    fps: float = 30.0
    mirror: bool = True
    backend: str = "video"
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    smoothing: bool = False
    asset_path: Path | None = None
    # Snapshots and recordings are also written here when set.
    export_dir: Path | None = None

    def __post_init__(self):
        backend = self.backend.strip().lower()
        if backend not in BACKEND_NAMES:
            raise ValueError(f"Unknown backend '{self.backend}' (expected one of: {', '.join(BACKEND_NAMES)})")
        object.__setattr__(self, "backend", backend)
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Frame size must be positive (got {self.width}x{self.height})")
        if self.fps <= 0:
            raise ValueError(f"fps must be positive (got {self.fps})")
