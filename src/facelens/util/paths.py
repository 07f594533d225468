from __future__ import annotations

import os
from pathlib import Path

MODELS_ENV_VAR = "FACELENS_MODELS_DIR"


def find_project_root(start: Path | None = None, max_depth: int = 12) -> Path | None:
    """Walk upwards from start looking for a pyproject.toml; None if absent."""
    cur = (start or Path.cwd()).resolve()
    for _ in range(max_depth):
        if (cur / "pyproject.toml").exists():
            return cur
        if cur.parent == cur:
            break
        cur = cur.parent
    return None


def default_models_dir(start: Path | None = None) -> Path:
    """Where detector model files live.

    Order: $FACELENS_MODELS_DIR, <project>/models/mediapipe when run from a
    checkout, then the per-user cache.
    """
    env = os.environ.get(MODELS_ENV_VAR)
    if env:
        return Path(env).expanduser()
    root = find_project_root(start)
    if root is not None:
        return root / "models" / "mediapipe"
    return Path.home() / ".cache" / "facelens" / "models"
