from __future__ import annotations

from contextlib import contextmanager, suppress
from pathlib import Path
from typing import BinaryIO, Callable, ContextManager, Iterator
import logging
import os
import shutil
import tempfile
import time
import urllib.request

log = logging.getLogger(__name__)

KNOWN_MODELS = {
    "face_landmarker.task": "https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker/float16/latest/face_landmarker.task",
}

# url -> readable response usable as a context manager
Opener = Callable[[str], ContextManager[BinaryIO]]

COPY_CHUNK = 1 << 20


def _has_model(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0


@contextmanager
def _model_lock(dst: Path, *, wait_s: float, poll_s: float) -> Iterator[bool]:
    """Hold the sibling ``<dst>.lock`` directory for the duration of the block.

    Yields True when the caller owns the lock and should fetch. Yields False
    when another process produced ``dst`` while we were waiting.
    """
    lock_dir = dst.with_name(dst.name + ".lock")
    deadline = time.monotonic() + wait_s
    while True:
        try:
            lock_dir.mkdir()
            break
        except FileExistsError:
            if _has_model(dst):
                yield False
                return
            if time.monotonic() > deadline:
                raise TimeoutError(f"Timed out waiting for {lock_dir}")
            time.sleep(poll_s)
    try:
        yield True
    finally:
        with suppress(FileNotFoundError):
            lock_dir.rmdir()


def _fetch(url: str, dst: Path, opener: Opener) -> None:
    fd, name = tempfile.mkstemp(dir=dst.parent, prefix=f".{dst.name}.", suffix=".part")
    part = Path(name)
    try:
        with os.fdopen(fd, "wb") as out, opener(url) as src:
            shutil.copyfileobj(src, out, COPY_CHUNK)
            if out.tell() == 0:
                raise RuntimeError(f"Empty download from {url}")
        os.replace(part, dst)
    except BaseException:
        part.unlink(missing_ok=True)
        raise


def download_if_missing(
    url: str,
    dst: Path,
    *,
    opener: Opener = urllib.request.urlopen,
    wait_s: float = 120.0,
    poll_s: float = 0.25,
) -> Path:
    """Make sure ``dst`` holds a non-empty copy of ``url``.

    Concurrent callers serialize on a lock directory; only one of them
    downloads, the rest return once the file shows up. The payload is
    streamed into a hidden ``.part`` file and renamed into place, so a
    half-written model is never visible under ``dst``.
    """
    if _has_model(dst):
        return dst
    dst.parent.mkdir(parents=True, exist_ok=True)
    with _model_lock(dst, wait_s=wait_s, poll_s=poll_s) as owner:
        if owner and not _has_model(dst):
            log.info("Downloading model %s -> %s", url, dst)
            _fetch(url, dst, opener)
    return dst


def resolve_model(name_or_path: str, models_dir: Path, *, opener: Opener = urllib.request.urlopen) -> Path:
    """Map a model setting to a file on disk, fetching known models on demand."""
    candidate = Path(name_or_path).expanduser()
    if candidate.is_file():
        return candidate
    dst = models_dir / candidate.name
    url = KNOWN_MODELS.get(candidate.name)
    if url is not None:
        return download_if_missing(url, dst, opener=opener)
    if _has_model(dst):
        return dst
    raise FileNotFoundError(
        f"Model not found: {name_or_path} (looked in {models_dir}; "
        f"known downloadable models: {', '.join(KNOWN_MODELS)})"
    )
