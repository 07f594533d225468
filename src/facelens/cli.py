from __future__ import annotations

from pathlib import Path
import logging

import cv2
import typer
from rich.console import Console
from rich.table import Table
from tqdm import tqdm

from .capture.camera import CameraController, require_devices
from .capture.recorder import Recorder
from .config import BACKEND_NAMES, SessionConfig
from .detectors.base import DetectorConfig
from .errors import CaptureError, DeviceUnavailable, InitializationFailure
from .render.canvas import draw_hud
from .schemas.effects import EffectKind
from .session.controller import EffectsSession
from .util.log import setup_logging

app = typer.Typer(add_completion=False, help="Face-locked AR overlays for webcam and video.")
console = Console()
log = logging.getLogger(__name__)

WINDOW = "facelens"
GLOW_STEP = 0.1

KEY_HELP = "g glow | s sunglasses | x clear | e smile trigger | +/- glow | space snapshot | r record | q quit"


def _detector_config(profile: str | None, max_faces: int, delegate: str, model: str) -> DetectorConfig:
    try:
        if profile:
            return DetectorConfig.from_profile(profile, max_faces=max_faces, delegate=delegate, model=model)
        return DetectorConfig(max_faces=max_faces, delegate=delegate, model=model)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _check_backend(backend: str) -> str:
    backend = backend.strip().lower()
    if backend not in BACKEND_NAMES:
        raise typer.BadParameter(f"--backend must be one of: {', '.join(BACKEND_NAMES)}")
    return backend


def handle_key(session: EffectsSession, key: int) -> bool:
    """Apply one key press to the session. False means quit."""
    if key in (ord("q"), 27):
        return False
    store = session.store
    if key == ord("g"):
        session.select_effect(EffectKind.GLOWING_EYES)
    elif key == ord("s"):
        session.select_effect(EffectKind.SUNGLASSES)
    elif key == ord("x"):
        store.set_active_effect(EffectKind.NONE)
    elif key == ord("e"):
        store.toggle_emotion_trigger()
    elif key in (ord("+"), ord("=")):
        store.set_glow_intensity(store.glow_intensity + GLOW_STEP)
    elif key == ord("-"):
        store.set_glow_intensity(store.glow_intensity - GLOW_STEP)
    elif key == ord(" "):
        session.capture_snapshot()
    elif key == ord("r"):
        session.toggle_recording()
    return True


@app.command()
def live(
    camera: int = typer.Option(0, "--camera", min=0, help="Camera index."),
    width: int = typer.Option(1280, "--width", min=1, help="Requested capture width."),
    height: int = typer.Option(720, "--height", min=1, help="Requested capture height."),
    effect: EffectKind = typer.Option(EffectKind.GLOWING_EYES, "--effect", help="Effect active at start."),
    glow: float = typer.Option(1.0, "--glow", help="Glow intensity (clamped to 0..2)."),
    smile_trigger: bool = typer.Option(False, "--smile-trigger/--no-smile-trigger", help="Smiling brightens the glow."),
    backend: str = typer.Option("video", "--backend", help="Detector backend: video|live-stream"),
    profile: str | None = typer.Option(None, "--profile", help="Detector thresholds: balanced|responsive|strict"),
    max_faces: int = typer.Option(1, "--max-faces", min=1, help="Faces the detector may report (only the first drives effects)."),
    delegate: str = typer.Option("cpu", "--delegate", help="Inference delegate: cpu|gpu"),
    model: str = typer.Option("face_landmarker.task", "--model", help="FaceLandmarker task file or known model name."),
    smooth: bool = typer.Option(False, "--smooth/--no-smooth", help="Temporal smoothing of the overlay anchor."),
    asset: Path | None = typer.Option(None, "--asset", help="RGBA image used for the sunglasses instead of the built-in frame."),
    out: Path = typer.Option(Path("outputs/captures"), "--out", help="Where snapshots and recordings are saved."),
    mirror: bool = typer.Option(True, "--mirror/--no-mirror", help="Mirror the preview like a selfie camera."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run effects on a live webcam feed."""
    setup_logging(verbose, console)
    cfg = SessionConfig(
        device=camera, width=width, height=height, mirror=mirror,
        backend=_check_backend(backend),
        detector=_detector_config(profile, max_faces, delegate, model),
        smoothing=smooth, asset_path=asset, export_dir=out,
    )
    console.print(f"[bold]facelens live[/bold]\nCamera: {camera}  Backend: {cfg.backend}  Out: {out}\n{KEY_HELP}")

    with EffectsSession(cfg) as session:
        session.store.set_active_effect(effect)
        session.store.set_glow_intensity(glow)
        if smile_trigger:
            session.store.toggle_emotion_trigger()
        try:
            session.start_camera()
        except InitializationFailure as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(1)

        try:
            while True:
                frame = session.step()
                if frame is None:
                    if session.camera.exhausted:
                        break
                    continue
                store = session.store
                cv2.imshow(WINDOW, draw_hud(
                    frame,
                    fps=session.loop.fps,
                    effect=store.active_effect,
                    glow_intensity=store.glow_intensity,
                    emotion_trigger=store.emotion_trigger_enabled,
                    recording=store.is_recording,
                ))
                if not handle_key(session, cv2.waitKey(1) & 0xFF):
                    break
        finally:
            cv2.destroyAllWindows()
            session.stop_camera()
            for p in session.exported:
                console.print(f"[green]saved[/green] {p}")


@app.command()
def devices(
    max_index: int = typer.Option(5, "--max-index", min=1, help="Number of camera indices to try."),
):
    """List cameras that can be opened."""
    try:
        found = require_devices(max_index)
    except DeviceUnavailable as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    table = Table("index", "label", "resolution")
    for d in found:
        table.add_row(str(d.index), d.label, f"{d.width}x{d.height}")
    console.print(table)


class _FrameClock:
    """Time derived from the frame counter, so offline output is deterministic."""

    def __init__(self, fps: float) -> None:
        self.fps = fps
        self.frame = 0

    def __call__(self) -> float:
        return self.frame / self.fps


@app.command()
def render(
    input_path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Input video file."),
    output_path: Path = typer.Argument(..., help="Output .mp4 path."),
    effect: EffectKind = typer.Option(EffectKind.SUNGLASSES, "--effect", help="Effect to apply."),
    glow: float = typer.Option(1.0, "--glow", help="Glow intensity (clamped to 0..2)."),
    smile_trigger: bool = typer.Option(False, "--smile-trigger/--no-smile-trigger"),
    profile: str | None = typer.Option(None, "--profile", help="Detector thresholds: balanced|responsive|strict"),
    delegate: str = typer.Option("cpu", "--delegate", help="Inference delegate: cpu|gpu"),
    model: str = typer.Option("face_landmarker.task", "--model"),
    smooth: bool = typer.Option(True, "--smooth/--no-smooth"),
    asset: Path | None = typer.Option(None, "--asset"),
    max_frames: int | None = typer.Option(None, "--max-frames", min=1, help="Optional cap for debugging."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Apply an effect to a video file."""
    setup_logging(verbose, console)
    if effect is EffectKind.NONE:
        raise typer.BadParameter("--effect must be glowing-eyes or sunglasses")

    meta = cv2.VideoCapture(str(input_path))
    src_fps = float(meta.get(cv2.CAP_PROP_FPS) or 0.0) or 30.0
    total = int(meta.get(cv2.CAP_PROP_FRAME_COUNT) or 0) or None
    meta.release()
    if max_frames is not None:
        total = min(total, max_frames) if total else max_frames

    clock = _FrameClock(src_fps)
    cfg = SessionConfig(
        device=str(input_path), mirror=False, fps=src_fps, backend="video",
        detector=_detector_config(profile, 1, delegate, model),
        smoothing=smooth, asset_path=asset,
    )
    camera = CameraController(cfg.device, mirror=False, fps=src_fps)
    recorder = Recorder()

    with EffectsSession(cfg, camera=camera, clock=clock) as session:
        session.store.set_active_effect(effect)
        session.store.set_glow_intensity(glow)
        if smile_trigger:
            session.store.toggle_emotion_trigger()
        try:
            session.start_camera()
        except InitializationFailure as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(1)

        faces = 0
        try:
            with tqdm(total=total, desc="Rendering", unit="frame") as bar:
                while max_frames is None or clock.frame < max_frames:
                    frame = session.step()
                    if frame is None:
                        break
                    if not recorder.is_recording:
                        h, w = frame.shape[:2]
                        try:
                            recorder.start((w, h), src_fps)
                        except CaptureError as exc:
                            console.print(f"[red]{exc}[/red]")
                            raise typer.Exit(1)
                    recorder.write(frame)
                    faces += session.anchor is not None
                    clock.frame += 1
                    bar.update(1)
        except BaseException:
            recorder.abort()
            raise

        artifact = recorder.stop()
        if artifact is None:
            console.print("[red]No frames could be read from the input.[/red]")
            raise typer.Exit(1)
        try:
            artifact.save_to(output_path)
        finally:
            artifact.release()

    console.print(f"[green]Wrote[/green] {output_path} ({clock.frame} frames, face found in {faces})")


if __name__ == "__main__":
    app()
