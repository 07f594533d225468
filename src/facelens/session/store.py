from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from ..schemas.effects import EffectKind, EffectSelection, clamp_glow_intensity
from .artifacts import Artifact


def epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RecordingEntry:
    artifact: Artifact
    timestamp: int  # epoch milliseconds


@dataclass
class SessionState:
    active_effect: EffectKind = EffectKind.NONE
    is_camera_active: bool = False
    is_recording: bool = False
    emotion_trigger_enabled: bool = False
    glow_intensity: float = 1.0
    snapshots: list[Artifact] = field(default_factory=list)
    recordings: list[RecordingEntry] = field(default_factory=list)


class SessionStore:
    """Single owner of session state; the methods below are the only mutations.

    Artifacts handed to the store become its responsibility: clearing or
    resetting releases each one.
    """

    def __init__(self, clock: Callable[[], int] = epoch_ms) -> None:
        self._clock = clock
        self._state = SessionState()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def active_effect(self) -> EffectKind:
        return self._state.active_effect

    @property
    def is_camera_active(self) -> bool:
        return self._state.is_camera_active

    @property
    def is_recording(self) -> bool:
        return self._state.is_recording

    @property
    def emotion_trigger_enabled(self) -> bool:
        return self._state.emotion_trigger_enabled

    @property
    def glow_intensity(self) -> float:
        return self._state.glow_intensity

    @property
    def snapshots(self) -> tuple[Artifact, ...]:
        return tuple(self._state.snapshots)

    @property
    def recordings(self) -> tuple[RecordingEntry, ...]:
        return tuple(self._state.recordings)

    @property
    def selection(self) -> EffectSelection:
        s = self._state
        return EffectSelection(
            effect=s.active_effect,
            glow_intensity=s.glow_intensity,
            emotion_trigger_enabled=s.emotion_trigger_enabled,
        )

    def select_effect(self, effect: EffectKind) -> EffectKind:
        """Pick an effect; picking the active one again turns effects off."""
        if effect is self._state.active_effect:
            effect = EffectKind.NONE
        self._state.active_effect = effect
        return effect

    def set_active_effect(self, effect: EffectKind) -> None:
        self._state.active_effect = effect

    def toggle_recording(self) -> bool:
        self._state.is_recording = not self._state.is_recording
        return self._state.is_recording

    def toggle_emotion_trigger(self) -> bool:
        self._state.emotion_trigger_enabled = not self._state.emotion_trigger_enabled
        return self._state.emotion_trigger_enabled

    def set_glow_intensity(self, intensity: float) -> float:
        self._state.glow_intensity = clamp_glow_intensity(intensity)
        return self._state.glow_intensity

    def set_camera_active(self, active: bool) -> None:
        self._state.is_camera_active = bool(active)

    def add_snapshot(self, artifact: Artifact) -> None:
        self._state.snapshots.append(artifact)

    def add_recording(self, artifact: Artifact) -> RecordingEntry:
        entry = RecordingEntry(artifact=artifact, timestamp=self._clock())
        self._state.recordings.append(entry)
        return entry

    def clear_snapshots(self) -> None:
        snapshots, self._state.snapshots = self._state.snapshots, []
        for artifact in snapshots:
            artifact.release()

    def clear_recordings(self) -> None:
        recordings, self._state.recordings = self._state.recordings, []
        for entry in recordings:
            entry.artifact.release()

    def reset(self) -> None:
        self.clear_snapshots()
        self.clear_recordings()
        self._state = SessionState()
