from __future__ import annotations
from enum import Enum
from pydantic import BaseModel, ConfigDict, field_validator

GLOW_INTENSITY_MIN = 0.0
GLOW_INTENSITY_MAX = 2.0


def clamp_glow_intensity(value: float) -> float:
    return float(max(GLOW_INTENSITY_MIN, min(GLOW_INTENSITY_MAX, value)))


class EffectKind(str, Enum):
    NONE = "none"
    GLOWING_EYES = "glowing-eyes"
    SUNGLASSES = "sunglasses"


class EffectSelection(BaseModel):
    model_config = ConfigDict(frozen=True)

    effect: EffectKind = EffectKind.NONE
    glow_intensity: float = 1.0
    emotion_trigger_enabled: bool = False

    @field_validator("glow_intensity")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return clamp_glow_intensity(v)
