"""Synchronizer configuration."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

from patch_sync.kinds import MOD_DEPTH_SCALES


class SyncConfig(BaseModel):
    sink_bus: int = Field(default=0, ge=0)
    first_audio_bus: int = Field(default=16, ge=0)
    audio_bus_count: int = Field(default=1024, gt=0)
    control_bus_count: int = Field(default=4096, gt=0)
    pan_left: float = -0.8
    pan_right: float = 0.8
    pan_center: float = 0.0
    modulator_pan: float = -1.0
    fade_ms: int = Field(default=400, ge=0)
    first_instance_id: int = Field(default=3000, ge=0)
    mod_depth_scales: dict[str, float] = Field(default_factory=lambda: dict(MOD_DEPTH_SCALES))

    @model_validator(mode="after")
    def _check_bus_layout(self) -> SyncConfig:
        if self.first_audio_bus % 2:
            raise ValueError("first_audio_bus must be even (buses are stereo pairs)")
        if self.first_audio_bus <= self.sink_bus:
            raise ValueError("first_audio_bus must lie above sink_bus")
        if self.first_audio_bus + 2 > self.audio_bus_count:
            raise ValueError("audio_bus_count leaves no room for private buses")
        return self


def load_config(path: str | Path) -> SyncConfig:
    """Load a SyncConfig from a JSON file."""
    data = json.loads(Path(path).read_text())
    return SyncConfig.model_validate(data)
