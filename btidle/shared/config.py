from __future__ import annotations

from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    device_name: str = "My Headphones"
    idle_timeout_seconds: float = Field(default=300.0, gt=0)
    check_interval_seconds: float = Field(default=5.0, gt=0)
    auto_reconnect: bool = True
    log_retention_days: int = Field(default=7, ge=1)
    audio_threshold: float = Field(default=0.01, ge=0.0, le=1.0)
    reconnect_attempts: int = Field(default=3, ge=0)
    reconnect_delay_seconds: float = Field(default=10.0, ge=0)
    # Capture device for the audio sensor (name or index); None = first output monitor source
    audio_device: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _fill_nulls_from_defaults(cls, data: Any) -> Any:
        # Explicit nulls in the file behave like missing keys
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def to_monitor_config(self) -> dict:
        return {
            "device_name": self.device_name,
            "idle_timeout_seconds": self.idle_timeout_seconds,
            "check_interval_seconds": self.check_interval_seconds,
            "auto_reconnect": self.auto_reconnect,
            "log_retention_days": self.log_retention_days,
            "audio_threshold": self.audio_threshold,
            "reconnect_attempts": self.reconnect_attempts,
            "reconnect_delay_seconds": self.reconnect_delay_seconds,
        }
