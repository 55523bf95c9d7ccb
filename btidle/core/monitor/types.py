from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from .sensors import ConnectionStatus

MonitorStatus = Literal["STOPPED", "RUNNING"]

Decision = Literal[
    "NO_DEVICE",
    "ACTIVE",
    "IDLE_GRACE",
    "IDLE_DISCONNECT",
    "WAITING",
    "RECONNECT",
    "RECONNECT_EXHAUSTED",
    "UNKNOWN_STATUS",
    "ERROR",
]


@dataclass(frozen=True)
class MonitorConfig:
    device_name: str
    idle_timeout_seconds: float
    check_interval_seconds: float
    auto_reconnect: bool
    log_retention_days: int
    audio_threshold: float
    reconnect_attempts: int  # max per campaign
    reconnect_delay_seconds: float


@dataclass
class MonitorState:
    status: MonitorStatus = "STOPPED"
    last_activity_at: float = 0.0  # epoch seconds of last observed audio
    reconnect_attempts: int = 0  # attempts in the current campaign
    last_config_check: float = 0.0
    last_device_status: Optional[ConnectionStatus] = None  # None = no device last tick
    last_decision: Optional[Decision] = None
