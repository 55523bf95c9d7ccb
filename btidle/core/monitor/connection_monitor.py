"""
Connection lifecycle monitor for a single Bluetooth audio device.

Each tick reloads config if the file changed, purges old activity-log entries,
re-resolves the device, samples audio and takes at most one action:

    CONNECTED + audio        -> refresh idle timer, reset reconnect budget
    CONNECTED + idle > limit -> disconnect (re-issued every qualifying tick)
    DISCONNECTED + audio     -> connect, then back off reconnect_delay
    budget exhausted         -> cool down 2x interval, then reset the budget
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Optional, Protocol

from btidle.core.errors import BtIdleError, DeviceResolutionError, FatalLoopError, LogRotationError
from btidle.shared.config import AppConfig
from btidle.shared.store import ConfigStore
from .sensors import AudioActivitySensor, DeviceDirectory, DeviceSnapshot
from .types import Decision, MonitorConfig, MonitorState

log = logging.getLogger(__name__)


class ActivityLog(Protocol):
    def purge_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        ...


class ConnectionMonitor:
    """
    Polls the device and audio output and connects/disconnects accordingly.

    `clock` returns epoch seconds and `sleep` blocks for the given seconds; both
    default to real time, with sleep aborting early once stop() is called.
    """

    def __init__(
        self,
        store: ConfigStore,
        directory: DeviceDirectory,
        sensor: AudioActivitySensor,
        activity_log: Optional[ActivityLog] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        config: Optional[AppConfig] = None,
    ) -> None:
        self._store = store
        self._directory = directory
        self._sensor = sensor
        self._activity_log = activity_log
        self._clock = clock or time.time
        self._stop_evt = threading.Event()
        self._sleep = sleep or self._wait
        self._lock = threading.Lock()

        now = self._clock()
        # Callers that already loaded the store pass the result to avoid a second read
        self._cfg = self._parse_config((config or store.load()).to_monitor_config())
        # Cold start: the idle window begins now, not at some earlier playback
        self._state = MonitorState(last_activity_at=now, last_config_check=now)

    @staticmethod
    def _parse_config(config: dict) -> MonitorConfig:
        return MonitorConfig(**config)

    def _wait(self, seconds: float) -> None:
        self._stop_evt.wait(seconds)

    def get_config(self) -> MonitorConfig:
        with self._lock:
            return self._cfg

    def get_state(self) -> MonitorState:
        with self._lock:
            return MonitorState(
                status=self._state.status,
                last_activity_at=self._state.last_activity_at,
                reconnect_attempts=self._state.reconnect_attempts,
                last_config_check=self._state.last_config_check,
                last_device_status=self._state.last_device_status,
                last_decision=self._state.last_decision,
            )

    def stop(self) -> None:
        self._stop_evt.set()

    def run(self) -> None:
        """Tick until stop(). Unexpected errors are re-raised as FatalLoopError."""
        with self._lock:
            self._state.status = "RUNNING"
        cfg = self.get_config()
        log.info(
            f"Monitoring {cfg.device_name!r}: idle timeout {cfg.idle_timeout_seconds:g}s, "
            f"check every {cfg.check_interval_seconds:g}s, auto-reconnect {'on' if cfg.auto_reconnect else 'off'}"
        )
        try:
            while not self._stop_evt.is_set():
                self.tick()
        except Exception as e:
            log.exception("Monitor loop error")
            raise FatalLoopError(str(e)) from e
        finally:
            with self._lock:
                self._state.status = "STOPPED"
            self._directory.close()
            log.info("Monitor stopped")

    def tick(self) -> Decision:
        """One poll-decide-sleep cycle."""
        now = self._clock()
        self._reload_config_if_changed(now)
        cfg = self.get_config()
        self._purge_activity_log(cfg, now)

        try:
            decision, delay = self._decide(cfg, now)
        except BtIdleError as e:
            log.error(f"No decision this tick: {e}")
            decision, delay = "ERROR", cfg.check_interval_seconds

        with self._lock:
            self._state.last_decision = decision

        self._sleep(delay)

        if decision == "RECONNECT_EXHAUSTED":
            with self._lock:
                self._state.reconnect_attempts = 0
            log.info("Reconnect cooldown finished, attempt budget reset")
        return decision

    def _reload_config_if_changed(self, now: float) -> None:
        with self._lock:
            since = self._state.last_config_check

        if self._store.has_changed(since):
            app_cfg = self._store.load()
            # On a failed read the store has logged why and the running config stays
            if self._store.last_error is None:
                self._apply_config(self._parse_config(app_cfg.to_monitor_config()))
                log.info(f"Configuration reloaded from {self._store.path()}")

        # Stamped with the tick start so a write during this tick is seen next tick
        with self._lock:
            self._state.last_config_check = now

    def _apply_config(self, new_cfg: MonitorConfig) -> None:
        with self._lock:
            old_cfg, self._cfg = self._cfg, new_cfg
            if new_cfg.device_name != old_cfg.device_name:
                # Different device: its campaign and connection history start over
                self._state.reconnect_attempts = 0
                self._state.last_device_status = None

    def _purge_activity_log(self, cfg: MonitorConfig, now: float) -> None:
        if self._activity_log is None:
            return
        try:
            dropped = self._activity_log.purge_older_than(
                cfg.log_retention_days, now=datetime.fromtimestamp(now)
            )
        except LogRotationError as e:
            log.warning(f"Log purge skipped: {e}")
            return
        if dropped:
            log.info(f"Purged {dropped} log line(s) older than {cfg.log_retention_days} day(s)")

    def _resolve(self, cfg: MonitorConfig) -> Optional[DeviceSnapshot]:
        try:
            snapshot = self._directory.resolve(cfg.device_name)
        except DeviceResolutionError as e:
            log.warning(f"Device {cfg.device_name!r} unavailable: {e}")
            return None
        if snapshot is None:
            log.warning(f"Device {cfg.device_name!r} not found among paired devices")
        return snapshot

    def _decide(self, cfg: MonitorConfig, now: float) -> tuple[Decision, float]:
        interval = cfg.check_interval_seconds

        snapshot = self._resolve(cfg)
        if snapshot is None:
            with self._lock:
                self._state.last_device_status = None
            return "NO_DEVICE", interval

        with self._lock:
            previous = self._state.last_device_status
            self._state.last_device_status = snapshot.status

        if snapshot.status == "CONNECTED":
            return self._decide_connected(cfg, snapshot, previous, now), interval

        if snapshot.status == "DISCONNECTED":
            return self._decide_disconnected(cfg, snapshot, now)

        log.warning(f"Connection state of {snapshot.name!r} is unknown, skipping")
        return "UNKNOWN_STATUS", interval

    def _decide_connected(
        self, cfg: MonitorConfig, snapshot: DeviceSnapshot, previous: Optional[str], now: float
    ) -> Decision:
        if previous != "CONNECTED":
            # A freshly seen connection always gets one full idle window
            with self._lock:
                self._state.last_activity_at = max(self._state.last_activity_at, now)
            log.info(f"{snapshot.name} is connected")

        if self._sensor.sample(cfg.audio_threshold):
            with self._lock:
                self._state.last_activity_at = now
                self._state.reconnect_attempts = 0
            return "ACTIVE"

        with self._lock:
            idle_for = now - self._state.last_activity_at

        if idle_for > cfg.idle_timeout_seconds:
            snapshot.handle.disconnect()
            log.info(
                f"Disconnecting {snapshot.name}: no audio for {idle_for:.0f}s "
                f"(idle timeout {cfg.idle_timeout_seconds:g}s)"
            )
            return "IDLE_DISCONNECT"

        return "IDLE_GRACE"

    def _decide_disconnected(
        self, cfg: MonitorConfig, snapshot: DeviceSnapshot, now: float
    ) -> tuple[Decision, float]:
        interval = cfg.check_interval_seconds

        if not cfg.auto_reconnect:
            return "WAITING", interval

        if not self._sensor.sample(cfg.audio_threshold):
            return "WAITING", interval

        with self._lock:
            self._state.last_activity_at = now
            attempts = self._state.reconnect_attempts

        if attempts < cfg.reconnect_attempts:
            snapshot.handle.connect()
            with self._lock:
                self._state.reconnect_attempts = attempts + 1
            log.info(
                f"Audio playing, reconnecting {snapshot.name} "
                f"(attempt {attempts + 1}/{cfg.reconnect_attempts})"
            )
            return "RECONNECT", interval + cfg.reconnect_delay_seconds

        cooldown = 2 * interval
        log.warning(
            f"Reconnect attempts exhausted for {snapshot.name} "
            f"({cfg.reconnect_attempts}); cooling down {cooldown:g}s"
        )
        return "RECONNECT_EXHAUSTED", cooldown
