"""
Error taxonomy for the idle manager.

Every leaf (config store, device directory, audio sensor, activity log) raises
one of these. The connection monitor recovers all of them inside a tick; only
FatalLoopError leaves the loop.
"""

from __future__ import annotations


class BtIdleError(Exception):
    """Base class for recoverable idle-manager errors."""


class ConfigError(BtIdleError):
    """Config file is unreadable, not JSON, or fails validation."""


class DeviceResolutionError(BtIdleError):
    """Bluetooth adapter unavailable or device enumeration failed."""


class DeviceCommandError(BtIdleError):
    """A connect/disconnect request could not be sent to the platform."""


class AudioSampleError(BtIdleError):
    """Audio capture could not be opened or read."""


class LogRotationError(BtIdleError):
    """Purging old activity-log entries failed."""


class FatalLoopError(Exception):
    """Unexpected error escaped the monitor loop. The process should exit."""
