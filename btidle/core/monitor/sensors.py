from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal, Optional, Protocol

ConnectionStatus = Literal["CONNECTED", "DISCONNECTED", "UNKNOWN"]


class DeviceHandle(Protocol):
    """Fire-and-forget connection control for one paired device."""

    def connect(self) -> None:
        ...

    def disconnect(self) -> None:
        ...


@dataclass(frozen=True)
class DeviceSnapshot:
    """Device state as seen at one tick. Never reused across ticks."""
    name: str
    status: ConnectionStatus
    handle: DeviceHandle
    address: Optional[str] = None


class AudioActivitySensor(ABC):
    """Interface for deciding whether audio is currently playing."""

    @abstractmethod
    def sample(self, threshold: float) -> bool:
        """Sample output level for a short window. Errors report False."""
        ...


class DeviceDirectory(ABC):
    """Interface for looking up the managed device by display name."""

    @abstractmethod
    def resolve(self, name: str) -> Optional[DeviceSnapshot]:
        """Return the paired device called `name`, or None if absent.

        Raises DeviceResolutionError when the platform cannot be queried.
        """
        ...

    def close(self) -> None:
        """Release platform handles."""
