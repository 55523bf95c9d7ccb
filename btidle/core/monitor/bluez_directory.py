"""
BlueZ device directory over the system D-Bus (dbus-python).

Looks the device up in BlueZ's ObjectManager tree on every call; connect and
disconnect are sent without waiting for a reply, and the next resolve() is
what reports whether they took effect.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from btidle.core.errors import DeviceCommandError, DeviceResolutionError
from .sensors import ConnectionStatus, DeviceDirectory, DeviceSnapshot

log = logging.getLogger(__name__)

BLUEZ_SERVICE = "org.bluez"
OBJECT_MANAGER_INTERFACE = "org.freedesktop.DBus.ObjectManager"
ADAPTER_INTERFACE = "org.bluez.Adapter1"
DEVICE_INTERFACE = "org.bluez.Device1"


def _default_bus_factory() -> Any:
    import dbus
    return dbus.SystemBus(private=True)


def _status_from_props(props: Any) -> ConnectionStatus:
    connected = props.get("Connected")
    if connected is None:
        return "UNKNOWN"
    return "CONNECTED" if bool(connected) else "DISCONNECTED"


class BluezDeviceHandle:
    def __init__(self, bus: Any, path: str) -> None:
        self._bus = bus
        self._path = path

    def connect(self) -> None:
        self._send("Connect")

    def disconnect(self) -> None:
        self._send("Disconnect")

    def _send(self, method: str) -> None:
        try:
            obj = self._bus.get_object(BLUEZ_SERVICE, self._path)
            getattr(obj, method)(dbus_interface=DEVICE_INTERFACE, ignore_reply=True)
        except Exception as e:
            raise DeviceCommandError(f"{method} failed for {self._path}: {e}") from e


class BluezDeviceDirectory(DeviceDirectory):
    """Resolves a paired device by its exact BlueZ alias (falls back to Name)."""

    def __init__(self, bus_factory: Optional[Callable[[], Any]] = None) -> None:
        self._bus_factory = bus_factory or _default_bus_factory
        self._bus: Any = None

    def _get_bus(self) -> Any:
        if self._bus is None:
            self._bus = self._bus_factory()
            log.info("Connected to system D-Bus")
        return self._bus

    def _managed_objects(self) -> dict:
        try:
            bus = self._get_bus()
            manager = bus.get_object(BLUEZ_SERVICE, "/")
            return manager.GetManagedObjects(dbus_interface=OBJECT_MANAGER_INTERFACE)
        except Exception as e:
            # Drop the connection so the next tick starts from a fresh one
            self.close()
            raise DeviceResolutionError(f"BlueZ enumeration failed: {e}") from e

    def resolve(self, name: str) -> Optional[DeviceSnapshot]:
        objects = self._managed_objects()

        if not any(ADAPTER_INTERFACE in ifaces for ifaces in objects.values()):
            raise DeviceResolutionError("No Bluetooth adapter available")

        for path, ifaces in objects.items():
            props = ifaces.get(DEVICE_INTERFACE)
            if props is None or not bool(props.get("Paired", False)):
                continue
            display = props.get("Alias") or props.get("Name")
            if display is None or str(display) != name:
                continue
            address = props.get("Address")
            return DeviceSnapshot(
                name=str(display),
                status=_status_from_props(props),
                handle=BluezDeviceHandle(self._bus, str(path)),
                address=str(address) if address is not None else None,
            )

        log.debug(f"No paired device named {name!r} among {len(objects)} BlueZ objects")
        return None

    def close(self) -> None:
        bus, self._bus = self._bus, None
        if bus is None:
            return
        try:
            bus.close()
        except Exception as e:
            log.debug(f"Closing D-Bus connection failed: {e}")
