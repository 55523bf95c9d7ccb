"""Tests for BlueZ device resolution with an in-memory D-Bus stand-in."""

from __future__ import annotations

import pytest

from btidle.core.errors import DeviceCommandError, DeviceResolutionError
from btidle.core.monitor.bluez_directory import (
    ADAPTER_INTERFACE,
    DEVICE_INTERFACE,
    OBJECT_MANAGER_INTERFACE,
    BluezDeviceDirectory,
)


class FakeProxy:
    def __init__(self, bus, path):
        self.bus = bus
        self.path = path

    def GetManagedObjects(self, dbus_interface):
        assert dbus_interface == OBJECT_MANAGER_INTERFACE
        if self.bus.enumeration_error:
            raise self.bus.enumeration_error
        return self.bus.objects

    def Connect(self, dbus_interface, ignore_reply):
        self.bus.record("Connect", self.path, dbus_interface, ignore_reply)

    def Disconnect(self, dbus_interface, ignore_reply):
        self.bus.record("Disconnect", self.path, dbus_interface, ignore_reply)


class FakeBus:
    def __init__(self, objects=None) -> None:
        self.objects = objects or {}
        self.enumeration_error = None
        self.send_error = None
        self.calls = []
        self.closed = False

    def get_object(self, service, path):
        assert service == "org.bluez"
        return FakeProxy(self, path)

    def record(self, method, path, iface, ignore_reply):
        if self.send_error:
            raise self.send_error
        self.calls.append((method, path, iface, ignore_reply))

    def close(self):
        self.closed = True


ADAPTER = {"/org/bluez/hci0": {ADAPTER_INTERFACE: {"Powered": True}}}


def _device(alias, connected=None, paired=True, name=None, address="AA:BB:CC:DD:EE:FF"):
    props = {"Alias": alias, "Paired": paired, "Address": address}
    if name is not None:
        props["Name"] = name
    if connected is not None:
        props["Connected"] = connected
    return {DEVICE_INTERFACE: props}


def _directory(objects):
    bus = FakeBus(objects)
    factory_calls = []

    def factory():
        factory_calls.append(1)
        return bus

    return BluezDeviceDirectory(bus_factory=factory), bus, factory_calls


class TestResolve:
    def test_connected_device(self):
        directory, bus, _ = _directory({
            **ADAPTER,
            "/org/bluez/hci0/dev_AA": _device("Buds", connected=True),
        })

        snap = directory.resolve("Buds")

        assert snap.status == "CONNECTED"
        assert snap.name == "Buds"
        assert snap.address == "AA:BB:CC:DD:EE:FF"

    def test_disconnected_and_unknown(self):
        directory, _, _ = _directory({
            **ADAPTER,
            "/org/bluez/hci0/dev_AA": _device("Buds", connected=False),
            "/org/bluez/hci0/dev_BB": _device("Speaker"),
        })

        assert directory.resolve("Buds").status == "DISCONNECTED"
        assert directory.resolve("Speaker").status == "UNKNOWN"

    def test_exact_name_match_only(self):
        directory, _, _ = _directory({
            **ADAPTER,
            "/org/bluez/hci0/dev_AA": _device("Buds Pro", connected=True),
        })

        assert directory.resolve("Buds") is None
        assert directory.resolve("buds pro") is None

    def test_unpaired_device_ignored(self):
        directory, _, _ = _directory({
            **ADAPTER,
            "/org/bluez/hci0/dev_AA": _device("Buds", connected=True, paired=False),
        })
        assert directory.resolve("Buds") is None

    def test_falls_back_to_name(self):
        directory, _, _ = _directory({
            **ADAPTER,
            "/org/bluez/hci0/dev_AA": _device(None, connected=True, name="Buds"),
        })
        assert directory.resolve("Buds").status == "CONNECTED"

    def test_no_adapter(self):
        directory, _, _ = _directory({"/org/bluez/hci0/dev_AA": _device("Buds", connected=True)})
        with pytest.raises(DeviceResolutionError, match="No Bluetooth adapter"):
            directory.resolve("Buds")

    def test_enumeration_failure_drops_connection(self):
        directory, bus, factory_calls = _directory(ADAPTER)
        bus.enumeration_error = RuntimeError("org.freedesktop.DBus.Error.ServiceUnknown")

        with pytest.raises(DeviceResolutionError):
            directory.resolve("Buds")
        assert bus.closed

        bus.enumeration_error = None
        directory.resolve("Buds")
        assert len(factory_calls) == 2

    def test_bus_reused_between_calls(self):
        directory, _, factory_calls = _directory(ADAPTER)
        directory.resolve("Buds")
        directory.resolve("Buds")
        assert len(factory_calls) == 1


class TestHandle:
    def test_connect_and_disconnect_are_fire_and_forget(self):
        directory, bus, _ = _directory({
            **ADAPTER,
            "/org/bluez/hci0/dev_AA": _device("Buds", connected=False),
        })
        snap = directory.resolve("Buds")

        snap.handle.connect()
        snap.handle.disconnect()

        assert bus.calls == [
            ("Connect", "/org/bluez/hci0/dev_AA", DEVICE_INTERFACE, True),
            ("Disconnect", "/org/bluez/hci0/dev_AA", DEVICE_INTERFACE, True),
        ]

    def test_send_failure(self):
        directory, bus, _ = _directory({
            **ADAPTER,
            "/org/bluez/hci0/dev_AA": _device("Buds", connected=False),
        })
        snap = directory.resolve("Buds")
        bus.send_error = RuntimeError("Disconnected from bus")

        with pytest.raises(DeviceCommandError, match="Connect failed"):
            snap.handle.connect()


def test_close_releases_bus():
    directory, bus, _ = _directory(ADAPTER)
    directory.resolve("Buds")
    directory.close()
    directory.close()
    assert bus.closed
