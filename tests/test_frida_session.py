from __future__ import annotations

from types import SimpleNamespace

import frida
import pytest

from fridactl.core.errors import SessionError
from fridactl.transports.frida_session import FridaConnector


class FakeRemoteDevice:
    def __init__(self, address: str, reachable: bool = True) -> None:
        self.address = address
        self.reachable = reachable

    def query_system_parameters(self) -> dict[str, str]:
        if not self.reachable:
            raise frida.ServerNotRunningError("unable to connect to remote frida-server")
        return {"os": "android"}

    def enumerate_applications(self):
        return [SimpleNamespace(identifier="com.example.app", name="Example")]


class FakeDeviceManager:
    def __init__(self) -> None:
        self.reachable = True
        self.added: list[str] = []
        self.removed: list[str] = []

    def add_remote_device(self, address: str) -> FakeRemoteDevice:
        if address in self.added and address not in self.removed:
            raise frida.InvalidArgumentError(f"remote device {address} already added")
        self.added.append(address)
        return FakeRemoteDevice(address, reachable=self.reachable)

    def remove_remote_device(self, address: str) -> None:
        self.removed.append(address)


@pytest.fixture
def manager() -> FakeDeviceManager:
    return FakeDeviceManager()


@pytest.fixture
def forwarded_device(device):
    # ADB hands back the existing forward for a device port that is already forwarded.
    async def forward_tcp(port: int) -> int:
        device.forwarded.append(port)
        return 41000

    device.forward_tcp = forward_tcp
    return device


@pytest.mark.asyncio
async def test_sessions_share_remote_device_until_last_disconnects(manager, forwarded_device) -> None:
    connector = FridaConnector(device_manager=manager)

    intercepting = await connector.connect(forwarded_device, 24072)
    listing = await connector.connect(forwarded_device, 24072)

    assert manager.added == ["127.0.0.1:41000"]
    assert [t.id for t in await listing.enumerate_applications()] == ["com.example.app"]

    await listing.disconnect()
    assert manager.removed == []

    await intercepting.disconnect()
    assert manager.removed == ["127.0.0.1:41000"]


@pytest.mark.asyncio
async def test_disconnect_twice_releases_once(manager, forwarded_device) -> None:
    connector = FridaConnector(device_manager=manager)

    first = await connector.connect(forwarded_device, 24072)
    second = await connector.connect(forwarded_device, 24072)

    await first.disconnect()
    await first.disconnect()
    assert manager.removed == []

    await second.disconnect()
    assert manager.removed == ["127.0.0.1:41000"]


@pytest.mark.asyncio
async def test_unreachable_server_is_unregistered(manager, forwarded_device) -> None:
    manager.reachable = False
    connector = FridaConnector(device_manager=manager)

    with pytest.raises(SessionError):
        await connector.connect(forwarded_device, 24072)

    assert manager.removed == ["127.0.0.1:41000"]

    manager.reachable = True
    session = await connector.connect(forwarded_device, 24072)
    await session.disconnect()
    assert manager.removed == ["127.0.0.1:41000", "127.0.0.1:41000"]
