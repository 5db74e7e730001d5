from __future__ import annotations

import asyncio
import io
import shlex

import pytest

from fridactl.core.errors import DeviceBridgeError, SessionError
from fridactl.core.model import DirEntry, Target
from fridactl.core.probes import FRIDA_ALTERNATE_PORT


def su_0(*args: str) -> str:
    return shlex.join(("su", "0", *args))


class FakeConnection:
    def __init__(self) -> None:
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class FakeStream:
    def __init__(self, chunks: tuple[bytes, ...] = ()) -> None:
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()
        for chunk in chunks:
            self._queue.put_nowait(chunk)
        self.closed = False

    async def read(self, size: int = 4096) -> bytes:
        if self.closed:
            return b""
        return await self._queue.get()

    async def close(self) -> None:
        self.closed = True
        self._queue.put_nowait(b"")


class FakeDevice:
    def __init__(self, serial: str) -> None:
        self.serial = serial
        self.open_ports: set[int] = set()
        self.dir_entries: list[DirEntry] | None = []
        self.rooted: bool | Exception = False
        self.root_command = su_0
        self.properties = {"ro.product.cpu.abilist": "arm64-v8a,armeabi-v7a,armeabi"}
        self.shell_outputs: dict[str, str] = {}
        self.server_starts = True
        self.stream = FakeStream()
        self.calls: list[tuple[object, ...]] = []
        self.pushed: list[tuple[bytes, str, int]] = []
        self.forwarded: list[int] = []
        self.reversed: list[int] = []
        self.reverse_removed: list[int] = []

    async def open_tcp(self, port: int) -> FakeConnection:
        self.calls.append(("open_tcp", port))
        if port not in self.open_ports:
            raise DeviceBridgeError(f"Opening tcp:{port} on {self.serial} failed: connection refused")
        return FakeConnection()

    async def read_dir(self, path: str) -> list[DirEntry]:
        self.calls.append(("read_dir", path))
        if self.dir_entries is None:
            raise DeviceBridgeError(f"Listing {path} on {self.serial} failed: no such directory")
        return list(self.dir_entries)

    async def is_probably_rooted(self) -> bool:
        self.calls.append(("is_probably_rooted",))
        if isinstance(self.rooted, Exception):
            raise self.rooted
        return self.rooted

    async def get_root_command(self):
        return self.root_command

    async def shell(self, command: str) -> str:
        self.calls.append(("shell", command))
        return self.shell_outputs.get(command, "")

    async def shell_stream(self, command: str) -> FakeStream:
        self.calls.append(("shell_stream", command))
        if self.server_starts:
            self.open_ports.add(FRIDA_ALTERNATE_PORT)
        return self.stream

    async def push(self, data, path: str, mode: int) -> None:
        self.pushed.append((data.read(), path, mode))

    async def get_properties(self) -> dict[str, str]:
        return dict(self.properties)

    async def forward_tcp(self, port: int) -> int:
        self.forwarded.append(port)
        return 40000 + len(self.forwarded)

    async def reverse_tcp(self, port: int) -> None:
        self.reversed.append(port)

    async def remove_reverse_tcp(self, port: int) -> None:
        self.reverse_removed.append(port)


class FakeBridge:
    def __init__(self, *devices: FakeDevice) -> None:
        self.devices = {device.serial: device for device in devices}
        self.list_calls = 0

    async def list_device_ids(self) -> list[str]:
        self.list_calls += 1
        return list(self.devices)

    def get_device(self, device_id: str) -> FakeDevice:
        return self.devices[device_id]


class FakeSession:
    def __init__(self) -> None:
        self.apps = [Target(id="com.example.app", name="Example")]
        self.pid = 4321
        self.script_messages: list[dict[str, object]] = []
        self.spawn_error: Exception | None = None
        self.spawned: list[tuple[str, str]] = []
        self.killed: list[int] = []
        self.disconnects = 0
        self.on_detached = None

    async def enumerate_applications(self) -> list[Target]:
        return list(self.apps)

    async def spawn_with_script(self, app_id, script, *, on_message=None, on_detached=None) -> int:
        if self.spawn_error is not None:
            raise self.spawn_error
        self.spawned.append((app_id, script))
        self.on_detached = on_detached
        for message in self.script_messages:
            on_message(message)
        return self.pid

    async def kill(self, pid: int) -> None:
        self.killed.append(pid)

    async def disconnect(self) -> None:
        self.disconnects += 1


class FakeConnector:
    def __init__(self, session: FakeSession) -> None:
        self.session = session
        self.refused_ports: set[int] = set()
        self.ports: list[int] = []

    async def connect(self, device, port: int) -> FakeSession:
        self.ports.append(port)
        if port in self.refused_ports:
            raise SessionError(f"Connecting to Frida on {device.serial}:{port} failed: refused")
        return self.session


class FakeProvider:
    def __init__(self) -> None:
        self.data = b"\x7fELF frida-server"
        self.requests: list[tuple[str, str, str]] = []

    async def fetch(self, *, version: str, platform: str, arch: str):
        self.requests.append((version, platform, arch))
        return io.BytesIO(self.data)


@pytest.fixture
def make_device():
    return FakeDevice


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice("emulator-5554")


@pytest.fixture
def bridge(device: FakeDevice) -> FakeBridge:
    return FakeBridge(device)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def connector(session: FakeSession) -> FakeConnector:
    return FakeConnector(session)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
