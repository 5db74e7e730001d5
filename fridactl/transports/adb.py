"""ADB device bridge implementation using adbutils."""

from __future__ import annotations

import asyncio
import re
import shlex
import socket
from collections.abc import Callable
from typing import Any, BinaryIO, TypeVar

from adbutils import AdbClient, AdbError, Network

from fridactl.core.errors import DeviceBridgeError
from fridactl.core.model import DirEntry
from fridactl.transports.base import RootCommand

T = TypeVar("T")

_GETPROP_LINE_RE = re.compile(r"^\[(.+?)\]: \[(.*)\]$")
_ROOT_CHECK_TIMEOUT_S = 5.0


def parse_getprop(output: str) -> dict[str, str]:
    properties: dict[str, str] = {}
    for line in output.splitlines():
        match = _GETPROP_LINE_RE.match(line.strip())
        if match:
            properties[match.group(1)] = match.group(2)
    return properties


def _plain(*args: str) -> str:
    return shlex.join(args)


def _su_root(*args: str) -> str:
    # 'su' as available on official emulator images
    return shlex.join(("su", "root", *args))


def _su_c(*args: str) -> str:
    # 'su' as available on many rooted devices
    return f"su -c {shlex.quote(shlex.join(args))}"


def _su_0(*args: str) -> str:
    # Some su builds don't accept -c
    return shlex.join(("su", "0", *args))


ROOT_COMMAND_CANDIDATES: tuple[RootCommand, ...] = (_plain, _su_root, _su_c, _su_0)


async def _blocking(description: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except (AdbError, OSError) as exc:
        raise DeviceBridgeError(f"{description} failed: {exc}") from exc


class AdbTcpConnection:
    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    async def close(self) -> None:
        self._sock.close()


class AdbShellStream:
    def __init__(self, connection: Any) -> None:
        self._connection = connection
        # Long-running commands may stay quiet for a long time.
        self._connection.conn.settimeout(None)

    async def read(self, size: int = 4096) -> bytes:
        return await _blocking("Reading shell output", self._connection.conn.recv, size)

    async def close(self) -> None:
        self._connection.close()


class AdbDeviceHandle:
    def __init__(self, device: Any) -> None:
        self._device = device
        self.serial: str = device.serial

    async def read_dir(self, path: str) -> list[DirEntry]:
        entries = await _blocking(f"Listing {path} on {self.serial}", self._device.sync.list, path)
        return [DirEntry(name=entry.path, mode=entry.mode) for entry in entries]

    async def open_tcp(self, port: int) -> AdbTcpConnection:
        sock = await _blocking(
            f"Opening tcp:{port} on {self.serial}",
            self._device.create_connection,
            Network.TCP,
            port,
        )
        return AdbTcpConnection(sock)

    async def shell(self, command: str, timeout: float | None = None) -> str:
        return await _blocking(
            f"Running '{command}' on {self.serial}",
            self._device.shell,
            command,
            timeout=timeout,
        )

    async def shell_stream(self, command: str) -> AdbShellStream:
        connection = await _blocking(
            f"Starting '{command}' on {self.serial}",
            self._device.shell,
            command,
            stream=True,
        )
        return AdbShellStream(connection)

    async def get_root_command(self) -> RootCommand | None:
        for candidate in ROOT_COMMAND_CANDIDATES:
            try:
                output = await self.shell(candidate("whoami"), timeout=_ROOT_CHECK_TIMEOUT_S)
            except DeviceBridgeError:
                continue
            if output.strip() == "root":
                return candidate
        return None

    async def is_probably_rooted(self) -> bool:
        output = await self.shell("command -v su || true", timeout=_ROOT_CHECK_TIMEOUT_S)
        if output.strip():
            return True
        return (await self.shell("whoami", timeout=_ROOT_CHECK_TIMEOUT_S)).strip() == "root"

    async def push(self, data: BinaryIO, path: str, mode: int) -> None:
        await _blocking(f"Pushing {path} to {self.serial}", self._device.sync.push, data, path, mode=mode)

    async def get_properties(self) -> dict[str, str]:
        return parse_getprop(await self.shell("getprop"))

    async def forward_tcp(self, port: int) -> int:
        return await _blocking(f"Forwarding tcp:{port} on {self.serial}", self._device.forward_port, port)

    async def reverse_tcp(self, port: int) -> None:
        await _blocking(
            f"Reversing tcp:{port} on {self.serial}",
            self._device.reverse,
            f"tcp:{port}",
            f"tcp:{port}",
        )

    async def remove_reverse_tcp(self, port: int) -> None:
        def _kill_reverse() -> None:
            with self._device.open_transport() as conn:
                conn.send_command(f"reverse:killforward:tcp:{port}")
                conn.check_okay()

        await _blocking(f"Removing reverse tcp:{port} on {self.serial}", _kill_reverse)


class AdbBridge:
    def __init__(self, *, host: str = "127.0.0.1", port: int = 5037, client: Any | None = None) -> None:
        self._client = client or AdbClient(host=host, port=port)

    async def list_device_ids(self) -> list[str]:
        devices = await _blocking("Listing ADB devices", self._client.list)
        return [info.serial for info in devices if info.state == "device"]

    def get_device(self, device_id: str) -> AdbDeviceHandle:
        return AdbDeviceHandle(self._client.device(serial=device_id))
