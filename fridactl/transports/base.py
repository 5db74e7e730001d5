"""Transport interfaces.

The core only talks to devices and Frida servers through these protocols, so
tests and alternative backends can stand in for ADB and Frida.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, BinaryIO, Protocol

from fridactl.core.model import DirEntry, Target


class RootCommand(Protocol):
    def __call__(self, *args: str) -> str:
        """Wrap a command so that it runs as root, returning a shell command line."""


class TcpConnection(Protocol):
    async def close(self) -> None: ...


class ShellStream(Protocol):
    async def read(self, size: int = 4096) -> bytes:
        """Return the next chunk of output, or ``b""`` once the command has exited."""

    async def close(self) -> None: ...


class DeviceHandle(Protocol):
    serial: str

    async def read_dir(self, path: str) -> list[DirEntry]: ...

    async def open_tcp(self, port: int) -> TcpConnection: ...

    async def get_root_command(self) -> RootCommand | None: ...

    async def is_probably_rooted(self) -> bool: ...

    async def shell(self, command: str) -> str: ...

    async def shell_stream(self, command: str) -> ShellStream: ...

    async def push(self, data: BinaryIO, path: str, mode: int) -> None: ...

    async def get_properties(self) -> dict[str, str]: ...

    async def forward_tcp(self, port: int) -> int:
        """Forward a device TCP port to a free local port and return the local port."""

    async def reverse_tcp(self, port: int) -> None:
        """Make the host's TCP ``port`` reachable on the device's loopback interface."""

    async def remove_reverse_tcp(self, port: int) -> None:
        """Undo :meth:`reverse_tcp`."""


class DeviceBridge(Protocol):
    async def list_device_ids(self) -> list[str]: ...

    def get_device(self, device_id: str) -> DeviceHandle: ...


MessageHandler = Callable[[dict[str, Any]], None]
DetachHandler = Callable[[str], None]


class InstrumentationSession(Protocol):
    async def enumerate_applications(self) -> list[Target]: ...

    async def spawn_with_script(
        self,
        app_id: str,
        script: str,
        *,
        on_message: MessageHandler | None = None,
        on_detached: DetachHandler | None = None,
    ) -> int:
        """Spawn ``app_id`` suspended, load ``script`` into it, resume it and return its pid."""

    async def kill(self, pid: int) -> None: ...

    async def disconnect(self) -> None: ...


class InstrumentationConnector(Protocol):
    async def connect(self, device: DeviceHandle, port: int) -> InstrumentationSession: ...


class ServerProvider(Protocol):
    async def fetch(self, *, version: str, platform: str, arch: str) -> BinaryIO: ...
