"""Frida session transport over an ADB port forward."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import frida

from fridactl.core.errors import SessionError
from fridactl.core.model import Target
from fridactl.transports.base import DetachHandler, DeviceHandle, MessageHandler

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_FRIDA_ERRORS = (
    frida.ServerNotRunningError,
    frida.TransportError,
    frida.ProtocolError,
    frida.TimedOutError,
    frida.NotSupportedError,
    frida.PermissionDeniedError,
    frida.ProcessNotFoundError,
    frida.ExecutableNotFoundError,
    frida.InvalidArgumentError,
    frida.InvalidOperationError,
)


async def _blocking(description: str, func: Callable[..., T], *args: Any) -> T:
    try:
        return await asyncio.to_thread(func, *args)
    except _FRIDA_ERRORS as exc:
        raise SessionError(f"{description} failed: {exc}") from exc


class FridaSession:
    def __init__(self, device: Any, address: str, release: Callable[[str], Awaitable[None]]) -> None:
        self._device = device
        self._address = address
        self._release = release
        self._released = False
        self._sessions: list[Any] = []

    async def enumerate_applications(self) -> list[Target]:
        apps = await _blocking("Enumerating applications", self._device.enumerate_applications)
        return [Target(id=app.identifier, name=app.name) for app in apps]

    async def spawn_with_script(
        self,
        app_id: str,
        script: str,
        *,
        on_message: MessageHandler | None = None,
        on_detached: DetachHandler | None = None,
    ) -> int:
        loop = asyncio.get_running_loop()

        # Frida calls handlers on its own thread: hop back onto the event loop.
        def _handle_message(message: dict[str, Any], _data: Any) -> None:
            if on_message is not None:
                loop.call_soon_threadsafe(on_message, message)

        def _handle_detached(reason: str, _crash: Any) -> None:
            if on_detached is not None:
                loop.call_soon_threadsafe(on_detached, reason)

        def _spawn() -> int:
            pid = self._device.spawn([app_id])
            session = self._device.attach(pid)
            self._sessions.append(session)
            session.on("detached", _handle_detached)

            # Handlers are attached before the app resumes so early script errors are not lost.
            loaded = session.create_script(script)
            loaded.on("message", _handle_message)
            loaded.load()
            self._device.resume(pid)
            return pid

        return await _blocking(f"Spawning {app_id}", _spawn)

    async def kill(self, pid: int) -> None:
        await _blocking(f"Killing pid {pid}", self._device.kill, pid)

    async def disconnect(self) -> None:
        for session in self._sessions:
            try:
                await asyncio.to_thread(session.detach)
            except frida.InvalidOperationError:
                LOGGER.debug("Session on %s already detached", self._address)
        self._sessions.clear()
        if not self._released:
            self._released = True
            await self._release(self._address)


class FridaConnector:
    """Connects to Frida servers through ADB port forwards.

    ADB reuses one local forward per device port, so several sessions can share
    a remote device address. The address stays registered with the device
    manager until the last session using it disconnects.
    """

    def __init__(self, device_manager: Any | None = None) -> None:
        self._device_manager = device_manager
        self._remotes: dict[str, Any] = {}
        self._users: dict[str, int] = {}
        self._lock = asyncio.Lock()

    @property
    def device_manager(self) -> Any:
        if self._device_manager is None:
            self._device_manager = frida.get_device_manager()
        return self._device_manager

    async def connect(self, device: DeviceHandle, port: int) -> FridaSession:
        local_port = await device.forward_tcp(port)
        address = f"127.0.0.1:{local_port}"
        manager = self.device_manager

        def _connect() -> Any:
            remote = manager.add_remote_device(address)
            # Forces the connection: fails here if nothing is listening on the device port.
            try:
                remote.query_system_parameters()
            except _FRIDA_ERRORS:
                manager.remove_remote_device(address)
                raise
            return remote

        async with self._lock:
            remote = self._remotes.get(address)
            if remote is None:
                remote = await _blocking(f"Connecting to Frida on {device.serial}:{port}", _connect)
                self._remotes[address] = remote
            self._users[address] = self._users.get(address, 0) + 1

        LOGGER.debug("Connected to Frida on %s:%d via %s", device.serial, port, address)
        return FridaSession(remote, address, self._release)

    async def _release(self, address: str) -> None:
        async with self._lock:
            remaining = self._users.get(address, 0) - 1
            if remaining > 0:
                self._users[address] = remaining
                return
            self._users.pop(address, None)
            self._remotes.pop(address, None)
            try:
                await asyncio.to_thread(self.device_manager.remove_remote_device, address)
            except frida.InvalidArgumentError:
                LOGGER.debug("Remote device %s already removed", address)
