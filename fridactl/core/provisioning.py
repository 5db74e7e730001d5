"""Frida server provisioning: setup, launch and intercept.

Each stage moves a host one step through its states:
setup-required -> (setup) -> launch-required -> (launch) -> available -> (intercept).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from fridactl.core.errors import (
    AccessDeniedError,
    FridactlError,
    ReadinessTimeoutError,
    ServerLaunchError,
    UnknownArchitectureError,
)
from fridactl.core.hosts import get_host_state
from fridactl.core.model import ActiveInterception, HostState, LaunchedServer, Target
from fridactl.core.polling import wait_until
from fridactl.core.probes import (
    DEFAULT_POLL_ATTEMPTS,
    DEFAULT_POLL_INTERVAL_S,
    FRIDA_ALTERNATE_PORT,
    FRIDA_BINARY_NAME,
    FRIDA_BINARY_PATH,
    FRIDA_DEFAULT_PORT,
    FRIDA_VERSION,
)
from fridactl.core.scripts import build_android_script
from fridactl.transports.base import (
    DeviceBridge,
    DeviceHandle,
    InstrumentationConnector,
    InstrumentationSession,
    RootCommand,
    ServerProvider,
    ShellStream,
)

LOGGER = logging.getLogger(__name__)

FRIDA_BINARY_MODE = 0o555

ABI_ARCH_MAP = {
    "arm64-v8a": "arm64",
    "armeabi": "arm",
    "armeabi-v7a": "arm",
    "x86": "x86",
    "x86_64": "x86_64",
}


def supported_abis(properties: Mapping[str, str]) -> list[str]:
    abilist = properties.get("ro.product.cpu.abilist")
    raw = abilist.split(",") if abilist else [properties.get("ro.product.cpu.abi", "")]
    return [abi.strip() for abi in raw if abi.strip()]


def select_architecture(abis: list[str]) -> str:
    for abi in abis:
        arch = ABI_ARCH_MAP.get(abi)
        if arch is not None:
            return arch
    raise UnknownArchitectureError(abis)


async def setup_host(
    bridge: DeviceBridge,
    host_id: str,
    provider: ServerProvider,
    *,
    version: str = FRIDA_VERSION,
) -> None:
    device = bridge.get_device(host_id)

    properties = await device.get_properties()
    arch = select_architecture(supported_abis(properties))

    LOGGER.info("Installing Frida server %s (android-%s) on %s", version, arch, host_id)
    server_stream = await provider.fetch(version=version, platform="android", arch=arch)
    await device.push(server_stream, FRIDA_BINARY_PATH, FRIDA_BINARY_MODE)


async def _forward_output(host_id: str, stream: ShellStream) -> None:
    server_logger = logging.getLogger(f"fridactl.server.{host_id}")
    pending = b""
    try:
        while True:
            chunk = await stream.read()
            if not chunk:
                break
            pending += chunk
            *lines, pending = pending.split(b"\n")
            for line in lines:
                server_logger.info("%s", line.decode("utf-8", errors="replace").rstrip())
    except FridactlError as exc:
        server_logger.debug("Server output closed: %s", exc)
    if pending:
        server_logger.info("%s", pending.decode("utf-8", errors="replace").rstrip())
    server_logger.info("Frida server output ended")


async def _find_server_pid(device: DeviceHandle, run_as_root: RootCommand) -> int | None:
    try:
        output = await device.shell(run_as_root("pidof", FRIDA_BINARY_NAME))
        return int(output.split()[0])
    except (FridactlError, ValueError, IndexError) as exc:
        LOGGER.debug("Could not find Frida server pid on %s: %s", device.serial, exc)
        return None


async def _abandon_launch(host_id: str, stream: ShellStream, output_task: asyncio.Task[None]) -> None:
    output_task.cancel()
    try:
        await stream.close()
    except Exception as exc:
        LOGGER.warning("Failed to close Frida server shell on %s: %s", host_id, exc)


async def launch_host(
    bridge: DeviceBridge,
    host_id: str,
    *,
    interval_s: float = DEFAULT_POLL_INTERVAL_S,
    max_attempts: int = DEFAULT_POLL_ATTEMPTS,
) -> LaunchedServer:
    device = bridge.get_device(host_id)

    run_as_root = await device.get_root_command()
    if run_as_root is None:
        raise AccessDeniedError(f"Couldn't get root access to launch Frida server on {host_id}")

    # This shell connection is what keeps the server alive.
    stream = await device.shell_stream(
        run_as_root(FRIDA_BINARY_PATH, "-l", f"127.0.0.1:{FRIDA_ALTERNATE_PORT}")
    )
    output_task = asyncio.create_task(_forward_output(host_id, stream))

    async def _is_available() -> bool:
        return await get_host_state(device) == HostState.AVAILABLE

    try:
        await wait_until(
            _is_available,
            interval_s=interval_s,
            max_attempts=max_attempts,
            description=f"Frida server on {host_id}",
        )
    except ReadinessTimeoutError as exc:
        await _abandon_launch(host_id, stream, output_task)
        raise ServerLaunchError(
            f"Failed to launch Frida server for {host_id}",
            attempts=exc.attempts,
            last_error=exc.last_error,
        ) from exc
    except BaseException:
        # Cancelled (or failed) mid-poll: nothing will ever own this server.
        await _abandon_launch(host_id, stream, output_task)
        raise

    pid = await _find_server_pid(device, run_as_root)
    LOGGER.info("Frida server running on %s (pid %s)", host_id, pid if pid is not None else "unknown")
    return LaunchedServer(host_id=host_id, pid=pid, stream=stream, output_task=output_task)


async def stop_server(bridge: DeviceBridge, server: LaunchedServer) -> None:
    device = bridge.get_device(server.host_id)
    try:
        if server.pid is not None:
            run_as_root = await device.get_root_command()
            if run_as_root is not None:
                await device.shell(run_as_root("kill", str(server.pid)))
    finally:
        if server.output_task is not None:
            server.output_task.cancel()
        await server.stream.close()
    LOGGER.info("Stopped Frida server on %s", server.host_id)


async def connect_session(
    bridge: DeviceBridge,
    connector: InstrumentationConnector,
    host_id: str,
) -> InstrumentationSession:
    device = bridge.get_device(host_id)
    # Try the alternate port first: it's ours, so preferred and more likely to work.
    try:
        return await connector.connect(device, FRIDA_ALTERNATE_PORT)
    except FridactlError as exc:
        LOGGER.debug("Alternate port unavailable on %s, trying default: %s", host_id, exc)
        return await connector.connect(device, FRIDA_DEFAULT_PORT)


async def list_targets(
    bridge: DeviceBridge,
    connector: InstrumentationConnector,
    host_id: str,
) -> list[Target]:
    session = await connect_session(bridge, connector, host_id)
    try:
        return await session.enumerate_applications()
    finally:
        await session.disconnect()


async def _remove_reverse(device: DeviceHandle, port: int) -> None:
    try:
        await device.remove_reverse_tcp(port)
    except FridactlError as exc:
        LOGGER.warning("Failed to remove reverse tcp:%d on %s: %s", port, device.serial, exc)


async def intercept_target(
    bridge: DeviceBridge,
    connector: InstrumentationConnector,
    host_id: str,
    target_id: str,
    *,
    cert_content: str,
    proxy_port: int,
    proxy_host: str | None = None,
) -> ActiveInterception:
    device = bridge.get_device(host_id)
    reverse_port: int | None = None
    if proxy_host is None:
        await device.reverse_tcp(proxy_port)
        reverse_port = proxy_port
        proxy_host = "127.0.0.1"

    script = build_android_script(cert_content, proxy_host, proxy_port)

    detached = asyncio.Event()
    errors: list[str] = []

    def _on_message(message: dict[str, Any]) -> None:
        if message.get("type") == "error":
            description = str(message.get("description", "Unknown error"))
            LOGGER.error(
                "Script error in %s on %s: %s\n%s",
                target_id,
                host_id,
                description,
                message.get("stack", ""),
            )
            errors.append(description)
        else:
            LOGGER.debug("Script message from %s on %s: %s", target_id, host_id, message.get("payload"))

    def _on_detached(reason: str) -> None:
        LOGGER.info("Interception of %s on %s ended: %s", target_id, host_id, reason)
        detached.set()

    try:
        session = await connect_session(bridge, connector, host_id)
        try:
            pid = await session.spawn_with_script(
                target_id,
                script,
                on_message=_on_message,
                on_detached=_on_detached,
            )
        except BaseException:
            await session.disconnect()
            raise
    except BaseException:
        if reverse_port is not None:
            await _remove_reverse(device, reverse_port)
        raise

    LOGGER.info("Intercepting %s on %s (pid %d) via %s:%d", target_id, host_id, pid, proxy_host, proxy_port)
    return ActiveInterception(
        host_id=host_id,
        target_id=target_id,
        proxy_port=proxy_port,
        pid=pid,
        session=session,
        detached=detached,
        errors=errors,
        reverse_port=reverse_port,
    )


async def stop_interception(bridge: DeviceBridge, interception: ActiveInterception) -> None:
    try:
        if not interception.detached.is_set():
            await interception.session.kill(interception.pid)
    finally:
        try:
            await interception.session.disconnect()
        finally:
            interception.detached.set()
            if interception.reverse_port is not None:
                await _remove_reverse(bridge.get_device(interception.host_id), interception.reverse_port)
