"""Cheap per-device checks used to infer Frida host state.

Every check here collapses failures to ``False``: a closed port, an unreadable
directory or a missing ``su`` are expected and not individually actionable.
"""

from __future__ import annotations

import logging

from fridactl.transports.base import DeviceHandle

LOGGER = logging.getLogger(__name__)

FRIDA_DEFAULT_PORT = 27042
FRIDA_ALTERNATE_PORT = 24072  # Reversed to mildly inconvenience detection

ANDROID_DEVICE_HTK_PATH = "/data/local/tmp/.httptoolkit"
FRIDA_BINARY_NAME = "adirf-server"  # Reversed to mildly inconvenience detection
FRIDA_BINARY_PATH = f"{ANDROID_DEVICE_HTK_PATH}/{FRIDA_BINARY_NAME}"

ALL_X_PERMS = 0o111

FRIDA_VERSION = "16.1.7"

DEFAULT_POLL_INTERVAL_S = 0.5
DEFAULT_POLL_ATTEMPTS = 10


async def is_device_port_open(device: DeviceHandle, port: int) -> bool:
    try:
        conn = await device.open_tcp(port)
    except Exception as exc:
        LOGGER.debug("Port %d closed on %s: %s", port, device.serial, exc)
        return False

    # If the connection opened at all, then something is listening.
    try:
        await conn.close()
    except Exception as exc:
        LOGGER.debug("Closing probe connection on %s failed: %s", device.serial, exc)
    return True


async def is_server_installed(device: DeviceHandle) -> bool:
    try:
        entries = await device.read_dir(ANDROID_DEVICE_HTK_PATH)
    except Exception as exc:
        LOGGER.debug("Could not list %s on %s: %s", ANDROID_DEVICE_HTK_PATH, device.serial, exc)
        return False

    return any(
        entry.name == FRIDA_BINARY_NAME and (entry.mode & ALL_X_PERMS) != 0
        for entry in entries
    )


async def is_probably_rooted(device: DeviceHandle) -> bool:
    try:
        return bool(await device.is_probably_rooted())
    except Exception as exc:
        LOGGER.debug("Root check failed on %s: %s", device.serial, exc)
        return False
