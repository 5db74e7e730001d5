"""Frida host discovery and state inference.

Terminology:
  - host: a device which may contain one or more Frida targets
  - target: a single app that can be intercepted
"""

from __future__ import annotations

import asyncio
import logging

from fridactl.core.model import Host, HostState
from fridactl.core.probes import (
    FRIDA_ALTERNATE_PORT,
    FRIDA_DEFAULT_PORT,
    is_device_port_open,
    is_probably_rooted,
    is_server_installed,
)
from fridactl.transports.base import DeviceBridge, DeviceHandle

LOGGER = logging.getLogger(__name__)

ANDROID_HOST_TYPE = "android"


async def get_host_state(device: DeviceHandle) -> HostState:
    # Checks run in series after the port probes: slower, but less hammering of
    # ADB and the device, and no unnecessary checks once one succeeds.
    default_open, alternate_open = await asyncio.gather(
        is_device_port_open(device, FRIDA_DEFAULT_PORT),
        is_device_port_open(device, FRIDA_ALTERNATE_PORT),
    )

    if default_open or alternate_open:
        return HostState.AVAILABLE
    if await is_server_installed(device):
        return HostState.LAUNCH_REQUIRED
    if await is_probably_rooted(device):
        return HostState.SETUP_REQUIRED
    # No Frida, looks unrooted: nothing we can do.
    return HostState.UNAVAILABLE


async def get_host(bridge: DeviceBridge, device_id: str) -> Host:
    state = await get_host_state(bridge.get_device(device_id))
    LOGGER.debug("Host %s is %s", device_id, state)
    return Host(id=device_id, name=device_id, type=ANDROID_HOST_TYPE, state=state)


async def discover_hosts(bridge: DeviceBridge) -> list[Host]:
    device_ids = await bridge.list_device_ids()
    return list(await asyncio.gather(*(get_host(bridge, device_id) for device_id in device_ids)))
