from __future__ import annotations

import asyncio

import pytest

from fridactl.core.hosts import discover_hosts, get_host, get_host_state
from fridactl.core.model import DirEntry, Host, HostState
from fridactl.core.probes import FRIDA_ALTERNATE_PORT, FRIDA_BINARY_NAME, FRIDA_DEFAULT_PORT

INSTALLED = [DirEntry(name=FRIDA_BINARY_NAME, mode=0o100555)]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("ports", "entries", "rooted", "expected"),
    [
        ({FRIDA_DEFAULT_PORT}, [], False, HostState.AVAILABLE),
        ({FRIDA_ALTERNATE_PORT}, [], False, HostState.AVAILABLE),
        ({FRIDA_DEFAULT_PORT}, INSTALLED, True, HostState.AVAILABLE),
        (set(), INSTALLED, False, HostState.LAUNCH_REQUIRED),
        (set(), INSTALLED, True, HostState.LAUNCH_REQUIRED),
        (set(), [], True, HostState.SETUP_REQUIRED),
        (set(), None, True, HostState.SETUP_REQUIRED),
        (set(), [], False, HostState.UNAVAILABLE),
    ],
)
async def test_state_precedence(device, ports, entries, rooted, expected) -> None:
    device.open_ports = set(ports)
    device.dir_entries = entries
    device.rooted = rooted

    assert await get_host_state(device) == expected


@pytest.mark.asyncio
async def test_later_checks_skipped_once_one_succeeds(device) -> None:
    device.dir_entries = INSTALLED
    device.rooted = True

    assert await get_host_state(device) == HostState.LAUNCH_REQUIRED
    assert ("is_probably_rooted",) not in device.calls

    device.calls.clear()
    device.open_ports = {FRIDA_ALTERNATE_PORT}
    assert await get_host_state(device) == HostState.AVAILABLE
    assert [call[0] for call in device.calls] == ["open_tcp", "open_tcp"]


@pytest.mark.asyncio
async def test_get_host_uses_device_id_as_name(bridge, device) -> None:
    device.rooted = True
    host = await get_host(bridge, device.serial)
    assert host == Host(id="emulator-5554", name="emulator-5554", type="android", state=HostState.SETUP_REQUIRED)
    assert host.targets is None


@pytest.mark.asyncio
async def test_discover_hosts_returns_one_host_per_device(bridge, device, make_device) -> None:
    other = make_device("R58M123ABC")
    other.open_ports = {FRIDA_DEFAULT_PORT}
    bridge.devices[other.serial] = other

    hosts = await discover_hosts(bridge)

    assert [(h.id, h.state) for h in hosts] == [
        ("emulator-5554", HostState.UNAVAILABLE),
        ("R58M123ABC", HostState.AVAILABLE),
    ]


@pytest.mark.asyncio
async def test_discover_hosts_probes_devices_concurrently(bridge, device, make_device) -> None:
    other = make_device("R58M123ABC")
    bridge.devices[other.serial] = other

    both_started = asyncio.Event()
    started: list[str] = []

    def slow_root_check(dev):
        async def _check() -> bool:
            started.append(dev.serial)
            if len(started) == 2:
                both_started.set()
            await asyncio.wait_for(both_started.wait(), timeout=1)
            return True

        return _check

    device.is_probably_rooted = slow_root_check(device)
    other.is_probably_rooted = slow_root_check(other)

    hosts = await discover_hosts(bridge)
    assert {h.state for h in hosts} == {HostState.SETUP_REQUIRED}


@pytest.mark.asyncio
async def test_no_devices_means_no_hosts(bridge) -> None:
    bridge.devices.clear()
    assert await discover_hosts(bridge) == []


@pytest.mark.asyncio
async def test_both_port_probes_run_concurrently(device) -> None:
    both_started = asyncio.Event()
    started: list[int] = []
    overlapping: list[int] = []

    class Connection:
        async def close(self) -> None:
            return None

    async def gated_open_tcp(port: int) -> Connection:
        started.append(port)
        if len(started) == 2:
            both_started.set()
        await asyncio.wait_for(both_started.wait(), timeout=1)
        overlapping.append(port)
        return Connection()

    device.open_tcp = gated_open_tcp

    assert await get_host_state(device) == HostState.AVAILABLE
    assert sorted(overlapping) == [FRIDA_ALTERNATE_PORT, FRIDA_DEFAULT_PORT]
